#!/usr/bin/env python
from setuptools import setup, find_packages

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name='django-ldapcatalog',
    version='0.1.0',
    description='Async, read-only paged and streaming LDAP searches with server vendor detection',
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords=['django', 'ldap', 'asyncio'],
    author="Caltech IMSS ADS",
    author_email="imss-ads-staff@caltech.edu",
    url='https://github.com/caltechads/django-ldapcatalog',
    packages=find_packages(exclude=['bin', 'sandbox']),
    package_data={'ldapcatalog.tests': ['*.json']},
    include_package_data=True,
    python_requires='>=3.10',
    install_requires=[
        'django',
        'ldap_filter',
        'python-ldap',
    ],
    extras_require={
        'test': [
            'pytest',
            'python-ldap-faker',
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3"
    ],
)
