# This file is here so that we can patch the ldap module in our tests.
# python-ldap-faker patches ``<module>.ldap.initialize`` for each module listed
# in ``ldap_modules``, so everything in ldapcatalog reaches python-ldap through
# here.
import ldap
from ldap import *  # noqa: F403
from ldap.controls import SimplePagedResultsControl  # noqa: F401

__version__ = ldap.__version__
