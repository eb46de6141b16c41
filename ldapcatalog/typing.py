"""
LDAP catalog type definitions.

This module provides type aliases for LDAP data structures and the callables
that callers hand to the search executors, using Python 3.10+ type hinting
conventions.
"""

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import SearchEntry

Result3 = tuple[int | None, list[Any] | None, int | None, list[Any] | None]
Transform = Callable[["SearchEntry"], Awaitable[None] | None]
ErrorObserver = Callable[[BaseException], None]
ReferralHandler = Callable[[list[str]], None]
