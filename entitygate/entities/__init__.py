"""ORM entities shipped with entitygate."""

from .base import Base
from .slow_query import SlowQuery

__all__ = ("Base", "SlowQuery")
