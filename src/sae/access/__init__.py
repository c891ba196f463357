from .resolver import AccessResolver, resolve_recipients
from .sqlite_resolver import SqliteAccessResolver

__all__ = [
    "AccessResolver",
    "SqliteAccessResolver",
    "resolve_recipients",
]
