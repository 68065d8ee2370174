"""Storage backends for sessions and extracted facts."""

from .base import NotFound, Repository, RepositoryError
from .pocketbase import PocketBaseRepository
from .sqlite import SqliteRepository

__all__ = [
    "NotFound",
    "PocketBaseRepository",
    "Repository",
    "RepositoryError",
    "SqliteRepository",
]
