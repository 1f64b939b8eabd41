"""ragvault database layer."""

from ragvault.db.connection import Database
from ragvault.db.migrations import MIGRATIONS, run_migrations
from ragvault.db.repository import Repository
from ragvault.db.schema import initialize
from ragvault.db.vectors import blob_to_vector, vector_to_blob

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "blob_to_vector",
    "vector_to_blob",
]
