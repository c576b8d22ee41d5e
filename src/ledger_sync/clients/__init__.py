"""Document store implementations."""

from ..config import Settings
from ..db import Database
from ..exceptions import ConfigurationError
from .base import DocumentStore
from .firestore import FirestoreClient
from .local import LocalDocumentStore


def create_store(settings: Settings) -> DocumentStore:
    """Build the document store selected by ``settings.store_backend``."""
    if settings.store_backend == "firestore":
        if not settings.firestore_project_id or not settings.firestore_access_token:
            raise ConfigurationError(
                "The firestore backend needs FIRESTORE_PROJECT_ID and "
                "FIRESTORE_ACCESS_TOKEN"
            )
        return FirestoreClient(
            project_id=settings.firestore_project_id,
            access_token=settings.firestore_access_token,
            database=settings.firestore_database,
            poll_interval=settings.poll_interval_seconds,
        )

    return LocalDocumentStore(Database(settings.database_path))


__all__ = [
    "DocumentStore",
    "FirestoreClient",
    "LocalDocumentStore",
    "create_store",
]
