"""Custom exceptions for ledger-sync."""


class LedgerSyncError(Exception):
    """Base exception for all ledger-sync errors."""

    pass


class ConfigurationError(LedgerSyncError):
    """Raised when configuration is invalid or missing."""

    pass


class ValidationError(LedgerSyncError, ValueError):
    """Raised when caller-supplied data fails a precondition before a write."""

    pass


class TransactionValidationError(ValidationError):
    """Raised when an expense or settlement draft is invalid."""

    pass


class NoCurrentUserError(LedgerSyncError):
    """Raised when an operation needs the signed-in user before it is known."""

    def __init__(self, message: str | None = None):
        super().__init__(message or "No current user: start a session first")


class GroupNotFoundError(LedgerSyncError):
    """Raised when a group id is not part of the current model."""

    def __init__(self, group_id: str):
        self.group_id = group_id
        super().__init__(f"Group {group_id} not found")


class StoreError(LedgerSyncError):
    """Base class for document store failures."""

    pass


class StoreAPIError(StoreError):
    """Raised when a request to the remote document store fails."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class DocumentNotFoundError(StoreError):
    """Raised when updating a document that does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Document {path} does not exist")
