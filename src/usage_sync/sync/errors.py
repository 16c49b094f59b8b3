"""Custom exceptions for the usage sync engine."""


class SyncError(Exception):
    """Base exception for usage sync errors."""


class PersistenceError(SyncError):
    """Raised when the local store cannot be read or written."""


class WorkflowNotFoundError(PersistenceError):
    """Raised when no workflow row exists for a workspace."""


class CheckpointRegressionError(PersistenceError):
    """Raised when a checkpoint update would move a workflow's watermark backwards."""


class CostSourceError(SyncError):
    """Raised when usage cannot be read from a cost source."""


class SourceDatabaseError(CostSourceError):
    """Raised when the source DuckDB database cannot be opened or read."""


class SourceSchemaError(CostSourceError):
    """Raised when required source tables are missing."""


class CostSourceUnavailableError(SyncError):
    """Raised when no cost source can be resolved for a workspace."""


class WorkflowAlreadyRunningError(SyncError):
    """Raised when a runner is already active for a workspace."""


class WorkflowNotRunningError(SyncError):
    """Raised when cancelling a workspace that has no active runner."""
