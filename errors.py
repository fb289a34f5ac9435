"""
Error taxonomy shared by the directory and repository adapters
"""


class SyncError(Exception):
    """Base class for every error raised by the sync."""


class ConnectivityError(SyncError):
    """A collaborator (LDAP or Alfresco) could not be reached."""


class DataIntegrityError(SyncError):
    """A required record or field is missing or malformed."""


class ConflictError(SyncError):
    """A collaborator rejected a write."""


class ConfigurationError(SyncError):
    """The configuration is incomplete or invalid. Only raised at startup."""


class RetryMarkingError(SyncError):
    """
    A failed record could not be marked for retry.
    The next incremental run can no longer be trusted to pick it up, so this
    always aborts the run.
    """
