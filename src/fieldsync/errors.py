"""Exception hierarchy for fieldsync."""


class FieldSyncError(Exception):
    """Base class for all fieldsync errors."""


class ParseError(FieldSyncError, ValueError):
    """A schedule time string is not in HH:MM form."""


class TransferError(FieldSyncError):
    """Uploading a photo binary to object storage failed."""


class EnrichmentError(FieldSyncError):
    """The photo classification call failed or returned garbage."""


class PersistenceError(FieldSyncError):
    """Writing the photo metadata row failed after the binary was stored."""
