"""
Error hierarchy for the sync engine.

Each class marks the smallest scope a failure is contained to:
message < mailbox < account < run. Only TrackingStoreError fails a whole run.
"""


class CourrierError(Exception):
    """Base class for all engine errors."""
    pass


class ConfigError(CourrierError):
    """Raised when the mail configuration cannot be loaded or is invalid."""
    pass


class ImapConnectionError(CourrierError, ConnectionError):
    """Network failure talking to the IMAP server (retryable, bounded)."""
    pass


class AuthError(CourrierError):
    """Login rejected. Never retried; fatal for the account only."""
    pass


class ProtocolError(CourrierError):
    """Server answered NO/BAD or an unparseable response."""
    pass


class StorageError(CourrierError):
    """Writing or renaming a message file failed."""
    pass


class TrackingStoreError(CourrierError):
    """The durable record could not be read or written.

    When raised out of a mailbox sync, ``outcome`` holds that unit's result
    up to the failure.
    """
    outcome = None
