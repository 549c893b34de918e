# /hepnet/src/hepnet/preprocessing/core/exceptions.py

"""
Error taxonomy shared by the preprocessing and network packages.

Every failure in the core is surfaced to the caller as one of these
exceptions. Only the outermost entry point decides whether to terminate the
process.
"""


class HepnetError(Exception):
    """Base exception for all hepnet errors."""


class ConfigurationError(HepnetError):
    """Malformed or missing required settings."""


class DataIntegrityError(HepnetError):
    """Input data cannot be used (missing class, zero variance, empty source, bad expression)."""


class StateError(HepnetError):
    """Operation is illegal in the current state of the object."""


class NotFoundError(HepnetError):
    """Lookup miss. Recoverable: callers decide which default applies."""


class LedgerEntryNotFoundError(NotFoundError):
    """The requested source has no record in the ledger."""

    def __init__(self, source_name: str, ledger_path: str):
        super().__init__(f"Source '{source_name}' is not recorded in ledger '{ledger_path}'")
        self.source_name = source_name
        self.ledger_path = ledger_path


class UnsupportedOperationError(HepnetError):
    """Requested feature exists as a placeholder only."""
