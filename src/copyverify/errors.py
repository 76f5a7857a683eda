"""
errors.py — Exception hierarchy for copyverify.

Anything derived from CopyVerifyError that reaches the orchestrator aborts
the run. Per-file problems during hashing never raise past the worker.
"""


class CopyVerifyError(Exception):
    """Base class for all copyverify failures."""


class ConfigError(CopyVerifyError):
    """Configuration could not be loaded or is invalid."""


class StoreError(CopyVerifyError):
    """The ledger database could not be opened, pinged, or was used after close."""


class LedgerError(CopyVerifyError):
    """A schema, query, or transaction against the ledger table failed."""


class EnumerationError(CopyVerifyError):
    """The destination tree could not be fully walked.

    Attributes:
        path: Directory or file that failed
    """

    def __init__(self, path, cause: Exception):
        self.path = str(path)
        self.cause = cause
        super().__init__(f"cannot walk {self.path}: {cause}")
