"""
Royalty Sweeper - Error Kinds

ConfigError      → fatal at startup, process exits non-zero
QueryError       → recovered locally (address skipped for the cycle)
SubmissionError  → recovered locally by the loop, terminal in single-shot mode
"""

from typing import Optional


class SweeperError(Exception):
    """Base class for every error the sweeper raises on purpose."""
    pass


class ConfigError(SweeperError):
    """Raised for malformed addresses, empty watchlists and bad key material."""
    pass


class ParseError(ConfigError):
    """Raised when a line of an addresses file is not a valid address."""

    def __init__(self, line: int, reason: str, path: Optional[str] = None) -> None:
        self.line = line
        self.reason = reason
        self.path = path
        where = f"{path}:{line}" if path else f"line {line}"
        super().__init__(f"parse address at {where}: {reason}")


class QueryError(SweeperError):
    """Raised when a read-only ledger query (view, account) fails."""

    def __init__(self, message: str, address: Optional[str] = None) -> None:
        self.address = address
        super().__init__(message)


class SubmissionError(SweeperError):
    """Raised when the ledger rejects, times out or fails a transaction."""

    def __init__(
        self,
        reason: str,
        tx_hash: Optional[str] = None,
        vm_status: Optional[str] = None,
    ) -> None:
        self.reason = reason
        self.tx_hash = tx_hash
        self.vm_status = vm_status
        super().__init__(reason)
