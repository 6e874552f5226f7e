"""
Custom exceptions for the ERP synchronization engine.
"""

from typing import Optional


class SyncError(Exception):
    """Base exception for all synchronization errors."""
    pass


class TransportError(SyncError):
    """
    Network or HTTP-level failure while calling the remote system.

    Raised when:
    - The remote host is unreachable or the connection drops
    - The request times out
    - The remote answers with a non-2xx HTTP status

    Transport errors are retryable.
    """

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class ProtocolFault(SyncError):
    """
    The remote system explicitly rejected the call with a fault envelope.

    Not retryable without changing the inputs.
    """

    def __init__(self, code, message: str):
        super().__init__(f"RPC fault {code}: {message}")
        self.code = code
        self.message = message


class MalformedResponseError(SyncError):
    """
    A response was received but does not follow the protocol grammar.

    Treated as transport-class and retried once by the fetcher.
    """
    pass


class AuthenticationError(SyncError):
    """Session with the remote system could not be established."""
    pass


class MissingParentError(SyncError):
    """
    A child record's parent has not been staged yet.

    Per-record failure: counted on the job, never aborts a phase.
    """

    def __init__(self, message: str, remote_parent_id: Optional[int] = None):
        super().__init__(message)
        self.remote_parent_id = remote_parent_id


class PersistenceError(SyncError):
    """A staging or job store write/read failed."""
    pass


class JobStateError(SyncError):
    """
    Illegal job transition.

    Raised when:
    - A progress snapshot would decrease records_processed
    - A terminal job receives a progress update or another terminal status
    - The job id is unknown
    """
    pass


class ConfigError(SyncError):
    """Configuration is missing or invalid (e.g. unknown connection id)."""
    pass


class SyncCancelled(SyncError):
    """Raised at a page boundary when the run's cancellation token is set."""
    pass
