"""
RADIUS Accounting Exceptions

Typed failures raised while handling Accounting-Request packets. The server
loop catches AccountingError, logs it and drops the packet without sending an
Accounting-Response, leaving recovery to the NAS retransmission timer.
"""

from typing import Any, Optional


class AccountingError(Exception):
    """Base exception for all accounting failures."""

    error_code = 'accounting_error'

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class MalformedAttribute(AccountingError):
    """Raised when a required attribute is missing or cannot be decoded."""

    error_code = 'malformed_attribute'

    def __init__(self, message: str, attribute: Optional[str] = None, value: Any = None):
        super().__init__(message, {'attribute': attribute, 'value': value})
        self.attribute = attribute
        self.value = value


class UnsupportedStatusType(AccountingError):
    """Raised for an Acct-Status-Type this server does not handle."""

    error_code = 'unsupported_status_type'

    def __init__(self, status_type: int):
        super().__init__(
            f"Acct-Status-Type {status_type} is not supported",
            {'status_type': status_type}
        )
        self.status_type = status_type


class SessionNotFound(AccountingError):
    """Raised when an accounting session has no online record."""

    error_code = 'session_not_found'

    def __init__(self, session_id: str):
        super().__init__(f"No online session {session_id}", {'session_id': session_id})
        self.session_id = session_id


class UnresolvedSession(AccountingError):
    """Raised when an unknown Interim-Update carries no User-Name."""

    error_code = 'unresolved_session'

    def __init__(self, session_id: str):
        super().__init__(
            f"Interim-Update for unknown session {session_id} has no User-Name",
            {'session_id': session_id}
        )
        self.session_id = session_id


class UnknownSubscriber(AccountingError):
    """Raised when an Interim-Update names a subscriber that does not exist."""

    error_code = 'unknown_subscriber'

    def __init__(self, username: str, session_id: str):
        super().__init__(
            f"Subscriber {username} (session {session_id}) does not exist",
            {'username': username, 'session_id': session_id}
        )
        self.username = username
        self.session_id = session_id


class DuplicateSession(AccountingError):
    """Raised when a session id is already online."""

    error_code = 'duplicate_session'

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} is already online", {'session_id': session_id})
        self.session_id = session_id


class PersistenceError(AccountingError):
    """Raised when the database rejects a read or write."""

    error_code = 'persistence_error'
