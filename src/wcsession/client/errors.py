from __future__ import annotations
from typing import Optional


class ProtocolError(Exception):
    pass


class ValidationError(ProtocolError, ValueError):
    pass


class SessionStateError(ProtocolError):
    pass


class NotConnectedError(SessionStateError):
    pass


class SessionFailed(ProtocolError):
    def __init__(self, message: str):
        super().__init__(f"Session Failed: {message}")
        self.message = message


class TransportError(ProtocolError):
    pass


class CipherError(ProtocolError):
    pass


class RpcError(ProtocolError):
    def __init__(self, message: str, code: Optional[int] = None, data=None):
        super().__init__(message if code is None else f"[{code}] {message}")
        self.message = message
        self.code = code
        self.data = data


class RpcTimeout(RpcError):
    pass


class SessionRejected(Exception):
    """The wallet declined the session.

    connect() raises this when its handshake completion ends cancelled
    rather than failed, so callers can tell "user declined" apart from
    SessionFailed. Kept outside the ProtocolError tree, and not a
    CancelledError subclass since asyncio.wait_for would re-raise a plain
    CancelledError in its place.
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
