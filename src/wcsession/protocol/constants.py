from __future__ import annotations

PROTO_NAME = "wc"
PROTO_VERSION = "1"
JSONRPC_VERSION = "2.0"

WC_SESSION_REQUEST = "wc_sessionRequest"
WC_SESSION_UPDATE = "wc_sessionUpdate"
WC_METHOD_PREFIX = "wc_"

EVENT_CONNECT = "connect"
EVENT_SESSION_UPDATE = "session_update"
EVENT_SESSION_FAILED = "session_failed"
EVENT_DISCONNECT = "disconnect"
RESPONSE_EVENT_PREFIX = "response:"

REJECTION_MESSAGES = ("Not Approved", "Session Rejected")
NOT_APPROVED = "Not Approved"
MALFORMED_SESSION = "Malformed session response"
DEFAULT_DISCONNECT_MESSAGE = "Session Disconnected"
SESSION_CLOSED = "Session Closed"

SIGNING_METHODS = (
    "eth_sendTransaction",
    "eth_signTransaction",
    "eth_sign",
    "eth_signTypedData",
    "eth_signTypedData_v1",
    "eth_signTypedData_v2",
    "eth_signTypedData_v3",
    "eth_signTypedData_v4",
    "personal_sign",
)

DEFAULT_BRIDGES = (
    "https://bridge.walletconnect.org",
    "https://a.bridge.walletconnect.org",
    "https://b.bridge.walletconnect.org",
    "https://c.bridge.walletconnect.org",
    "https://d.bridge.walletconnect.org",
    "https://e.bridge.walletconnect.org",
)

DEFAULT_CHAIN_ID = 1
KEY_BYTES = 32
IV_BYTES = 16

MAX_MSG_BYTES = 256 * 1024
MAX_JSON_DEPTH = 32
MAX_JSON_KEYS = 512
MAX_DECRYPT_FAILURES = 10
