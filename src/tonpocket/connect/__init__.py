"""TON Connect: request URI codec and session handshake."""

from tonpocket.connect.codec import (
    ConnectionRequest,
    DecodedConnectionRequest,
    decode_connection_request,
    decode_request_payload,
    parse_request_uri,
    require_connection_request,
)
from tonpocket.connect.session import (
    ConnectionSession,
    ConnectSessionManager,
    DAppManifest,
    DeliveryResult,
    LinkOpener,
    SessionStore,
)

__all__ = [
    "ConnectSessionManager",
    "ConnectionRequest",
    "ConnectionSession",
    "DAppManifest",
    "DecodedConnectionRequest",
    "DeliveryResult",
    "LinkOpener",
    "SessionStore",
    "decode_connection_request",
    "decode_request_payload",
    "parse_request_uri",
    "require_connection_request",
]
