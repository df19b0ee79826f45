"""TON Connect request URI codec.

Accepted shapes, all equivalent once parsed::

    tc://?v=2&id=<request id>&r=<payload>
    tonconnect://?v=2&id=<request id>&r=<payload>
    https://host/path?v=2&id=<request id>&r=<payload>

The custom schemes have no authority component, so their query string is
split by hand. The ``r`` payload may be percent-encoded several times by
the layers between the dApp and the QR code.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import parse_qsl, unquote, urlsplit

from tonpocket.errors import InvalidRequestURIError

logger = logging.getLogger(__name__)

CUSTOM_SCHEMES = ("tc://", "tonconnect://")
HTTP_SCHEMES = ("https://", "http://")
MAX_DECODE_PASSES = 3
DEFAULT_VERSION = "2"
MAX_OBJECT_SCAN_LENGTH = 8192

RETURN_URL_FIELDS = ("returnUrl", "return_url", "callbackUrl", "callback_url")


@dataclass
class ConnectionRequest:
    """A parsed connection URI; ``raw_payload`` is percent-decoded text."""

    version: str
    request_id: str
    raw_payload: str
    return_url: Optional[str] = None


@dataclass
class DecodedConnectionRequest:
    """A connection request with its payload decoded."""

    request_id: str
    manifest_url: str
    return_url: Optional[str] = None
    items: list[dict] = field(default_factory=list)
    payload: dict = field(default_factory=dict)
    version: str = DEFAULT_VERSION


def _is_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def percent_decode(value: str, max_passes: int = MAX_DECODE_PASSES) -> str:
    """Undo repeated percent-encoding.

    Stops when a pass changes nothing, or as soon as the text is valid JSON
    (so URLs nested inside the JSON keep their own encoding).
    """
    current = value
    for _ in range(max_passes):
        if _is_json(current):
            break
        decoded = unquote(current)
        if decoded == current:
            break
        current = decoded
    return current


def _split_query(query: str) -> dict[str, str]:
    """Hand-split ``a=1&b=2``; first occurrence of a key wins, values untouched."""
    params: dict[str, str] = {}
    for part in query.split("&"):
        if not part:
            continue
        key, _, value = part.partition("=")
        key = unquote(key).strip()
        if key and key not in params:
            params[key] = value
    return params


def _query_params(uri: str) -> Optional[dict[str, str]]:
    lowered = uri.lower()

    for scheme in CUSTOM_SCHEMES:
        if lowered.startswith(scheme):
            rest = uri[len(scheme) :]
            _, sep, query = rest.partition("?")
            if not sep:
                return {}
            query = query.split("#", 1)[0]
            return _split_query(query)

    if lowered.startswith(HTTP_SCHEMES):
        query = urlsplit(uri).query
        params: dict[str, str] = {}
        for key, value in parse_qsl(query, keep_blank_values=True):
            params.setdefault(key, value)
        return params

    return None


def _http_url(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.strip()
    return value if value.lower().startswith(HTTP_SCHEMES) else None


def parse_request_uri(uri: str) -> Optional[ConnectionRequest]:
    """Parse a scanned connection URI; None if it is not one."""
    if not isinstance(uri, str):
        return None

    # QR decoders sometimes inject line breaks
    text = uri.strip().replace("\r", "").replace("\n", "").replace("\t", "")
    if not text:
        return None

    params = _query_params(text)
    if params is None:
        logger.debug("Scanned text is not a connection URI")
        return None

    request_id = percent_decode(params.get("id", "")).strip()
    payload = params.get("r", "")
    if not request_id or not payload:
        logger.debug("Connection URI is missing id or r")
        return None

    version = percent_decode(params.get("v", "")).strip() or DEFAULT_VERSION
    return ConnectionRequest(
        version=version,
        request_id=request_id,
        raw_payload=percent_decode(payload),
        return_url=_http_url(percent_decode(params.get("ret", ""))),
    )


def _largest_object(text: str) -> Optional[dict]:
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return None

    try:
        candidate = json.loads(text[start : end + 1])
        if isinstance(candidate, dict):
            return candidate
    except ValueError:
        pass

    if len(text) > MAX_OBJECT_SCAN_LENGTH:
        return None

    decoder = json.JSONDecoder()
    best: Optional[dict] = None
    best_length = 0
    position = text.find("{")
    while position != -1:
        try:
            obj, stop = decoder.raw_decode(text, position)
        except ValueError:
            obj, stop = None, position
        if isinstance(obj, dict) and stop - position > best_length:
            best, best_length = obj, stop - position
        position = text.find("{", position + 1)
    return best


def decode_request_payload(blob: str) -> Optional[dict]:
    """Decode the ``r`` payload into a dict; None if unrecoverable. Never raises."""
    if not isinstance(blob, str) or not blob.strip():
        return None

    text = percent_decode(blob.strip())
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except ValueError:
        pass

    data = _largest_object(text)
    if data is None:
        logger.debug("Connection payload is not JSON")
    return data


def decode_connection_request(uri: str) -> Optional[DecodedConnectionRequest]:
    """Parse and decode in one step; requires a ``manifestUrl``."""
    request = parse_request_uri(uri)
    if request is None:
        return None

    payload = decode_request_payload(request.raw_payload)
    if payload is None:
        return None

    manifest_url = payload.get("manifestUrl") or payload.get("manifest_url")
    if not isinstance(manifest_url, str) or not manifest_url.strip():
        logger.debug("Connection payload has no manifestUrl")
        return None

    return_url = request.return_url
    for name in RETURN_URL_FIELDS:
        if return_url:
            break
        value = payload.get(name)
        return_url = _http_url(value) if isinstance(value, str) else None

    items = payload.get("items")
    return DecodedConnectionRequest(
        request_id=request.request_id,
        manifest_url=manifest_url.strip(),
        return_url=return_url,
        items=[item for item in items if isinstance(item, dict)] if isinstance(items, list) else [],
        payload=payload,
        version=request.version,
    )


def require_connection_request(uri: str) -> DecodedConnectionRequest:
    """Like :func:`decode_connection_request` but raises for the UI to report.

    Raises:
        InvalidRequestURIError: if the text is not a usable connection request
    """
    decoded = decode_connection_request(uri)
    if decoded is None:
        raise InvalidRequestURIError(f"Not a connection request: {str(uri)[:80]}")
    return decoded
