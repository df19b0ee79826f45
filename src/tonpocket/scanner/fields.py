"""Tolerant extraction helpers for raw ledger records.

Field names differ between providers and node versions (``source`` vs
``source_address``, ``value`` vs ``amount``, nested objects instead of
strings). These helpers try known aliases in order and coerce instead of
failing the row.
"""

import base64
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

SOURCE_FIELDS = ("source", "source_address", "src", "from")
DESTINATION_FIELDS = ("destination", "destination_address", "dst", "to")
VALUE_FIELDS = ("value", "amount", "coins")
HASH_FIELDS = ("hash", "tx_hash", "transaction_hash")
ACCOUNT_FIELDS = ("address", "account", "account_address")


def first_field(record: Any, names: tuple[str, ...], default: Any = None) -> Any:
    """Return the first present, non-empty field among ``names``."""
    if not isinstance(record, dict):
        return default
    for name in names:
        value = record.get(name)
        if value is not None and value != "":
            return value
    return default


def as_text(value: Any) -> str:
    """Coerce a field to text; nested address objects are unwrapped."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        for key in ("account_address", "address", "raw", "hash"):
            inner = value.get(key)
            if isinstance(inner, str) and inner:
                return inner.strip()
    return str(value).strip()


def as_int(value: Any, default: int = 0) -> int:
    """Coerce decimal / hex strings and numbers to int."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        try:
            return int(value)
        except (ValueError, OverflowError):
            return default
    text = as_text(value)
    if not text:
        return default
    try:
        if text.lower().startswith(("0x", "-0x")):
            return int(text, 16)
        return int(text)
    except ValueError:
        try:
            return int(float(text))
        except (ValueError, OverflowError):
            return default


def message_source(message: Any) -> str:
    return as_text(first_field(message, SOURCE_FIELDS))


def message_destination(message: Any) -> str:
    return as_text(first_field(message, DESTINATION_FIELDS))


def message_value(message: Any) -> int:
    return as_int(first_field(message, VALUE_FIELDS), 0)


def message_body_b64(message: Any) -> str:
    """Base64 BOC of a message body, from any of the known layouts."""
    if not isinstance(message, dict):
        return ""
    msg_data = message.get("msg_data")
    if isinstance(msg_data, dict):
        body = msg_data.get("body")
        if isinstance(body, str) and body:
            return body
    for key in ("body", "raw_body", "message_content"):
        value = message.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, dict) and isinstance(value.get("body"), str):
            return value["body"]
    return ""


def message_comment(message: Any) -> Optional[str]:
    """Text comment attached to a message, if any."""
    if not isinstance(message, dict):
        return None
    msg_data = message.get("msg_data")
    if isinstance(msg_data, dict) and isinstance(msg_data.get("text"), str):
        try:
            return base64.b64decode(msg_data["text"]).decode("utf-8", errors="replace") or None
        except ValueError:
            return None
    comment = message.get("message") or message.get("comment")
    if isinstance(comment, str) and comment.strip():
        return comment
    return None


def tx_in_msg(record: Any) -> dict:
    msg = first_field(record, ("in_msg", "in_message", "inMsg"), {})
    return msg if isinstance(msg, dict) else {}


def tx_out_msgs(record: Any) -> list[dict]:
    msgs = first_field(record, ("out_msgs", "out_messages", "outMsgs"), [])
    if not isinstance(msgs, list):
        return []
    return [msg for msg in msgs if isinstance(msg, dict)]


def tx_hash(record: Any) -> str:
    """Transaction hash from ``transaction_id.hash`` or flat aliases."""
    tx_id = first_field(record, ("transaction_id", "id"))
    if isinstance(tx_id, dict):
        value = tx_id.get("hash")
        if value:
            return as_text(value)
    return as_text(first_field(record, HASH_FIELDS))


def tx_lt(record: Any) -> int:
    tx_id = first_field(record, ("transaction_id", "id"))
    if isinstance(tx_id, dict) and tx_id.get("lt") is not None:
        return as_int(tx_id.get("lt"))
    return as_int(first_field(record, ("lt", "logical_time")))


def tx_utime(record: Any) -> int:
    return as_int(first_field(record, ("utime", "now", "timestamp")))


def tx_account(record: Any) -> str:
    """Address of the account the transaction belongs to."""
    return as_text(first_field(record, ACCOUNT_FIELDS))


def tx_fee(record: Any) -> int:
    return as_int(first_field(record, ("fee", "total_fees")))


def tx_succeeded(record: Any) -> Optional[bool]:
    """Best-effort success flag; None when the record does not say."""
    if not isinstance(record, dict):
        return None
    if "success" in record and isinstance(record["success"], bool):
        return record["success"]
    description = record.get("description")
    if isinstance(description, dict):
        if description.get("aborted") is True:
            return False
        compute = description.get("compute_ph")
        if isinstance(compute, dict) and compute.get("success") is False:
            return False
    if record.get("aborted") is True:
        return False
    return None
