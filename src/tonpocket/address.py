"""TON address codec.

A TON account is a workchain index plus a 256-bit hash. It has two textual
forms:

- raw: ``<workchain>:<hex64>``, e.g. ``0:83df...``
- user-friendly: 48 characters of base64 (or base64url) over 36 bytes:
  tag byte, workchain byte, 32-byte hash, CRC16-XMODEM.

The tag carries the bounceable and testnet flags. They describe how funds
should be sent, not which account is addressed, so two addresses are the
same account when workchain and hash match.
"""

import base64
import binascii
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional

from tonpocket.errors import InvalidAddressError, InvalidAmountError

MIN_ADDRESS_LENGTH = 10
MAX_ADDRESS_LENGTH = 100

TAG_BOUNCEABLE = 0x11
TAG_NON_BOUNCEABLE = 0x51
TAG_TESTNET = 0x80

NANO_PER_TON = 10**9
TON_DECIMALS = 9
MAX_TON_AMOUNT = Decimal("1000000000")

RAW_PATTERN = re.compile(r"^(-?\d+):([0-9a-fA-F]{64})$")
USER_FRIENDLY_PATTERN = re.compile(r"^[A-Za-z0-9_+/=-]+$")
AMOUNT_PATTERN = re.compile(r"^[0-9]+\.?[0-9]*$")


@dataclass(frozen=True)
class Address:
    """A normalized TON account address."""

    workchain: int
    hash_part: bytes
    bounceable: bool = field(default=True, compare=False)
    testnet: bool = field(default=False, compare=False)

    def to_raw(self) -> str:
        """Render as ``workchain:hex``."""
        return f"{self.workchain}:{self.hash_part.hex()}"

    def to_user_friendly(
        self,
        bounceable: Optional[bool] = None,
        testnet: Optional[bool] = None,
        url_safe: bool = True,
    ) -> str:
        """Render as the 48-character base64 form.

        Flags default to the ones the address was parsed with.
        """
        if bounceable is None:
            bounceable = self.bounceable
        if testnet is None:
            testnet = self.testnet

        tag = TAG_BOUNCEABLE if bounceable else TAG_NON_BOUNCEABLE
        if testnet:
            tag |= TAG_TESTNET

        body = bytes([tag, self.workchain & 0xFF]) + self.hash_part
        payload = body + _crc16(body).to_bytes(2, "big")

        if url_safe:
            return base64.urlsafe_b64encode(payload).decode("ascii")
        return base64.b64encode(payload).decode("ascii")

    def __str__(self) -> str:
        return self.to_user_friendly()


def _crc16(data: bytes) -> int:
    """CRC16-XMODEM checksum used by user-friendly addresses."""
    return binascii.crc_hqx(data, 0)


def _parse_raw(text: str) -> Optional[Address]:
    match = RAW_PATTERN.match(text)
    if not match:
        return None

    workchain = int(match.group(1))
    if not -128 <= workchain <= 127:
        raise InvalidAddressError(f"Workchain out of range: {workchain}")

    return Address(workchain=workchain, hash_part=bytes.fromhex(match.group(2)))


def _parse_user_friendly(text: str) -> Optional[Address]:
    if not USER_FRIENDLY_PATTERN.match(text):
        return None

    standard = text.replace("-", "+").replace("_", "/")
    try:
        payload = base64.b64decode(standard + "=" * (-len(standard) % 4), validate=True)
    except (binascii.Error, ValueError):
        raise InvalidAddressError(f"Address is not valid base64: {text}")

    if len(payload) != 36:
        raise InvalidAddressError(f"Address has wrong length: {len(payload)} bytes")

    body, checksum = payload[:34], payload[34:]
    if _crc16(body).to_bytes(2, "big") != checksum:
        raise InvalidAddressError("Address checksum mismatch")

    tag = body[0]
    testnet = bool(tag & TAG_TESTNET)
    tag &= ~TAG_TESTNET
    if tag not in (TAG_BOUNCEABLE, TAG_NON_BOUNCEABLE):
        raise InvalidAddressError(f"Unknown address tag: {body[0]:#x}")

    workchain = body[1] if body[1] < 128 else body[1] - 256

    return Address(
        workchain=workchain,
        hash_part=body[2:34],
        bounceable=tag == TAG_BOUNCEABLE,
        testnet=testnet,
    )


def normalize(address) -> Address:
    """Parse either textual form into an :class:`Address`.

    Raises:
        InvalidAddressError: when the text is not a well-formed address.
    """
    if isinstance(address, Address):
        return address
    if not isinstance(address, str):
        raise InvalidAddressError("Address is required")

    text = address.strip()
    if not text:
        raise InvalidAddressError("Address cannot be empty")
    if len(text) < MIN_ADDRESS_LENGTH or len(text) > MAX_ADDRESS_LENGTH:
        raise InvalidAddressError(
            f"Address length is invalid: {len(text)}",
            user_message="Address length is invalid.",
        )

    parsed = _parse_raw(text)
    if parsed is None:
        parsed = _parse_user_friendly(text)
    if parsed is None:
        raise InvalidAddressError(
            f"Invalid address format: {text}", user_message="Invalid address format."
        )
    return parsed


def try_normalize(address) -> Optional[Address]:
    """Like :func:`normalize` but returns None instead of raising."""
    try:
        return normalize(address)
    except InvalidAddressError:
        return None


def cache_key(address) -> str:
    """Stable key for caches: raw form, or the stripped input if unparseable."""
    parsed = try_normalize(address)
    if parsed is not None:
        return parsed.to_raw()
    return str(address).strip()


def same_account(a, b) -> bool:
    """Compare two addresses in any form; falls back to text comparison."""
    if not a or not b:
        return False
    first = try_normalize(a)
    second = try_normalize(b)
    if first is not None and second is not None:
        return first == second
    return str(a).strip().lower() == str(b).strip().lower()


def validate_address(address) -> Address:
    """Strict validation for transfer destinations."""
    return normalize(address)


def validate_amount(amount) -> Decimal:
    """Validate a user-entered TON amount for sending.

    Whitespace and thousands separators are ignored. The amount must be
    positive, at most one billion and have no more than 9 decimal places.
    """
    if amount is None or (isinstance(amount, str) and not amount.strip()):
        raise InvalidAmountError("Amount is required", user_message="Amount is required.")

    cleaned = re.sub(r"[\s,]", "", str(amount))
    if not AMOUNT_PATTERN.match(cleaned):
        raise InvalidAmountError(
            f"Malformed amount: {amount}", user_message="Amount must be a valid number."
        )

    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        raise InvalidAmountError(
            f"Malformed amount: {amount}", user_message="Amount must be a valid number."
        )

    if value <= 0:
        raise InvalidAmountError(
            "Amount must be positive", user_message="Amount must be greater than zero."
        )
    if value > MAX_TON_AMOUNT:
        raise InvalidAmountError("Amount too large", user_message="Amount is too large.")

    if "." in cleaned and len(cleaned.split(".", 1)[1]) > TON_DECIMALS:
        raise InvalidAmountError(
            "Too many decimal places",
            user_message="Amount has too many decimal places (max 9).",
        )

    return value


def to_nano(amount) -> int:
    """Convert a human TON amount to nanotons."""
    value = validate_amount(amount)
    return int(value.scaleb(TON_DECIMALS))


def format_units(raw, decimals: int = TON_DECIMALS) -> str:
    """Format an integer amount in smallest units for display.

    Lossy and one-way: trailing zeros are dropped. Anything that is not an
    integer (including textual API errors) renders as ``"0"``.
    """
    try:
        value = Decimal(int(str(raw).strip())).scaleb(-decimals)
    except (ValueError, InvalidOperation):
        return "0"

    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def format_ton(nano) -> str:
    """Format nanotons as TON, e.g. ``"1500000000" -> "1.5"``."""
    return format_units(nano, TON_DECIMALS)
