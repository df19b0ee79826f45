"""Minimal reader for TON bag-of-cells payloads.

Only what the wallet needs to read: message opcodes, jetton amounts,
addresses stored in slices and content bytes of NFT metadata cells. No
writing, no hashing, no exotic cell semantics.
"""

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from tonpocket.address import Address

logger = logging.getLogger(__name__)

BOC_MAGIC = bytes.fromhex("b5ee9c72")

# Jetton (TEP-74) operation codes
OP_JETTON_TRANSFER = 0x0F8A7EA5
OP_JETTON_TRANSFER_NOTIFICATION = 0x7362D09C
OP_JETTON_INTERNAL_TRANSFER = 0x178D4519
JETTON_OPCODES = (
    OP_JETTON_TRANSFER,
    OP_JETTON_TRANSFER_NOTIFICATION,
    OP_JETTON_INTERNAL_TRANSFER,
)

# NFT (TEP-62) operation codes
OP_NFT_TRANSFER = 0x5FCC3D14
OP_NFT_OWNERSHIP_ASSIGNED = 0x05138D91
NFT_OPCODES = (OP_NFT_TRANSFER, OP_NFT_OWNERSHIP_ASSIGNED)


class CellError(ValueError):
    """Raised when a payload is not a readable bag of cells."""


@dataclass
class Cell:
    """A cell: up to 1023 data bits and up to 4 references."""

    data: bytes
    bit_length: int
    refs: list["Cell"] = field(default_factory=list)

    def reader(self) -> "BitReader":
        return BitReader(self.data, self.bit_length)

    def flatten(self, max_depth: int = 16) -> bytes:
        """Data bytes of this cell and its references, depth first."""
        if max_depth <= 0:
            return b""
        chunks = [self.data[: self.bit_length // 8]]
        for ref in self.refs:
            chunks.append(ref.flatten(max_depth - 1))
        return b"".join(chunks)


class BitReader:
    """Sequential big-endian bit reader over a cell's data."""

    def __init__(self, data: bytes, bit_length: int):
        self._value = int.from_bytes(data, "big") if data else 0
        self._total_bits = len(data) * 8
        self.bit_length = bit_length
        self.position = 0

    @property
    def remaining(self) -> int:
        return self.bit_length - self.position

    def read_uint(self, bits: int) -> int:
        if bits == 0:
            return 0
        if bits > self.remaining:
            raise CellError(f"Cannot read {bits} bits, {self.remaining} left")
        shift = self._total_bits - self.position - bits
        self.position += bits
        return (self._value >> shift) & ((1 << bits) - 1)

    def read_int(self, bits: int) -> int:
        value = self.read_uint(bits)
        if value >= 1 << (bits - 1):
            value -= 1 << bits
        return value

    def read_bit(self) -> bool:
        return self.read_uint(1) == 1

    def read_coins(self) -> int:
        """Read a VarUInteger 16 (Grams / Coins)."""
        length = self.read_uint(4)
        return self.read_uint(length * 8)

    def read_address(self) -> Optional[Address]:
        """Read a MsgAddress; returns None for addr_none and non-std forms."""
        tag = self.read_uint(2)
        if tag == 0b00:
            return None
        if tag != 0b10:
            raise CellError(f"Unsupported address tag {tag:#b}")
        if self.read_bit():
            depth = self.read_uint(5)
            self.read_uint(depth)
        workchain = self.read_int(8)
        hash_part = self.read_uint(256).to_bytes(32, "big")
        return Address(workchain=workchain, hash_part=hash_part)


def _read_sized(data: bytes, offset: int, size: int) -> tuple[int, int]:
    if offset + size > len(data):
        raise CellError("Unexpected end of BOC")
    return int.from_bytes(data[offset : offset + size], "big"), offset + size


def _data_bits(data: bytes, d2: int) -> int:
    if d2 % 2 == 0:
        return len(data) * 8
    # Odd descriptor: the last byte ends with a completion tag (1 then zeros)
    last = data[-1]
    if last == 0:
        raise CellError("Missing completion tag")
    trailing = (last & -last).bit_length()
    return len(data) * 8 - trailing


def parse_boc(data: bytes) -> Cell:
    """Parse a serialized bag of cells and return its first root."""
    if len(data) < 6 or data[:4] != BOC_MAGIC:
        raise CellError("Not a bag of cells")

    flags = data[4]
    has_idx = bool(flags & 0x80)
    size = flags & 0x07
    off_bytes = data[5]
    if size == 0 or size > 4 or off_bytes == 0 or off_bytes > 8:
        raise CellError("Invalid BOC header")

    offset = 6
    cell_count, offset = _read_sized(data, offset, size)
    root_count, offset = _read_sized(data, offset, size)
    _absent, offset = _read_sized(data, offset, size)
    _total_size, offset = _read_sized(data, offset, off_bytes)

    roots = []
    for _ in range(root_count):
        root, offset = _read_sized(data, offset, size)
        roots.append(root)

    if has_idx:
        offset += cell_count * off_bytes

    raw_cells: list[tuple[bytes, int, list[int]]] = []
    for _ in range(cell_count):
        if offset + 2 > len(data):
            raise CellError("Unexpected end of cell data")
        d1, d2 = data[offset], data[offset + 1]
        offset += 2

        if d1 & 0x10:
            level_mask = d1 >> 5
            hash_count = bin(level_mask).count("1") + 1
            offset += hash_count * (32 + 2)

        ref_count = d1 & 0x07
        byte_length = (d2 + 1) // 2
        if offset + byte_length > len(data):
            raise CellError("Unexpected end of cell data")
        cell_data = data[offset : offset + byte_length]
        offset += byte_length

        refs = []
        for _ in range(ref_count):
            ref, offset = _read_sized(data, offset, size)
            refs.append(ref)

        bits = _data_bits(cell_data, d2) if cell_data else 0
        raw_cells.append((cell_data, bits, refs))

    cells = [Cell(data=cell_data, bit_length=bits) for cell_data, bits, _ in raw_cells]
    for cell, (_, _, refs) in zip(cells, raw_cells):
        for ref in refs:
            if ref >= len(cells):
                raise CellError(f"Reference {ref} out of range")
            cell.refs.append(cells[ref])

    if not roots or roots[0] >= len(cells):
        raise CellError("BOC has no root")
    return cells[roots[0]]


def decode_b64(text: str) -> Optional[bytes]:
    """Decode standard or url-safe base64, returning None on garbage."""
    if not text or not isinstance(text, str):
        return None
    cleaned = text.strip().replace("-", "+").replace("_", "/")
    try:
        return base64.b64decode(cleaned + "=" * (-len(cleaned) % 4), validate=True)
    except (binascii.Error, ValueError):
        return None


def cell_from_b64(text: str) -> Optional[Cell]:
    """Parse a base64 BOC, returning None if it cannot be read."""
    raw = decode_b64(text)
    if raw is None:
        return None
    try:
        return parse_boc(raw)
    except CellError as e:
        logger.debug(f"Unreadable BOC: {e}")
        return None


def cell_from_object(obj: Any) -> Optional[Cell]:
    """Build a cell from toncenter's expanded ``{"data": {"b64", "len"}, "refs"}`` form."""
    if not isinstance(obj, dict):
        return None
    data_field = obj.get("data")
    if not isinstance(data_field, dict):
        return None
    raw = decode_b64(str(data_field.get("b64", "")))
    if raw is None:
        return None
    try:
        bit_length = int(data_field.get("len", len(raw) * 8))
    except (TypeError, ValueError):
        bit_length = len(raw) * 8

    refs = []
    for ref in obj.get("refs") or []:
        child = cell_from_object(ref)
        if child is not None:
            refs.append(child)
    return Cell(data=raw, bit_length=min(bit_length, len(raw) * 8), refs=refs)


def read_opcode(cell: Optional[Cell]) -> Optional[int]:
    """First 32 bits of a message body, if present."""
    if cell is None or cell.bit_length < 32:
        return None
    return cell.reader().read_uint(32)


def read_jetton_amount(cell: Optional[Cell]) -> Optional[int]:
    """Amount from a jetton transfer / notification / internal transfer body."""
    if cell is None:
        return None
    try:
        reader = cell.reader()
        opcode = reader.read_uint(32)
        if opcode not in JETTON_OPCODES:
            return None
        reader.read_uint(64)  # query_id
        return reader.read_coins()
    except CellError:
        return None


def read_address_cell(cell: Optional[Cell]) -> Optional[Address]:
    """Read a slice holding a single MsgAddress."""
    if cell is None:
        return None
    try:
        return cell.reader().read_address()
    except CellError:
        return None


def contains_opcode(payload: bytes, opcodes: tuple[int, ...]) -> Optional[int]:
    """Byte-pattern search for any of ``opcodes`` in raw payload bytes."""
    for opcode in opcodes:
        if opcode.to_bytes(4, "big") in payload:
            return opcode
    return None
