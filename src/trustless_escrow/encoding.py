"""Canonical byte encoding of persisted escrow records.

Layout (big-endian, fixed size):

    version:u8 | escrow_id:20 | state:u8 | client:20 | freelancer:20 |
    arbiter:20 | amount:u64 | created_at:u64 | work_completed_at:u64 |
    locked:u8
"""

from __future__ import annotations

from dataclasses import dataclass

from .config import ADDRESS_SIZE, MAX_U64, RECORD_VERSION
from .errors import ErrorCode, EscrowError
from .types import EscrowRecord, EscrowState

RECORD_SIZE = 1 + ADDRESS_SIZE + 1 + 3 * ADDRESS_SIZE + 3 * 8 + 1


@dataclass
class Writer:
    buf: bytearray

    def write_u8(self, v: int) -> None:
        self.buf.extend(int(v).to_bytes(1, "big", signed=False))

    def write_u64(self, v: int) -> None:
        if v < 0 or v > MAX_U64:
            raise EscrowError(ErrorCode.OVERFLOW, "u64 out of range")
        self.buf.extend(int(v).to_bytes(8, "big", signed=False))

    def write_bytes(self, b: bytes) -> None:
        self.buf.extend(b)

    def write_bool(self, v: bool) -> None:
        self.write_u8(1 if v else 0)


@dataclass
class Reader:
    data: bytes
    pos: int = 0

    def _take(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise EscrowError(ErrorCode.INVALID_FORMAT, "unexpected end of data")
        out = self.data[self.pos:self.pos + n]
        self.pos += n
        return out

    def read_u8(self) -> int:
        return self._take(1)[0]

    def read_u64(self) -> int:
        return int.from_bytes(self._take(8), "big", signed=False)

    def read_bytes(self, n: int) -> bytes:
        return bytes(self._take(n))

    def read_bool(self) -> bool:
        v = self.read_u8()
        if v not in (0, 1):
            raise EscrowError(ErrorCode.INVALID_FORMAT, "invalid bool byte")
        return v == 1

    def done(self) -> bool:
        return self.pos == len(self.data)


def _expect_len(name: str, value: bytes, size: int) -> None:
    if len(value) != size:
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"{name} must be {size} bytes")


def encode_escrow_record(record: EscrowRecord) -> bytes:
    w = Writer(bytearray())
    w.write_u8(RECORD_VERSION)
    for name in ("escrow_id", "client", "freelancer", "arbiter"):
        _expect_len(name, getattr(record, name), ADDRESS_SIZE)
    w.write_bytes(record.escrow_id)
    w.write_u8(int(record.state))
    w.write_bytes(record.client)
    w.write_bytes(record.freelancer)
    w.write_bytes(record.arbiter)
    w.write_u64(record.amount)
    w.write_u64(record.created_at)
    w.write_u64(record.work_completed_at)
    w.write_bool(record.locked)
    return bytes(w.buf)


def decode_escrow_record(data: bytes) -> EscrowRecord:
    if len(data) != RECORD_SIZE:
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"record must be {RECORD_SIZE} bytes")
    r = Reader(bytes(data))
    version = r.read_u8()
    if version != RECORD_VERSION:
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"unsupported record version {version}")
    escrow_id = r.read_bytes(ADDRESS_SIZE)
    state_byte = r.read_u8()
    try:
        state = EscrowState(state_byte)
    except ValueError:
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"unknown state {state_byte}") from None
    record = EscrowRecord(
        escrow_id=escrow_id,
        state=state,
        client=r.read_bytes(ADDRESS_SIZE),
        freelancer=r.read_bytes(ADDRESS_SIZE),
        arbiter=r.read_bytes(ADDRESS_SIZE),
        amount=r.read_u64(),
        created_at=r.read_u64(),
        work_completed_at=r.read_u64(),
        locked=r.read_bool(),
    )
    if not r.done():
        raise EscrowError(ErrorCode.INVALID_FORMAT, "trailing bytes")
    return record
