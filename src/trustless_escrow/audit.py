"""Audit sinks for escrow transitions.

The state machine hands every accepted transition to an `AuditSink` as a
structured `AuditRecord`; sinks are write-only from the core's point of view.
`AuditLog` keeps an append-only, hash-chained copy in memory so external
observers can check that nothing was rewritten.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterator, Protocol

from blake3 import blake3

from .types import AuditRecord

GENESIS_DIGEST = bytes(32)


class AuditSink(Protocol):
    def emit(self, record: AuditRecord) -> None: ...


def audit_record_to_dict(record: AuditRecord) -> dict[str, Any]:
    out: dict[str, Any] = {
        "kind": record.kind.value,
        "escrow_id": record.escrow_id.hex(),
        "timestamp": record.timestamp,
        "block_height": record.block_height,
    }
    for name in ("actor", "destination", "client", "freelancer", "arbiter"):
        value = getattr(record, name)
        if value is not None:
            out[name] = value.hex()
    if record.amount is not None:
        out["amount"] = record.amount
    if record.old_state is not None:
        out["old_state"] = record.old_state.name
    if record.new_state is not None:
        out["new_state"] = record.new_state.name
    if record.reason is not None:
        out["reason"] = record.reason
    if record.in_favor_of is not None:
        out["in_favor_of"] = record.in_favor_of.value
    return out


def _canonical_bytes(record: AuditRecord) -> bytes:
    return json.dumps(
        audit_record_to_dict(record), sort_keys=True, separators=(",", ":")
    ).encode("utf-8")


@dataclass(frozen=True)
class AuditEntry:
    index: int
    record: AuditRecord
    prev_digest: bytes
    digest: bytes


class AuditLog:
    """Append-only in-memory audit log with a BLAKE3 hash chain."""

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []

    def emit(self, record: AuditRecord) -> None:
        prev = self._entries[-1].digest if self._entries else GENESIS_DIGEST
        digest = blake3(prev + _canonical_bytes(record)).digest()
        self._entries.append(
            AuditEntry(index=len(self._entries), record=record, prev_digest=prev, digest=digest)
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[AuditEntry]:
        return iter(self._entries)

    @property
    def head(self) -> bytes:
        return self._entries[-1].digest if self._entries else GENESIS_DIGEST

    def records(self, escrow_id: bytes | None = None) -> list[AuditRecord]:
        return [
            e.record for e in self._entries if escrow_id is None or e.record.escrow_id == escrow_id
        ]

    def verify_chain(self) -> bool:
        prev = GENESIS_DIGEST
        for entry in self._entries:
            if entry.prev_digest != prev:
                return False
            if blake3(prev + _canonical_bytes(entry.record)).digest() != entry.digest:
                return False
            prev = entry.digest
        return True


class LoggingAuditSink:
    """Forward audit records to a stdlib logger as one JSON line each."""

    def __init__(self, logger_name: str = "trustless_escrow.audit", level: int = logging.INFO):
        self.logger = logging.getLogger(logger_name)
        self.level = level

    def emit(self, record: AuditRecord) -> None:
        self.logger.log(self.level, json.dumps(audit_record_to_dict(record), sort_keys=True))


class FanOutSink:
    def __init__(self, *sinks: AuditSink):
        self.sinks = list(sinks)

    def emit(self, record: AuditRecord) -> None:
        for sink in self.sinks:
            sink.emit(record)
