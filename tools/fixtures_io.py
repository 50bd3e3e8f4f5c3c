"""Helpers to serialize/deserialize escrow fixtures."""

from __future__ import annotations

from typing import Any

from trustless_escrow.types import (
    AccountState,
    Call,
    EscrowRecord,
    EscrowState,
    Operation,
    WorldState,
)


def _hex_to_bytes(v: str) -> bytes:
    return bytes.fromhex(v)


def _bytes_to_hex(v: bytes) -> str:
    return v.hex()


def record_to_json(record: EscrowRecord) -> dict[str, Any]:
    return {
        "escrow_id": _bytes_to_hex(record.escrow_id),
        "state": record.state.name,
        "client": _bytes_to_hex(record.client),
        "freelancer": _bytes_to_hex(record.freelancer),
        "arbiter": _bytes_to_hex(record.arbiter),
        "amount": record.amount,
        "created_at": record.created_at,
        "work_completed_at": record.work_completed_at,
        "locked": record.locked,
    }


def record_from_json(data: dict[str, Any]) -> EscrowRecord:
    return EscrowRecord(
        escrow_id=_hex_to_bytes(data["escrow_id"]),
        state=EscrowState[data.get("state", "CREATED")],
        client=_hex_to_bytes(data["client"]),
        freelancer=_hex_to_bytes(data["freelancer"]),
        arbiter=_hex_to_bytes(data["arbiter"]),
        amount=data.get("amount", 0),
        created_at=data.get("created_at", 0),
        work_completed_at=data.get("work_completed_at", 0),
        locked=data.get("locked", False),
    )


def state_to_json(state: WorldState) -> dict[str, Any]:
    return {
        "global_state": {
            "block_height": state.global_state.block_height,
            "timestamp": state.global_state.timestamp,
        },
        "accounts": [
            {"address": _bytes_to_hex(a.address), "balance": a.balance}
            for a in state.accounts.values()
        ],
        "escrows": [record_to_json(r) for r in state.escrows.values()],
    }


def state_from_json(data: dict[str, Any]) -> WorldState:
    state = WorldState()
    gs = data.get("global_state", {})
    state.global_state.block_height = gs.get("block_height", 0)
    state.global_state.timestamp = gs.get("timestamp", 0)

    for a in data.get("accounts", []):
        acct = AccountState(address=_hex_to_bytes(a["address"]), balance=a.get("balance", 0))
        state.accounts[acct.address] = acct

    for e in data.get("escrows", []):
        record = record_from_json(e)
        state.escrows[record.escrow_id] = record

    return state


def call_to_json(call: Call) -> dict[str, Any]:
    return {
        "caller": _bytes_to_hex(call.caller),
        "operation": call.operation.value,
        "escrow_id": _bytes_to_hex(call.escrow_id),
        "value": call.value,
        "reason": call.reason,
    }


def call_from_json(data: dict[str, Any]) -> Call:
    return Call(
        caller=_hex_to_bytes(data["caller"]),
        operation=Operation(data["operation"]),
        escrow_id=_hex_to_bytes(data["escrow_id"]),
        value=data.get("value", 0),
        reason=data.get("reason", ""),
    )
