"""Host collaborators: the clock and the account ledger.

These stand in for the execution environment the escrow runs inside. The
ledger owns balances (including each escrow's custody balance, held at the
escrow's own address) and offers the value transfer primitive used by
custody. Recipients may register a receive hook, which runs before funds are
credited and can refuse them or call back into the runtime.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Protocol

from .config import MAX_U64
from .errors import ErrorCode, EscrowError
from .types import AccountState, WorldState

logger = logging.getLogger(__name__)

# hook(source, amount) -> accept
ReceiveHook = Callable[[bytes, int], bool]


class Clock(Protocol):
    def now(self) -> int: ...

    def height(self) -> int: ...


class SystemClock:
    """Wall clock; height counts readings since construction."""

    def __init__(self) -> None:
        self._height = 0

    def now(self) -> int:
        return int(time.time())

    def height(self) -> int:
        self._height += 1
        return self._height


class ManualClock:
    """Deterministic clock for tests and scenario replay."""

    def __init__(self, timestamp: int = 1_700_000_000, height: int = 1):
        self._timestamp = timestamp
        self._height = height

    def now(self) -> int:
        return self._timestamp

    def height(self) -> int:
        return self._height

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("clock is monotonic")
        self._timestamp += seconds
        self._height += 1
        return self._timestamp

    def mine(self, blocks: int = 1, block_time: int = 12) -> None:
        for _ in range(blocks):
            self.advance(block_time)

    def set(self, timestamp: int) -> None:
        if timestamp < self._timestamp:
            raise ValueError("clock is monotonic")
        self._timestamp = timestamp
        self._height += 1


def apply_balance_change(balance: int, delta: int) -> int:
    """Apply +/- balance with u64 bounds."""
    new_balance = balance + delta
    if new_balance < 0:
        raise EscrowError(ErrorCode.INSUFFICIENT_BALANCE, "negative balance")
    if new_balance > MAX_U64:
        raise EscrowError(ErrorCode.OVERFLOW, "balance overflow")
    return new_balance


class Ledger:
    """Balances over `WorldState.accounts`."""

    def __init__(self, state: WorldState):
        self.state = state
        self._hooks: dict[bytes, ReceiveHook] = {}

    def account(self, address: bytes) -> AccountState:
        acct = self.state.accounts.get(address)
        if acct is None:
            acct = AccountState(address=address)
            self.state.accounts[address] = acct
        return acct

    def balance_of(self, address: bytes) -> int:
        acct = self.state.accounts.get(address)
        return acct.balance if acct is not None else 0

    def mint(self, address: bytes, amount: int) -> None:
        acct = self.account(address)
        acct.balance = apply_balance_change(acct.balance, amount)

    @property
    def has_hooks(self) -> bool:
        return bool(self._hooks)

    def set_receive_hook(self, address: bytes, hook: Optional[ReceiveHook]) -> None:
        if hook is None:
            self._hooks.pop(address, None)
        else:
            self._hooks[address] = hook

    def transfer(self, source: bytes, destination: bytes, amount: int) -> bool:
        """Move `amount` from source to destination.

        Returns False when the source cannot cover the amount or the
        destination's hook refuses it. A hook that raises fails the transfer
        with `TRANSFER_FAILED`. Balances are only touched once the hook has
        accepted.
        """
        if amount <= 0:
            raise EscrowError(ErrorCode.INVALID_AMOUNT, "transfer amount must be > 0")
        if self.balance_of(source) < amount:
            return False

        hook = self._hooks.get(destination)
        if hook is not None:
            try:
                accepted = hook(source, amount)
            except Exception as exc:
                logger.warning("receive hook of %s raised: %r", destination.hex(), exc)
                raise EscrowError(ErrorCode.TRANSFER_FAILED, "Transfer failed") from exc
            if not accepted:
                return False

        # The hook may have moved funds; re-check before debiting.
        src = self.account(source)
        if src.balance < amount:
            return False
        dst = self.account(destination)
        new_dst = apply_balance_change(dst.balance, amount)
        src.balance = apply_balance_change(src.balance, -amount)
        dst.balance = new_dst
        return True
