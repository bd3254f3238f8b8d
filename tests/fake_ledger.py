"""
fake_ledger.py - In-memory stand-in for LedgerClient

Implements the read/write surface the read model and coordinator use,
backed by plain Python state instead of a contract. Writes return pending
transactions whose effects only land when `wait()` is awaited, mirroring
mined-on-confirmation semantics.

Example:
    ledger = FakeLedger(owner=operator.address, signer=signer)
    lottery_id = ledger.seed_lottery(ticket_price=100)
    ledger.seed_purchase(lottery_id, "0xabc...", count=2, name="alice")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from lottery_client.errors import LedgerConnectionError, RejectedError, RemoteError
from lottery_client.lottery.models import ClosureEvent, LedgerEvent, LotteryInfo, Receipt, WinnerSlot
from lottery_client.utils.common import ZERO_ADDRESS, same_address


@dataclass
class FakeLottery:
    id: int
    ticket_price: int
    admin: str
    is_closed: bool = False
    total_pool: int = 0
    tickets: List[str] = field(default_factory=list)
    names: Dict[str, str] = field(default_factory=dict)
    winners: List[str] = field(default_factory=lambda: [ZERO_ADDRESS] * 3)


class FakePendingTransaction:
    def __init__(self, ledger: "FakeLedger", tx_hash: str, apply: Callable[[], List[LedgerEvent]]) -> None:
        self._ledger = ledger
        self.tx_hash = tx_hash
        self._apply = apply

    async def wait(self) -> Receipt:
        self._ledger.calls.append(("wait", (self.tx_hash,)))
        failure = self._ledger.fail_on.pop("wait", None)
        if failure is not None:
            raise failure
        self._ledger.block += 1
        events = tuple(self._apply())
        return Receipt(
            transaction_hash=self.tx_hash,
            block_number=self._ledger.block,
            status=1,
            events=events,
            decode_errors=self._ledger.decode_errors,
        )


class FakeLedger:
    """Deterministic ledger: winners are the first three distinct ticket holders."""

    def __init__(self, owner: str, signer=None) -> None:
        self.owner = owner
        self.signer = signer
        self.lotteries: Dict[int, FakeLottery] = {}
        self.counter = 1
        self.block = 0
        self.calls: List[tuple] = []
        self.transactions: List[str] = []
        self.fail_on: Dict[str, Exception] = {}
        self.reject_next = False
        self.omit_events = False
        self.decode_errors = 0

    # ------------------------------------------------------------------
    # Seeding helpers
    # ------------------------------------------------------------------
    def seed_lottery(self, ticket_price: int, admin: Optional[str] = None) -> int:
        lottery_id = self.counter
        self.lotteries[lottery_id] = FakeLottery(id=lottery_id, ticket_price=ticket_price, admin=admin or self.owner)
        self.counter += 1
        return lottery_id

    def seed_purchase(self, lottery_id: int, buyer: str, count: int = 1, name: str = "player") -> None:
        lottery = self.lotteries[lottery_id]
        lottery.tickets.extend([buyer] * count)
        lottery.total_pool += lottery.ticket_price * count
        lottery.names[buyer.lower()] = name

    def seed_closure(self, lottery_id: int) -> None:
        self._settle(lottery_id)

    @property
    def write_count(self) -> int:
        return len(self.transactions)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def _call(self, name: str, *args) -> None:
        self.calls.append((name, args))
        failure = self.fail_on.get(name)
        if failure is not None:
            raise failure

    async def lottery_count(self) -> int:
        self._call("lottery_count")
        return self.counter

    async def get_lottery(self, lottery_id: int) -> LotteryInfo:
        self._call("get_lottery", lottery_id)
        lottery = self._existing(lottery_id)
        return LotteryInfo(
            id=lottery.id,
            ticket_price=lottery.ticket_price,
            is_closed=lottery.is_closed,
            total_pool=lottery.total_pool,
            admin=lottery.admin,
            winners=tuple(lottery.winners),
        )

    async def get_ticket_holders(self, lottery_id: int) -> List[str]:
        self._call("get_ticket_holders", lottery_id)
        return list(self._existing(lottery_id).tickets)

    async def query_closure_events(self, lottery_id: int) -> List[ClosureEvent]:
        self._call("query_closure_events", lottery_id)
        lottery = self._existing(lottery_id)
        if not lottery.is_closed:
            return []
        return [
            ClosureEvent(
                lottery_id=lottery_id,
                winners=tuple(WinnerSlot(addr, lottery.names.get(addr.lower(), "")) for addr in lottery.winners),
                total_pool=lottery.total_pool,
            )
        ]

    async def is_operator(self, address: Optional[str]) -> bool:
        self._call("is_operator", address)
        return same_address(self.owner, address)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def _submit(self, name: str, apply: Callable[[], List[LedgerEvent]]) -> FakePendingTransaction:
        self._call(name)
        if self.signer is None or not self.signer.is_connected:
            raise LedgerConnectionError("No wallet connected")
        if self.reject_next:
            self.reject_next = False
            raise RejectedError("Transaction declined by the user")
        tx_hash = "0x" + f"{len(self.transactions) + 1:064x}"
        self.transactions.append(name)

        def _apply_with_events() -> List[LedgerEvent]:
            events = apply()
            return [] if self.omit_events else events

        return FakePendingTransaction(self, tx_hash, _apply_with_events)

    async def create_lottery(self, price_wei: int) -> FakePendingTransaction:
        sender = self._sender()
        if not same_address(sender, self.owner):
            raise RemoteError("Ownable: caller is not the owner")

        def apply() -> List[LedgerEvent]:
            lottery_id = self.seed_lottery(price_wei, admin=sender)
            return [LedgerEvent("LotteryCreated", {"lotteryId": lottery_id, "ticketPrice": price_wei, "admin": sender})]

        return self._submit("create_lottery", apply)

    async def buy_tickets(self, lottery_id: int, count: int, display_name: str, payment_wei: int) -> FakePendingTransaction:
        sender = self._sender()
        lottery = self._existing(lottery_id)
        if lottery.is_closed:
            raise RemoteError("Lottery is closed")
        if payment_wei != lottery.ticket_price * count:
            raise RemoteError("Incorrect ETH amount")

        def apply() -> List[LedgerEvent]:
            self.seed_purchase(lottery_id, sender, count, display_name)
            return [LedgerEvent("TicketBought", {"lotteryId": lottery_id, "buyer": sender, "count": count, "name": display_name})]

        return self._submit("buy_tickets", apply)

    async def close_lottery(self, lottery_id: int) -> FakePendingTransaction:
        sender = self._sender()
        lottery = self._existing(lottery_id)
        if not same_address(sender, self.owner):
            raise RemoteError("Ownable: caller is not the owner")
        if lottery.is_closed or len(lottery.tickets) < 3:
            raise RemoteError("Cannot close lottery")

        def apply() -> List[LedgerEvent]:
            closure = self._settle(lottery_id)
            args = {"lotteryId": lottery_id, "totalPool": lottery.total_pool}
            for index, slot in enumerate(closure.winners, start=1):
                args[f"winner{index}"] = slot.address
                args[f"winner{index}Name"] = slot.display_name
            return [LedgerEvent("WinnersDeclared", args)]

        return self._submit("close_lottery", apply)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    async def health_check(self) -> Dict[str, object]:
        return {"status": "healthy", "latestBlock": self.block}

    def get_client_status(self) -> Dict[str, object]:
        return {"connected": True, "signer": self.signer.address if self.signer else None}

    async def close(self) -> None:
        self.calls.append(("close", ()))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _sender(self) -> str:
        if self.signer is None or not self.signer.address:
            raise LedgerConnectionError("No wallet connected")
        return self.signer.address

    def _existing(self, lottery_id: int) -> FakeLottery:
        lottery = self.lotteries.get(lottery_id)
        if lottery is None:
            raise RemoteError(f"Lottery {lottery_id} does not exist")
        return lottery

    def _settle(self, lottery_id: int) -> ClosureEvent:
        lottery = self.lotteries[lottery_id]
        distinct: List[str] = []
        for holder in lottery.tickets:
            if not any(same_address(holder, seen) for seen in distinct):
                distinct.append(holder)
        winners = distinct[:3] if len(distinct) >= 3 else [ZERO_ADDRESS] * 3
        lottery.winners = winners
        lottery.is_closed = True
        return ClosureEvent(
            lottery_id=lottery_id,
            winners=tuple(WinnerSlot(addr, lottery.names.get(addr.lower(), "")) for addr in winners),
            total_pool=lottery.total_pool,
        )
