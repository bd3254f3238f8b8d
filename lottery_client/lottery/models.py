"""Core data models for the lottery client."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

from lottery_client.utils.common import ZERO_ADDRESS, is_zero_address, same_address

WINNER_SLOTS = 3
MIN_TICKETS_TO_CLOSE = 3
ANONYMOUS_WINNER = "Anonymous"

# Display-only figures shown next to a lottery; the ledger settles payouts.
PRIZE_SPLIT_PERCENT: Tuple[int, int, int] = (50, 30, 20)
ADMIN_FEE_PERCENT = 5


@dataclass(frozen=True)
class WinnerSlot:
    """One prize position; the zero address means the slot is unset.

    `display_name` stays None until the closure event has been consulted.
    """

    address: str = ZERO_ADDRESS
    display_name: Optional[str] = None

    @property
    def is_set(self) -> bool:
        return not is_zero_address(self.address)


EMPTY_WINNERS: Tuple[WinnerSlot, WinnerSlot, WinnerSlot] = (WinnerSlot(), WinnerSlot(), WinnerSlot())


@dataclass(frozen=True)
class LotteryInfo:
    """Normalized result of `Lottery.getLotteryInfo(id)`."""

    id: int
    ticket_price: int
    is_closed: bool
    total_pool: int
    admin: str
    winners: Tuple[str, str, str]


@dataclass(frozen=True)
class ClosureEvent:
    """Decoded `WinnersDeclared` log entry."""

    lottery_id: int
    winners: Tuple[WinnerSlot, WinnerSlot, WinnerSlot]
    total_pool: int
    block_number: int = 0
    transaction_hash: str = ""

    @classmethod
    def from_event(cls, event: "LedgerEvent") -> "ClosureEvent":
        """Build from a decoded `WinnersDeclared` event; raises KeyError / ValueError on malformed args."""
        args = event.args
        return cls(
            lottery_id=int(args["lotteryId"]),
            winners=tuple(
                WinnerSlot(str(args[f"winner{slot}"]), args.get(f"winner{slot}Name", ""))
                for slot in range(1, WINNER_SLOTS + 1)
            ),
            total_pool=int(args.get("totalPool", 0)),
            block_number=event.block_number,
            transaction_hash=event.transaction_hash,
        )


@dataclass(frozen=True)
class LedgerEvent:
    """Lightweight representation of a decoded on-chain event."""

    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    block_number: int = 0
    transaction_hash: str = ""
    log_index: int = 0


@dataclass(frozen=True)
class Receipt:
    """Confirmation payload of a mined transaction.

    `decode_errors` counts this contract's logs that could not be decoded;
    when non-zero, `events` is known to be incomplete.
    """

    transaction_hash: str
    block_number: int
    status: int
    gas_used: int = 0
    events: Tuple[LedgerEvent, ...] = ()
    decode_errors: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    def find(self, name: str) -> List[LedgerEvent]:
        return [event for event in self.events if event.name == name]


@dataclass(frozen=True)
class LotteryRecord:
    """One lottery instance as held by the client."""

    id: int
    ticket_price: int
    is_closed: bool
    total_pool: int
    admin: str
    winners: Tuple[WinnerSlot, WinnerSlot, WinnerSlot] = EMPTY_WINNERS
    tickets: Tuple[str, ...] = ()

    @classmethod
    def from_ledger(cls, info: LotteryInfo, tickets: Iterable[str]) -> "LotteryRecord":
        winners = tuple(WinnerSlot(address=address) for address in info.winners)
        if len(winners) != WINNER_SLOTS:
            raise ValueError(f"Lottery {info.id} reported {len(winners)} winner slots, expected {WINNER_SLOTS}")
        filled = sum(1 for slot in winners if slot.is_set)
        if filled not in (0, WINNER_SLOTS):
            raise ValueError(f"Lottery {info.id} reported {filled} of {WINNER_SLOTS} winner slots filled")
        return cls(
            id=info.id,
            ticket_price=info.ticket_price,
            is_closed=info.is_closed,
            total_pool=info.total_pool,
            admin=info.admin,
            winners=winners,  # type: ignore[arg-type]
            tickets=tuple(tickets),
        )

    @property
    def tickets_sold(self) -> int:
        return len(self.tickets)

    @property
    def has_winners(self) -> bool:
        """True once the first prize slot holds a real address."""
        return self.winners[0].is_set

    @property
    def can_close(self) -> bool:
        return not self.is_closed and self.tickets_sold >= MIN_TICKETS_TO_CLOSE

    def with_winner_names(self, closure: ClosureEvent) -> "LotteryRecord":
        """Attach display names from the closure event to matching winner slots.

        Slots are matched by position and address; a name missing from the
        event is shown as anonymous.
        """
        named = []
        for slot, declared in zip(self.winners, closure.winners):
            if slot.is_set and same_address(slot.address, declared.address):
                named.append(replace(slot, display_name=declared.display_name or ANONYMOUS_WINNER))
            else:
                named.append(slot)
        return replace(self, winners=tuple(named))

    def with_anonymous_winners(self) -> "LotteryRecord":
        """Mark every unnamed set slot anonymous; used when the name lookup failed."""
        return replace(
            self,
            winners=tuple(
                replace(slot, display_name=ANONYMOUS_WINNER) if slot.is_set and slot.display_name is None else slot
                for slot in self.winners
            ),
        )

    def with_purchase(self, buyer: str, count: int) -> "LotteryRecord":
        """Return a copy with `count` tickets appended for `buyer`."""
        if count < 1:
            raise ValueError("Purchased ticket count must be positive")
        return replace(
            self,
            tickets=self.tickets + (buyer,) * count,
            total_pool=self.total_pool + self.ticket_price * count,
        )


@dataclass(frozen=True)
class UserParticipation:
    """Tickets the viewer holds in one lottery."""

    ticket_count: int
    total_tickets: int

    @classmethod
    def for_viewer(cls, record: LotteryRecord, address: Optional[str]) -> "UserParticipation":
        owned = sum(1 for holder in record.tickets if same_address(holder, address))
        return cls(ticket_count=owned, total_tickets=record.tickets_sold)

    @property
    def win_probability(self) -> float:
        if self.total_tickets == 0:
            return 0.0
        return self.ticket_count / self.total_tickets


def prize_breakdown(total_pool: int) -> Dict[str, int]:
    """Split a pool into display-only prize amounts (wei) and the admin fee."""
    fee = total_pool * ADMIN_FEE_PERCENT // 100
    distributable = total_pool - fee
    first, second, third = (distributable * pct // 100 for pct in PRIZE_SPLIT_PERCENT)
    return {"first": first, "second": second, "third": third, "adminFee": fee}
