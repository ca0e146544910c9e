"""
Pure folds over the COD event log.

Nothing here reads or writes the database; CODLedger feeds in the rows.
Balances are always derived from the events, never stored.
"""
from dataclasses import dataclass, field
from decimal import Decimal

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class CollectionEntry:
    id: object
    order_id: object
    amount: Decimal
    collected_at: object
    order_number: str = ""


@dataclass(frozen=True)
class SettlementEntry:
    id: object
    amount: Decimal
    submitted_at: object
    collection_ids: tuple = ()


@dataclass(frozen=True)
class PendingCollection:
    collection_id: object
    order_id: object
    order_number: str
    amount: Decimal
    outstanding: Decimal
    collected_at: object


@dataclass(frozen=True)
class LedgerSummary:
    total_collected: Decimal = ZERO
    total_submitted: Decimal = ZERO
    collected_not_submitted: Decimal = ZERO
    pending_collections: list = field(default_factory=list)


def outstanding(collections, settlements) -> Decimal:
    return sum((c.amount for c in collections), ZERO) - sum((s.amount for s in settlements), ZERO)


def allocate(collections, settlements) -> dict:
    """
    Map collection id -> amount already remitted.

    Explicit references are honoured first (in submission order); whatever
    a settlement does not spend on its own references is pooled and applied
    to the oldest collections with a remainder.
    """
    amounts = {c.id: c.amount for c in collections}
    settled = {c.id: ZERO for c in collections}
    pool = ZERO

    for s in sorted(settlements, key=lambda s: s.submitted_at):
        remaining = s.amount
        for cid in s.collection_ids:
            if cid not in settled or remaining <= 0:
                continue
            take = min(remaining, amounts[cid] - settled[cid])
            settled[cid] += take
            remaining -= take
        pool += remaining

    for c in sorted(collections, key=lambda c: c.collected_at):
        if pool <= 0:
            break
        take = min(pool, c.amount - settled[c.id])
        settled[c.id] += take
        pool -= take

    return settled


def in_range(moment, start=None, end=None) -> bool:
    if start is not None and moment < start:
        return False
    if end is not None and moment > end:
        return False
    return True


def summarize(collections, settlements, start=None, end=None) -> LedgerSummary:
    """
    Range-bounded view of one partner's log.

    Allocation always runs over the whole log so a collection's remitted
    share does not depend on the window being looked at.
    """
    settled = allocate(collections, settlements)

    windowed = [c for c in collections if in_range(c.collected_at, start, end)]
    pending = [
        PendingCollection(
            collection_id=c.id,
            order_id=c.order_id,
            order_number=c.order_number,
            amount=c.amount,
            outstanding=c.amount - settled[c.id],
            collected_at=c.collected_at,
        )
        for c in sorted(windowed, key=lambda c: c.collected_at)
        if settled[c.id] < c.amount
    ]

    return LedgerSummary(
        total_collected=sum((c.amount for c in windowed), ZERO),
        total_submitted=sum(
            (s.amount for s in settlements if in_range(s.submitted_at, start, end)), ZERO
        ),
        collected_not_submitted=sum((p.outstanding for p in pending), ZERO),
        pending_collections=pending,
    )
