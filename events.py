"""Append-only event stream exposed to projection consumers.

Every state change the engine makes is announced here, in order. Consumers
must be able to rebuild any derived view (alive sets, TVL, scan history) from
this stream alone, so no event may be skipped or reordered.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Callable, Iterator, List, Optional, Tuple, Type

import pandas as pd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PositionEntered:
    identity: str
    tier: int
    amount: int
    tier_total: int


@dataclass(frozen=True)
class StakeAdded:
    identity: str
    tier: int
    amount: int
    new_total: int


@dataclass(frozen=True)
class PositionExited:
    identity: str
    tier: int
    principal: int
    rewards: int


@dataclass(frozen=True)
class PositionCulled:
    # Pushed out of a full tier by ``new_entrant``.
    victim: str
    tier: int
    penalty: int
    returned: int
    rewards: int
    new_entrant: str


@dataclass(frozen=True)
class PositionReset:
    identity: str
    tier: int
    penalty: int
    returned: int
    rewards: int


@dataclass(frozen=True)
class SystemResetTriggered:
    total_penalty: int
    jackpot_winner: str
    jackpot_amount: int
    positions_closed: int


@dataclass(frozen=True)
class RewardClaimed:
    identity: str
    tier: int
    amount: int


@dataclass(frozen=True)
class RewardsCredited:
    # held=True when the tier had no stake and the amount was parked.
    tier: int
    amount: int
    held: bool


@dataclass(frozen=True)
class PendingRewardsAbsorbed:
    tier: int
    amount: int
    identity: str


@dataclass(frozen=True)
class ScanRequested:
    tier: int
    scan_id: int
    commit_tick: int
    snapshot_tick: int


@dataclass(frozen=True)
class ScanRevealed:
    tier: int
    scan_id: int
    seed: int
    rate_bps: int
    eligible: int
    source: str


@dataclass(frozen=True)
class IdentitiesEliminated:
    tier: int
    scan_id: int
    identities: Tuple[str, ...]
    amount: int
    submitter: str


@dataclass(frozen=True)
class ScanFinalized:
    tier: int
    scan_id: int
    death_count: int
    total_eliminated: int
    same_tier: int
    upstream: int
    burn: int
    operations: int
    next_scan_tick: int


@dataclass(frozen=True)
class CascadeDistributed:
    source_tier: int
    upstream_tier: Optional[int]
    same_tier: int
    upstream: int
    burn: int
    operations: int


@dataclass(frozen=True)
class SurvivorsUpdated:
    tier: int
    scan_id: int
    count: int


@dataclass(frozen=True)
class ScanExpired:
    tier: int
    scan_id: int
    snapshot_tick: int


@dataclass(frozen=True)
class EmissionsDistributed:
    tier: int
    amount: int
    pool_remaining: int


@dataclass(frozen=True)
class WeightsUpdated:
    weights: Tuple[Tuple[int, int], ...]


@dataclass(frozen=True)
class EventRecord:
    seq: int
    tick: int
    event: object

    @property
    def name(self) -> str:
        return type(self.event).__name__


Subscriber = Callable[[EventRecord], None]


class EventLog:
    """Ordered, append-only record of engine events."""

    def __init__(self, clock: Callable[[], int]) -> None:
        self._clock = clock
        self._records: List[EventRecord] = []
        self._subscribers: List[Subscriber] = []

    def emit(self, event: object) -> EventRecord:
        record = EventRecord(seq=len(self._records) + 1, tick=self._clock(), event=event)
        self._records.append(record)
        logger.debug("event #%d %s %s", record.seq, record.name, event)
        for subscriber in self._subscribers:
            subscriber(record)
        return record

    def subscribe(self, subscriber: Subscriber, replay: bool = True) -> None:
        # Late subscribers get the full history first so their view is complete.
        if replay:
            for record in self._records:
                subscriber(record)
        self._subscribers.append(subscriber)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[EventRecord]:
        return iter(list(self._records))

    def since(self, seq: int) -> List[EventRecord]:
        return self._records[seq:]

    def of_type(self, kind: Type) -> List[object]:
        return [r.event for r in self._records if isinstance(r.event, kind)]

    def to_frame(self) -> pd.DataFrame:
        # One row per event; payload fields become columns (NaN where absent).
        rows = []
        for record in self._records:
            row = {"seq": record.seq, "tick": record.tick, "event": record.name}
            row.update(asdict(record.event))
            rows.append(row)
        return pd.DataFrame(rows)
