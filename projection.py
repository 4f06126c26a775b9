"""Read model rebuilt purely from the engine's event stream.

This is what an indexer sees: no access to engine internals, only ordered
events. It tracks who is alive in which tier, per-tier stake and the history
of finalized scans, which is enough for a keeper to find elimination victims.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import DefaultDict, Dict, List, Optional, Set

import pandas as pd

from events import (
    EventRecord,
    IdentitiesEliminated,
    PositionCulled,
    PositionEntered,
    PositionExited,
    PositionReset,
    ScanFinalized,
    ScanRevealed,
    StakeAdded,
    SystemResetTriggered,
)


@dataclass
class ScanSummary:
    tier: int
    scan_id: int
    seed: Optional[int] = None
    revealed_tick: Optional[int] = None
    rate_bps: int = 0
    eligible: int = 0
    death_count: int = 0
    total_eliminated: int = 0
    same_tier: int = 0
    upstream: int = 0
    burn: int = 0
    operations: int = 0
    finalized: bool = False


class Projection:
    def __init__(self) -> None:
        self.alive: DefaultDict[int, Set[str]] = defaultdict(set)
        self.stakes: Dict[str, int] = {}
        self.tier_of: Dict[str, int] = {}
        self.tvl: DefaultDict[int, int] = defaultdict(int)
        self.scans: Dict[int, ScanSummary] = {}
        self.culled: List[str] = []
        self.resets = 0
        self.last_seq = 0

    def __call__(self, record: EventRecord) -> None:
        self.apply(record)

    def apply(self, record: EventRecord) -> None:
        if record.seq <= self.last_seq:
            raise ValueError(f"event {record.seq} out of order (last {self.last_seq})")
        self.last_seq = record.seq
        event = record.event

        if isinstance(event, PositionEntered):
            self.alive[event.tier].add(event.identity)
            self.stakes[event.identity] = event.amount
            self.tier_of[event.identity] = event.tier
            self.tvl[event.tier] += event.amount
        elif isinstance(event, StakeAdded):
            self.stakes[event.identity] += event.amount
            self.tvl[event.tier] += event.amount
        elif isinstance(event, (PositionExited, PositionReset)):
            self._remove(event.tier, event.identity)
        elif isinstance(event, PositionCulled):
            self._remove(event.tier, event.victim)
            self.culled.append(event.victim)
        elif isinstance(event, SystemResetTriggered):
            self.resets += 1
        elif isinstance(event, IdentitiesEliminated):
            for identity in event.identities:
                self._remove(event.tier, identity)
            self.scans[event.scan_id].death_count += len(event.identities)
            self.scans[event.scan_id].total_eliminated += event.amount
        elif isinstance(event, ScanRevealed):
            self.scans[event.scan_id] = ScanSummary(
                tier=event.tier,
                scan_id=event.scan_id,
                seed=event.seed,
                revealed_tick=record.tick,
                rate_bps=event.rate_bps,
                eligible=event.eligible,
            )
        elif isinstance(event, ScanFinalized):
            summary = self.scans.setdefault(event.scan_id, ScanSummary(event.tier, event.scan_id))
            summary.same_tier = event.same_tier
            summary.upstream = event.upstream
            summary.burn = event.burn
            summary.operations = event.operations
            summary.finalized = True

    def _remove(self, tier: int, identity: str) -> None:
        self.alive[tier].discard(identity)
        self.tvl[tier] -= self.stakes.pop(identity, 0)
        self.tier_of.pop(identity, None)

    def alive_in(self, tier: int) -> List[str]:
        return sorted(self.alive[tier])

    def scans_frame(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(s) for s in self.scans.values()])
