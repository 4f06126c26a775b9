# Off-engine keeper that drives scans forward.
#
# The keeper owns no privileged access: it learns who is alive from the event
# projection, reads the revealed seed from the ScanRevealed event, evaluates
# the public elimination predicate itself and reports victims in bounded
# batches. The engine re-verifies every entry.

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from engine import GhostEngine
from errors import EntropyUnavailable, ResetNotDue, ScanInProgress, SeedNotReady, SubmissionWindowOpen
from projection import Projection
from scan_engine import ScanStatus, is_eliminated

logger = logging.getLogger(__name__)

# Maximum identities submitted per report call.
BATCH_SIZE = 50


class Keeper:
    def __init__(self, engine: GhostEngine, projection: Projection, name: str = "keeper", batch_size: int = BATCH_SIZE) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.engine = engine
        self.projection = projection
        self.name = name
        self.batch_size = batch_size
        self.reported: Dict[int, int] = {}  # scan id -> deaths reported by this keeper

    def victims(self, tier: int) -> List[str]:
        scan_id = self.engine.tier_state(tier).active_scan_id
        summary = self.projection.scans.get(scan_id) if scan_id is not None else None
        if summary is None or summary.seed is None:
            return []
        return [
            identity
            for identity in self.projection.alive_in(tier)
            if is_eliminated(summary.seed, identity, summary.rate_bps)
        ]

    def report(self, tier: int) -> int:
        doomed = self.victims(tier)
        deaths = 0
        for start in range(0, len(doomed), self.batch_size):
            outcome = self.engine.report_eliminated(tier, doomed[start:start + self.batch_size], submitter=self.name)
            deaths += len(outcome.accepted)
            self.reported[outcome.scan_id] = self.reported.get(outcome.scan_id, 0) + len(outcome.accepted)
        return deaths

    def step(self, tier: int) -> Optional[str]:
        """Advance the tier's scan by one stage. Returns the action taken."""
        if not self.engine.config.tier(tier).has_scans:
            return None
        status = self.engine.scan_status(tier)
        now = self.engine.env.current_tick()

        attached = self.engine.tier_state(tier).active_scan_id is not None
        if status is ScanStatus.EXPIRED and attached:
            self.engine.abandon_scan(tier)
            return "abandoned"
        if not attached:
            if now < self.engine.tier_state(tier).next_scan_tick:
                return None
            self.engine.request_scan(tier)
            return "requested"
        if status is ScanStatus.PENDING:
            try:
                self.engine.begin_scan(tier)
            except SeedNotReady:
                return None
            except EntropyUnavailable:
                logger.warning("tier %d: entropy unavailable, waiting for expiry", tier)
                return None
            return "revealed"

        # ACTIVE: report anything still alive and doomed, then try to close
        summary = self.projection.scans[self.engine.tier_state(tier).active_scan_id]
        deaths = 0
        if now <= summary.revealed_tick + self.engine.config.submission_window:
            deaths = self.report(tier)
        try:
            self.engine.finalize_scan(tier)
        except SubmissionWindowOpen:
            return "reported" if deaths else None
        return "finalized"

    def poke_reset(self) -> bool:
        # Fire the system reset once the deposit clock has run out.
        deadline = self.engine.reset_deadline()
        if deadline is None or self.engine.env.current_tick() < deadline:
            return False
        try:
            self.engine.trigger_reset()
        except (ResetNotDue, ScanInProgress) as exc:
            logger.debug("%s: reset not possible yet: %s", self.name, exc)
            return False
        return True
