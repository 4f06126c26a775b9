"""Per-tier elimination rounds ("trace scans").

Lifecycle of one scan::

    request_scan      begin_scan        report_eliminated*      finalize_scan
    NONE ──────────▶ PENDING ──────────▶ ACTIVE ─────────────────────────────▶ FINALIZED
                        │
                        └── abandon_scan (entropy expired) ──▶ EXPIRED

Nothing here enumerates participants. Whether an identity dies is a pure
function of the revealed seed, so anyone holding the participant list (for
example a keeper fed by the event stream) can compute the victims and report
them; the engine only verifies each report.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterable, Optional, Set, Tuple

from cascade import CascadeDistributor, CascadeResult
from errors import (
    InvalidScanState,
    NoActiveScan,
    ScanInProgress,
    ScanNotDue,
    SubmissionWindowClosed,
    SubmissionWindowOpen,
    TierNotScanned,
)
from events import (
    EventLog,
    IdentitiesEliminated,
    ScanExpired,
    ScanFinalized,
    ScanRequested,
    ScanRevealed,
    SurvivorsUpdated,
)
from initial_state import EngineConfig
from position_ledger import PositionLedger
from randomness_gate import RandomnessGate, SeedStatus, hash_words, to_bool

logger = logging.getLogger(__name__)


def is_eliminated(seed: int, identity: str, rate_bps: int) -> bool:
    """Elimination predicate shared by the engine and every reporter."""
    return to_bool(hash_words(seed, identity), rate_bps)


class ScanStatus(enum.Enum):
    NONE = "none"
    PENDING = "pending"
    ACTIVE = "active"
    FINALIZED = "finalized"
    EXPIRED = "expired"


@dataclass
class Scan:
    scan_id: int
    tier: int
    rate_bps: int
    commit_tick: int
    snapshot_tick: int
    eligible: int  # alive positions in the tier when the scan was requested
    status: ScanStatus = ScanStatus.PENDING
    seed: Optional[int] = None
    revealed_tick: Optional[int] = None
    submission_deadline: Optional[int] = None
    death_count: int = 0
    total_eliminated: int = 0
    finalized_tick: Optional[int] = None
    cascade: Optional[CascadeResult] = None


@dataclass(frozen=True)
class ReportOutcome:
    scan_id: int
    accepted: Tuple[str, ...] = ()
    rejected: Dict[str, str] = field(default_factory=dict)
    amount: int = 0


class ScanEngine:
    def __init__(
        self,
        config: EngineConfig,
        ledger: PositionLedger,
        gate: RandomnessGate,
        cascade: CascadeDistributor,
        events: EventLog,
        clock: Callable[[], int],
    ) -> None:
        self.config = config
        self.ledger = ledger
        self.gate = gate
        self.cascade = cascade
        self.events = events
        self.clock = clock
        self._scans: Dict[int, Scan] = {}
        self._latest: Dict[int, int] = {}  # tier -> most recent scan id
        # (scan_id, identity); scan ids are never reused so entries of
        # finished scans are simply never looked up again
        self._reported: Set[Tuple[int, str]] = set()
        self._next_scan_id = 1

    # ------------------------------------------------------------------
    def _active(self, level: int) -> Scan:
        scan_id = self.ledger.tier_state(level).active_scan_id
        if scan_id is None:
            raise NoActiveScan(level)
        return self._scans[scan_id]

    def request_scan(self, level: int) -> Scan:
        cfg = self.config.tier(level)
        if not cfg.has_scans:
            raise TierNotScanned(level)
        tier = self.ledger.tier_state(level)
        if tier.active_scan_id is not None:
            raise ScanInProgress(level, tier.active_scan_id)
        now = self.clock()
        if now < tier.next_scan_tick:
            raise ScanNotDue(level, tier.next_scan_tick, now)

        scan_id = self._next_scan_id
        seed_round = self.gate.commit(scan_id, self.config.consumer_id)
        self._next_scan_id += 1
        scan = Scan(
            scan_id=scan_id,
            tier=level,
            rate_bps=cfg.death_rate_bps,
            commit_tick=now,
            snapshot_tick=seed_round.snapshot_tick,
            eligible=tier.alive_count,
        )
        self._scans[scan_id] = scan
        self._latest[level] = scan_id
        self.ledger.attach_scan(level, scan_id)
        self.events.emit(ScanRequested(level, scan_id, now, seed_round.snapshot_tick))
        logger.info("tier %d: scan %d requested, snapshot at tick %d", level, scan_id, seed_round.snapshot_tick)
        return replace(scan)

    def begin_scan(self, level: int) -> Scan:
        scan = self._active(level)
        if scan.status is not ScanStatus.PENDING:
            raise InvalidScanState(scan.scan_id, scan.status.value, ScanStatus.PENDING.value)
        seed = self.gate.reveal(scan.scan_id, self.config.consumer_id)
        now = self.clock()
        scan.seed = seed
        scan.revealed_tick = now
        scan.submission_deadline = now + self.config.submission_window
        scan.status = ScanStatus.ACTIVE
        source = self.gate.round(scan.scan_id, self.config.consumer_id).source
        self.events.emit(ScanRevealed(level, scan.scan_id, seed, scan.rate_bps, scan.eligible, source))
        logger.info("tier %d: scan %d active, %d eligible at %d bps", level, scan.scan_id, scan.eligible, scan.rate_bps)
        return replace(scan)

    def report_eliminated(self, level: int, identities: Iterable[str], submitter: str = "anonymous") -> ReportOutcome:
        scan = self._active(level)
        if scan.status is not ScanStatus.ACTIVE:
            raise InvalidScanState(scan.scan_id, scan.status.value, ScanStatus.ACTIVE.value)
        if self.clock() > scan.submission_deadline:
            raise SubmissionWindowClosed(scan.scan_id, scan.submission_deadline)

        accepted = []
        rejected: Dict[str, str] = {}
        amount = 0
        for identity in identities:
            key = (scan.scan_id, identity)
            if key in self._reported:
                rejected[identity] = "already processed"
            elif not self.ledger.is_alive(identity, level):
                rejected[identity] = "no live position in tier"
            elif not is_eliminated(scan.seed, identity, scan.rate_bps):
                rejected[identity] = "survives this scan"
            else:
                amount += self.ledger.mark_eliminated(identity)
                self._reported.add(key)
                accepted.append(identity)

        scan.death_count += len(accepted)
        scan.total_eliminated += amount
        if accepted:
            self.events.emit(IdentitiesEliminated(level, scan.scan_id, tuple(accepted), amount, submitter))
            logger.info("tier %d: scan %d eliminated %d (%d) via %s", level, scan.scan_id, len(accepted), amount, submitter)
        if rejected:
            logger.debug("tier %d: scan %d rejected %d reports", level, scan.scan_id, len(rejected))
        return ReportOutcome(scan.scan_id, tuple(accepted), rejected, amount)

    def finalize_scan(self, level: int, scan_id: Optional[int] = None) -> Scan:
        """Close the active scan and run the cascade exactly once.

        Passing the ``scan_id`` of a scan that is already finalized returns it
        unchanged, so duplicate finalize calls are harmless.
        """
        if scan_id is not None:
            known = self._scans.get(scan_id)
            if known is not None and known.status is ScanStatus.FINALIZED:
                return replace(known)
        scan = self._active(level)
        if scan_id is not None and scan.scan_id != scan_id:
            raise InvalidScanState(scan_id, ScanStatus.NONE.value, ScanStatus.ACTIVE.value)
        if scan.status is not ScanStatus.ACTIVE:
            raise InvalidScanState(scan.scan_id, scan.status.value, ScanStatus.ACTIVE.value)
        now = self.clock()
        if now <= scan.submission_deadline and scan.death_count < scan.eligible:
            raise SubmissionWindowOpen(scan.scan_id, scan.submission_deadline)

        scan.cascade = self.cascade.distribute(level, scan.total_eliminated)
        next_scan_tick = now + self.config.tier(level).scan_interval
        self.ledger.detach_scan(level, next_scan_tick, completed=True)
        scan.status = ScanStatus.FINALIZED
        scan.finalized_tick = now

        split = scan.cascade.split
        self.events.emit(
            ScanFinalized(
                tier=level,
                scan_id=scan.scan_id,
                death_count=scan.death_count,
                total_eliminated=scan.total_eliminated,
                same_tier=split.same_tier,
                upstream=scan.cascade.upstream_paid,
                burn=scan.cascade.burned,
                operations=split.operations,
                next_scan_tick=next_scan_tick,
            )
        )
        self.events.emit(SurvivorsUpdated(level, scan.scan_id, scan.eligible - scan.death_count))
        logger.info(
            "tier %d: scan %d finalized, %d dead, %d eliminated, next scan at %d",
            level,
            scan.scan_id,
            scan.death_count,
            scan.total_eliminated,
            next_scan_tick,
        )
        return replace(scan)

    def abandon_scan(self, level: int) -> Scan:
        """Retire a pending scan whose entropy can no longer be revealed.

        The tier is freed and immediately due again; requeueing is up to the
        caller.
        """
        scan = self._active(level)
        if scan.status is not ScanStatus.PENDING:
            raise InvalidScanState(scan.scan_id, scan.status.value, ScanStatus.PENDING.value)
        if self.gate.status(scan.scan_id, self.config.consumer_id) is not SeedStatus.EXPIRED:
            raise InvalidScanState(scan.scan_id, scan.status.value, ScanStatus.EXPIRED.value)
        scan.status = ScanStatus.EXPIRED
        self.ledger.detach_scan(level, self.clock(), completed=False)
        self.events.emit(ScanExpired(level, scan.scan_id, scan.snapshot_tick))
        logger.warning("tier %d: scan %d expired before reveal", level, scan.scan_id)
        return replace(scan)

    # ------------------------------------------------------------------
    # views
    # ------------------------------------------------------------------
    def scan(self, scan_id: int) -> Optional[Scan]:
        scan = self._scans.get(scan_id)
        return replace(scan) if scan is not None else None

    def current_scan(self, level: int) -> Optional[Scan]:
        scan_id = self._latest.get(level)
        return self.scan(scan_id) if scan_id is not None else None

    def scan_status(self, level: int) -> ScanStatus:
        # A pending scan whose entropy lapsed reports EXPIRED before anyone abandons it.
        self.config.tier(level)
        scan_id = self._latest.get(level)
        if scan_id is None:
            return ScanStatus.NONE
        scan = self._scans[scan_id]
        if scan.status is ScanStatus.PENDING:
            if self.gate.status(scan_id, self.config.consumer_id) is SeedStatus.EXPIRED:
                return ScanStatus.EXPIRED
        return scan.status

    def processed(self, scan_id: int, identity: str) -> bool:
        return (scan_id, identity) in self._reported
