"""Composition root: one engine instance wired to one execution environment.

The components only talk to each other through the objects built here. All
public operations are forwarded to the component that owns them; the views
listed in ``VIEWS`` are the only state readable from outside, everything else
has to be reconstructed from ``events``.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

from cascade import CascadeDistributor
from chain import HistoryBuffer, SimulatedChain
from emissions import RewardsDistributor
from events import EventLog
from initial_state import EMISSION_PER_TICK, EMISSION_POOL, EngineConfig
from position_ledger import Payout, Position, PositionLedger, ResetOutcome, TierState
from randomness_gate import ExtendedHistory, RandomnessGate, TickSource
from scan_engine import ReportOutcome, Scan, ScanEngine, ScanStatus, is_eliminated

logger = logging.getLogger(__name__)

VIEWS = ("is_eliminated", "pending_reward", "tier_state", "scan_status", "reset_deadline")


class GhostEngine:
    def __init__(
        self,
        env: TickSource,
        history: Optional[ExtendedHistory] = None,
        config: Optional[EngineConfig] = None,
        emission_pool: int = EMISSION_POOL,
        emission_per_tick: int = EMISSION_PER_TICK,
    ) -> None:
        self.config = (config or EngineConfig()).validate()
        self.env = env
        clock = env.current_tick
        self.events = EventLog(clock)
        self.gate = RandomnessGate(
            env,
            history,
            commit_delay=self.config.commit_delay,
            primary_window=self.config.primary_window,
            extended_window=self.config.extended_window,
        )
        self.ledger = PositionLedger(self.config, clock, self.events)
        self.cascade = CascadeDistributor(self.config, self.ledger, self.events)
        self.ledger.penalty_sink = self.cascade.distribute
        self.scans = ScanEngine(self.config, self.ledger, self.gate, self.cascade, self.events, clock)
        self.emissions = RewardsDistributor(
            self.config, self.ledger, self.events, clock, pool=emission_pool, per_tick=emission_per_tick
        )
        logger.info("engine ready with %d tiers at tick %d", len(self.config.tiers), clock())

    # -- participants ------------------------------------------------------
    def enter(self, identity: str, tier: int, amount: int) -> Position:
        return self.ledger.enter(identity, tier, amount)

    def add_stake(self, identity: str, amount: int) -> int:
        return self.ledger.add_stake(identity, amount)

    def claim(self, identity: str) -> int:
        return self.ledger.claim(identity)

    def exit(self, identity: str) -> Payout:
        return self.ledger.exit(identity)

    def trigger_reset(self) -> ResetOutcome:
        return self.ledger.trigger_reset()

    # -- scans ---------------------------------------------------------------
    def request_scan(self, tier: int) -> Scan:
        return self.scans.request_scan(tier)

    def begin_scan(self, tier: int) -> Scan:
        return self.scans.begin_scan(tier)

    def report_eliminated(self, tier: int, identities: Iterable[str], submitter: str = "anonymous") -> ReportOutcome:
        return self.scans.report_eliminated(tier, identities, submitter)

    def finalize_scan(self, tier: int, scan_id: Optional[int] = None) -> Scan:
        return self.scans.finalize_scan(tier, scan_id)

    def abandon_scan(self, tier: int) -> Scan:
        return self.scans.abandon_scan(tier)

    def distribute_emissions(self) -> Dict[int, int]:
        return self.emissions.distribute()

    # -- views ---------------------------------------------------------------
    @staticmethod
    def is_eliminated(seed: int, identity: str, rate_bps: int) -> bool:
        return is_eliminated(seed, identity, rate_bps)

    def pending_reward(self, identity: str) -> int:
        return self.ledger.pending_reward(identity)

    def tier_state(self, tier: int) -> TierState:
        return self.ledger.tier_state(tier)

    def scan_status(self, tier: int) -> ScanStatus:
        return self.scans.scan_status(tier)

    def reset_deadline(self) -> Optional[int]:
        return self.ledger.reset_deadline

    def totals(self) -> Dict[str, int]:
        # Aggregate supply figures used by the simulation.
        tiers = [self.ledger.tier_state(level) for level in self.ledger.tier_levels()]
        return dict(
            tvl=sum(t.total_staked for t in tiers),
            pending=sum(t.pending_rewards for t in tiers),
            burned=self.cascade.burned_total,
            operations=self.cascade.operations_balance,
            emission_pool=self.emissions.pool,
            resets=self.ledger.resets,
        )


def build_engine(seed: int = 0, config: Optional[EngineConfig] = None, with_history: bool = True, **kwargs) -> GhostEngine:
    """Engine on a fresh simulated chain (and extended history when asked)."""
    chain = SimulatedChain(seed=seed)
    cfg = config or EngineConfig()
    history = HistoryBuffer(chain, window=cfg.extended_window) if with_history else None
    return GhostEngine(chain, history, cfg, **kwargs)
