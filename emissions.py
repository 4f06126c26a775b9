# Emission pool dripped into the tiers.
#
# Each call to ``distribute`` releases ``per_tick`` tokens for every tick
# elapsed since the previous call, capped by what is left in the pool, and
# credits each tier its basis-point share through the ledger. Tiers that are
# currently empty hold their share as pending (see PositionLedger.credit).

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from errors import ConfigError, UnknownTier
from events import EmissionsDistributed, EventLog, WeightsUpdated
from initial_state import BPS_DENOMINATOR, EMISSION_PER_TICK, EMISSION_POOL, EngineConfig
from position_ledger import PositionLedger

logger = logging.getLogger(__name__)


class RewardsDistributor:
    def __init__(
        self,
        config: EngineConfig,
        ledger: PositionLedger,
        events: EventLog,
        clock: Callable[[], int],
        pool: int = EMISSION_POOL,
        per_tick: int = EMISSION_PER_TICK,
        weights: Optional[Dict[int, int]] = None,
    ) -> None:
        if pool < 0 or per_tick < 0:
            raise ConfigError("emission pool and rate must be non-negative")
        self.config = config
        self.ledger = ledger
        self.events = events
        self.clock = clock
        self.pool = pool
        self.per_tick = per_tick
        self.last_tick = clock()
        self.distributed_total = 0
        self.weights = self._checked(weights or {t.level: t.emission_weight_bps for t in config.tiers})

    def _checked(self, weights: Dict[int, int]) -> Dict[int, int]:
        for level in weights:
            self.config.tier(level)
        if any(w < 0 for w in weights.values()):
            raise ConfigError("emission weights must be non-negative")
        # all-zero weights switch emissions off
        if sum(weights.values()) not in (0, BPS_DENOMINATOR):
            raise ConfigError(f"emission weights must sum to {BPS_DENOMINATOR}, got {sum(weights.values())}")
        return dict(weights)

    def update_weights(self, weights: Dict[int, int]) -> None:
        # Settle at the old weights first so the change is not retroactive.
        self.distribute()
        self.weights = self._checked(weights)
        self.events.emit(WeightsUpdated(tuple(sorted(self.weights.items()))))
        logger.info("emission weights updated: %s", self.weights)

    def distribute(self) -> Dict[int, int]:
        now = self.clock()
        elapsed = now - self.last_tick
        self.last_tick = now
        released = min(elapsed * self.per_tick, self.pool)
        if released <= 0:
            return {}

        paid: Dict[int, int] = {}
        for level, weight in self.weights.items():
            share = released * weight // BPS_DENOMINATOR
            if share == 0:
                continue
            self.ledger.credit(level, share)
            paid[level] = share

        # rounding leftovers stay in the pool
        emitted = sum(paid.values())
        self.pool -= emitted
        self.distributed_total += emitted
        for level, share in paid.items():
            self.events.emit(EmissionsDistributed(level, share, self.pool))
        logger.debug("emitted %d over %d ticks, pool %d", emitted, elapsed, self.pool)
        return paid

    def share_of(self, level: int) -> int:
        if level not in self.weights:
            raise UnknownTier(level)
        return self.weights[level]
