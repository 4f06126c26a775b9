"""Global constants, engine configuration and initial state for the GHOSTNET simulation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from errors import ConfigError, UnknownTier

# ---------- CONSTANTS ----------
BPS_DENOMINATOR = 10_000  # 100 %
ACC_SCALE = 10**18  # fixed-point scale of acc_per_share

COMMIT_DELAY = 10  # ticks between commit and the entropy snapshot
MIN_COMMIT_DELAY = 5
PRIMARY_WINDOW = 256  # native entropy lookback
EXTENDED_WINDOW = 8_191  # extended history lookback

LOCK_WINDOW = 20  # ticks before a scan during which exits are refused
SUBMISSION_WINDOW = 64  # ticks after reveal during which deaths may be reported

CASCADE_SPLIT = dict(
    same_tier=3_000,  # 30 % to survivors of the scanned tier
    upstream=3_000,  # 30 % to the next safer tier
    burn=3_000,  # 30 % destroyed
    operations=1_000,  # 10 % to the operations sink
)

EMISSION_POOL = 50_000_000  # total emissions available to the tiers
EMISSION_PER_TICK = 1_000

CULL_PENALTY_BPS = 2_000  # taken from a position pushed out of a full tier
RESET_TIMEOUT = 28_800  # ticks without a deposit before the system reset can fire
RESET_PENALTY_BPS = 2_500  # taken from every open position on reset
JACKPOT_BPS = 5_000  # share of the reset penalties paid to the last depositor


@dataclass(frozen=True)
class TierConfig:
    # Static description of one risk tier.
    level: int
    name: str
    death_rate_bps: int
    scan_interval: int  # 0 = never scanned
    min_stake: int = 10
    emission_weight_bps: int = 0
    capacity: int = 0  # max live positions, 0 = unlimited

    @property
    def has_scans(self) -> bool:
        return self.scan_interval > 0


# Safest first. The first tier is the top of the cascade (no upstream).
TIERS: Tuple[TierConfig, ...] = (
    TierConfig(1, "Vault", 0, 0, emission_weight_bps=500),
    TierConfig(2, "Mainframe", 200, 2_880, emission_weight_bps=1_000),
    TierConfig(3, "Subnet", 1_500, 960, emission_weight_bps=2_000),
    TierConfig(4, "Darknet", 4_000, 240, emission_weight_bps=3_000),
    TierConfig(5, "Black Ice", 9_000, 60, emission_weight_bps=3_500, capacity=250),
)


@dataclass(frozen=True)
class EngineConfig:
    """Wiring for one engine instance.

    All durations are in ticks of the execution environment.
    """

    tiers: Tuple[TierConfig, ...] = TIERS
    commit_delay: int = COMMIT_DELAY
    primary_window: int = PRIMARY_WINDOW
    extended_window: int = EXTENDED_WINDOW
    lock_window: int = LOCK_WINDOW
    submission_window: int = SUBMISSION_WINDOW
    cascade_split: Dict[str, int] = field(default_factory=lambda: dict(CASCADE_SPLIT))
    consumer_id: str = "ghostnet.trace-scan"
    operations_sink: str = "ghostnet.operations"
    cull_penalty_bps: int = CULL_PENALTY_BPS
    reset_timeout: int = RESET_TIMEOUT
    reset_penalty_bps: int = RESET_PENALTY_BPS
    jackpot_bps: int = JACKPOT_BPS

    def validate(self) -> "EngineConfig":
        if not self.tiers:
            raise ConfigError("at least one tier is required")
        levels = [t.level for t in self.tiers]
        if len(set(levels)) != len(levels):
            raise ConfigError(f"duplicate tier levels: {levels}")
        for tier in self.tiers:
            if not 0 <= tier.death_rate_bps <= BPS_DENOMINATOR:
                raise ConfigError(f"{tier.name}: death rate {tier.death_rate_bps} outside 0..{BPS_DENOMINATOR}")
            if tier.min_stake <= 0:
                raise ConfigError(f"{tier.name}: min_stake must be positive")
            if tier.capacity < 0:
                raise ConfigError(f"{tier.name}: capacity must be non-negative")
        if self.commit_delay < MIN_COMMIT_DELAY:
            raise ConfigError(f"commit_delay {self.commit_delay} below minimum {MIN_COMMIT_DELAY}")
        if self.primary_window <= 0 or self.extended_window < self.primary_window:
            raise ConfigError("extended_window must cover primary_window")
        # exits must stay closed for as long as the committed entropy is predictable
        if self.lock_window < self.commit_delay:
            raise ConfigError(
                f"lock_window {self.lock_window} shorter than commit_delay {self.commit_delay}"
            )
        if self.submission_window <= 0:
            raise ConfigError("submission_window must be positive")
        for name in ("cull_penalty_bps", "reset_penalty_bps", "jackpot_bps"):
            if not 0 <= getattr(self, name) <= BPS_DENOMINATOR:
                raise ConfigError(f"{name} outside 0..{BPS_DENOMINATOR}")
        if self.reset_timeout <= 0:
            raise ConfigError("reset_timeout must be positive")
        expected = {"same_tier", "upstream", "burn", "operations"}
        if set(self.cascade_split) != expected:
            raise ConfigError(f"cascade_split keys must be {sorted(expected)}")
        if any(v < 0 for v in self.cascade_split.values()):
            raise ConfigError("cascade weights must be non-negative")
        if sum(self.cascade_split.values()) != BPS_DENOMINATOR:
            raise ConfigError(f"cascade weights must sum to {BPS_DENOMINATOR}")
        return self

    def tier(self, level: int) -> TierConfig:
        for tier in self.tiers:
            if tier.level == level:
                return tier
        raise UnknownTier(level)

    def upstream_of(self, level: int) -> Optional[int]:
        # Next safer tier in table order, None at the top.
        levels = [t.level for t in self.tiers]
        idx = levels.index(self.tier(level).level)
        return levels[idx - 1] if idx > 0 else None


# ---------- INITIAL STATE (tick 0) ----------
initial_state = dict(
    world=None,  # built on the first substep of each run (sim.ensure_world)
    tick=0,
    tvl=0,
    tier_tvl={},
    burned=0,
    operations=0,
    deaths=0,
    emission_pool=EMISSION_POOL,
    arrivals_per_step=0,  # echoed from params so results can be grouped by it
)
