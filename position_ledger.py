"""Per-participant stake and share-based reward accounting.

Rewards use the accumulated-rewards-per-share technique: each tier carries
``acc_per_share`` (scaled by ``ACC_SCALE``) that only ever grows. A position's
accrued reward is ``amount * acc_per_share // ACC_SCALE - reward_debt`` and is
settled on every mutation of that position, so no operation ever iterates
over the other positions of a tier.

All amounts are integers. Division remainders from crediting a tier are
carried into the next credit of the same tier rather than dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, Optional, Set

from errors import (
    AmountBelowMinimum,
    DuplicatePosition,
    ExitLocked,
    InvalidAmount,
    LedgerMismatch,
    PositionDead,
    PositionNotFound,
    ResetNotDue,
    ScanInProgress,
    UnknownTier,
)
from events import (
    EventLog,
    PendingRewardsAbsorbed,
    PositionCulled,
    PositionEntered,
    PositionExited,
    PositionReset,
    RewardClaimed,
    RewardsCredited,
    StakeAdded,
    SystemResetTriggered,
)
from initial_state import ACC_SCALE, BPS_DENOMINATOR, EngineConfig, TierConfig

logger = logging.getLogger(__name__)


@dataclass
class Position:
    owner: str
    tier: int
    amount: int
    reward_debt: int
    entry_tick: int
    streak_origin: int  # tier.scans_finalized when the position entered
    alive: bool = True
    extracted: bool = False
    reward_owed: int = 0  # settled, not yet paid
    final_streak: int = 0


@dataclass
class TierState:
    level: int
    total_staked: int = 0
    alive_count: int = 0
    acc_per_share: int = 0
    acc_carry: int = 0  # scaled remainder of past credits
    pending_rewards: int = 0  # credited while the tier was empty
    next_scan_tick: int = 0
    active_scan_id: Optional[int] = None
    scans_finalized: int = 0


@dataclass(frozen=True)
class Payout:
    principal: int
    rewards: int

    @property
    def total(self) -> int:
        return self.principal + self.rewards


@dataclass(frozen=True)
class ResetOutcome:
    jackpot_winner: str
    jackpot: int
    total_penalty: int
    payouts: Dict[str, Payout]


class PositionLedger:
    def __init__(
        self,
        config: EngineConfig,
        clock: Callable[[], int],
        events: EventLog,
        penalty_sink: Optional[Callable[[int, int], object]] = None,
    ) -> None:
        self.config = config
        self.clock = clock
        self.events = events
        # receives (tier, amount) of every cull or reset penalty
        self.penalty_sink = penalty_sink
        self.unrouted_penalties = 0
        now = clock()
        self._tiers: Dict[int, TierState] = {
            t.level: TierState(level=t.level, next_scan_tick=now + t.scan_interval if t.has_scans else 0)
            for t in config.tiers
        }
        self._positions: Dict[str, Position] = {}
        self._members: Dict[int, Set[str]] = {t.level: set() for t in config.tiers}
        self.last_depositor: Optional[str] = None
        self.last_deposit_tick: Optional[int] = None
        self.resets = 0

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _tier(self, level: int) -> TierState:
        try:
            return self._tiers[level]
        except KeyError:
            raise UnknownTier(level) from None

    def _position(self, identity: str) -> Position:
        position = self._positions.get(identity)
        if position is None or position.extracted:
            raise PositionNotFound(identity)
        return position

    @staticmethod
    def _accrued(position: Position, tier: TierState) -> int:
        if not position.alive:
            return 0
        return position.amount * tier.acc_per_share // ACC_SCALE - position.reward_debt

    def _settle(self, position: Position, tier: TierState) -> None:
        position.reward_owed += self._accrued(position, tier)
        position.reward_debt = position.amount * tier.acc_per_share // ACC_SCALE

    @staticmethod
    def _distribute(tier: TierState, amount: int) -> None:
        numerator = amount * ACC_SCALE + tier.acc_carry
        delta = numerator // tier.total_staked
        tier.acc_carry = numerator - delta * tier.total_staked
        tier.acc_per_share += delta

    def _exit_lock_reason(self, tier: TierState, cfg: TierConfig) -> Optional[str]:
        if tier.active_scan_id is not None:
            return f"scan {tier.active_scan_id} in progress"
        if cfg.has_scans and self.clock() >= tier.next_scan_tick - self.config.lock_window:
            return f"within lock window of scan at tick {tier.next_scan_tick}"
        return None

    def _route_penalty(self, level: int, amount: int) -> None:
        if amount <= 0:
            return
        if self.penalty_sink is None:
            self.unrouted_penalties += amount
        else:
            self.penalty_sink(level, amount)

    def _record_deposit(self, identity: str) -> None:
        self.last_depositor = identity
        self.last_deposit_tick = self.clock()

    def _close(self, position: Position, tier: TierState) -> None:
        # Remove a live position from its tier for good.
        tier.total_staked -= position.amount
        tier.alive_count -= 1
        position.alive = False
        position.extracted = True
        del self._positions[position.owner]
        self._members[position.tier].discard(position.owner)

    def _cull(self, level: int, tier: TierState, new_entrant: str) -> None:
        # Smallest stake goes first, oldest entry breaks ties. O(capacity).
        victim = min(
            (self._positions[i] for i in self._members[level]),
            key=lambda p: (p.amount, p.entry_tick, p.owner),
        )
        self._settle(victim, tier)
        penalty = victim.amount * self.config.cull_penalty_bps // BPS_DENOMINATOR
        returned = victim.amount - penalty
        self._close(victim, tier)
        self.events.emit(PositionCulled(victim.owner, level, penalty, returned, victim.reward_owed, new_entrant))
        logger.info("tier %d full: %s culled for %s, penalty %d", level, victim.owner, new_entrant, penalty)
        self._route_penalty(level, penalty)

    # ------------------------------------------------------------------
    # participant operations
    # ------------------------------------------------------------------
    def enter(self, identity: str, level: int, amount: int) -> Position:
        cfg = self.config.tier(level)
        tier = self._tier(level)
        if amount < cfg.min_stake:
            raise AmountBelowMinimum(amount, cfg.min_stake)
        previous = self._positions.get(identity)
        if previous is not None and previous.alive and not previous.extracted:
            raise DuplicatePosition(identity)
        if tier.active_scan_id is not None:
            raise ScanInProgress(level, tier.active_scan_id)

        if cfg.capacity and tier.alive_count >= cfg.capacity:
            self._cull(level, tier, identity)

        tier.total_staked += amount
        tier.alive_count += 1
        position = Position(
            owner=identity,
            tier=level,
            amount=amount,
            reward_debt=amount * tier.acc_per_share // ACC_SCALE,
            entry_tick=self.clock(),
            streak_origin=tier.scans_finalized,
            # rewards settled on an eliminated predecessor stay claimable
            reward_owed=previous.reward_owed if previous is not None else 0,
        )
        self._positions[identity] = position
        self._members[level].add(identity)
        self._record_deposit(identity)
        self.events.emit(PositionEntered(identity, level, amount, tier.total_staked))
        logger.debug("%s entered tier %d with %d", identity, level, amount)

        if tier.pending_rewards:
            held, tier.pending_rewards = tier.pending_rewards, 0
            self._distribute(tier, held)
            self.events.emit(PendingRewardsAbsorbed(level, held, identity))
            logger.info("tier %d: %d pending rewards absorbed by %s", level, held, identity)
        return replace(position)

    def add_stake(self, identity: str, amount: int) -> int:
        if amount <= 0:
            raise InvalidAmount(f"top-up must be positive, got {amount}")
        position = self._position(identity)
        if not position.alive:
            raise PositionDead(identity)
        tier = self._tier(position.tier)
        if tier.active_scan_id is not None:
            raise ScanInProgress(position.tier, tier.active_scan_id)

        self._settle(position, tier)
        position.amount += amount
        position.reward_debt = position.amount * tier.acc_per_share // ACC_SCALE
        tier.total_staked += amount
        self._record_deposit(identity)
        self.events.emit(StakeAdded(identity, position.tier, amount, position.amount))
        return position.amount

    def claim(self, identity: str) -> int:
        position = self._position(identity)
        tier = self._tier(position.tier)
        self._settle(position, tier)
        paid, position.reward_owed = position.reward_owed, 0
        self.events.emit(RewardClaimed(identity, position.tier, paid))
        logger.debug("%s claimed %d", identity, paid)
        return paid

    def exit(self, identity: str) -> Payout:
        position = self._position(identity)
        if not position.alive:
            raise PositionDead(identity)
        tier = self._tier(position.tier)
        reason = self._exit_lock_reason(tier, self.config.tier(position.tier))
        if reason is not None:
            raise ExitLocked(identity, position.tier, reason)

        self._settle(position, tier)
        payout = Payout(principal=position.amount, rewards=position.reward_owed)
        self._close(position, tier)
        self.events.emit(PositionExited(identity, position.tier, payout.principal, payout.rewards))
        logger.debug("%s exited tier %d with %d + %d", identity, position.tier, payout.principal, payout.rewards)
        return payout

    # ------------------------------------------------------------------
    # engine-facing operations
    # ------------------------------------------------------------------
    def mark_eliminated(self, identity: str) -> int:
        """Kill a live position and return its forfeited principal.

        Rewards accrued up to this point are settled into ``reward_owed`` and
        remain claimable; only the principal is forfeited.
        """
        position = self._position(identity)
        if not position.alive:
            raise PositionDead(identity)
        tier = self._tier(position.tier)
        self._settle(position, tier)
        forfeited = position.amount
        position.final_streak = tier.scans_finalized - position.streak_origin
        position.amount = 0
        position.reward_debt = 0
        position.alive = False
        tier.total_staked -= forfeited
        tier.alive_count -= 1
        self._members[position.tier].discard(identity)
        return forfeited

    def credit(self, level: int, amount: int) -> bool:
        """Add reward inflow to a tier. Returns False when the amount was held."""
        if amount < 0:
            raise InvalidAmount(f"credit must be non-negative, got {amount}")
        tier = self._tier(level)
        if amount == 0:
            return True
        if tier.total_staked == 0:
            tier.pending_rewards += amount
            self.events.emit(RewardsCredited(level, amount, held=True))
            logger.info("tier %d empty: holding %d as pending", level, amount)
            return False
        self._distribute(tier, amount)
        self.events.emit(RewardsCredited(level, amount, held=False))
        return True

    @property
    def reset_deadline(self) -> Optional[int]:
        if self.last_deposit_tick is None:
            return None
        return self.last_deposit_tick + self.config.reset_timeout

    def trigger_reset(self) -> ResetOutcome:
        """Close every live position once the deposit clock has run out.

        Each position loses ``reset_penalty_bps`` of its stake and gets the
        rest back together with its settled rewards. ``jackpot_bps`` of each
        tier's penalties goes to the last depositor; the remainder is routed
        to the penalty sink. Visits every position, so it is the one
        operation that is not O(1).
        """
        now = self.clock()
        deadline = self.reset_deadline
        if deadline is None or now < deadline:
            raise ResetNotDue(deadline, now)
        for level, tier in self._tiers.items():
            if tier.active_scan_id is not None:
                raise ScanInProgress(level, tier.active_scan_id)

        winner = self.last_depositor
        penalties = {level: 0 for level in self._tiers}
        payouts: Dict[str, Payout] = {}
        for position in [p for p in self._positions.values() if p.alive]:
            tier = self._tiers[position.tier]
            self._settle(position, tier)
            penalty = position.amount * self.config.reset_penalty_bps // BPS_DENOMINATOR
            payout = Payout(principal=position.amount - penalty, rewards=position.reward_owed)
            self._close(position, tier)
            self.events.emit(PositionReset(position.owner, position.tier, penalty, payout.principal, payout.rewards))
            penalties[position.tier] += penalty
            payouts[position.owner] = payout

        jackpot = 0
        for level, penalty in penalties.items():
            share = penalty * self.config.jackpot_bps // BPS_DENOMINATOR
            jackpot += share
            self._route_penalty(level, penalty - share)

        total = sum(penalties.values())
        self.resets += 1
        self.last_depositor = None
        self.last_deposit_tick = None
        self.events.emit(SystemResetTriggered(total, winner, jackpot, len(payouts)))
        logger.warning("system reset: %d positions closed, penalty %d, jackpot %d to %s", len(payouts), total, jackpot, winner)
        return ResetOutcome(jackpot_winner=winner, jackpot=jackpot, total_penalty=total, payouts=payouts)

    def attach_scan(self, level: int, scan_id: int) -> None:
        tier = self._tier(level)
        tier.active_scan_id = scan_id

    def detach_scan(self, level: int, next_scan_tick: int, completed: bool) -> None:
        tier = self._tier(level)
        tier.active_scan_id = None
        tier.next_scan_tick = next_scan_tick
        if completed:
            tier.scans_finalized += 1

    # ------------------------------------------------------------------
    # views
    # ------------------------------------------------------------------
    def pending_reward(self, identity: str) -> int:
        position = self._position(identity)
        return position.reward_owed + self._accrued(position, self._tier(position.tier))

    def tier_state(self, level: int) -> TierState:
        return replace(self._tier(level))

    def tier_levels(self) -> Iterable[int]:
        return tuple(self._tiers)

    def position(self, identity: str) -> Optional[Position]:
        position = self._positions.get(identity)
        return replace(position) if position is not None else None

    def is_alive(self, identity: str, level: Optional[int] = None) -> bool:
        position = self._positions.get(identity)
        if position is None or not position.alive or position.extracted:
            return False
        return level is None or position.tier == level

    def survival_streak(self, identity: str) -> int:
        position = self._position(identity)
        if not position.alive:
            return position.final_streak
        return self._tier(position.tier).scans_finalized - position.streak_origin

    def audit(self) -> Dict[int, int]:
        """Recompute per-tier stake from positions and compare with tier totals.

        O(positions); meant for tests and offline checks, never for the
        operation path. Returns the recomputed totals.
        """
        totals = {level: 0 for level in self._tiers}
        counts = {level: 0 for level in self._tiers}
        for position in self._positions.values():
            if position.alive and not position.extracted:
                totals[position.tier] += position.amount
                counts[position.tier] += 1
        for level, tier in self._tiers.items():
            members = len(self._members[level])
            if tier.total_staked != totals[level] or not tier.alive_count == members == counts[level]:
                raise LedgerMismatch(
                    f"tier {level}: recorded {tier.total_staked}/{tier.alive_count}, "
                    f"positions sum to {totals[level]}/{counts[level]}"
                )
        return totals
