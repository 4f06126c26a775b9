from __future__ import annotations

import random

import pytest

from conftest import DOOM, RISKY, SAFE, ZERO
from errors import (
    AmountBelowMinimum,
    DuplicatePosition,
    ExitLocked,
    InvalidAmount,
    PositionDead,
    PositionNotFound,
    ScanInProgress,
    UnknownTier,
)
from events import EventLog, PendingRewardsAbsorbed, PositionEntered, PositionExited, RewardsCredited
from position_ledger import PositionLedger


@pytest.fixture
def events(chain):
    return EventLog(chain.current_tick)


@pytest.fixture
def ledger(config, chain, events):
    return PositionLedger(config, chain.current_tick, events)


def test_enter_updates_tier(ledger, events):
    position = ledger.enter("alice", SAFE, 1_000)

    tier = ledger.tier_state(SAFE)
    assert position.amount == 1_000 and position.alive
    assert tier.total_staked == 1_000
    assert tier.alive_count == 1
    assert events.of_type(PositionEntered) == [PositionEntered("alice", SAFE, 1_000, 1_000)]


def test_enter_validation_leaves_state_untouched(ledger, events):
    with pytest.raises(AmountBelowMinimum):
        ledger.enter("alice", SAFE, 9)
    with pytest.raises(UnknownTier):
        ledger.enter("alice", 42, 1_000)
    ledger.enter("alice", SAFE, 1_000)
    with pytest.raises(DuplicatePosition):
        ledger.enter("alice", RISKY, 1_000)

    assert ledger.tier_state(SAFE).total_staked == 1_000
    assert ledger.tier_state(RISKY).total_staked == 0
    assert len(events) == 1


def test_rewards_are_proportional_to_stake(ledger):
    ledger.enter("alice", SAFE, 1_000)
    ledger.enter("bob", SAFE, 2_000)

    ledger.credit(SAFE, 300)

    assert ledger.pending_reward("alice") == 100
    assert ledger.pending_reward("bob") == 200
    assert ledger.claim("alice") == 100
    assert ledger.claim("bob") == 200
    assert ledger.pending_reward("alice") == 0
    assert ledger.position("alice").amount == 1_000


def test_late_entrant_does_not_share_earlier_rewards(ledger):
    ledger.enter("alice", SAFE, 1_000)
    ledger.credit(SAFE, 500)
    ledger.enter("bob", SAFE, 1_000)
    ledger.credit(SAFE, 100)

    assert ledger.pending_reward("alice") == 550
    assert ledger.pending_reward("bob") == 50


def test_division_remainder_is_carried(ledger):
    for name in ("a", "b", "c"):
        ledger.enter(name, SAFE, 10)
    ledger.credit(SAFE, 1)
    assert [ledger.pending_reward(n) for n in "abc"] == [0, 0, 0]

    ledger.credit(SAFE, 2)
    assert [ledger.pending_reward(n) for n in "abc"] == [1, 1, 1]
    assert ledger.tier_state(SAFE).acc_carry == 0


def test_credit_to_empty_tier_is_held_for_next_entrant(ledger, events):
    assert ledger.credit(RISKY, 250) is False
    assert ledger.tier_state(RISKY).pending_rewards == 250
    assert events.of_type(RewardsCredited)[-1].held

    ledger.enter("carol", RISKY, 40)

    assert ledger.tier_state(RISKY).pending_rewards == 0
    assert ledger.pending_reward("carol") == 250
    assert events.of_type(PendingRewardsAbsorbed) == [PendingRewardsAbsorbed(RISKY, 250, "carol")]


def test_credit_rejects_negative(ledger):
    with pytest.raises(InvalidAmount):
        ledger.credit(SAFE, -1)
    assert ledger.credit(SAFE, 0) is True


def test_add_stake_settles_before_resizing(ledger):
    ledger.enter("alice", SAFE, 1_000)
    ledger.enter("bob", SAFE, 1_000)
    ledger.credit(SAFE, 200)

    assert ledger.add_stake("alice", 2_000) == 3_000
    ledger.credit(SAFE, 400)

    assert ledger.pending_reward("alice") == 100 + 300
    assert ledger.pending_reward("bob") == 100 + 100
    assert ledger.tier_state(SAFE).total_staked == 4_000


def test_add_stake_validation(ledger):
    with pytest.raises(InvalidAmount):
        ledger.add_stake("alice", 0)
    with pytest.raises(PositionNotFound):
        ledger.add_stake("alice", 10)


def test_exit_returns_principal_and_rewards(ledger, events):
    ledger.enter("alice", SAFE, 1_000)
    ledger.enter("bob", SAFE, 3_000)
    ledger.credit(SAFE, 400)

    payout = ledger.exit("alice")

    assert (payout.principal, payout.rewards, payout.total) == (1_000, 100, 1_100)
    assert ledger.position("alice") is None
    assert ledger.tier_state(SAFE).total_staked == 3_000
    assert ledger.tier_state(SAFE).alive_count == 1
    assert events.of_type(PositionExited) == [PositionExited("alice", SAFE, 1_000, 100)]
    with pytest.raises(PositionNotFound):
        ledger.exit("alice")


def test_exit_locked_before_scan(ledger, chain, config):
    ledger.enter("alice", RISKY, 1_000)
    next_scan = ledger.tier_state(RISKY).next_scan_tick

    chain.advance_to(next_scan - config.lock_window)
    with pytest.raises(ExitLocked):
        ledger.exit("alice")
    assert ledger.tier_state(RISKY).total_staked == 1_000


def test_exit_allowed_just_outside_lock_window(ledger, chain, config):
    ledger.enter("alice", RISKY, 1_000)
    chain.advance_to(ledger.tier_state(RISKY).next_scan_tick - config.lock_window - 1)
    assert ledger.exit("alice").principal == 1_000


def test_exit_locked_while_scan_attached(ledger):
    ledger.enter("alice", RISKY, 1_000)
    ledger.attach_scan(RISKY, 5)

    with pytest.raises(ExitLocked):
        ledger.exit("alice")
    with pytest.raises(ScanInProgress):
        ledger.enter("bob", RISKY, 1_000)
    with pytest.raises(ScanInProgress):
        ledger.add_stake("alice", 10)


def test_mark_eliminated_forfeits_principal_only(ledger):
    ledger.enter("alice", DOOM, 1_000)
    ledger.enter("bob", DOOM, 1_000)
    ledger.credit(DOOM, 100)

    assert ledger.mark_eliminated("alice") == 1_000

    tier = ledger.tier_state(DOOM)
    assert tier.total_staked == 1_000 and tier.alive_count == 1
    assert not ledger.is_alive("alice")
    with pytest.raises(PositionDead):
        ledger.exit("alice")
    with pytest.raises(PositionDead):
        ledger.mark_eliminated("alice")

    # rewards earned before death stay claimable, later ones go to survivors
    ledger.credit(DOOM, 100)
    assert ledger.pending_reward("alice") == 50
    assert ledger.pending_reward("bob") == 150
    assert ledger.claim("alice") == 50


def test_eliminated_identity_may_reenter(ledger):
    ledger.enter("alice", DOOM, 1_000)
    ledger.credit(DOOM, 80)
    ledger.mark_eliminated("alice")

    ledger.enter("alice", ZERO, 500)

    assert ledger.is_alive("alice", ZERO)
    assert ledger.pending_reward("alice") == 80


def test_survival_streak(ledger):
    ledger.enter("alice", RISKY, 100)
    ledger.attach_scan(RISKY, 1)
    ledger.detach_scan(RISKY, 500, completed=True)
    ledger.attach_scan(RISKY, 2)
    ledger.detach_scan(RISKY, 600, completed=False)
    assert ledger.survival_streak("alice") == 1

    ledger.enter("bob", RISKY, 100)
    ledger.attach_scan(RISKY, 3)
    ledger.detach_scan(RISKY, 700, completed=True)
    assert ledger.survival_streak("alice") == 2
    assert ledger.survival_streak("bob") == 1

    ledger.mark_eliminated("bob")
    ledger.attach_scan(RISKY, 4)
    ledger.detach_scan(RISKY, 800, completed=True)
    assert ledger.survival_streak("bob") == 1


def test_views_are_copies(ledger):
    ledger.enter("alice", SAFE, 1_000)
    ledger.tier_state(SAFE).total_staked = 0
    ledger.position("alice").amount = 0
    assert ledger.tier_state(SAFE).total_staked == 1_000
    assert ledger.position("alice").amount == 1_000


@pytest.mark.parametrize("seed", [1, 2, 3])
def test_total_staked_matches_positions_under_churn(ledger, seed):
    rng = random.Random(seed)
    alive = {SAFE: [], DOOM: []}
    for step in range(400):
        action = rng.random()
        tier = rng.choice([SAFE, DOOM])
        if action < 0.5:
            identity = f"p{step}"
            ledger.enter(identity, tier, rng.randint(10, 5_000))
            alive[tier].append(identity)
        elif action < 0.7 and alive[SAFE]:
            ledger.exit(alive[SAFE].pop(rng.randrange(len(alive[SAFE]))))
        elif action < 0.85 and alive[DOOM]:
            ledger.mark_eliminated(alive[DOOM].pop(rng.randrange(len(alive[DOOM]))))
        elif alive[tier]:
            ledger.add_stake(rng.choice(alive[tier]), rng.randint(1, 500))
        else:
            ledger.credit(tier, rng.randint(0, 1_000))

        totals = ledger.audit()
        assert totals[SAFE] == ledger.tier_state(SAFE).total_staked
        assert totals[DOOM] == ledger.tier_state(DOOM).total_staked
