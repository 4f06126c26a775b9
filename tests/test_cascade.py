from __future__ import annotations

import pytest

from cascade import CascadeDistributor, split_amount
from conftest import DOOM, RISKY, SAFE, ZERO
from errors import InvalidAmount
from events import CascadeDistributed, EventLog
from initial_state import CASCADE_SPLIT, EngineConfig, TierConfig
from position_ledger import PositionLedger

ODD_WEIGHTS = dict(same_tier=3_333, upstream=3_333, burn=3_333, operations=1)


@pytest.fixture
def events(chain):
    return EventLog(chain.current_tick)


@pytest.fixture
def ledger(config, chain, events):
    return PositionLedger(config, chain.current_tick, events)


@pytest.fixture
def distributor(config, ledger, events):
    return CascadeDistributor(config, ledger, events)


def test_default_split():
    split = split_amount(1_000, CASCADE_SPLIT)
    assert (split.same_tier, split.upstream, split.burn, split.operations) == (300, 300, 300, 100)


def test_remainder_goes_to_burn():
    split = split_amount(7, CASCADE_SPLIT)
    assert (split.same_tier, split.upstream, split.operations) == (2, 2, 0)
    assert split.burn == 3


@pytest.mark.parametrize("weights", [CASCADE_SPLIT, ODD_WEIGHTS])
@pytest.mark.parametrize("total", [0, 1, 3, 7, 9_999, 10_001, 123_456_789, 10**30 + 7])
def test_buckets_always_sum_to_total(weights, total):
    split = split_amount(total, weights)
    assert split.total == total
    assert min(split.same_tier, split.upstream, split.burn, split.operations) >= 0


def test_negative_total_rejected():
    with pytest.raises(InvalidAmount):
        split_amount(-1, CASCADE_SPLIT)


def test_distribute_credits_same_tier_and_upstream(distributor, ledger, events):
    ledger.enter("survivor", DOOM, 1_000)
    ledger.enter("upstairs", ZERO, 500)

    result = distributor.distribute(DOOM, 1_000)

    assert result.upstream_tier == ZERO
    assert not result.same_tier_held and not result.upstream_held
    assert ledger.pending_reward("survivor") == 300
    assert ledger.pending_reward("upstairs") == 300
    assert distributor.burned_total == 300
    assert distributor.operations_balance == 100
    assert events.of_type(CascadeDistributed) == [CascadeDistributed(DOOM, ZERO, 300, 300, 300, 100)]


def test_empty_tiers_hold_their_share(distributor, ledger):
    result = distributor.distribute(RISKY, 1_001)

    assert result.same_tier_held and result.upstream_held
    assert ledger.tier_state(RISKY).pending_rewards == 300
    assert ledger.tier_state(SAFE).pending_rewards == 300
    assert distributor.burned_total == 301


def test_top_tier_burns_upstream_share(chain, events):
    config = EngineConfig(tiers=(TierConfig(1, "Top", 5_000, 100), TierConfig(2, "Below", 5_000, 100)))
    ledger = PositionLedger(config, chain.current_tick, events)
    distributor = CascadeDistributor(config, ledger, events)
    ledger.enter("survivor", 1, 1_000)

    result = distributor.distribute(1, 1_000)

    assert result.upstream_tier is None
    assert result.upstream_burned
    assert result.burned == 600
    assert distributor.burned_total == 600
    assert ledger.pending_reward("survivor") == 300
    assert result.split.total == 1_000
    assert result.upstream_paid == 0
    event = events.of_type(CascadeDistributed)[-1]
    assert event.upstream_tier is None and event.upstream == 0
    assert event.burn == 600
    assert event.same_tier + event.upstream + event.burn + event.operations == 1_000


def test_zero_total_is_a_noop(distributor, ledger):
    result = distributor.distribute(DOOM, 0)
    assert result.split.total == 0
    assert not result.same_tier_held
    assert ledger.tier_state(DOOM).pending_rewards == 0
    assert distributor.burned_total == 0


def test_withdraw_operations(distributor):
    distributor.distribute(DOOM, 10_000)
    assert distributor.withdraw_operations(400) == 400
    assert distributor.withdraw_operations() == 600
    with pytest.raises(InvalidAmount):
        distributor.withdraw_operations(1)
