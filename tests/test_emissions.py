from __future__ import annotations

import pytest

from emissions import RewardsDistributor
from engine import GhostEngine
from errors import ConfigError, UnknownTier
from events import EmissionsDistributed, WeightsUpdated
from initial_state import EngineConfig, TierConfig

LOW, HIGH = 1, 2


@pytest.fixture
def config():
    return EngineConfig(
        tiers=(
            TierConfig(LOW, "Low", 0, 0, emission_weight_bps=2_000),
            TierConfig(HIGH, "High", 5_000, 100, emission_weight_bps=8_000),
        )
    )


@pytest.fixture
def engine(chain, history, config):
    return GhostEngine(chain, history, config, emission_pool=10_000, emission_per_tick=100)


def test_release_follows_weights(engine):
    engine.enter("alice", LOW, 1_000)
    engine.enter("bob", HIGH, 1_000)
    engine.env.advance(10)

    paid = engine.distribute_emissions()

    assert paid == {LOW: 200, HIGH: 800}
    assert engine.pending_reward("alice") == 200
    assert engine.pending_reward("bob") == 800
    assert engine.totals()["emission_pool"] == 9_000
    assert [e.amount for e in engine.events.of_type(EmissionsDistributed)] == [200, 800]


def test_nothing_released_twice_in_one_tick(engine):
    engine.env.advance(3)
    engine.distribute_emissions()
    assert engine.distribute_emissions() == {}


def test_release_capped_by_pool(engine):
    engine.enter("alice", LOW, 1_000)
    engine.env.advance(1_000)

    paid = engine.distribute_emissions()

    assert sum(paid.values()) == 10_000
    assert engine.emissions.pool == 0
    assert engine.emissions.distributed_total == 10_000
    engine.env.advance(10)
    assert engine.distribute_emissions() == {}


def test_empty_tier_holds_its_emissions(engine):
    engine.enter("alice", LOW, 1_000)
    engine.env.advance(5)
    engine.distribute_emissions()

    assert engine.tier_state(HIGH).pending_rewards == 400
    engine.enter("bob", HIGH, 50)
    assert engine.pending_reward("bob") == 400


def test_rounding_leftovers_stay_in_pool(chain, config, engine):
    distributor = RewardsDistributor(
        config, engine.ledger, engine.events, chain.current_tick, pool=100, per_tick=1, weights={LOW: 3_333, HIGH: 6_667}
    )
    chain.advance(1)
    assert distributor.distribute() == {}
    assert distributor.pool == 100

    chain.advance(9)
    paid = distributor.distribute()
    assert paid == {LOW: 2, HIGH: 6}
    assert distributor.pool == 92


def test_update_weights_is_not_retroactive(engine):
    engine.enter("alice", LOW, 1_000)
    engine.enter("bob", HIGH, 1_000)
    engine.env.advance(10)

    engine.emissions.update_weights({LOW: 10_000, HIGH: 0})
    engine.env.advance(10)
    engine.distribute_emissions()

    assert engine.pending_reward("alice") == 200 + 1_000
    assert engine.pending_reward("bob") == 800
    assert engine.emissions.share_of(HIGH) == 0
    assert engine.events.of_type(WeightsUpdated) == [WeightsUpdated(((LOW, 10_000), (HIGH, 0)))]


def test_weight_validation(engine):
    with pytest.raises(ConfigError):
        engine.emissions.update_weights({LOW: 5_000, HIGH: 4_000})
    with pytest.raises(ConfigError):
        engine.emissions.update_weights({LOW: 11_000, HIGH: -1_000})
    with pytest.raises(UnknownTier):
        engine.emissions.update_weights({LOW: 5_000, 9: 5_000})
    with pytest.raises(UnknownTier):
        engine.emissions.share_of(9)
    assert engine.emissions.share_of(HIGH) == 8_000


def test_zero_weights_switch_emissions_off(chain, history):
    config = EngineConfig(tiers=(TierConfig(LOW, "Low", 0, 0),))
    engine = GhostEngine(chain, history, config, emission_pool=1_000, emission_per_tick=10)
    engine.enter("alice", LOW, 100)
    chain.advance(50)
    assert engine.distribute_emissions() == {}
    assert engine.totals()["emission_pool"] == 1_000


def test_negative_pool_rejected(chain, history, config):
    with pytest.raises(ConfigError):
        GhostEngine(chain, history, config, emission_pool=-1)
