from __future__ import annotations

import pytest

from chain import HistoryBuffer, SimulatedChain
from engine import GhostEngine
from initial_state import EngineConfig, TierConfig

SAFE, RISKY, ZERO, DOOM = 1, 2, 3, 4

TEST_TIERS = (
    TierConfig(SAFE, "Safe", 0, 0),
    TierConfig(RISKY, "Risky", 5_000, 100),
    TierConfig(ZERO, "Zero", 0, 100),
    TierConfig(DOOM, "Doom", 10_000, 100),
)


@pytest.fixture
def chain():
    return SimulatedChain(seed=7, start_tick=1)


@pytest.fixture
def history(chain):
    return HistoryBuffer(chain)


@pytest.fixture
def config():
    return EngineConfig(tiers=TEST_TIERS)


@pytest.fixture
def engine(chain, history, config):
    return GhostEngine(chain, history, config, emission_pool=0)


@pytest.fixture
def bare_engine(chain, config):
    # no extended history: reveals expire after the primary window
    return GhostEngine(chain, None, config, emission_pool=0)


def advance_to_scan(engine, tier):
    engine.env.advance_to(engine.tier_state(tier).next_scan_tick)


def start_scan(engine, tier):
    """Request and reveal a scan on ``tier``; returns the ACTIVE scan."""
    advance_to_scan(engine, tier)
    engine.request_scan(tier)
    engine.env.advance(engine.config.commit_delay)
    return engine.begin_scan(tier)
