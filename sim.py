# cadCAD Monte Carlo model of the GHOSTNET elimination game.
#
# Each timestep is one chain tick:
#   1. participants arrive and some try to leave
#   2. keepers push every tier's scan forward (request, reveal, report, finalize)
#      and fire the system reset once nobody has deposited for too long
#   3. the chain advances and the emission pool drips into the tiers
#   4. supply metrics are read back for the results frame

# ─────────────────────────────────────────────────────────────
# STEP 1: Imports
# ─────────────────────────────────────────────────────────────
import logging
from dataclasses import dataclass, replace
from collections import deque

from cadCAD.engine import ExecutionMode, ExecutionContext, Executor
from cadCAD.configuration import Configuration
from cadCAD.configuration.utils import config_sim
import pandas as pd
import numpy as np
import matplotlib.pyplot as plt

from chain import HistoryBuffer, SimulatedChain
from engine import GhostEngine
from errors import EngineError
from initial_state import EngineConfig, TIERS, initial_state
from keeper import Keeper
from logging_utils import configure_logging
from projection import Projection

np.random.seed(0)

logger = logging.getLogger(__name__)

# Participant stake drawn uniformly from this range.
MIN_ENTRY_STAKE = 100
MAX_ENTRY_STAKE = 5_000


@dataclass
class World:
    # Everything one run mutates, kept together so copies stay consistent.
    engine: GhostEngine
    projection: Projection
    keepers: list
    next_identity: int = 0
    rejected_actions: int = 0


def scaled_tiers(scale: float):
    # Shrink scan intervals so slow tiers still scan inside a short run.
    return tuple(
        replace(t, scan_interval=max(int(t.scan_interval * scale), 2 * EngineConfig().lock_window))
        if t.has_scans
        else t
        for t in TIERS
    )


def build_world(params) -> World:
    chain = SimulatedChain(seed=int(np.random.randint(0, 2**31 - 1)))
    config = EngineConfig(tiers=scaled_tiers(params['scan_interval_scale']))
    engine = GhostEngine(
        chain,
        HistoryBuffer(chain, window=config.extended_window),
        config,
        emission_per_tick=params['emission_per_tick'],
    )
    projection = Projection()
    engine.events.subscribe(projection)
    keepers = [Keeper(engine, projection, name=f"keeper-{i}") for i in range(params['keepers'])]
    return World(engine=engine, projection=projection, keepers=keepers)


# ─────────────────────────────────────────────────────────────
# STEP 2: Policy Functions
# ─────────────────────────────────────────────────────────────
def participant_policy(params, step, sL, s):
    # Draw this tick's entries and exit attempts.
    world = s['world']
    levels = [t.level for t in world.engine.config.tiers]
    preference = np.asarray(params['tier_preference'], dtype=float)
    preference = preference / preference.sum()

    entries = []
    for i in range(np.random.poisson(params['arrivals_per_step'])):
        identity = f"0x{world.next_identity + i:040x}"
        level = int(np.random.choice(levels, p=preference))
        amount = int(np.random.randint(MIN_ENTRY_STAKE, MAX_ENTRY_STAKE + 1))
        entries.append((identity, level, amount))

    exits = [
        identity
        for level in levels
        for identity in world.projection.alive_in(level)
        if np.random.random() < params['exit_probability']
    ]
    return {'entries': entries, 'exits': exits}


def keeper_policy(params, step, sL, s):
    # Which keepers show up this tick.
    world = s['world']
    online = [k.name for k in world.keepers if np.random.random() < params['keeper_uptime']]
    return {'online_keepers': online}


# ─────────────────────────────────────────────────────────────
# STEP 3: State Update Functions
# ─────────────────────────────────────────────────────────────
def ensure_world(params, step, sL, s, _input):
    return 'world', s['world'] if s['world'] is not None else build_world(params)


def apply_participants(params, step, sL, s, _input):
    world = s['world']
    for identity, level, amount in _input['entries']:
        try:
            world.engine.enter(identity, level, amount)
        except EngineError as exc:
            world.rejected_actions += 1
            logger.debug("entry rejected: %s", exc)
    world.next_identity += len(_input['entries'])

    for identity in _input['exits']:
        try:
            world.engine.exit(identity)
        except EngineError as exc:
            # locked tiers and freshly eliminated positions refuse exits
            world.rejected_actions += 1
            logger.debug("exit rejected: %s", exc)
    return 'world', world


def run_keepers(params, step, sL, s, _input):
    world = s['world']
    online = set(_input['online_keepers'])
    for keeper in world.keepers:
        if keeper.name not in online:
            continue
        for tier in world.engine.config.tiers:
            keeper.step(tier.level)
        keeper.poke_reset()
    return 'world', world


def advance_clock(params, step, sL, s, _input):
    world = s['world']
    world.engine.env.advance(1)
    world.engine.distribute_emissions()
    return 'world', world


def record_tick(params, step, sL, s, _input):
    return 'tick', s['world'].engine.env.current_tick()


def record_tvl(params, step, sL, s, _input):
    return 'tvl', s['world'].engine.totals()['tvl']


def record_tier_tvl(params, step, sL, s, _input):
    engine = s['world'].engine
    return 'tier_tvl', {t.name: engine.tier_state(t.level).total_staked for t in engine.config.tiers}


def record_burned(params, step, sL, s, _input):
    return 'burned', s['world'].engine.totals()['burned']


def record_operations(params, step, sL, s, _input):
    return 'operations', s['world'].engine.totals()['operations']


def record_deaths(params, step, sL, s, _input):
    return 'deaths', sum(scan.death_count for scan in s['world'].projection.scans.values())


def record_emission_pool(params, step, sL, s, _input):
    return 'emission_pool', s['world'].engine.totals()['emission_pool']


# ─────────────────────────────────────────────────────────────
# STEP 4: Partial State Update Blocks
# ─────────────────────────────────────────────────────────────
psubs = [
    {
        'policies': {},
        'variables': {
            'world': ensure_world,
        }
    },
    {
        'policies': {
            'participants': participant_policy,
        },
        'variables': {
            'world': apply_participants,
        }
    },
    {
        'policies': {
            'keepers': keeper_policy,
        },
        'variables': {
            'world': run_keepers,
        }
    },
    {
        'policies': {},
        'variables': {
            'world': advance_clock,
        }
    },
    {
        'policies': {},
        'variables': {
            'tick': record_tick,
            'tvl': record_tvl,
            'tier_tvl': record_tier_tvl,
            'burned': record_burned,
            'operations': record_operations,
            'deaths': record_deaths,
            'emission_pool': record_emission_pool,
            'arrivals_per_step': lambda p, step, sL, s, _input: ('arrivals_per_step', p['arrivals_per_step']),
        }
    },
]

# ─────────────────────────────────────────────────────────────
# STEP 5: Simulation Configuration
# ─────────────────────────────────────────────────────────────
sim_config = config_sim({
    'T': range(500),  # 500 ticks
    'N': 5,  # Monte Carlo runs per configuration
    'M': {
        'arrivals_per_step': [2, 5, 10],
        'tier_preference': [[0.15, 0.25, 0.25, 0.2, 0.15]],
        'exit_probability': [0.01],
        'keeper_uptime': [0.9],
        'keepers': [2],
        'scan_interval_scale': [0.1],
        'emission_per_tick': [1_000],
    }
})


# ─────────────────────────────────────────────────────────────
# STEP 6: Run Simulation
# ─────────────────────────────────────────────────────────────
def run_simulation(configs=None):
    # Execute the cadCAD simulation and return a results DataFrame.
    exec_context = ExecutionContext(context=ExecutionMode().single_mode)
    configurations = [
        Configuration(
            user_id='user_1',
            model_id=f'ghostnet_v1_arrivals_{sc["M"]["arrivals_per_step"]}',
            subset_id='base',
            subset_window=deque(maxlen=1),
            initial_state=initial_state,
            partial_state_update_blocks=psubs,
            sim_config=sc,
        )
        for sc in (configs if configs is not None else sim_config)
    ]

    executor = Executor(exec_context, configurations)
    raw_result, _, _ = executor.execute()

    df = pd.DataFrame(raw_result)
    df = df[df['substep'] == df['substep'].max()].drop(columns=['world'])
    for tier in TIERS:
        df[f'tvl_{tier.name}'] = df['tier_tvl'].apply(lambda x, name=tier.name: x.get(name, 0))
    return df.reset_index(drop=True)


def plot_tvl(df):
    # Total value locked, averaged over Monte Carlo runs.
    plt.figure(figsize=(10, 6))
    for rate in sorted(df['arrivals_per_step'].dropna().unique()):
        group = df[df['arrivals_per_step'] == rate]
        grouped = group.groupby('timestep')['tvl']
        avg_tvl = grouped.mean()
        std_tvl = grouped.std()
        plt.plot(avg_tvl.index, avg_tvl.values, label=f'{rate} arrivals/tick')
        plt.fill_between(avg_tvl.index, avg_tvl - std_tvl, avg_tvl + std_tvl, alpha=0.2)

    plt.title("Total Value Locked (Monte Carlo Averaged)")
    plt.xlabel("Tick")
    plt.ylabel("Staked")
    plt.legend(title="Arrivals/Tick")
    plt.grid(True)
    plt.tight_layout()
    plt.show()


def plot_tier_tvl(df):
    """Stake held in each tier for the busiest arrival setting."""
    rate = df['arrivals_per_step'].max()
    group = df[df['arrivals_per_step'] == rate]
    plt.figure(figsize=(10, 6))
    for tier in TIERS:
        avg = group.groupby('timestep')[f'tvl_{tier.name}'].mean()
        plt.plot(avg.index, avg.values, label=tier.name)

    plt.title(f"Stake per Tier ({rate} arrivals/tick)")
    plt.xlabel("Tick")
    plt.ylabel("Staked")
    plt.legend(title="Tier")
    plt.grid(True)
    plt.tight_layout()
    plt.show()


def plot_burned(df):
    """Cumulative burned supply."""
    plt.figure(figsize=(10, 6))
    for rate in sorted(df['arrivals_per_step'].dropna().unique()):
        group = df[df['arrivals_per_step'] == rate]
        avg = group.groupby('timestep')['burned'].mean()
        plt.plot(avg.index, avg.values, label=f'{rate} arrivals/tick')

    plt.title("Burned Supply Over Time")
    plt.xlabel("Tick")
    plt.ylabel("Burned")
    plt.legend(title="Arrivals/Tick")
    plt.grid(True)
    plt.tight_layout()
    plt.show()


def plot_deaths(df):
    # Cumulative eliminations across all tiers.
    plt.figure(figsize=(10, 6))
    for rate in sorted(df['arrivals_per_step'].dropna().unique()):
        group = df[df['arrivals_per_step'] == rate]
        avg = group.groupby('timestep')['deaths'].mean()
        plt.plot(avg.index, avg.values, label=f'{rate} arrivals/tick')

    plt.title("Cumulative Eliminations")
    plt.xlabel("Tick")
    plt.ylabel("Positions eliminated")
    plt.legend(title="Arrivals/Tick")
    plt.grid(True)
    plt.tight_layout()
    plt.show()


if __name__ == "__main__":
    configure_logging(logging.WARNING)
    df = run_simulation()
    plot_tvl(df)
    plot_tier_tvl(df)
    plot_burned(df)
    plot_deaths(df)
