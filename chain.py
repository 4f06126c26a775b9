# Simulated execution environment.
#
# Stands in for the ordered chain the engine runs on: a monotonically
# increasing tick counter with one opaque entropy value per tick. Native
# lookups only reach back ``native_window`` ticks; ``HistoryBuffer`` plays the
# extended-history contract that keeps a longer tail.

from __future__ import annotations

from typing import Dict, Optional, Set

from initial_state import EXTENDED_WINDOW, PRIMARY_WINDOW
from randomness_gate import hash_words


class SimulatedChain:
    def __init__(self, seed: int = 0, start_tick: int = 1, native_window: int = PRIMARY_WINDOW) -> None:
        if start_tick < 0:
            raise ValueError("start_tick must be non-negative")
        self.seed = seed
        self.tick = start_tick
        self.native_window = native_window
        self.overrides: Dict[int, int] = {}

    def current_tick(self) -> int:
        return self.tick

    def advance(self, ticks: int = 1) -> int:
        if ticks < 0:
            raise ValueError("ticks only move forward")
        self.tick += ticks
        return self.tick

    def advance_to(self, tick: int) -> int:
        return self.advance(max(0, tick - self.tick))

    def raw_entropy(self, tick: int) -> int:
        # Ground truth for a tick, regardless of lookback limits.
        if tick in self.overrides:
            return self.overrides[tick]
        return hash_words(self.seed, tick, "ghostnet.chain")

    def entropy_at(self, tick: int) -> Optional[int]:
        age = self.tick - tick
        if age < 0 or age > self.native_window:
            return None
        return self.raw_entropy(tick)


class HistoryBuffer:
    """Extended-history source covering ``window`` ticks behind the chain head."""

    def __init__(self, chain: SimulatedChain, window: int = EXTENDED_WINDOW) -> None:
        self.chain = chain
        self.window = window
        self.missing: Set[int] = set()
        self.enabled = True

    def lookup_entropy(self, tick: int) -> Optional[int]:
        if not self.enabled or tick in self.missing:
            return None
        age = self.chain.current_tick() - tick
        if age < 0 or age > self.window:
            return None
        return self.chain.raw_entropy(tick)
