"""Commit/reveal gate over delayed per-tick entropy.

A consumer commits to a round id; the gate pins the entropy of a tick that is
``commit_delay`` ticks in the future. Once that tick is reached the round can
be revealed, producing a seed bound to the snapshot entropy, the consumer and
the round id. The snapshot entropy is looked up through a chain of sources:
the environment's native lookback first (cheap, short), then an optional
extended history (longer). A miss is always ``None``, never a zero sentinel,
because an all-zero entropy reading is a legal value.

Helpers at the bottom of the module turn a seed into ranges and weighted
booleans. They are pure, so any party can recompute an outcome from a
published seed.
"""

from __future__ import annotations

import enum
import hashlib
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from errors import (
    ConfigError,
    EntropyUnavailable,
    InvalidRoundId,
    RoundAlreadyCommitted,
    RoundNotCommitted,
    SeedExpired,
    SeedNotReady,
)
from initial_state import BPS_DENOMINATOR, COMMIT_DELAY, EXTENDED_WINDOW, MIN_COMMIT_DELAY, PRIMARY_WINDOW

logger = logging.getLogger(__name__)

SUBSEED_TAG = "ghostnet.subseed"


class TickSource(Protocol):
    # Execution environment: ordered ticks with one opaque entropy value each.
    def current_tick(self) -> int: ...

    def entropy_at(self, tick: int) -> Optional[int]: ...


class ExtendedHistory(Protocol):
    def lookup_entropy(self, tick: int) -> Optional[int]: ...


def hash_words(*parts) -> int:
    """Hash ints and strings into a 256-bit integer.

    Each part is tagged and length-delimited so ``("ab", "c")`` and
    ``("a", "bc")`` never collide.
    """
    h = hashlib.sha256()
    for part in parts:
        if isinstance(part, bool):
            part = int(part)
        if isinstance(part, int):
            if part < 0:
                raise ValueError(f"cannot hash negative integer {part}")
            raw = part.to_bytes(max(32, (part.bit_length() + 7) // 8), "big")
            h.update(b"i" + len(raw).to_bytes(4, "big") + raw)
        elif isinstance(part, str):
            raw = part.encode("utf-8")
            h.update(b"s" + len(raw).to_bytes(4, "big") + raw)
        else:
            raise TypeError(f"unsupported hash part {type(part).__name__}")
    return int.from_bytes(h.digest(), "big")


@dataclass(frozen=True)
class EntropyLookup:
    # One link of the lookup chain. Only consulted while age <= max_age.
    name: str
    max_age: int
    fetch: Callable[[int], Optional[int]]


class SeedStatus(enum.Enum):
    NONE = "none"
    COMMITTED = "committed"  # snapshot tick not reached
    READY = "ready"
    REVEALED = "revealed"
    EXPIRED = "expired"


@dataclass
class RoundSeed:
    consumer: str
    round_id: int
    commit_tick: int
    snapshot_tick: int
    reveal_by: int
    extended_deadline: int
    value: Optional[int] = None
    source: Optional[str] = None
    committed: bool = True
    revealed: bool = False


class RandomnessGate:
    def __init__(
        self,
        env: TickSource,
        history: Optional[ExtendedHistory] = None,
        commit_delay: int = COMMIT_DELAY,
        primary_window: int = PRIMARY_WINDOW,
        extended_window: int = EXTENDED_WINDOW,
    ) -> None:
        if commit_delay < MIN_COMMIT_DELAY:
            raise ConfigError(f"commit_delay {commit_delay} below minimum {MIN_COMMIT_DELAY}")
        self.env = env
        self.history = history
        self.commit_delay = commit_delay
        self.primary_window = primary_window
        self.extended_window = extended_window
        self._rounds: Dict[Tuple[str, int], RoundSeed] = {}

    # -- lookup chain --------------------------------------------------------
    def _sources(self) -> List[EntropyLookup]:
        chain = [EntropyLookup("native", self.primary_window, self.env.entropy_at)]
        if self.history is not None:
            chain.append(EntropyLookup("extended", self.extended_window, self.history.lookup_entropy))
        return chain

    def _final_deadline(self, rs: RoundSeed) -> int:
        return rs.extended_deadline if self.history is not None else rs.reveal_by

    # -- commit / reveal -----------------------------------------------------
    def commit(self, round_id: int, consumer: str) -> RoundSeed:
        if round_id <= 0:
            raise InvalidRoundId(round_id)
        key = (consumer, round_id)
        if key in self._rounds:
            raise RoundAlreadyCommitted(round_id)
        now = self.env.current_tick()
        snapshot = now + self.commit_delay
        rs = RoundSeed(
            consumer=consumer,
            round_id=round_id,
            commit_tick=now,
            snapshot_tick=snapshot,
            reveal_by=snapshot + self.primary_window,
            extended_deadline=snapshot + self.extended_window,
        )
        self._rounds[key] = rs
        logger.info("round %d committed by %s: snapshot tick %d", round_id, consumer, snapshot)
        return rs

    def reveal(self, round_id: int, consumer: str) -> int:
        rs = self._rounds.get((consumer, round_id))
        if rs is None:
            raise RoundNotCommitted(round_id)
        if rs.revealed:
            return rs.value

        now = self.env.current_tick()
        if now < rs.snapshot_tick:
            raise SeedNotReady(round_id, rs.snapshot_tick, now)
        age = now - rs.snapshot_tick
        live = [s for s in self._sources() if age <= s.max_age]
        if not live:
            raise SeedExpired(round_id, self._final_deadline(rs), now)

        entropy = None
        for source in live:
            entropy = source.fetch(rs.snapshot_tick)
            if entropy is not None:
                rs.source = source.name
                break
            logger.debug("round %d: %s lookup missed tick %d", round_id, source.name, rs.snapshot_tick)
        if entropy is None:
            raise EntropyUnavailable(round_id, rs.snapshot_tick)

        rs.value = hash_words(entropy, consumer, round_id)
        rs.revealed = True
        logger.info("round %d revealed via %s lookup (age %d)", round_id, rs.source, age)
        return rs.value

    def round(self, round_id: int, consumer: str) -> Optional[RoundSeed]:
        return self._rounds.get((consumer, round_id))

    def status(self, round_id: int, consumer: str) -> SeedStatus:
        rs = self._rounds.get((consumer, round_id))
        if rs is None:
            return SeedStatus.NONE
        if rs.revealed:
            return SeedStatus.REVEALED
        now = self.env.current_tick()
        if now < rs.snapshot_tick:
            return SeedStatus.COMMITTED
        if now > self._final_deadline(rs):
            return SeedStatus.EXPIRED
        if now > rs.reveal_by and self.history.lookup_entropy(rs.snapshot_tick) is None:
            # only the extended source is left and it never gains older ticks
            return SeedStatus.EXPIRED
        return SeedStatus.READY


# ---------------------------------------------------------------------------
# Pure seed helpers
# ---------------------------------------------------------------------------
def sub_seed(seed: int, index: int, tag: str = SUBSEED_TAG) -> int:
    # Independent child seed for the index-th decision of a round.
    return hash_words(seed, index, tag)


def to_range(seed: int, max_value: int) -> int:
    """Uniform-ish value in ``[0, max_value)``; 0 when ``max_value`` is 0."""
    if max_value <= 0:
        return 0
    return seed % max_value


def to_range_inclusive(seed: int, min_value: int, max_value: int) -> int:
    if max_value < min_value:
        return min_value
    return min_value + to_range(seed, max_value - min_value + 1)


def to_bool(seed: int, probability_bps: int) -> bool:
    """True with probability ``probability_bps / 10000``.

    For a fixed seed the result is monotonic in the probability: the seed maps
    to one roll in ``[0, 10000)`` and every threshold above the roll is true.
    """
    if probability_bps <= 0:
        return False
    if probability_bps >= BPS_DENOMINATOR:
        return True
    return seed % BPS_DENOMINATOR < probability_bps
