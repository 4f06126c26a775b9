# Exception hierarchy for the elimination engine.
#
# Every operation validates its inputs and timing before touching state, so
# any of these errors means nothing changed. Nothing is retried internally.

from __future__ import annotations

from typing import Optional


class EngineError(Exception):
    """Base class for all engine failures."""


class ConfigError(EngineError):
    pass


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------
class ValidationError(EngineError):
    pass


class InvalidRoundId(ValidationError):
    def __init__(self, round_id: int) -> None:
        super().__init__(f"round id must be positive, got {round_id}")
        self.round_id = round_id


class UnknownTier(ValidationError):
    def __init__(self, level: int) -> None:
        super().__init__(f"unknown tier {level}")
        self.level = level


class AmountBelowMinimum(ValidationError):
    def __init__(self, amount: int, minimum: int) -> None:
        super().__init__(f"amount {amount} below tier minimum {minimum}")
        self.amount = amount
        self.minimum = minimum


class InvalidAmount(ValidationError):
    pass


class DuplicatePosition(ValidationError):
    def __init__(self, identity: str) -> None:
        super().__init__(f"{identity} already holds a live position")
        self.identity = identity


class TierNotScanned(ValidationError):
    def __init__(self, level: int) -> None:
        super().__init__(f"tier {level} has no scans")
        self.level = level


# ---------------------------------------------------------------------------
# Timing violations
# ---------------------------------------------------------------------------
class TimingError(EngineError):
    pass


class SeedNotReady(TimingError):
    """Snapshot tick not reached yet. Retry later."""

    def __init__(self, round_id: int, snapshot_tick: int, current_tick: int) -> None:
        super().__init__(f"round {round_id}: snapshot tick {snapshot_tick} not reached (now {current_tick})")
        self.round_id = round_id
        self.snapshot_tick = snapshot_tick
        self.current_tick = current_tick


class SeedExpired(TimingError):
    """Every available entropy window has lapsed. The round can never be revealed."""

    def __init__(self, round_id: int, deadline: int, current_tick: int) -> None:
        super().__init__(f"round {round_id}: reveal deadline {deadline} passed (now {current_tick})")
        self.round_id = round_id
        self.deadline = deadline
        self.current_tick = current_tick


class ScanNotDue(TimingError):
    def __init__(self, level: int, next_scan_tick: int, current_tick: int) -> None:
        super().__init__(f"tier {level}: next scan at tick {next_scan_tick} (now {current_tick})")
        self.level = level
        self.next_scan_tick = next_scan_tick


class SubmissionWindowOpen(TimingError):
    def __init__(self, scan_id: int, closes_at: int) -> None:
        super().__init__(f"scan {scan_id}: submission window open until tick {closes_at}")
        self.scan_id = scan_id
        self.closes_at = closes_at


class SubmissionWindowClosed(TimingError):
    def __init__(self, scan_id: int, closed_at: int) -> None:
        super().__init__(f"scan {scan_id}: submission window closed at tick {closed_at}")
        self.scan_id = scan_id
        self.closed_at = closed_at


class ExitLocked(TimingError):
    def __init__(self, identity: str, level: int, reason: str) -> None:
        super().__init__(f"{identity} cannot exit tier {level}: {reason}")
        self.identity = identity
        self.level = level
        self.reason = reason


class ResetNotDue(TimingError):
    def __init__(self, deadline: Optional[int], current_tick: int) -> None:
        if deadline is None:
            message = "no deposit since the last reset"
        else:
            message = f"system reset not before tick {deadline} (now {current_tick})"
        super().__init__(message)
        self.deadline = deadline
        self.current_tick = current_tick


# ---------------------------------------------------------------------------
# State machine violations
# ---------------------------------------------------------------------------
class StateError(EngineError):
    pass


class RoundAlreadyCommitted(StateError):
    def __init__(self, round_id: int) -> None:
        super().__init__(f"round {round_id} already committed")
        self.round_id = round_id


class RoundNotCommitted(StateError):
    def __init__(self, round_id: int) -> None:
        super().__init__(f"round {round_id} was never committed")
        self.round_id = round_id


class EntropyUnavailable(StateError):
    """Inside the windows but no source could produce the snapshot entropy."""

    def __init__(self, round_id: int, snapshot_tick: int) -> None:
        super().__init__(f"round {round_id}: no entropy source holds tick {snapshot_tick}")
        self.round_id = round_id
        self.snapshot_tick = snapshot_tick


class PositionNotFound(StateError):
    def __init__(self, identity: str) -> None:
        super().__init__(f"no position for {identity}")
        self.identity = identity


class PositionDead(StateError):
    def __init__(self, identity: str) -> None:
        super().__init__(f"position of {identity} was eliminated")
        self.identity = identity


class ScanInProgress(StateError):
    def __init__(self, level: int, scan_id: int) -> None:
        super().__init__(f"tier {level} already has scan {scan_id} in progress")
        self.level = level
        self.scan_id = scan_id


class NoActiveScan(StateError):
    def __init__(self, level: int) -> None:
        super().__init__(f"tier {level} has no scan in progress")
        self.level = level


class InvalidScanState(StateError):
    def __init__(self, scan_id: int, status: str, expected: str) -> None:
        super().__init__(f"scan {scan_id} is {status}, expected {expected}")
        self.scan_id = scan_id
        self.status = status


class LedgerMismatch(StateError):
    pass
