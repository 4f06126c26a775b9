# Cascade distribution of eliminated capital.
#
# When a scan finalizes, the capital of every eliminated position is split
# four ways by basis-point weights:
#   same tier  -> survivors of the scanned tier (via the ledger accumulator)
#   upstream   -> survivors of the next safer tier
#   burn       -> destroyed
#   operations -> credited to the operations sink
# Integer division leaves a remainder; it goes to the burn bucket so the four
# parts always add up to the input exactly.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from errors import InvalidAmount
from events import CascadeDistributed, EventLog
from initial_state import BPS_DENOMINATOR, EngineConfig
from position_ledger import PositionLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CascadeSplit:
    same_tier: int
    upstream: int
    burn: int
    operations: int

    @property
    def total(self) -> int:
        return self.same_tier + self.upstream + self.burn + self.operations


@dataclass(frozen=True)
class CascadeResult:
    source_tier: int
    upstream_tier: Optional[int]
    split: CascadeSplit
    same_tier_held: bool  # survivors gone, amount parked as pending
    upstream_held: bool
    upstream_burned: bool  # top tier: upstream share redirected to burn
    burned: int  # total destroyed, including any redirected upstream share
    upstream_paid: int = 0  # upstream share actually credited to a tier


def split_amount(total: int, weights: Dict[str, int]) -> CascadeSplit:
    """Split ``total`` by bps weights; the rounding remainder is burned."""
    if total < 0:
        raise InvalidAmount(f"cannot split negative amount {total}")
    same = total * weights["same_tier"] // BPS_DENOMINATOR
    upstream = total * weights["upstream"] // BPS_DENOMINATOR
    operations = total * weights["operations"] // BPS_DENOMINATOR
    burn = total - same - upstream - operations
    return CascadeSplit(same_tier=same, upstream=upstream, burn=burn, operations=operations)


class CascadeDistributor:
    def __init__(self, config: EngineConfig, ledger: PositionLedger, events: EventLog) -> None:
        self.config = config
        self.ledger = ledger
        self.events = events
        self.burned_total = 0
        self.operations_balance = 0

    def distribute(self, source_tier: int, total_eliminated: int) -> CascadeResult:
        split = split_amount(total_eliminated, self.config.cascade_split)
        upstream_tier = self.config.upstream_of(source_tier)

        same_held = not self.ledger.credit(source_tier, split.same_tier)

        burned = split.burn
        upstream_paid = 0
        upstream_held = False
        upstream_burned = False
        if upstream_tier is None:
            # top of the cascade: nothing safer to pay, the share is destroyed
            burned += split.upstream
            upstream_burned = split.upstream > 0
        else:
            upstream_paid = split.upstream
            upstream_held = not self.ledger.credit(upstream_tier, split.upstream)

        self.burned_total += burned
        self.operations_balance += split.operations

        self.events.emit(
            CascadeDistributed(
                source_tier=source_tier,
                upstream_tier=upstream_tier,
                same_tier=split.same_tier,
                upstream=upstream_paid,
                burn=burned,
                operations=split.operations,
            )
        )
        logger.info(
            "cascade from tier %d: %d eliminated -> same %d, upstream %d (tier %s), burn %d, ops %d",
            source_tier,
            total_eliminated,
            split.same_tier,
            upstream_paid,
            upstream_tier,
            burned,
            split.operations,
        )
        return CascadeResult(
            source_tier=source_tier,
            upstream_tier=upstream_tier,
            split=split,
            same_tier_held=same_held,
            upstream_held=upstream_held,
            upstream_burned=upstream_burned,
            burned=burned,
            upstream_paid=upstream_paid,
        )

    def withdraw_operations(self, amount: Optional[int] = None) -> int:
        # Drain the operations sink (all of it by default).
        if amount is None:
            amount = self.operations_balance
        if amount < 0 or amount > self.operations_balance:
            raise InvalidAmount(f"cannot withdraw {amount} of {self.operations_balance}")
        self.operations_balance -= amount
        return amount
