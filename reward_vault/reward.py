"""Reward-per-share accumulators.

Funding a reward is O(1): instead of crediting every depositor,
we add ``amount / total_shares`` to a per-token cumulative counter.
A user is owed the growth of that counter since their last snapshot,
times their share balance.

The counter is stored as a fixed-point integer scaled by ``precision``,
so that funding less than the total share count is not rounded away.
Residual dust below one fixed-point unit per share is lost at funding time.
"""

import logging
from dataclasses import dataclass

from eth_typing import HexAddress

from reward_vault.errors import InsufficientFunds
from reward_vault.math import Rounding, mul_div
from reward_vault.token import FungibleToken


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RewardAccumulator:
    """Distribution state of one reward token."""

    #: Reward token ledger
    token: FungibleToken

    #: Position in the registration order
    position: int

    #: Cumulative reward per share, fixed point
    per_share_amount: int = 0

    #: Registered as a reward stream
    exists: bool = True

    #: Raw amount funded over all :py:meth:`RewardRegistry.fund` calls
    total_funded: int = 0

    #: Raw amount paid out to users
    total_claimed: int = 0

    #: How many times this token has been funded
    funding_count: int = 0

    @property
    def address(self) -> HexAddress:
        return self.token.address


def calculate_owed(per_share_amount: int, snapshot: int, shares: int, precision: int) -> int:
    """Reward a user is owed for one token.

    :param per_share_amount:
        Current accumulator value

    :param snapshot:
        Accumulator value when the user last settled

    :param shares:
        User share balance, must be the balance held since the snapshot

    :return:
        Raw reward amount, rounded down
    """
    assert per_share_amount >= snapshot, f"Snapshot {snapshot} ahead of accumulator {per_share_amount}"
    if shares == 0:
        return 0
    return mul_div(per_share_amount - snapshot, shares, precision, Rounding.down)


class RewardRegistry:
    """All reward streams of a vault, in first-registration order.

    Registration order is an observable contract: claims are paginated by position.
    """

    def __init__(self, precision: int):
        assert precision > 0
        self.precision = precision
        self.accumulators: dict[HexAddress, RewardAccumulator] = {}
        self.ordered: list[HexAddress] = []

    def __repr__(self):
        return f"<RewardRegistry {len(self.ordered)} tokens>"

    def __len__(self):
        return len(self.ordered)

    def is_registered(self, token: HexAddress) -> bool:
        return token in self.accumulators

    def get(self, token: HexAddress) -> RewardAccumulator | None:
        return self.accumulators.get(token)

    def get_per_share_amount(self, token: HexAddress) -> int:
        accumulator = self.accumulators.get(token)
        return accumulator.per_share_amount if accumulator else 0

    def get_batch(self, start: int, size: int) -> list[RewardAccumulator]:
        """Slice of the registration list, empty if ``start`` is past the end."""
        assert start >= 0, f"Got start {start}"
        return [self.accumulators[t] for t in self.ordered[start : start + size]]

    def iterate(self) -> list[RewardAccumulator]:
        return [self.accumulators[t] for t in self.ordered]

    def fund(self, key: HexAddress, token: FungibleToken, amount: int, total_shares: int) -> int:
        """Distribute a reward over the current share supply.

        Registers the token on its first funding.

        :param key:
            Normalised token address

        :return:
            Fixed-point per-share increment

        :raise InsufficientFunds:
            Zero amount, or nobody to distribute to
        """
        if amount <= 0:
            raise InsufficientFunds(f"Reward amount must be positive, got {amount}")
        if total_shares <= 0:
            raise InsufficientFunds(f"Cannot fund reward {key} into a pool with no shares")

        delta = mul_div(amount, self.precision, total_shares, Rounding.down)

        accumulator = self.accumulators.get(key)
        if accumulator is None:
            accumulator = RewardAccumulator(token=token, position=len(self.ordered))
            self.accumulators[key] = accumulator
            self.ordered.append(key)
            logger.info("Registered reward token %s at position %d", key, accumulator.position)

        accumulator.per_share_amount += delta
        accumulator.total_funded += amount
        accumulator.funding_count += 1

        logger.debug(
            "Reward %s funded %d over %d shares, per share now %d (+%d)",
            key,
            amount,
            total_shares,
            accumulator.per_share_amount,
            delta,
        )
        return delta
