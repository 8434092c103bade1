"""Reward settlement.

Settling a token for a user means:

1. Compute ``owed = (accumulator - snapshot) * shares``
2. Move the snapshot to the current accumulator value
3. Hand back a payout for the caller to transfer

Snapshots are always moved before any transfer happens,
so a re-entrant claim sees nothing left to pay.
"""

import logging
from dataclasses import dataclass

from eth_typing import HexAddress

from reward_vault.position import PositionBook
from reward_vault.reward import RewardAccumulator, RewardRegistry, calculate_owed
from reward_vault.token import FungibleToken


logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RewardPayout:
    """A settled reward waiting to be transferred."""

    user: HexAddress
    token_address: HexAddress
    token: FungibleToken
    amount: int


@dataclass(slots=True, frozen=True)
class ClaimBatch:
    """Where a paginated claim sweep is."""

    #: Position the batch started from
    start_position: int

    #: Total registered reward tokens
    total_token_count: int

    #: Tokens processed in this batch
    processed: int

    def get_next_position(self) -> int | None:
        """Where the next call should start, or ``None`` if the sweep is complete."""
        next_position = self.start_position + self.processed
        if next_position >= self.total_token_count:
            return None
        return next_position


class ClaimProcessor:
    """Settle user rewards against the accumulators."""

    def __init__(self, positions: PositionBook, rewards: RewardRegistry, batch_size: int):
        assert batch_size > 0
        self.positions = positions
        self.rewards = rewards
        self.batch_size = batch_size

    def calculate_pending(self, user: HexAddress, key: HexAddress) -> int:
        """Reward owed to a user for one token, without settling it."""
        accumulator = self.rewards.get(key)
        if accumulator is None:
            return 0
        return calculate_owed(
            accumulator.per_share_amount,
            self.positions.get_snapshot(user, key),
            self.positions.get_shares(user),
            self.rewards.precision,
        )

    def settle(self, user: HexAddress, accumulators: list[RewardAccumulator]) -> list[RewardPayout]:
        """Settle the given tokens for a user.

        :return:
            Non-zero payouts to transfer
        """
        if not self.positions.has_position(user):
            return []

        shares = self.positions.get_shares(user)
        payouts = []
        for accumulator in accumulators:
            key = accumulator.address.lower()
            owed = calculate_owed(
                accumulator.per_share_amount,
                self.positions.get_snapshot(user, key),
                shares,
                self.rewards.precision,
            )
            self.positions.set_snapshot(user, key, accumulator.per_share_amount)
            if owed:
                accumulator.total_claimed += owed
                payouts.append(RewardPayout(user=user, token_address=key, token=accumulator.token, amount=owed))
        if payouts:
            logger.debug("Settled %d reward payouts for %s", len(payouts), user)
        return payouts

    def settle_all(self, user: HexAddress) -> list[RewardPayout]:
        """Settle every registered token.

        Used before a user's share balance changes, so the old balance
        is paid for the period it was held.
        """
        return self.settle(user, self.rewards.iterate())

    def settle_batch(self, user: HexAddress, start_position: int) -> tuple[list[RewardPayout], ClaimBatch]:
        """Settle at most ``batch_size`` tokens starting from a registration position.

        A start position past the end processes nothing.
        """
        assert type(start_position) == int, f"Got {type(start_position)}"
        if start_position < 0:
            raise ValueError(f"Negative start position: {start_position}")
        accumulators = self.rewards.get_batch(start_position, self.batch_size)
        payouts = self.settle(user, accumulators)
        batch = ClaimBatch(
            start_position=start_position,
            total_token_count=len(self.rewards),
            processed=len(accumulators),
        )
        return payouts, batch
