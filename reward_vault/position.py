"""User positions and reward claim snapshots.

Positions and snapshots live in two independent maps:

- ``user -> UserPosition``

- ``(user, reward token) -> accumulator value at the last settlement``

Nothing is ever deleted. A user who withdraws everything keeps
a zero-share position and its stale snapshots.
"""

from dataclasses import dataclass
from typing import Iterable

from eth_typing import HexAddress

from reward_vault.errors import InsufficientFunds


@dataclass(slots=True)
class UserPosition:
    """One depositor's claim on the pool."""

    #: Raw share balance
    shares: int = 0

    #: Set on the first credit, never cleared
    exists: bool = False


class PositionBook:
    """All user positions of a vault.

    Addresses must be normalised with :py:func:`reward_vault.utils.normalise_address`
    before they are passed here.
    """

    def __init__(self):
        self.positions: dict[HexAddress, UserPosition] = {}
        self.snapshots: dict[tuple[HexAddress, HexAddress], int] = {}

    def __repr__(self):
        return f"<PositionBook {len(self.positions)} users, {self.get_total_shares()} shares>"

    def get(self, user: HexAddress) -> UserPosition:
        """Get a position, or an empty uninitialised one if the user never deposited.

        The returned empty position is not stored.
        """
        return self.positions.get(user) or UserPosition()

    def has_position(self, user: HexAddress) -> bool:
        return user in self.positions

    def get_shares(self, user: HexAddress) -> int:
        return self.get(user).shares

    def open(self, user: HexAddress, snapshots: Iterable[tuple[HexAddress, int]]) -> UserPosition:
        """Initialise a new position.

        :param snapshots:
            ``(token, accumulator value)`` for every registered reward token,
            so the new depositor does not claim rewards funded before joining.
        """
        assert user not in self.positions, f"Position already exists: {user}"
        for token, value in snapshots:
            self.snapshots[(user, token)] = value
        position = UserPosition(shares=0, exists=True)
        self.positions[user] = position
        return position

    def credit(self, user: HexAddress, shares: int):
        assert shares >= 0, f"Got {shares}"
        position = self.positions[user]
        position.shares += shares

    def debit(self, user: HexAddress, shares: int):
        """Reduce a user's shares.

        :raise InsufficientFunds:
            If the user does not own enough shares
        """
        assert shares >= 0, f"Got {shares}"
        position = self.get(user)
        if shares > position.shares:
            raise InsufficientFunds(f"{user} owns {position.shares} shares, tried to remove {shares}")
        position.shares -= shares

    def get_snapshot(self, user: HexAddress, token: HexAddress) -> int:
        """Accumulator value at the last settlement, zero if never settled."""
        return self.snapshots.get((user, token), 0)

    def set_snapshot(self, user: HexAddress, token: HexAddress, value: int):
        assert value >= self.get_snapshot(user, token), f"Snapshot cannot go backwards for {user}, {token}"
        self.snapshots[(user, token)] = value

    def get_total_shares(self) -> int:
        """Sum of all share balances, for reconciliation against the pool ledger."""
        return sum(p.shares for p in self.positions.values())
