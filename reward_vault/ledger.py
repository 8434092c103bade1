"""Aggregate pool state."""

import logging
from dataclasses import dataclass

from reward_vault.errors import InsufficientFunds


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PoolLedger:
    """Total assets under management and total shares outstanding.

    - ``total_assets`` caches the custody balance for ratio math,
      the asset token ledger stays authoritative

    - ``total_shares`` must equal the sum of all user positions
    """

    #: Raw amount of the underlying asset held by the vault
    total_assets: int = 0

    #: Raw amount of shares outstanding
    total_shares: int = 0

    def __post_init__(self):
        assert self.total_assets >= 0, f"Got {self.total_assets}"
        assert self.total_shares >= 0, f"Got {self.total_shares}"

    def add(self, assets: int, shares: int):
        """Account a deposit or mint."""
        assert assets >= 0 and shares >= 0, f"Got assets {assets}, shares {shares}"
        self.total_assets += assets
        self.total_shares += shares

    def remove(self, assets: int, shares: int):
        """Account a withdrawal or redemption.

        :raise InsufficientFunds:
            If either total would go negative
        """
        assert assets >= 0 and shares >= 0, f"Got assets {assets}, shares {shares}"
        if assets > self.total_assets:
            raise InsufficientFunds(f"Pool holds {self.total_assets} assets, tried to remove {assets}")
        if shares > self.total_shares:
            raise InsufficientFunds(f"Pool has {self.total_shares} shares outstanding, tried to remove {shares}")
        self.total_assets -= assets
        self.total_shares -= shares
        logger.debug("Pool now at %d assets, %d shares", self.total_assets, self.total_shares)
