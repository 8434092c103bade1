"""Vault configuration.

- Defaults match the deployed vault behaviour

- Environment variables override the defaults, see :py:meth:`VaultConfig.from_env`
"""

import os
from dataclasses import dataclass


#: How many reward tokens a single claim call processes
DEFAULT_CLAIM_BATCH_SIZE = 10

#: Fixed-point scale of reward-per-share accumulators
DEFAULT_REWARD_PRECISION = 10**18


@dataclass(slots=True, frozen=True)
class VaultConfig:
    """Tunable parameters of :py:class:`reward_vault.vault.RewardVault`."""

    #: Maximum number of reward tokens settled per :py:meth:`~reward_vault.vault.RewardVault.claim_all_reward` call.
    #:
    #: Bounds the per-call work regardless of how many reward tokens are registered.
    claim_batch_size: int = DEFAULT_CLAIM_BATCH_SIZE

    #: Fixed-point scale for reward-per-share values.
    #:
    #: Funding less than the total share count would round to zero without scaling.
    reward_precision: int = DEFAULT_REWARD_PRECISION

    #: Name of the share token created with the vault
    share_name: str = "Vault Shares"

    #: Symbol of the share token created with the vault
    share_symbol: str = "vSHARE"

    def __post_init__(self):
        assert type(self.claim_batch_size) == int, f"Got {type(self.claim_batch_size)}"
        assert self.claim_batch_size > 0, f"Claim batch size must be positive, got {self.claim_batch_size}"
        assert type(self.reward_precision) == int, f"Got {type(self.reward_precision)}"
        assert self.reward_precision > 0, f"Reward precision must be positive, got {self.reward_precision}"

    @classmethod
    def from_env(cls, environ: dict | None = None) -> "VaultConfig":
        """Read configuration overrides from environment variables.

        - ``REWARD_VAULT_CLAIM_BATCH_SIZE``

        - ``REWARD_VAULT_REWARD_PRECISION``

        :param environ:
            Use this mapping instead of :py:data:`os.environ`
        """
        if environ is None:
            environ = os.environ

        kwargs = {}
        batch_size = environ.get("REWARD_VAULT_CLAIM_BATCH_SIZE")
        if batch_size:
            kwargs["claim_batch_size"] = int(batch_size)

        precision = environ.get("REWARD_VAULT_REWARD_PRECISION")
        if precision:
            kwargs["reward_precision"] = int(precision)

        return cls(**kwargs)
