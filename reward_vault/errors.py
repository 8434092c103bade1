"""Vault exceptions.

All failures are raised synchronously to the immediate caller.
The vault never retries internally.
"""


class VaultError(Exception):
    """Base class for vault operation failures."""


class ZeroAmount(VaultError):
    """A preview computation resolved to zero for the requested operation."""


class ZeroShares(ZeroAmount):
    """Deposit or withdraw would move zero shares."""


class ZeroAssets(ZeroAmount):
    """Mint or redeem would move zero assets."""


class Unauthorized(VaultError):
    """Privileged operation called by someone else than the operator."""


class InsufficientFunds(VaultError):
    """Balance, allowance or pool state does not cover the operation."""


class TransferFailed(VaultError):
    """Underlying asset or reward token transfer failed.

    The vault state is rolled back before this is raised.
    """


class ReentrancyError(VaultError):
    """A vault operation was entered while another one was executing."""
