"""Share and asset conversions.

Stateless math behind ERC-4626 style ``preview*()`` functions.

- Deposit and redeem round down: the user receives no more than the exact entitlement

- Mint and withdraw round up: the user pays no less than required

- All four use the same ``amount * total_shares / total_assets`` exchange rate
  (or its inverse), so share price is consistent across the entry points

- When the pool is empty, assets and shares convert 1:1

.. note::

    Preview functions return zero for amounts too small to convert.
    Rejecting zero results is the job of the state-mutating entry points
    in :py:class:`reward_vault.vault.RewardVault`.
"""

from reward_vault.math import Rounding, mul_div


def _check_amount(amount: int):
    assert type(amount) == int, f"Raw amounts must be int, got {type(amount)}: {amount}"
    if amount < 0:
        raise ValueError(f"Negative amount: {amount}")


def preview_deposit(assets: int, total_shares: int, total_assets: int) -> int:
    """How many shares a deposit of ``assets`` mints.

    :return:
        Raw share amount, rounded down
    """
    _check_amount(assets)
    if total_shares == 0 or total_assets == 0:
        return assets
    return mul_div(assets, total_shares, total_assets, Rounding.down)


def preview_mint(shares: int, total_shares: int, total_assets: int) -> int:
    """How many assets are needed to mint ``shares``.

    :return:
        Raw asset amount, rounded up
    """
    _check_amount(shares)
    if total_shares == 0:
        return shares
    return mul_div(shares, total_assets, total_shares, Rounding.up)


def preview_withdraw(assets: int, total_shares: int, total_assets: int) -> int:
    """How many shares are burnt to withdraw ``assets``.

    :return:
        Raw share amount, rounded up
    """
    _check_amount(assets)
    if total_assets == 0:
        return assets
    return mul_div(assets, total_shares, total_assets, Rounding.up)


def preview_redeem(shares: int, total_shares: int, total_assets: int) -> int:
    """How many assets burning ``shares`` returns.

    :return:
        Raw asset amount, rounded down
    """
    _check_amount(shares)
    if total_shares == 0:
        return shares
    return mul_div(shares, total_assets, total_shares, Rounding.down)


def convert_to_shares(assets: int, total_shares: int, total_assets: int) -> int:
    """ERC-4626 ``convertToShares()``, ideal conversion rounded down."""
    return preview_deposit(assets, total_shares, total_assets)


def convert_to_assets(shares: int, total_shares: int, total_assets: int) -> int:
    """ERC-4626 ``convertToAssets()``, ideal conversion rounded down."""
    return preview_redeem(shares, total_shares, total_assets)
