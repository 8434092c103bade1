"""Rollback, reentrancy and event log."""

import pandas as pd
import pytest

from reward_vault.errors import ReentrancyError, TransferFailed
from reward_vault.events import Deposit, RewardAdded, RewardClaimed, Withdraw
from reward_vault.token import InMemoryToken
from reward_vault.utils import derive_address
from reward_vault.vault import RewardVault


class BrokenToken(InMemoryToken):
    """Passes balance checks, then fails the transfer."""

    def transfer(self, sender, to, amount):
        raise RuntimeError("Ledger unavailable")


class ReenteringToken(InMemoryToken):
    """Calls back into the vault while being paid out."""

    vault: RewardVault = None

    def transfer(self, sender, to, amount):
        self.vault.claim_all_reward(to)
        super().transfer(sender, to, amount)


def test_deposit_without_approval_rolls_back(asset, operator, user_1):
    vault = RewardVault(asset, operator=operator)
    with pytest.raises(TransferFailed):
        vault.deposit(user_1, 100)
    assert vault.total_assets() == 0
    assert vault.total_supply() == 0
    assert not vault.get_position(user_1).exists
    assert vault.share_token.balance_of(user_1) == 0
    assert vault.events.filter(Deposit) == []


def test_deposit_over_balance(vault: RewardVault, asset, user_1):
    asset.approve(user_1, vault.address, 10**18)
    with pytest.raises(TransferFailed):
        vault.deposit(user_1, asset.balance_of(user_1) + 1)
    assert vault.total_assets() == 0


def test_failed_payout_rolls_back_claim(vault: RewardVault, operator, fund_reward, user_1):
    token = BrokenToken(derive_address("broken"), "Broken", "BRK")
    token.mint(operator, 1000)
    vault.deposit(user_1, 100)
    fund_reward(token, 1000)

    with pytest.raises(TransferFailed) as exc_info:
        vault.claim_all_reward(user_1)
    assert isinstance(exc_info.value.__cause__, RuntimeError)

    # Snapshot rolled back, reward still claimable
    assert vault.pending_reward(user_1, token) == 1000
    assert vault.get_reward_info(token).total_claimed == 0


def test_short_reward_balance_rolls_back_withdraw(vault: RewardVault, asset, reward_token, fund_reward, user_1):
    """Payouts are checked before anything moves, so a short balance leaves no trace."""
    vault.deposit(user_1, 100)
    fund_reward(reward_token, 1000)
    reward_token.burn(vault.address, 1)
    asset_balance = asset.balance_of(user_1)

    with pytest.raises(TransferFailed):
        vault.withdraw(user_1, 50)
    assert vault.shares_of(user_1) == 100
    assert vault.total_assets() == 100
    assert vault.share_token.balance_of(user_1) == 100
    assert asset.balance_of(user_1) == asset_balance
    assert vault.check_share_reconciliation() == {}


def test_failed_payout_returns_deposit(vault: RewardVault, asset, operator, fund_reward, user_1):
    """Assets pulled before a settlement payout fails are sent back."""
    token = BrokenToken(derive_address("broken"), "Broken", "BRK")
    token.mint(operator, 1000)
    vault.deposit(user_1, 100)
    fund_reward(token, 1000)
    asset_balance = asset.balance_of(user_1)

    with pytest.raises(TransferFailed):
        vault.deposit(user_1, 100)

    assert asset.balance_of(user_1) == asset_balance
    assert asset.balance_of(vault.address) == vault.total_assets() == 100
    assert vault.shares_of(user_1) == 100
    assert vault.share_token.balance_of(user_1) == 100
    assert vault.check_share_reconciliation() == {}
    assert vault.pending_reward(user_1, token) == 1000
    assert len(vault.events.filter(Deposit)) == 1


def test_failed_payout_restores_burnt_shares(vault: RewardVault, asset, operator, fund_reward, user_1):
    """Shares burnt before a settlement payout fails are minted back."""
    token = BrokenToken(derive_address("broken"), "Broken", "BRK")
    token.mint(operator, 1000)
    vault.deposit(user_1, 100)
    fund_reward(token, 1000)
    asset_balance = asset.balance_of(user_1)

    with pytest.raises(TransferFailed):
        vault.withdraw(user_1, 50)

    assert asset.balance_of(user_1) == asset_balance
    assert asset.balance_of(vault.address) == vault.total_assets() == 100
    assert vault.shares_of(user_1) == 100
    assert vault.share_token.balance_of(user_1) == 100
    assert vault.share_token.total_supply() == vault.total_supply() == 100
    assert vault.check_share_reconciliation() == {}
    assert vault.events.filter(Withdraw) == []


def test_delivered_payout_stays_settled(vault: RewardVault, operator, reward_token, fund_reward, user_1):
    """A reward paid before a later payout fails is not claimable again."""
    token = BrokenToken(derive_address("broken"), "Broken", "BRK")
    token.mint(operator, 1000)
    vault.deposit(user_1, 100)
    fund_reward(reward_token, 1000)
    fund_reward(token, 1000)

    with pytest.raises(TransferFailed):
        vault.claim_all_reward(user_1)

    assert reward_token.balance_of(user_1) == 1000
    assert vault.pending_reward(user_1, reward_token) == 0
    assert vault.get_reward_info(reward_token).total_claimed == 1000
    assert vault.pending_reward(user_1, token) == 1000
    assert vault.get_reward_info(token).total_claimed == 0

    claimed = vault.events.filter(RewardClaimed)
    assert len(claimed) == 1
    assert claimed[0].token_address == reward_token.address
    assert claimed[0].amount == 1000


def test_reentrant_claim(vault: RewardVault, operator, fund_reward, user_1):
    token = ReenteringToken(derive_address("reentrant"), "Reentrant", "RNT")
    token.vault = vault
    token.mint(operator, 1000)
    vault.deposit(user_1, 100)
    fund_reward(token, 1000)

    with pytest.raises(TransferFailed) as exc_info:
        vault.claim_all_reward(user_1)
    assert isinstance(exc_info.value.__cause__, ReentrancyError)
    assert token.balance_of(user_1) == 0
    assert vault.pending_reward(user_1, token) == 1000

    # Guard is released after the failure
    vault.deposit(user_1, 1, receiver=operator)


def test_event_log_dataframe(vault: RewardVault, reward_token, fund_reward, user_1, user_2):
    vault.deposit(user_1, 1000)
    vault.deposit(user_2, 500)
    fund_reward(reward_token, 300)
    vault.claim_all_reward(user_1)
    vault.redeem(user_2, 500)

    df = vault.events.to_dataframe()
    assert isinstance(df, pd.DataFrame)
    assert list(df["event"]) == ["CreatedToken", "Deposit", "Deposit", "RewardAdded", "RewardClaimed", "Withdraw", "RewardClaimed"]
    deposits = df[df["event"] == "Deposit"]
    assert list(deposits["asset_amount"]) == [1000, 500]
    assert vault.events.filter(RewardAdded)[0].amount == 300


def test_empty_event_log_dataframe():
    from reward_vault.events import EventLog

    df = EventLog().to_dataframe()
    assert len(df) == 0
    assert "event" in df.columns
