"""Reward funding and claiming."""

import pytest

from reward_vault.errors import InsufficientFunds, TransferFailed, Unauthorized
from reward_vault.events import RewardAdded, RewardClaimed
from reward_vault.token import InMemoryToken
from reward_vault.utils import derive_address
from reward_vault.vault import RewardVault


def test_add_reward_empty_pool(vault: RewardVault, reward_token, fund_reward):
    """Rewards cannot be funded when nobody holds shares."""
    with pytest.raises(InsufficientFunds):
        fund_reward(reward_token, 100)
    assert vault.reward_token_count() == 0
    assert reward_token.balance_of(vault.address) == 0


def test_add_reward_zero(vault: RewardVault, reward_token, fund_reward, user_1):
    vault.deposit(user_1, 1000)
    with pytest.raises(InsufficientFunds):
        fund_reward(reward_token, 0)


def test_add_reward_not_operator(vault: RewardVault, reward_token, user_1):
    vault.deposit(user_1, 1000)
    with pytest.raises(Unauthorized):
        vault.add_reward(user_1, reward_token, 100)


def test_add_reward_without_approval(vault: RewardVault, reward_token, operator, user_1):
    vault.deposit(user_1, 1000)
    with pytest.raises(TransferFailed):
        vault.add_reward(operator, reward_token, 100)
    assert vault.reward_token_count() == 0
    assert vault.get_reward_info(reward_token) is None


def test_two_users_share_reward(vault: RewardVault, reward_token, fund_reward, user_1, user_2):
    """Reward is split by shares, and a deposit settles pending rewards first."""
    vault.deposit(user_1, 1000)
    vault.deposit(user_2, 1000)
    assert vault.total_supply() == 2000

    delta = fund_reward(reward_token, 200)
    assert delta == 10**17  # 0.1 per share
    assert vault.events.filter(RewardAdded)[-1] == RewardAdded(token_address=reward_token.address, amount=200, per_share_delta=10**17)

    vault.claim_all_reward(user_1)
    assert reward_token.balance_of(user_1) == 100

    vault.deposit(user_1, 500)
    assert reward_token.balance_of(user_1) == 100

    assert vault.pending_reward(user_2, reward_token) == 100
    vault.claim_all_reward(user_2)
    assert reward_token.balance_of(user_2) == 100
    assert reward_token.balance_of(vault.address) == 0

    info = vault.get_reward_info(reward_token)
    assert info.total_funded == 200
    assert info.total_claimed == 200
    assert info.funding_count == 1


def test_deposit_settles_pending_reward(vault: RewardVault, reward_token, fund_reward, user_1, user_2):
    """Topping up a position pays out rewards earned with the old balance."""
    vault.deposit(user_1, 1000)
    vault.deposit(user_2, 1000)
    fund_reward(reward_token, 200)

    vault.deposit(user_1, 500)
    assert reward_token.balance_of(user_1) == 100
    assert vault.pending_reward(user_1, reward_token) == 0
    assert vault.events.filter(RewardClaimed)[-1] == RewardClaimed(user=user_1.lower(), token_address=reward_token.address, amount=100)


def test_withdraw_settles_before_reducing_shares(vault: RewardVault, reward_token, fund_reward, user_1, user_2):
    """Rewards accrued before a withdrawal are paid on the pre-withdrawal balance."""
    vault.deposit(user_1, 1000)
    vault.deposit(user_2, 1000)
    fund_reward(reward_token, 200)

    vault.withdraw(user_1, 1000)
    assert reward_token.balance_of(user_1) == 100

    # Fully withdrawn user earns nothing from new rewards
    fund_reward(reward_token, 100)
    vault.claim_all_reward(user_1)
    assert reward_token.balance_of(user_1) == 100

    vault.claim_all_reward(user_2)
    assert reward_token.balance_of(user_2) == 200


def test_late_depositor_gets_no_earlier_rewards(vault: RewardVault, reward_token, fund_reward, user_1, user_2):
    vault.deposit(user_1, 1000)
    fund_reward(reward_token, 100)

    vault.deposit(user_2, 1000)
    assert vault.pending_reward(user_2, reward_token) == 0
    vault.claim_all_reward(user_2)
    assert reward_token.balance_of(user_2) == 0

    fund_reward(reward_token, 100)
    vault.claim_all_reward(user_1)
    vault.claim_all_reward(user_2)
    assert reward_token.balance_of(user_1) == 150
    assert reward_token.balance_of(user_2) == 50


def test_token_registered_after_deposit(vault: RewardVault, operator, fund_reward, user_1):
    """A position predating a reward token earns from its first funding."""
    vault.deposit(user_1, 1000)
    late_token = InMemoryToken(derive_address("late-reward"), "Late", "LATE")
    late_token.mint(operator, 10_000)
    fund_reward(late_token, 1000)
    assert vault.pending_rewards(user_1) == {late_token.address: 1000}


def test_no_double_claim(vault: RewardVault, reward_token, fund_reward, user_1, user_2):
    vault.deposit(user_1, 1000)
    vault.deposit(user_2, 3000)
    fund_reward(reward_token, 400)

    vault.claim_all_reward(user_1)
    first = reward_token.balance_of(user_1)
    assert first == 100

    vault.claim_all_reward(user_1)
    assert reward_token.balance_of(user_1) == first
    assert len(vault.events.filter(RewardClaimed)) == 1


def test_claim_single_token(vault: RewardVault, reward_token, fund_reward, user_1):
    vault.deposit(user_1, 1000)
    fund_reward(reward_token, 300)
    assert vault.claim_reward(user_1, reward_token.address) == 300
    assert vault.claim_reward(user_1, reward_token) == 0


def test_claim_unregistered_token(vault: RewardVault, reward_token, user_1):
    vault.deposit(user_1, 1000)
    assert not vault.rewards.is_registered(reward_token.address.lower())
    assert vault.rewards.get_per_share_amount(reward_token.address.lower()) == 0
    assert vault.claim_reward(user_1, reward_token) == 0
    assert vault.positions.snapshots == {}
    assert vault.events.filter(RewardClaimed) == []


def test_claim_without_position(vault: RewardVault, reward_token, fund_reward, user_1, user_2):
    vault.deposit(user_1, 1000)
    fund_reward(reward_token, 300)
    assert vault.claim_all_reward(user_2) == (0, 1)
    assert reward_token.balance_of(user_2) == 0
    assert not vault.get_position(user_2).exists


def test_accumulator_monotonic(vault: RewardVault, reward_token, fund_reward, user_1, user_2):
    vault.deposit(user_1, 777)
    values = []
    for amount in [1, 50, 3, 1000, 7]:
        fund_reward(reward_token, amount)
        values.append(vault.get_reward_info(reward_token).per_share_amount)
        vault.deposit(user_2, amount)
    assert values == sorted(values)


def test_rounding_dust_stays_in_vault(vault: RewardVault, reward_token, fund_reward, user_1, user_2):
    """Payouts round down, the vault never pays more than funded."""
    vault.deposit(user_1, 1)
    vault.deposit(user_2, 2)
    fund_reward(reward_token, 10)
    vault.claim_all_reward(user_1)
    vault.claim_all_reward(user_2)
    assert reward_token.balance_of(user_1) == 3
    assert reward_token.balance_of(user_2) == 6
    assert reward_token.balance_of(vault.address) == 1


def test_asset_cannot_be_reward(vault: RewardVault, asset, operator, user_1):
    vault.deposit(user_1, 1000)
    with pytest.raises(ValueError):
        vault.add_reward(operator, asset, 10)
