"""Shared fixtures for in-memory vault tests."""

import pytest
from eth_account import Account

from reward_vault.token import InMemoryToken
from reward_vault.utils import derive_address
from reward_vault.vault import RewardVault


#: Large enough for any test deposit
INITIAL_BALANCE = 1_000_000


@pytest.fixture()
def operator() -> str:
    """Account allowed to fund rewards."""
    return Account.create().address


@pytest.fixture()
def user_1() -> str:
    return Account.create().address


@pytest.fixture()
def user_2() -> str:
    return Account.create().address


@pytest.fixture()
def asset(user_1, user_2) -> InMemoryToken:
    """Vault underlying, both users funded."""
    token = InMemoryToken(derive_address("test-asset"), "Test USD", "TUSD", 6)
    token.mint(user_1, INITIAL_BALANCE)
    token.mint(user_2, INITIAL_BALANCE)
    return token


@pytest.fixture()
def reward_token(operator) -> InMemoryToken:
    token = InMemoryToken(derive_address("test-reward"), "Reward Token 1", "RT1", 8)
    token.mint(operator, INITIAL_BALANCE)
    return token


@pytest.fixture()
def vault(asset, operator, user_1, user_2) -> RewardVault:
    """Empty vault, users have approved it for their whole balance."""
    vault = RewardVault(asset, operator=operator)
    asset.approve(user_1, vault.address, INITIAL_BALANCE)
    asset.approve(user_2, vault.address, INITIAL_BALANCE)
    return vault


@pytest.fixture()
def fund_reward(vault, operator):
    """Approve and add a reward in one step."""

    def _fund(token: InMemoryToken, amount: int) -> int:
        token.approve(operator, vault.address, amount)
        return vault.add_reward(operator, token, amount)

    return _fund
