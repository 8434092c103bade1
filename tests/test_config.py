"""Configuration and helpers."""

from decimal import Decimal

import pytest

from reward_vault.config import DEFAULT_CLAIM_BATCH_SIZE, VaultConfig
from reward_vault.token import FungibleToken, InMemoryToken, ShareToken
from reward_vault.utils import derive_address, normalise_address


def test_config_defaults():
    config = VaultConfig.from_env({})
    assert config.claim_batch_size == DEFAULT_CLAIM_BATCH_SIZE == 10
    assert config.reward_precision == 10**18


def test_config_from_env():
    config = VaultConfig.from_env({"REWARD_VAULT_CLAIM_BATCH_SIZE": "25", "REWARD_VAULT_REWARD_PRECISION": "1000000"})
    assert config.claim_batch_size == 25
    assert config.reward_precision == 10**6


def test_config_bad_batch_size():
    with pytest.raises(AssertionError):
        VaultConfig(claim_batch_size=0)


def test_normalise_address():
    address = derive_address("test")
    assert normalise_address(address) == address.lower()
    with pytest.raises(ValueError):
        normalise_address("0x123")


def test_derive_address_deterministic():
    assert derive_address("a", "b") == derive_address("a", "b")
    assert derive_address("a", "b") != derive_address("a", "c")


def test_in_memory_token_decimals():
    token = InMemoryToken(derive_address("usdc"), "USD Coin", "USDC", 6)
    assert token.convert_to_raw(Decimal("1.5")) == 1_500_000
    assert token.convert_to_decimals(1_500_000) == Decimal("1.5")
    assert isinstance(token, FungibleToken)
    assert isinstance(token, ShareToken)
