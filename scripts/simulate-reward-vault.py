"""Simulate a reward vault with a few depositors and reward tokens.

- Prints the event log and the final balances

- Set ``LOG_LEVEL=info`` to see the vault operations

Usage:

.. code-block:: shell

    LOG_LEVEL=info python scripts/simulate-reward-vault.py
"""

import random
from decimal import Decimal

from eth_account import Account

from reward_vault.config import VaultConfig
from reward_vault.token import InMemoryToken
from reward_vault.utils import derive_address, setup_console_logging
from reward_vault.vault import RewardVault

setup_console_logging()

rng = random.Random(42)

operator = Account.create().address
depositors = [Account.create().address for i in range(5)]

usdc = InMemoryToken(derive_address("usdc"), "USD Coin", "USDC", 6)
rewards = [InMemoryToken(derive_address("reward", str(i)), f"Reward Token {i}", f"RT{i}", 8) for i in range(12)]

vault = RewardVault(usdc, operator=operator, config=VaultConfig.from_env())
print(f"Vault {vault.address}, share token {vault.share_token.address}")

for depositor in depositors:
    usdc.mint(depositor, usdc.convert_to_raw(Decimal(10_000)))
    usdc.approve(depositor, vault.address, 2**256 - 1)

for reward in rewards:
    reward.mint(operator, reward.convert_to_raw(Decimal(1_000_000)))
    reward.approve(operator, vault.address, 2**256 - 1)

for step in range(50):
    depositor = rng.choice(depositors)
    action = rng.choice(["deposit", "deposit", "redeem", "reward", "claim"])
    if action == "deposit":
        vault.deposit(depositor, usdc.convert_to_raw(Decimal(rng.randint(1, 1000))))
    elif action == "redeem" and vault.shares_of(depositor) > 0:
        vault.redeem(depositor, vault.shares_of(depositor) // 2 or 1)
    elif action == "reward" and vault.total_supply() > 0:
        reward = rng.choice(rewards)
        vault.add_reward(operator, reward, reward.convert_to_raw(Decimal(rng.randint(1, 100))))
    elif action == "claim":
        start_position = 0
        while True:
            start_position, total = vault.claim_all_reward(depositor, start_position)
            start_position += vault.config.claim_batch_size
            if start_position >= total:
                break

df = vault.events.to_dataframe()
print(df.to_string())

print(f"Total assets: {usdc.convert_to_decimals(vault.total_assets())} USDC, total shares: {vault.total_supply()}")
for depositor in depositors:
    pending = sum(vault.pending_rewards(depositor).values())
    print(f"{depositor}: {usdc.convert_to_decimals(vault.assets_of(depositor))} USDC, raw pending rewards {pending}")

assert vault.check_share_reconciliation() == {}
