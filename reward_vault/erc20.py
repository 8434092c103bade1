"""ERC-20 custody ledger over web3.

Lets a :py:class:`~reward_vault.vault.RewardVault` hold a live ERC-20 token
as its asset or as a reward token.

- Each state-changing call is sent as a transaction from the given account,
  which must be unlocked in the node (Anvil, test node) or managed by the provider

- A reverted or failed transaction raises :py:class:`~reward_vault.errors.TransferFailed`

Example:

.. code-block:: python

    web3 = Web3(HTTPProvider(os.environ["JSON_RPC_BASE"]))
    usdc = ERC20Token(web3, "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913")
    print(usdc.symbol, usdc.convert_to_decimals(usdc.balance_of(holder)))
"""

import logging
from decimal import Decimal
from functools import cached_property

from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.contract.contract import ContractFunction
from web3.exceptions import Web3Exception

from reward_vault.errors import TransferFailed


logger = logging.getLogger(__name__)


#: The subset of ERC-20 ABI the vault needs
ERC20_ABI = [
    {"name": "name", "type": "function", "stateMutability": "view", "inputs": [], "outputs": [{"name": "", "type": "string"}]},
    {"name": "symbol", "type": "function", "stateMutability": "view", "inputs": [], "outputs": [{"name": "", "type": "string"}]},
    {"name": "decimals", "type": "function", "stateMutability": "view", "inputs": [], "outputs": [{"name": "", "type": "uint8"}]},
    {"name": "totalSupply", "type": "function", "stateMutability": "view", "inputs": [], "outputs": [{"name": "", "type": "uint256"}]},
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "spender", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "transfer",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "transferFrom",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "from", "type": "address"}, {"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
]


class ERC20Token:
    """ERC-20 token implementing :py:class:`reward_vault.token.FungibleToken`."""

    def __init__(self, web3: Web3, address: HexAddress | str, gas: int = 200_000):
        """
        :param web3:
            Connected web3 instance

        :param address:
            Token contract address

        :param gas:
            Gas limit for approve and transfer transactions
        """
        self.web3 = web3
        self.contract = web3.eth.contract(address=Web3.to_checksum_address(address), abi=ERC20_ABI)
        self.gas = gas

    def __repr__(self):
        return f"<ERC20Token {self.address}>"

    @property
    def address(self) -> HexAddress:
        return self.contract.address

    @cached_property
    def decimals(self) -> int:
        return self.contract.functions.decimals().call()

    @cached_property
    def symbol(self) -> str:
        return self.contract.functions.symbol().call()

    @cached_property
    def name(self) -> str:
        return self.contract.functions.name().call()

    def convert_to_decimals(self, raw_amount: int) -> Decimal:
        return Decimal(raw_amount) / Decimal(10**self.decimals)

    def convert_to_raw(self, decimal_amount: Decimal) -> int:
        assert isinstance(decimal_amount, Decimal), f"Give amounts in decimal, got {type(decimal_amount)}"
        return int(decimal_amount * 10**self.decimals)

    def total_supply(self) -> int:
        return self.contract.functions.totalSupply().call()

    def balance_of(self, account: HexAddress | str) -> int:
        return self.contract.functions.balanceOf(Web3.to_checksum_address(account)).call()

    def allowance(self, owner: HexAddress | str, spender: HexAddress | str) -> int:
        return self.contract.functions.allowance(
            Web3.to_checksum_address(owner),
            Web3.to_checksum_address(spender),
        ).call()

    def approve(self, owner: HexAddress | str, spender: HexAddress | str, amount: int) -> HexBytes:
        func = self.contract.functions.approve(Web3.to_checksum_address(spender), amount)
        return self._transact(func, owner)

    def transfer(self, sender: HexAddress | str, to: HexAddress | str, amount: int) -> HexBytes:
        func = self.contract.functions.transfer(Web3.to_checksum_address(to), amount)
        return self._transact(func, sender)

    def transfer_from(self, spender: HexAddress | str, from_: HexAddress | str, to: HexAddress | str, amount: int) -> HexBytes:
        func = self.contract.functions.transferFrom(
            Web3.to_checksum_address(from_),
            Web3.to_checksum_address(to),
            amount,
        )
        return self._transact(func, spender)

    def _transact(self, func: ContractFunction, from_: HexAddress | str) -> HexBytes:
        """Broadcast a bound function and wait until it is mined.

        :raise TransferFailed:
            Transaction reverted, could not be sent or was not mined in time
        """
        from_ = Web3.to_checksum_address(from_)
        try:
            tx_hash = func.transact({"from": from_, "gas": self.gas})
            receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash)
        except (Web3Exception, ValueError) as e:
            raise TransferFailed(f"{func.fn_name}() on {self.address} from {from_} failed: {e}") from e

        if receipt["status"] != 1:
            raise TransferFailed(f"{func.fn_name}() on {self.address} from {from_} reverted, tx {tx_hash.hex()}")

        logger.info("%s() on %s from %s, tx %s", func.fn_name, self.address, from_, tx_hash.hex())
        return HexBytes(tx_hash)
