"""Token ledgers the vault talks to.

- :py:class:`FungibleToken` is the custody ledger interface for the underlying asset
  and the reward tokens

- :py:class:`ShareToken` adds minting and burning for the share representation

- :py:class:`InMemoryToken` implements both and is used for simulations and tests.
  For live ERC-20 tokens see :py:mod:`reward_vault.erc20`.

All amounts are raw integers. Use :py:meth:`InMemoryToken.convert_to_raw`
and :py:meth:`InMemoryToken.convert_to_decimals` for human-readable values.
"""

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Protocol, runtime_checkable

from eth_typing import HexAddress
from web3 import Web3

from reward_vault.errors import InsufficientFunds, TransferFailed
from reward_vault.utils import normalise_address


logger = logging.getLogger(__name__)


@runtime_checkable
class FungibleToken(Protocol):
    """Asset custody ledger interface.

    Implementations must raise :py:class:`reward_vault.errors.TransferFailed`
    instead of silently ignoring a failed transfer.
    """

    @property
    def address(self) -> HexAddress: ...

    @property
    def decimals(self) -> int: ...

    def balance_of(self, account: HexAddress | str) -> int: ...

    def allowance(self, owner: HexAddress | str, spender: HexAddress | str) -> int: ...

    def approve(self, owner: HexAddress | str, spender: HexAddress | str, amount: int): ...

    def transfer(self, sender: HexAddress | str, to: HexAddress | str, amount: int): ...

    def transfer_from(self, spender: HexAddress | str, from_: HexAddress | str, to: HexAddress | str, amount: int): ...


@runtime_checkable
class ShareToken(FungibleToken, Protocol):
    """Share representation ledger.

    Its balances are expected to track the vault's user positions.
    """

    def mint(self, to: HexAddress | str, amount: int): ...

    def burn(self, from_: HexAddress | str, amount: int): ...

    def total_supply(self) -> int: ...


class InMemoryToken:
    """A fungible token ledger kept in process memory.

    Example:

    .. code-block:: python

        usdc = InMemoryToken(derive_address("usdc"), "USD Coin", "USDC", 6)
        usdc.mint(depositor, usdc.convert_to_raw(Decimal(1000)))
        usdc.approve(depositor, vault.address, 2**256 - 1)
    """

    def __init__(self, address: HexAddress | str, name: str, symbol: str, decimals: int = 18):
        assert type(decimals) == int and decimals >= 0, f"Bad decimals: {decimals}"
        self._address = Web3.to_checksum_address(address)
        self.name = name
        self.symbol = symbol
        self._decimals = decimals
        self.balances: dict[HexAddress, int] = defaultdict(int)
        self.allowances: dict[tuple[HexAddress, HexAddress], int] = defaultdict(int)
        self.supply = 0

    def __repr__(self):
        return f"<{self.symbol} ({self.name}) at {self._address}, {self._decimals} decimals>"

    @property
    def address(self) -> HexAddress:
        return self._address

    @property
    def decimals(self) -> int:
        return self._decimals

    def convert_to_decimals(self, raw_amount: int) -> Decimal:
        """Convert raw token units to decimals."""
        return Decimal(raw_amount) / Decimal(10**self._decimals)

    def convert_to_raw(self, decimal_amount: Decimal) -> int:
        """Convert decimals to raw token units."""
        assert isinstance(decimal_amount, Decimal), f"Give amounts in decimal, got {type(decimal_amount)}"
        return int(decimal_amount * 10**self._decimals)

    def total_supply(self) -> int:
        return self.supply

    def balance_of(self, account: HexAddress | str) -> int:
        return self.balances.get(normalise_address(account), 0)

    def allowance(self, owner: HexAddress | str, spender: HexAddress | str) -> int:
        return self.allowances.get((normalise_address(owner), normalise_address(spender)), 0)

    def approve(self, owner: HexAddress | str, spender: HexAddress | str, amount: int):
        assert type(amount) == int and amount >= 0, f"Bad amount: {amount}"
        self.allowances[(normalise_address(owner), normalise_address(spender))] = amount

    def transfer(self, sender: HexAddress | str, to: HexAddress | str, amount: int):
        self._move(normalise_address(sender), normalise_address(to), amount)

    def transfer_from(self, spender: HexAddress | str, from_: HexAddress | str, to: HexAddress | str, amount: int):
        spender = normalise_address(spender)
        from_ = normalise_address(from_)
        allowed = self.allowances.get((from_, spender), 0)
        if allowed < amount:
            raise TransferFailed(f"{self.symbol}: allowance {allowed} of {spender} from {from_} does not cover {amount}")
        self._move(from_, normalise_address(to), amount)
        self.allowances[(from_, spender)] = allowed - amount

    def mint(self, to: HexAddress | str, amount: int):
        assert type(amount) == int and amount >= 0, f"Bad amount: {amount}"
        self.balances[normalise_address(to)] += amount
        self.supply += amount

    def burn(self, from_: HexAddress | str, amount: int):
        assert type(amount) == int and amount >= 0, f"Bad amount: {amount}"
        from_ = normalise_address(from_)
        balance = self.balances.get(from_, 0)
        if balance < amount:
            raise InsufficientFunds(f"{self.symbol}: cannot burn {amount} from {from_}, balance is {balance}")
        self.balances[from_] = balance - amount
        self.supply -= amount

    def _move(self, from_: HexAddress, to: HexAddress, amount: int):
        assert type(amount) == int and amount >= 0, f"Bad amount: {amount}"
        balance = self.balances.get(from_, 0)
        if balance < amount:
            raise TransferFailed(f"{self.symbol}: {from_} has {balance}, cannot transfer {amount}")
        self.balances[from_] = balance - amount
        self.balances[to] += amount
        logger.debug("%s transfer %d from %s to %s", self.symbol, amount, from_, to)
