"""Share vault with reward token distribution.

- Users deposit the vault asset and get shares, see :py:meth:`RewardVault.deposit`

- The operator funds reward tokens with :py:meth:`RewardVault.add_reward`

- Users collect rewards with :py:meth:`RewardVault.claim_all_reward`,
  paginated over the registered reward tokens

Every mutating operation runs as a ledger transaction:

- Nested calls, e.g. from a token transfer hook, raise :py:class:`~reward_vault.errors.ReentrancyError`

- Shares, snapshots and pool totals are updated first, transfers run last

- Any failure reverses the token movements already made, restores the vault
  state and drops the events of the operation. Reward payouts that have
  reached the user stay settled.

Example:

.. code-block:: python

    usdc = InMemoryToken(derive_address("usdc"), "USD Coin", "USDC", 6)
    vault = RewardVault(usdc, operator=operator)

    usdc.approve(alice, vault.address, 1000)
    vault.deposit(alice, 1000)

    reward_token.approve(operator, vault.address, 200)
    vault.add_reward(operator, reward_token, 200)

    next_position, total = vault.claim_all_reward(alice)
"""

import dataclasses
import logging
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass

from eth_typing import HexAddress
from web3 import Web3

from reward_vault import conversion
from reward_vault.claim import ClaimProcessor, RewardPayout
from reward_vault.config import VaultConfig
from reward_vault.errors import InsufficientFunds, ReentrancyError, TransferFailed, Unauthorized, ZeroAssets, ZeroShares
from reward_vault.events import CreatedToken, Deposit, EventLog, RewardAdded, RewardClaimed, VaultEvent, Withdraw
from reward_vault.ledger import PoolLedger
from reward_vault.math import MAX_UINT256
from reward_vault.position import PositionBook, UserPosition
from reward_vault.reward import RewardAccumulator, RewardRegistry
from reward_vault.token import FungibleToken, InMemoryToken, ShareToken
from reward_vault.utils import derive_address, normalise_address


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _StateCapture:
    """Copy of the mutable vault state, for rollback."""

    total_assets: int
    total_shares: int
    positions: dict
    snapshots: dict
    accumulators: dict
    ordered: list
    allowances: dict


@dataclass(slots=True, frozen=True)
class _Transfer:
    """Outbound or inbound token movement executed after the state update."""

    token: FungibleToken
    from_: HexAddress
    to: HexAddress
    amount: int

    #: Pulled with ``transfer_from()`` using the vault allowance
    pull: bool = False

    #: Set when the transfer pays out a settled reward
    payout: RewardPayout | None = None


@dataclass(slots=True, frozen=True)
class _JournalEntry:
    """A token movement made by the current operation.

    ``kind`` is one of ``pull``, ``send``, ``mint``, ``burn``.
    ``account`` is the user side of the movement.
    """

    kind: str
    token: FungibleToken
    account: HexAddress
    amount: int
    payout: RewardPayout | None = None


class RewardVault:
    """Share-based custody vault with multi-token rewards.

    - Amounts are raw integers in token units

    - Addresses can be given checksummed or lowercased

    - The ``caller`` argument of each mutating method is the account performing
      the operation, like ``msg.sender``
    """

    def __init__(
        self,
        asset: FungibleToken,
        operator: HexAddress | str,
        share_token: ShareToken | None = None,
        address: HexAddress | str | None = None,
        config: VaultConfig | None = None,
    ):
        """Create a vault.

        :param asset:
            The underlying asset ledger

        :param operator:
            Account allowed to fund rewards

        :param share_token:
            Share representation ledger.
            If not given, an :py:class:`~reward_vault.token.InMemoryToken` is created.

        :param address:
            Custody account of the vault.
            If not given, derived from the asset and operator.

        :param config:
            Vault parameters, defaults to :py:class:`VaultConfig` defaults
        """
        assert isinstance(asset, FungibleToken), f"Got {type(asset)}"

        self.config = config or VaultConfig()
        self.asset = asset
        self.asset_key = normalise_address(asset.address)
        self.operator = normalise_address(operator)

        if address is None:
            address = derive_address("reward-vault", self.asset_key, self.operator)
        self.address = Web3.to_checksum_address(address)
        self.key = normalise_address(self.address)

        self.ledger = PoolLedger()
        self.positions = PositionBook()
        self.rewards = RewardRegistry(self.config.reward_precision)
        self.claims = ClaimProcessor(self.positions, self.rewards, self.config.claim_batch_size)
        self.events = EventLog()

        #: Share allowances for withdrawals on behalf of an owner, (owner, spender) -> shares
        self.allowances: dict[tuple[HexAddress, HexAddress], int] = {}

        self._entered = False
        self._pending_events: list[VaultEvent] = []
        self._journal: list[_JournalEntry] = []

        if share_token is None:
            share_token = InMemoryToken(
                derive_address("share-token", self.key),
                self.config.share_name,
                self.config.share_symbol,
                asset.decimals,
            )
        assert isinstance(share_token, ShareToken), f"Got {type(share_token)}"
        self.share_token = share_token
        self.events.append([CreatedToken(token_address=share_token.address)])

        logger.info("Created vault %s for asset %s, share token %s", self.address, asset.address, share_token.address)

    def __repr__(self):
        return f"<RewardVault {self.address} assets:{self.ledger.total_assets} shares:{self.ledger.total_shares} rewards:{len(self.rewards)}>"

    #
    # Read surface
    #

    def total_assets(self) -> int:
        return self.ledger.total_assets

    def total_supply(self) -> int:
        return self.ledger.total_shares

    def get_position(self, user: HexAddress | str) -> UserPosition:
        return self.positions.get(normalise_address(user))

    def shares_of(self, user: HexAddress | str) -> int:
        return self.positions.get_shares(normalise_address(user))

    def assets_of(self, user: HexAddress | str) -> int:
        """Assets the user would get by redeeming all their shares."""
        return self.preview_redeem(self.shares_of(user))

    def assets_per_share(self) -> int:
        """Raw assets one whole share redeems for."""
        return self.preview_redeem(10**self.share_token.decimals)

    def max_deposit(self, receiver: HexAddress | str | None = None) -> int:
        return MAX_UINT256

    def max_mint(self, receiver: HexAddress | str | None = None) -> int:
        return MAX_UINT256

    def max_withdraw(self, owner: HexAddress | str) -> int:
        return self.assets_of(owner)

    def max_redeem(self, owner: HexAddress | str) -> int:
        return self.shares_of(owner)

    def preview_deposit(self, assets: int) -> int:
        return conversion.preview_deposit(assets, self.ledger.total_shares, self.ledger.total_assets)

    def preview_mint(self, shares: int) -> int:
        return conversion.preview_mint(shares, self.ledger.total_shares, self.ledger.total_assets)

    def preview_withdraw(self, assets: int) -> int:
        return conversion.preview_withdraw(assets, self.ledger.total_shares, self.ledger.total_assets)

    def preview_redeem(self, shares: int) -> int:
        return conversion.preview_redeem(shares, self.ledger.total_shares, self.ledger.total_assets)

    def convert_to_shares(self, assets: int) -> int:
        return conversion.convert_to_shares(assets, self.ledger.total_shares, self.ledger.total_assets)

    def convert_to_assets(self, shares: int) -> int:
        return conversion.convert_to_assets(shares, self.ledger.total_shares, self.ledger.total_assets)

    def allowance(self, owner: HexAddress | str, spender: HexAddress | str) -> int:
        return self.allowances.get((normalise_address(owner), normalise_address(spender)), 0)

    def reward_token_count(self) -> int:
        return len(self.rewards)

    def reward_tokens(self) -> list[HexAddress]:
        """Registered reward tokens in registration order."""
        return [a.address for a in self.rewards.iterate()]

    def get_reward_info(self, token: FungibleToken | HexAddress | str) -> RewardAccumulator | None:
        return self.rewards.get(self._token_key(token))

    def pending_reward(self, user: HexAddress | str, token: FungibleToken | HexAddress | str) -> int:
        """Reward the user would receive by claiming this token now."""
        return self.claims.calculate_pending(normalise_address(user), self._token_key(token))

    def pending_rewards(self, user: HexAddress | str) -> dict[HexAddress, int]:
        """Claimable amounts of all registered reward tokens."""
        user = normalise_address(user)
        return {a.address: self.claims.calculate_pending(user, a.address.lower()) for a in self.rewards.iterate()}

    def check_share_reconciliation(self) -> dict[HexAddress, tuple[int, int]]:
        """Compare user positions against the share token ledger.

        :return:
            Mismatching users, mapped to ``(position shares, share token balance)``.
            Empty when everything reconciles.
        """
        assert self.positions.get_total_shares() == self.ledger.total_shares, \
            f"Positions sum to {self.positions.get_total_shares()}, pool has {self.ledger.total_shares} shares"
        mismatches = {}
        for user, position in self.positions.positions.items():
            balance = self.share_token.balance_of(user)
            if balance != position.shares:
                mismatches[user] = (position.shares, balance)
        return mismatches

    #
    # Mutating operations
    #

    def approve(self, owner: HexAddress | str, spender: HexAddress | str, shares: int):
        """Allow ``spender`` to withdraw or redeem ``owner``'s shares."""
        assert type(shares) == int and shares >= 0, f"Bad share amount: {shares}"
        with self._transaction("approve"):
            self.allowances[(normalise_address(owner), normalise_address(spender))] = shares

    def deposit(self, caller: HexAddress | str, assets: int, receiver: HexAddress | str | None = None) -> int:
        """Deposit assets and mint shares to the receiver.

        :param caller:
            Account the assets are pulled from. Must have approved the vault.

        :param assets:
            Raw asset amount

        :param receiver:
            Account credited with the shares, defaults to the caller

        :return:
            Raw shares minted

        :raise ZeroShares:
            The deposit would mint nothing
        """
        caller, receiver = self._resolve_parties(caller, receiver)
        with self._transaction("deposit"):
            shares = self.preview_deposit(assets)
            if shares == 0:
                raise ZeroShares(f"Deposit of {assets} assets would mint zero shares")
            logger.info("Deposit %d assets for %d shares, caller %s, receiver %s", assets, shares, caller, receiver)
            self._enter(caller, receiver, assets, shares)
        return shares

    def mint(self, caller: HexAddress | str, shares: int, receiver: HexAddress | str | None = None) -> int:
        """Mint an exact amount of shares, paying the assets needed.

        :return:
            Raw assets pulled from the caller

        :raise ZeroAssets:
            The mint would cost nothing
        """
        caller, receiver = self._resolve_parties(caller, receiver)
        with self._transaction("mint"):
            assets = self.preview_mint(shares)
            if assets == 0:
                raise ZeroAssets(f"Minting {shares} shares would cost zero assets")
            logger.info("Mint %d shares for %d assets, caller %s, receiver %s", shares, assets, caller, receiver)
            self._enter(caller, receiver, assets, shares)
        return assets

    def withdraw(
        self,
        caller: HexAddress | str,
        assets: int,
        receiver: HexAddress | str | None = None,
        owner: HexAddress | str | None = None,
    ) -> int:
        """Withdraw an exact amount of assets, burning the shares needed.

        :param caller:
            Account performing the withdrawal.
            If not the owner, spends the owner's share allowance.

        :param receiver:
            Account receiving the assets, defaults to the caller

        :param owner:
            Account whose shares are burnt, defaults to the caller

        :return:
            Raw shares burnt

        :raise ZeroShares:
            The withdrawal would burn nothing
        """
        caller, receiver = self._resolve_parties(caller, receiver)
        owner = normalise_address(owner) if owner else caller
        with self._transaction("withdraw"):
            shares = self.preview_withdraw(assets)
            if shares == 0:
                raise ZeroShares(f"Withdrawal of {assets} assets would burn zero shares")
            logger.info("Withdraw %d assets for %d shares, owner %s, receiver %s", assets, shares, owner, receiver)
            self._exit(caller, receiver, owner, assets, shares)
        return shares

    def redeem(
        self,
        caller: HexAddress | str,
        shares: int,
        receiver: HexAddress | str | None = None,
        owner: HexAddress | str | None = None,
    ) -> int:
        """Burn an exact amount of shares for assets.

        :return:
            Raw assets sent to the receiver

        :raise ZeroAssets:
            The redemption would return nothing
        """
        caller, receiver = self._resolve_parties(caller, receiver)
        owner = normalise_address(owner) if owner else caller
        with self._transaction("redeem"):
            assets = self.preview_redeem(shares)
            if assets == 0:
                raise ZeroAssets(f"Redeeming {shares} shares would return zero assets")
            logger.info("Redeem %d shares for %d assets, owner %s, receiver %s", shares, assets, owner, receiver)
            self._exit(caller, receiver, owner, assets, shares)
        return assets

    def add_reward(self, caller: HexAddress | str, token: FungibleToken, amount: int) -> int:
        """Fund a reward token over the current share holders.

        - Only the operator can call this

        - The first funding registers the token at the end of the claim order

        :return:
            Fixed-point per-share increment

        :raise Unauthorized:
            Caller is not the operator

        :raise InsufficientFunds:
            Zero amount or no shares outstanding
        """
        assert isinstance(token, FungibleToken), f"Got {type(token)}"
        caller = normalise_address(caller)
        key = normalise_address(token.address)

        if caller != self.operator:
            raise Unauthorized(f"Only operator {self.operator} can add rewards, got {caller}")

        if key == self.asset_key:
            raise ValueError(f"Vault asset {token.address} cannot be a reward token")

        with self._transaction("add_reward"):
            delta = self.rewards.fund(key, token, amount, self.ledger.total_shares)
            if delta == 0:
                logger.warning("Reward %s of %d is below one unit per share and is lost to rounding", key, amount)
            transfers = [_Transfer(token, caller, self.key, amount, pull=True)]
            self._check_transfers(transfers)
            self._run_transfers(transfers)
            self._emit(RewardAdded(token_address=token.address, amount=amount, per_share_delta=delta))
        return delta

    def claim_all_reward(self, caller: HexAddress | str, start_position: int = 0) -> tuple[int, int]:
        """Claim rewards for a batch of registered reward tokens.

        Processes at most ``claim_batch_size`` tokens from ``start_position``.
        Call again with ``start_position + claim_batch_size`` to continue the sweep.

        :return:
            Tuple ``(start_position, total reward token count)``
        """
        user = normalise_address(caller)
        with self._transaction("claim_all_reward"):
            payouts, batch = self.claims.settle_batch(user, start_position)
            self._pay(payouts)
        logger.info(
            "Claimed %d payouts for %s, tokens %d-%d of %d",
            len(payouts),
            user,
            batch.start_position,
            batch.start_position + batch.processed,
            batch.total_token_count,
        )
        return batch.start_position, batch.total_token_count

    def claim_reward(self, caller: HexAddress | str, token: FungibleToken | HexAddress | str) -> int:
        """Claim a single reward token.

        :return:
            Raw amount paid, zero if nothing was owed
        """
        user = normalise_address(caller)
        key = self._token_key(token)
        if not self.rewards.is_registered(key):
            return 0
        with self._transaction("claim_reward"):
            payouts = self.claims.settle(user, [self.rewards.get(key)])
            self._pay(payouts)
        return sum(p.amount for p in payouts)

    #
    # Lifecycle hooks
    #

    def after_deposit(self, user: HexAddress, shares: int) -> list[RewardPayout]:
        """Credit shares to a position.

        - A new position snapshots all reward accumulators, so it does not earn
          rewards funded before it joined

        - An existing position settles pending rewards with its old balance first

        :return:
            Reward payouts to transfer
        """
        if not self.positions.has_position(user):
            snapshots = [(a.address.lower(), a.per_share_amount) for a in self.rewards.iterate()]
            self.positions.open(user, snapshots)
            payouts = []
        else:
            payouts = self.claims.settle_all(user)
        self.positions.credit(user, shares)
        return payouts

    def before_withdraw(self, user: HexAddress, shares: int) -> list[RewardPayout]:
        """Debit shares from a position, after settling rewards with the old balance.

        :return:
            Reward payouts to transfer

        :raise InsufficientFunds:
            User does not own enough shares
        """
        if self.positions.get_shares(user) < shares:
            raise InsufficientFunds(f"{user} owns {self.positions.get_shares(user)} shares, needs {shares}")
        payouts = self.claims.settle_all(user)
        self.positions.debit(user, shares)
        return payouts

    #
    # Internals
    #

    def _enter(self, caller: HexAddress, receiver: HexAddress, assets: int, shares: int):
        self.ledger.add(assets, shares)
        payouts = self.after_deposit(receiver, shares)

        # Pull first and mint last: both can be reversed if a payout fails in between
        transfers = [_Transfer(self.asset, caller, self.key, assets, pull=True)] + self._get_payout_transfers(payouts)
        self._check_transfers(transfers)
        self._run_transfers(transfers)
        self._mint_shares(receiver, shares)

        self._emit(Deposit(caller=caller, receiver=receiver, asset_amount=assets, share_amount=shares))
        self._emit_claims(payouts)

    def _exit(self, caller: HexAddress, receiver: HexAddress, owner: HexAddress, assets: int, shares: int):
        if caller != owner:
            allowed = self.allowances.get((owner, caller), 0)
            if allowed < shares:
                raise InsufficientFunds(f"{caller} may spend {allowed} shares of {owner}, needs {shares}")
            if allowed != MAX_UINT256:
                self.allowances[(owner, caller)] = allowed - shares

        payouts = self.before_withdraw(owner, shares)
        self.ledger.remove(assets, shares)

        # The asset leaves the vault last, after every step that can still fail
        transfers = self._get_payout_transfers(payouts) + [_Transfer(self.asset, self.key, receiver, assets)]
        self._check_transfers(transfers)
        self._burn_shares(owner, shares)
        self._run_transfers(transfers)

        self._emit(Withdraw(owner=owner, receiver=receiver, asset_amount=assets, share_amount=shares))
        self._emit_claims(payouts)

    def _pay(self, payouts: list[RewardPayout]):
        transfers = self._get_payout_transfers(payouts)
        self._check_transfers(transfers)
        self._run_transfers(transfers)
        self._emit_claims(payouts)

    def _get_payout_transfers(self, payouts: list[RewardPayout]) -> list[_Transfer]:
        return [_Transfer(p.token, self.key, p.user, p.amount, payout=p) for p in payouts]

    def _emit_claims(self, payouts: list[RewardPayout]):
        for p in payouts:
            self._emit(RewardClaimed(user=p.user, token_address=p.token.address, amount=p.amount))

    def _check_transfers(self, transfers: list[_Transfer]):
        """Check balances and allowances of all transfers before any is executed.

        Amounts moving out of the same account are summed.

        :raise TransferFailed:
            Balance or allowance is short
        """
        needed = defaultdict(int)
        for t in transfers:
            needed[(t.token, t.from_)] += t.amount
            if t.pull:
                allowed = t.token.allowance(t.from_, self.key)
                if allowed < t.amount:
                    raise TransferFailed(f"Allowance {allowed} of {t.from_} to vault does not cover {t.amount} of {t.token.address}")

        for (token, holder), amount in needed.items():
            balance = token.balance_of(holder)
            if balance < amount:
                raise TransferFailed(f"{holder} holds {balance} of {token.address}, needs {amount}")

    def _run_transfers(self, transfers: list[_Transfer]):
        """Perform token movements checked with :py:meth:`_check_transfers`.

        :raise TransferFailed:
            The token ledger failed
        """
        for t in transfers:
            if t.amount == 0:
                continue
            try:
                if t.pull:
                    t.token.transfer_from(self.key, t.from_, t.to, t.amount)
                else:
                    t.token.transfer(t.from_, t.to, t.amount)
            except TransferFailed:
                raise
            except Exception as e:
                raise TransferFailed(f"Transfer of {t.amount} {t.token.address} from {t.from_} to {t.to} failed: {e}") from e

            if t.pull:
                self._journal.append(_JournalEntry("pull", t.token, t.from_, t.amount))
            else:
                self._journal.append(_JournalEntry("send", t.token, t.to, t.amount, payout=t.payout))

    def _mint_shares(self, receiver: HexAddress, shares: int):
        self.share_token.mint(receiver, shares)
        self._journal.append(_JournalEntry("mint", self.share_token, receiver, shares))

    def _burn_shares(self, owner: HexAddress, shares: int):
        self.share_token.burn(owner, shares)
        self._journal.append(_JournalEntry("burn", self.share_token, owner, shares))

    def _unwind(self, journal: list[_JournalEntry]) -> list[RewardPayout]:
        """Reverse the token movements of a failed operation, newest first.

        - Pulled tokens are sent back from the vault

        - Minted shares are burnt and burnt shares minted again

        - Rewards paid out cannot be pulled back from the user

        :return:
            Reward payouts that stay delivered
        """
        delivered = []
        for entry in reversed(journal):
            if entry.kind == "send":
                if entry.payout is not None:
                    delivered.append(entry.payout)
                else:
                    logger.error("Cannot reverse %d of %s sent to %s", entry.amount, entry.token.address, entry.account)
                continue

            try:
                if entry.kind == "pull":
                    entry.token.transfer(self.key, entry.account, entry.amount)
                elif entry.kind == "mint":
                    entry.token.burn(entry.account, entry.amount)
                else:
                    entry.token.mint(entry.account, entry.amount)
            except Exception:
                logger.exception("Could not reverse %s of %d %s for %s", entry.kind, entry.amount, entry.token.address, entry.account)
        return delivered

    def _keep_settled(self, payouts: list[RewardPayout]):
        """Re-apply the settlement of rewards that were paid before a failure."""
        for p in payouts:
            accumulator = self.rewards.get(p.token_address)
            self.positions.set_snapshot(p.user, p.token_address, self.rewards.get_per_share_amount(p.token_address))
            accumulator.total_claimed += p.amount
            logger.warning("Reward payout of %d %s to %s was delivered before the failure and stays settled", p.amount, p.token_address, p.user)
        self.events.append([RewardClaimed(user=p.user, token_address=p.token.address, amount=p.amount) for p in payouts])

    def _emit(self, event: VaultEvent):
        self._pending_events.append(event)

    def _resolve_parties(self, caller, receiver) -> tuple[HexAddress, HexAddress]:
        caller = normalise_address(caller)
        receiver = normalise_address(receiver) if receiver else caller
        return caller, receiver

    def _token_key(self, token: FungibleToken | HexAddress | str) -> HexAddress:
        if isinstance(token, str):
            return normalise_address(token)
        return normalise_address(token.address)

    def _capture_state(self) -> _StateCapture:
        return _StateCapture(
            total_assets=self.ledger.total_assets,
            total_shares=self.ledger.total_shares,
            positions={u: (p.shares, p.exists) for u, p in self.positions.positions.items()},
            snapshots=dict(self.positions.snapshots),
            accumulators={k: dataclasses.replace(a) for k, a in self.rewards.accumulators.items()},
            ordered=list(self.rewards.ordered),
            allowances=dict(self.allowances),
        )

    def _restore_state(self, state: _StateCapture):
        self.ledger.total_assets = state.total_assets
        self.ledger.total_shares = state.total_shares
        self.positions.positions.clear()
        self.positions.positions.update({u: UserPosition(shares=s, exists=e) for u, (s, e) in state.positions.items()})
        self.positions.snapshots.clear()
        self.positions.snapshots.update(state.snapshots)
        self.rewards.accumulators.clear()
        self.rewards.accumulators.update(state.accumulators)
        self.rewards.ordered[:] = state.ordered
        self.allowances.clear()
        self.allowances.update(state.allowances)

    @contextmanager
    def _transaction(self, operation: str):
        """Run an operation atomically.

        :raise ReentrancyError:
            Another operation is in progress
        """
        if self._entered:
            raise ReentrancyError(f"Vault {self.address} re-entered by {operation}()")

        self._entered = True
        state = self._capture_state()
        self._pending_events = []
        self._journal = []
        try:
            yield
        except Exception as e:
            delivered = self._unwind(self._journal)
            self._restore_state(state)
            if delivered:
                self._keep_settled(delivered)
            logger.info("%s() rolled back: %s", operation, e)
            raise
        else:
            self.events.append(self._pending_events)
        finally:
            self._pending_events = []
            self._journal = []
            self._entered = False
