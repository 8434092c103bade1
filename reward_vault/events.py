"""Vault events.

Field order of :py:class:`Deposit`, :py:class:`Withdraw` and :py:class:`CreatedToken`
matches the on-chain event signatures, so external share ledgers can reconcile against them.
"""

import dataclasses
import datetime
from dataclasses import dataclass, field

import pandas as pd
from eth_typing import HexAddress


@dataclass(slots=True, frozen=True)
class VaultEvent:
    """Base class for events."""

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(slots=True, frozen=True)
class Deposit(VaultEvent):
    caller: HexAddress
    receiver: HexAddress
    asset_amount: int
    share_amount: int


@dataclass(slots=True, frozen=True)
class Withdraw(VaultEvent):
    owner: HexAddress
    receiver: HexAddress
    asset_amount: int
    share_amount: int


@dataclass(slots=True, frozen=True)
class CreatedToken(VaultEvent):
    token_address: HexAddress


@dataclass(slots=True, frozen=True)
class RewardAdded(VaultEvent):
    token_address: HexAddress
    amount: int

    #: Fixed-point increment of the reward-per-share accumulator
    per_share_delta: int


@dataclass(slots=True, frozen=True)
class RewardClaimed(VaultEvent):
    user: HexAddress
    token_address: HexAddress
    amount: int


@dataclass(slots=True)
class LoggedEvent:
    """Event with its sequence number in the log."""

    sequence: int
    event: VaultEvent
    timestamp: datetime.datetime


@dataclass(slots=True)
class EventLog:
    """Append-only log of committed vault events.

    Events of an operation are only appended when the operation succeeds.
    """

    entries: list[LoggedEvent] = field(default_factory=list)

    def __len__(self):
        return len(self.entries)

    def __iter__(self):
        return (e.event for e in self.entries)

    def append(self, events: list[VaultEvent]):
        now = datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)
        for event in events:
            self.entries.append(LoggedEvent(sequence=len(self.entries), event=event, timestamp=now))

    def filter(self, event_type: type[VaultEvent]) -> list[VaultEvent]:
        return [e.event for e in self.entries if isinstance(e.event, event_type)]

    def to_dataframe(self) -> pd.DataFrame:
        """Export the log for reconciliation and audit.

        - One row per event, columns are the union of all event fields

        - Amounts are kept as Python ints in ``object`` columns, as they may exceed 64 bits

        :return:
            DataFrame indexed by sequence number
        """
        rows = []
        for entry in self.entries:
            row = {"sequence": entry.sequence, "timestamp": entry.timestamp, "event": entry.event.name}
            row.update(dataclasses.asdict(entry.event))
            rows.append(row)

        if not rows:
            return pd.DataFrame(columns=["sequence", "timestamp", "event"]).set_index("sequence")

        df = pd.DataFrame(rows, dtype=object)
        return df.set_index("sequence")
