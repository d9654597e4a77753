from __future__ import annotations
from dataclasses import dataclass
from typing import ClassVar, Union
from .value_types import Address, EventKind, Topic0, Status

@dataclass(slots=True, frozen=True)
class BlockRange:
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.end < self.start:
            raise ValueError(f"invalid block range [{self.start}, {self.end}]")

    def span(self) -> int: return self.end - self.start + 1

    def split(self) -> tuple[BlockRange, BlockRange]:
        """Halve at the midpoint. Callers must not split a single block."""
        mid = (self.start + self.end) // 2
        return BlockRange(self.start, mid), BlockRange(mid + 1, self.end)

    def __str__(self) -> str: return f"{self.start}-{self.end}"

@dataclass(slots=True, frozen=True)
class ActiveRange:
    start: int
    end: int

    @property
    def block_count(self) -> int: return self.end - self.start + 1

    def as_range(self) -> BlockRange: return BlockRange(self.start, self.end)

@dataclass(slots=True, frozen=True)
class EventLog:
    address: Address
    topics: tuple[Topic0, ...]      # lowercased with 0x
    data_hex: str                   # hex with 0x (or "0x")
    block_number: int
    tx_hash: str
    log_index: int

    @property
    def topic0(self) -> Topic0 | None:
        return self.topics[0] if self.topics else None

# ---------------- classified events ----------------

@dataclass(slots=True, frozen=True)
class DepositEvent:
    owner: Address
    assets: int
    shares: int
    block_number: int
    tx_hash: str
    log_index: int
    synthetic: bool = False     # inferred from a mint Transfer
    kind: ClassVar[EventKind] = "Deposit"

@dataclass(slots=True, frozen=True)
class WithdrawEvent:
    owner: Address
    assets: int
    shares: int
    block_number: int
    tx_hash: str
    log_index: int
    synthetic: bool = False     # inferred from a burn Transfer
    kind: ClassVar[EventKind] = "Withdraw"

@dataclass(slots=True, frozen=True)
class TransferEvent:
    sender: Address             # `from` in the ABI
    recipient: Address          # `to` in the ABI
    value: int
    block_number: int
    tx_hash: str
    log_index: int
    kind: ClassVar[EventKind] = "Transfer"

@dataclass(slots=True, frozen=True)
class VaultUpdateEvent:
    total_assets: int
    total_shares: int
    block_number: int
    tx_hash: str
    log_index: int
    kind: ClassVar[EventKind] = "VaultUpdate"

@dataclass(slots=True, frozen=True)
class UnknownEvent:
    topic0: Topic0 | None
    block_number: int
    tx_hash: str
    log_index: int
    kind: ClassVar[EventKind] = "Unknown"

ClassifiedEvent = Union[DepositEvent, WithdrawEvent, TransferEvent, VaultUpdateEvent, UnknownEvent]

# ---------------- ledger ----------------

@dataclass(slots=True)
class AddressPosition:
    address: Address
    first_activity: int         # unix seconds
    last_activity: int
    total_deposits: int = 0
    total_withdrawals: int = 0
    net_shares: int = 0         # signed; may go negative under out-of-order replay
    deposit_count: int = 0
    withdrawal_count: int = 0

    @property
    def net_position(self) -> int:
        """Signed, never clamped."""
        return self.total_deposits - self.total_withdrawals

# ---------------- scan bookkeeping ----------------

@dataclass(slots=True, frozen=True)
class ChunkRec:
    from_block: int
    to_block: int
    status: Status
    logs: int = 0
    decoded: int = 0
    error: str | None = None

# ---------------- vault metadata ----------------

@dataclass(slots=True, frozen=True)
class VaultInfo:
    address: Address
    name: str
    symbol: str
    decimals: int               # share token decimals
    total_assets: int           # raw, asset units
    total_supply: int           # raw, share units
    asset_address: Address
    asset_symbol: str = "TOKEN"
    asset_decimals: int = 18
