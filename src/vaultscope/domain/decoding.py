from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from eth_utils import keccak

from .errors import DecodeError
from .models import (
    ClassifiedEvent, DepositEvent, EventLog, TransferEvent, UnknownEvent,
    VaultUpdateEvent, WithdrawEvent,
)
from .value_types import Address, Topic0


def event_topic(signature: str) -> Topic0:
    """topic0 for a canonical event signature, e.g. ``Transfer(address,address,uint256)``."""
    return Topic0("0x" + keccak(text=signature).hex())


# Topic0 constants (lowercase, with "0x")
DEPOSIT_T0         = Topic0("0xdcbc1c05240f31ff3ad067ef1ee35ce4997762752e3a095284754544f4c709d7")
WITHDRAW_T0        = Topic0("0xfbde797d201c681b91056529119e0b02407c7bb96a4a2c75c01fc9667232c8db")
TRANSFER_T0        = Topic0("0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef")
VAULT_UPDATE_T0    = event_topic("VaultUpdate(uint256,uint256)")
DEPOSIT_MADE_T0    = event_topic("DepositMade(address,uint256,uint256)")
WITHDRAWAL_MADE_T0 = event_topic("WithdrawalMade(address,uint256,uint256)")

KNOWN_SIGNATURES: dict[Topic0, str] = {
    DEPOSIT_T0:         "Deposit(address,address,uint256,uint256)",
    WITHDRAW_T0:        "Withdraw(address,address,address,uint256,uint256)",
    TRANSFER_T0:        "Transfer(address,address,uint256)",
    VAULT_UPDATE_T0:    "VaultUpdate(uint256,uint256)",
    DEPOSIT_MADE_T0:    "DepositMade(address,uint256,uint256)",
    WITHDRAWAL_MADE_T0: "WithdrawalMade(address,uint256,uint256)",
}


@dataclass(slots=True, frozen=True)
class EventTopicSet:
    """Watched signatures. Optional members set to None are neither queried nor decoded."""
    deposit: Topic0 = DEPOSIT_T0
    withdraw: Topic0 = WITHDRAW_T0
    transfer: Topic0 = TRANSFER_T0
    vault_update: Topic0 | None = VAULT_UPDATE_T0
    deposit_made: Topic0 | None = DEPOSIT_MADE_T0
    withdrawal_made: Topic0 | None = WITHDRAWAL_MADE_T0

    def topic0s(self) -> list[Topic0]:
        """Ordered, de-duplicated topic0 filter for eth_getLogs."""
        out: list[Topic0] = []
        for t in (self.deposit, self.withdraw, self.transfer,
                  self.vault_update, self.deposit_made, self.withdrawal_made):
            if t is not None and t not in out:
                out.append(t)
        return out


DEFAULT_TOPICS = EventTopicSet()

# --------- 32B word slicing (no eth_abi) ---------------------------------------

def _word(b: bytes, i: int) -> bytes: o = i*32; return b[o:o+32]
def _u256(w: bytes) -> int: return int.from_bytes(w, "big")

def _addr_from_topic(t: str) -> Address:
    h = t[2:] if t[:2].lower() == "0x" else t
    return Address("0x" + h[-40:].lower())

def _data_bytes(data_hex: str) -> bytes:
    h = data_hex[2:] if data_hex[:2].lower() == "0x" else data_hex
    if len(h) % 2: h = "0" + h
    try:
        return bytes.fromhex(h) if h else b""
    except ValueError as e:
        raise DecodeError(f"data is not hex: {data_hex[:20]}...") from e

def _require(log: EventLog, data: bytes, *, topics: int, words: int, name: str) -> None:
    if len(log.topics) < topics or len(data) < 32 * words:
        raise DecodeError(
            f"{name} log {log.tx_hash}:{log.log_index} has {len(log.topics)} topics "
            f"and {len(data)} data bytes (need {topics} and {32 * words})"
        )

# ---------------------------- public API --------------------------------------

def decode_log(log: EventLog, topics: EventTopicSet = DEFAULT_TOPICS) -> ClassifiedEvent:
    """
    Classify one raw log. Unwatched signatures come back as UnknownEvent;
    a watched signature with the wrong shape raises DecodeError.
    """
    t0 = log.topic0
    bn, txh, li = log.block_number, log.tx_hash, log.log_index
    if t0 is None:
        return UnknownEvent(None, bn, txh, li)

    # Deposit(address indexed sender, address indexed owner, uint256 assets, uint256 shares)
    if t0 == topics.deposit:
        data = _data_bytes(log.data_hex)
        _require(log, data, topics=3, words=2, name="Deposit")
        return DepositEvent(_addr_from_topic(log.topics[2]),
                            _u256(_word(data, 0)), _u256(_word(data, 1)), bn, txh, li)

    # Withdraw(address indexed sender, address indexed receiver, address indexed owner, uint256 assets, uint256 shares)
    if t0 == topics.withdraw:
        data = _data_bytes(log.data_hex)
        _require(log, data, topics=4, words=2, name="Withdraw")
        return WithdrawEvent(_addr_from_topic(log.topics[3]),
                             _u256(_word(data, 0)), _u256(_word(data, 1)), bn, txh, li)

    # Transfer(address indexed from, address indexed to, uint256 value)
    if t0 == topics.transfer:
        data = _data_bytes(log.data_hex)
        _require(log, data, topics=3, words=1, name="Transfer")
        return TransferEvent(_addr_from_topic(log.topics[1]), _addr_from_topic(log.topics[2]),
                             _u256(_word(data, 0)), bn, txh, li)

    # VaultUpdate(uint256 totalAssets, uint256 totalShares)
    if topics.vault_update is not None and t0 == topics.vault_update:
        data = _data_bytes(log.data_hex)
        _require(log, data, topics=1, words=2, name="VaultUpdate")
        return VaultUpdateEvent(_u256(_word(data, 0)), _u256(_word(data, 1)), bn, txh, li)

    # DepositMade / WithdrawalMade(address indexed user, uint256 amount, uint256 shares)
    if topics.deposit_made is not None and t0 == topics.deposit_made:
        data = _data_bytes(log.data_hex)
        _require(log, data, topics=2, words=2, name="DepositMade")
        return DepositEvent(_addr_from_topic(log.topics[1]),
                            _u256(_word(data, 0)), _u256(_word(data, 1)), bn, txh, li)
    if topics.withdrawal_made is not None and t0 == topics.withdrawal_made:
        data = _data_bytes(log.data_hex)
        _require(log, data, topics=2, words=2, name="WithdrawalMade")
        return WithdrawEvent(_addr_from_topic(log.topics[1]),
                             _u256(_word(data, 0)), _u256(_word(data, 1)), bn, txh, li)

    return UnknownEvent(t0, bn, txh, li)


def label_topics(topic0s: Sequence[Topic0]) -> dict[Topic0, str | None]:
    """Map each topic0 to its known signature (None when unknown)."""
    return {t: KNOWN_SIGNATURES.get(Topic0(t.lower())) for t in topic0s}


# --------- view calls (no-argument getters) -----------------------------------

def function_selector(signature: str) -> str:
    """4-byte selector as calldata, e.g. ``symbol()`` -> ``0x95d89b41``."""
    return "0x" + keccak(text=signature)[:4].hex()


def decode_uint(result_hex: str) -> int:
    data = _data_bytes(result_hex)
    if len(data) < 32:
        raise DecodeError(f"expected a uint256 word, got {len(data)} bytes")
    return _u256(_word(data, 0))


def decode_address(result_hex: str) -> Address:
    data = _data_bytes(result_hex)
    if len(data) < 32:
        raise DecodeError(f"expected an address word, got {len(data)} bytes")
    return Address("0x" + data[12:32].hex())


def decode_string(result_hex: str) -> str:
    """ABI ``string`` return value; a bare bytes32 (older tokens) is accepted too."""
    data = _data_bytes(result_hex)
    if len(data) == 32:
        return data.rstrip(b"\0").decode("utf-8", errors="replace")
    if len(data) < 64:
        raise DecodeError(f"expected an ABI string, got {len(data)} bytes")
    offset = _u256(_word(data, 0))
    if offset + 32 > len(data):
        raise DecodeError(f"string offset {offset} out of bounds")
    length = _u256(data[offset:offset + 32])
    body = data[offset + 32:offset + 32 + length]
    if len(body) != length:
        raise DecodeError(f"string length {length} out of bounds")
    return body.decode("utf-8", errors="replace")
