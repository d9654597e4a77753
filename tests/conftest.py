"""Shared test helpers: an in-memory log provider and raw-log builders."""
from __future__ import annotations

import asyncio
from typing import Callable, Sequence

from vaultscope.application.vault_info import ASSET, DECIMALS, NAME, SYMBOL, TOTAL_ASSETS, TOTAL_SUPPLY
from vaultscope.domain.decoding import (
    DEPOSIT_MADE_T0, DEPOSIT_T0, TRANSFER_T0, VAULT_UPDATE_T0, WITHDRAW_T0,
)
from vaultscope.domain.errors import ContractCallError, RangeTooLarge
from vaultscope.domain.models import EventLog
from vaultscope.domain.value_types import Address, Topic0, ZERO_ADDRESS

VAULT = Address("0x" + "ab" * 20)
ALICE = Address("0x" + "11" * 20)
BOB = Address("0x" + "22" * 20)
CAROL = Address("0x" + "33" * 20)
UNDERLYING = Address("0x" + "44" * 20)
BASE_TS = 1_700_000_000


def topic_addr(addr: str) -> Topic0:
    return Topic0("0x" + "0" * 24 + addr[2:].lower())


def words(*values: int) -> str:
    return "0x" + "".join(v.to_bytes(32, "big").hex() for v in values)


def deposit_log(owner: str, assets: int, shares: int, block: int, log_index: int = 0,
                sender: str = CAROL) -> EventLog:
    return EventLog(VAULT, (DEPOSIT_T0, topic_addr(sender), topic_addr(owner)),
                    words(assets, shares), block, f"0x{block:064x}", log_index)


def withdraw_log(owner: str, assets: int, shares: int, block: int, log_index: int = 0) -> EventLog:
    return EventLog(VAULT, (WITHDRAW_T0, topic_addr(owner), topic_addr(owner), topic_addr(owner)),
                    words(assets, shares), block, f"0x{block:064x}", log_index)


def transfer_log(sender: str, recipient: str, value: int, block: int, log_index: int = 0) -> EventLog:
    return EventLog(VAULT, (TRANSFER_T0, topic_addr(sender), topic_addr(recipient)),
                    words(value), block, f"0x{block:064x}", log_index)


def mint_log(to: str, value: int, block: int, log_index: int = 0) -> EventLog:
    return transfer_log(ZERO_ADDRESS, to, value, block, log_index)


def vault_update_log(total_assets: int, total_shares: int, block: int, log_index: int = 0) -> EventLog:
    return EventLog(VAULT, (VAULT_UPDATE_T0,), words(total_assets, total_shares),
                    block, f"0x{block:064x}", log_index)


def deposit_made_log(user: str, amount: int, shares: int, block: int, log_index: int = 0) -> EventLog:
    return EventLog(VAULT, (DEPOSIT_MADE_T0, topic_addr(user)), words(amount, shares),
                    block, f"0x{block:064x}", log_index)


class FakeProvider:
    """
    In-memory LogProvider. Rejects spans above ``max_span`` and result sets
    above ``max_results`` with RangeTooLarge, like a capped RPC.
    ``contract_calls`` maps (to, calldata) to eth_call return data.
    ``fail_when(from, to)`` may return an exception to raise for a query.
    """

    def __init__(
        self,
        logs: Sequence[EventLog] = (),
        *,
        head: int = 1_000_000,
        max_span: int | None = None,
        max_results: int | None = None,
        fail_when: Callable[[int, int], Exception | None] | None = None,
        head_error: Exception | None = None,
        contract_calls: dict[tuple[str, str], str] | None = None,
    ) -> None:
        self.logs = list(logs)
        self.head = head
        self.max_span = max_span
        self.max_results = max_results
        self.fail_when = fail_when
        self.head_error = head_error
        self.contract_calls = contract_calls or {}
        self.calls: list[tuple[int, int]] = []
        self.timestamp_calls: list[int] = []
        self.closed = False

    async def latest_block(self) -> int:
        if self.head_error is not None:
            raise self.head_error
        return self.head

    async def block_timestamp(self, block_number: int) -> int:
        self.timestamp_calls.append(block_number)
        return BASE_TS + block_number

    async def get_logs(self, address: Address, topic0s: Sequence[Topic0],
                       from_block: int, to_block: int) -> list[EventLog]:
        self.calls.append((from_block, to_block))
        if self.fail_when is not None:
            err = self.fail_when(from_block, to_block)
            if err is not None:
                raise err
        if self.max_span is not None and to_block - from_block + 1 > self.max_span:
            raise RangeTooLarge(from_block, to_block)
        wanted = set(topic0s)
        out = [lg for lg in self.logs
               if from_block <= lg.block_number <= to_block
               and lg.address == address
               and (not wanted or lg.topic0 in wanted)]
        if self.max_results is not None and len(out) > self.max_results:
            raise RangeTooLarge(from_block, to_block)
        return out

    async def eth_call(self, to: Address, data: str) -> str:
        try:
            return self.contract_calls[(to.lower(), data)]
        except KeyError:
            raise ContractCallError(f"execution reverted: {to} {data}") from None

    async def aclose(self) -> None:
        self.closed = True


def abi_string(s: str) -> str:
    raw = s.encode()
    padded = raw + b"\0" * (-len(raw) % 32)
    return words(32, len(raw)) + padded.hex()


def vault_calls(vault: str = VAULT, *, name: str = "Test Vault", symbol: str = "tvUSDC", decimals: int = 6,
                total_assets: int = 1_000_000_000, total_supply: int = 950_000_000,
                asset_symbol: str | None = "USDC", asset_decimals: int = 6) -> dict[tuple[str, str], str]:
    """eth_call table for an ERC-4626 vault and its asset token."""
    calls = {
        (vault, NAME): abi_string(name),
        (vault, SYMBOL): abi_string(symbol),
        (vault, DECIMALS): words(decimals),
        (vault, ASSET): "0x" + topic_addr(UNDERLYING)[2:],
        (vault, TOTAL_ASSETS): words(total_assets),
        (vault, TOTAL_SUPPLY): words(total_supply),
    }
    if asset_symbol is not None:
        calls[(UNDERLYING, SYMBOL)] = abi_string(asset_symbol)
        calls[(UNDERLYING, DECIMALS)] = words(asset_decimals)
    return calls


class StallingProvider(FakeProvider):
    """FakeProvider whose getLogs hangs forever for spans matching ``stall_when``."""

    def __init__(self, logs: Sequence[EventLog] = (), *, stall_when: Callable[[int, int], bool], **kw) -> None:
        super().__init__(logs, **kw)
        self.stall_when = stall_when

    async def get_logs(self, address: Address, topic0s: Sequence[Topic0],
                       from_block: int, to_block: int) -> list[EventLog]:
        if self.stall_when(from_block, to_block):
            self.calls.append((from_block, to_block))
            await asyncio.Event().wait()
        return await super().get_logs(address, topic0s, from_block, to_block)
