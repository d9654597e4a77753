from __future__ import annotations
import asyncio, logging
from typing import Awaitable, Callable, Sequence, TypeVar

from ..domain.errors import TransientNetworkError
from ..domain.models import EventLog
from ..domain.value_types import Address, Topic0
from ..ports.rpc import ContractReader, LogProvider

log = logging.getLogger(__name__)
T = TypeVar("T")


class RetryingProvider(LogProvider, ContractReader):
    """
    Wraps a provider and retries TransientNetworkError with linear backoff
    (backoff_s * attempt). RangeTooLarge is never retried here; it belongs to
    the splitting logic.
    """

    def __init__(self, inner: LogProvider, retries: int = 3, backoff_s: float = 0.8) -> None:
        self.inner = inner
        self.retries = retries
        self.backoff_s = backoff_s

    async def _retry(self, what: str, fn: Callable[[], Awaitable[T]]) -> T:
        tries = 0
        while True:
            tries += 1
            try:
                return await fn()
            except TransientNetworkError as e:
                if tries >= self.retries:
                    raise
                log.warning("%s failed (%s), retry %d/%d", what, e, tries, self.retries - 1)
                await asyncio.sleep(self.backoff_s * tries)

    async def latest_block(self) -> int:
        return await self._retry("latest_block", self.inner.latest_block)

    async def block_timestamp(self, block_number: int) -> int:
        return await self._retry(f"block_timestamp({block_number})",
                                 lambda: self.inner.block_timestamp(block_number))

    async def get_logs(self, address: Address, topic0s: Sequence[Topic0],
                       from_block: int, to_block: int) -> list[EventLog]:
        return await self._retry(f"get_logs {from_block}-{to_block}",
                                 lambda: self.inner.get_logs(address, topic0s, from_block, to_block))

    async def eth_call(self, to: Address, data: str) -> str:
        # only for inner providers that also implement ContractReader
        return await self._retry(f"eth_call {to} {data[:10]}",
                                 lambda: self.inner.eth_call(to, data))  # type: ignore[attr-defined]
