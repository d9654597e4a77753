from __future__ import annotations
import asyncio, logging, time
from typing import Iterable

from ..domain.errors import ProviderError
from ..ports.rpc import LogProvider

log = logging.getLogger(__name__)


class BlockTimestampCache:
    """
    Per-run memo of block -> unix seconds. Concurrent lookups of the same block
    share one provider call. A block that cannot be fetched resolves to the
    current wall-clock time when ``fallback_to_now`` is set.
    """

    def __init__(self, provider: LogProvider, *, fallback_to_now: bool = True) -> None:
        self.provider = provider
        self.fallback_to_now = fallback_to_now
        self._cache: dict[int, int] = {}
        self._inflight: dict[int, asyncio.Future[int]] = {}
        self.calls = 0

    def __len__(self) -> int:
        return len(self._cache)

    async def _load(self, block_number: int) -> int:
        self.calls += 1
        try:
            return await self.provider.block_timestamp(block_number)
        except ProviderError as e:
            if not self.fallback_to_now:
                raise
            log.warning("timestamp for block %d unavailable (%s), using now", block_number, e)
            return int(time.time())

    async def get(self, block_number: int) -> int:
        if block_number in self._cache:
            return self._cache[block_number]
        fut = self._inflight.get(block_number)
        if fut is None:
            fut = asyncio.ensure_future(self._load(block_number))
            self._inflight[block_number] = fut
            try:
                ts = await fut
            finally:
                self._inflight.pop(block_number, None)
            self._cache[block_number] = ts
            return ts
        return await asyncio.shield(fut)

    async def resolve_many(self, blocks: Iterable[int], concurrency: int = 8) -> dict[int, int]:
        sem = asyncio.Semaphore(concurrency)

        async def one(bn: int) -> None:
            async with sem:
                await self.get(bn)

        wanted = sorted(set(blocks))
        await asyncio.gather(*(one(bn) for bn in wanted if bn not in self._cache))
        return {bn: self._cache[bn] for bn in wanted}
