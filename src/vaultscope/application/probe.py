from __future__ import annotations
import logging
from typing import Sequence

from ..domain.errors import RangeTooLarge
from ..domain.models import BlockRange, EventLog
from ..domain.value_types import Address, Topic0
from ..ports.rpc import LogProvider

log = logging.getLogger(__name__)


class RangeProbe:
    """
    Bounded log queries for one contract. A RangeTooLarge rejection halves the
    interval and recurses until a single block is left, at which point the
    provider error propagates. Every other error propagates unchanged.
    """

    def __init__(self, provider: LogProvider, address: Address) -> None:
        self.provider = provider
        self.address = address

    async def has_activity(self, rng: BlockRange, topic0s: Sequence[Topic0]) -> bool:
        try:
            logs = await self.provider.get_logs(self.address, topic0s, rng.start, rng.end)
            return len(logs) > 0
        except RangeTooLarge:
            if rng.span() == 1:
                raise
            left, right = rng.split()
            log.debug("probe %s rejected as too large, splitting", rng)
            return (await self.has_activity(left, topic0s)) or (await self.has_activity(right, topic0s))

    async def fetch_logs(self, rng: BlockRange, topic0s: Sequence[Topic0]) -> list[EventLog]:
        try:
            return await self.provider.get_logs(self.address, topic0s, rng.start, rng.end)
        except RangeTooLarge:
            if rng.span() == 1:
                raise
            left, right = rng.split()
            log.debug("fetch %s rejected as too large, splitting", rng)
            return (await self.fetch_logs(left, topic0s)) + (await self.fetch_logs(right, topic0s))
