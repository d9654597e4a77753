from __future__ import annotations
import logging, httpx
from typing import Any
from ..domain.errors import TransientNetworkError
from ..domain.value_types import Address
from ..ports.indexer import IndexedEventSource, IndexedKind, IndexedRecord

log = logging.getLogger(__name__)

VAULT_EVENTS_QUERY = """
query GetVaultEvents($vaultAddress: String!, $first: Int!, $skip: Int!) {
  deposits(where: { vault: $vaultAddress }, orderBy: blockNumber, orderDirection: desc,
           first: $first, skip: $skip) { id blockNumber transactionHash }
  withdraws(where: { vault: $vaultAddress }, orderBy: blockNumber, orderDirection: desc,
            first: $first, skip: $skip) { id blockNumber transactionHash }
  transfers(where: { or: [{ from: $vaultAddress }, { to: $vaultAddress }] },
            orderBy: blockNumber, orderDirection: desc,
            first: $first, skip: $skip) { id blockNumber transactionHash }
}
"""

_KINDS: tuple[tuple[str, IndexedKind], ...] = (
    ("deposits", "deposit"), ("withdraws", "withdraw"), ("transfers", "transfer"),
)

class HttpxGraphSource(IndexedEventSource):
    def __init__(self, endpoint: str, timeout_s: int = 20, client: httpx.AsyncClient | None = None) -> None:
        self.endpoint = endpoint
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_s))

    async def fetch_page(self, vault: Address, first: int, skip: int) -> list[IndexedRecord]:
        payload = {"query": VAULT_EVENTS_QUERY,
                   "variables": {"vaultAddress": str(vault).lower(), "first": first, "skip": skip}}
        try:
            r = await self.client.post(self.endpoint, json=payload)
            r.raise_for_status()
            body: dict[str, Any] = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TransientNetworkError(f"GraphQL request failed: {e}") from e
        if body.get("errors"):
            raise TransientNetworkError(f"GraphQL errors: {body['errors']}")
        data = body.get("data") or {}
        out: list[IndexedRecord] = []
        for key, kind in _KINDS:
            for row in data.get(key) or []:
                out.append(IndexedRecord(
                    kind=kind,
                    block_number=int(row["blockNumber"]),
                    tx_hash=str(row.get("transactionHash") or "").lower(),
                    record_id=str(row.get("id") or ""),
                ))
        return out

    async def aclose(self) -> None:
        await self.client.aclose()
