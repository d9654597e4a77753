from __future__ import annotations
import asyncio, logging, httpx
from typing import Any, Sequence
from ..domain.errors import ContractCallError, ProviderError, RangeTooLarge, TransientNetworkError
from ..domain.models import EventLog
from ..domain.value_types import Address, Topic0
from ..ports.rpc import ContractReader, LogProvider

log = logging.getLogger(__name__)

# JSON-RPC error codes providers use for "too many blocks / results"
RANGE_ERROR_CODES = frozenset({-32005, -32614})
# Phrasings seen across providers for the same condition
RANGE_ERROR_MARKERS = (
    "query exceeds", "range too large", "block range", "too many blocks",
    "more than 10000 results", "response size exceeded", "limit exceeded",
    "query returned more than", "exceed maximum block range", "log response size",
)
# eth_call reverts: code 3 carries revert data, older nodes only say so in the message
REVERT_ERROR_CODES = frozenset({3})

def _to_hex_block(n: int) -> str: return hex(int(n))
def _is_topic_hash(x: str) -> bool: return isinstance(x, str) and x.startswith("0x") and len(x)==66

def _build_topics_param(topic0s: Sequence[Topic0]) -> list[list[str]]:
    """No topic0s means no topic filter at all."""
    t0s = [str(t).strip().lower() for t in topic0s]
    if not t0s:
        return []
    if not all(_is_topic_hash(x) for x in t0s):
        raise ValueError(f"Invalid topic0(s): {t0s}")
    return [t0s]

def classify_rpc_error(code: int | None, message: str | None, from_block: int, to_block: int) -> ProviderError:
    """The single place where provider error text is mapped onto the structured taxonomy."""
    msg = (message or "").lower()
    if code in REVERT_ERROR_CODES or "revert" in msg:
        return ContractCallError(f"RPC error code={code} message={message}")
    if code in RANGE_ERROR_CODES or any(m in msg for m in RANGE_ERROR_MARKERS):
        return RangeTooLarge(from_block, to_block, f"RPC error code={code} message={message}")
    return TransientNetworkError(f"RPC error code={code} message={message}")

class HttpxRPC(LogProvider, ContractReader):
    def __init__(self, rpc_url: str, timeout_s: int = 20, max_conn: int = 64,
                 client: httpx.AsyncClient | None = None, max_429_retries: int = 3) -> None:
        self.rpc_url = rpc_url
        self.max_429_retries = max_429_retries
        self.client = client or httpx.AsyncClient(
            http2=True,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max_conn//2),
        )

    async def _call(self, method: str, params: list[Any], *, span: tuple[int, int] = (0, 0)) -> Any:
        payload = {"jsonrpc":"2.0","id":1,"method":method,"params":params}
        # retry on 429 with simple backoff
        for attempt in range(self.max_429_retries):
            try:
                r = await self.client.post(self.rpc_url, json=payload)
            except httpx.TransportError as e:
                raise TransientNetworkError(f"{method}: {type(e).__name__}: {e}") from e
            if r.status_code == 429:
                ra = r.headers.get("Retry-After")
                delay = max(1.0, float(ra)) if ra and ra.isdigit() else (1.0 * (2**attempt))
                log.warning("%s rate limited, sleeping %.1fs", method, delay)
                await asyncio.sleep(delay); continue
            if r.status_code == 413:
                raise RangeTooLarge(span[0], span[1], f"{method}: HTTP 413")
            if r.status_code >= 400:
                raise TransientNetworkError(f"{method}: HTTP {r.status_code}")
            try:
                data = r.json()
            except ValueError as e:
                raise TransientNetworkError(f"{method}: malformed JSON response") from e
            if "error" in data:
                err = data["error"]
                code = err.get("code") if isinstance(err, dict) else None
                msg = err.get("message") if isinstance(err, dict) else str(err)
                raise classify_rpc_error(code, msg, span[0], span[1])
            return data.get("result")
        raise TransientNetworkError(f"Retries exhausted for {method}")

    async def latest_block(self) -> int:
        res = await self._call("eth_blockNumber", [])
        try:
            return int(res, 16)
        except (TypeError, ValueError) as e:
            raise TransientNetworkError(f"eth_blockNumber returned {res!r}") from e

    async def block_timestamp(self, block_number: int) -> int:
        res = await self._call("eth_getBlockByNumber", [_to_hex_block(block_number), False])
        if not res or "timestamp" not in res:
            raise TransientNetworkError(f"block {block_number} not available")
        return int(res["timestamp"], 16)

    async def get_logs(self, address: Address, topic0s: Sequence[Topic0], from_block: int, to_block: int) -> list[EventLog]:
        params = [{
            "address": str(address).lower(),
            "fromBlock": _to_hex_block(from_block),
            "toBlock": _to_hex_block(to_block),
            "topics": _build_topics_param(topic0s),
        }]
        res = await self._call("eth_getLogs", params, span=(from_block, to_block))
        if not isinstance(res, list):
            raise TransientNetworkError(f"eth_getLogs returned {type(res).__name__}")
        typed: list[EventLog] = []
        for rl in res:
            try:
                typed.append(EventLog(
                    address=Address(rl["address"].lower()),
                    topics=tuple(Topic0(t.lower()) for t in rl.get("topics", [])),
                    data_hex=str(rl.get("data") or "0x"),
                    block_number=int(rl["blockNumber"], 16),
                    tx_hash=(rl.get("transactionHash") or "").lower(),
                    log_index=int(rl.get("logIndex") or "0x0", 16),
                ))
            except (KeyError, TypeError, ValueError) as e:
                raise TransientNetworkError(f"malformed log in eth_getLogs result: {e}") from e
        return typed

    async def eth_call(self, to: Address, data: str) -> str:
        res = await self._call("eth_call", [{"to": str(to).lower(), "data": data}, "latest"])
        if not isinstance(res, str) or not res.startswith("0x"):
            raise TransientNetworkError(f"eth_call returned {res!r}")
        if res == "0x":
            # no code at the address, or a function the contract lacks without a fallback
            raise ContractCallError(f"eth_call to {to} returned no data")
        return res

    async def aclose(self) -> None:
        await self.client.aclose()
