from __future__ import annotations

from dataclasses import dataclass, replace

from eth_utils import is_address

from .domain.decoding import DEFAULT_TOPICS, EventTopicSet
from .domain.errors import ConfigError


@dataclass(frozen=True)
class ChainInfo:
    name: str
    rpc_url: str
    explorer: str


CHAINS: dict[int, ChainInfo] = {
    1:     ChainInfo("Ethereum", "https://ethereum.publicnode.com", "https://etherscan.io"),
    42161: ChainInfo("Arbitrum", "https://arbitrum-one.publicnode.com", "https://arbiscan.io"),
    8453:  ChainInfo("Base", "https://base.publicnode.com", "https://basescan.org"),
    10:    ChainInfo("Optimism", "https://optimism.publicnode.com", "https://optimistic.etherscan.io"),
    9745:  ChainInfo("Plasma", "https://rpc.plasma.to", "https://plasmascan.to"),
}


@dataclass(frozen=True)
class AnalysisConfig:
    """Immutable settings for one vault analysis run."""

    address: str
    rpc_url: str = ""
    topics: EventTopicSet = DEFAULT_TOPICS
    max_probe_width: int = 10_000          # provider-safe eth_getLogs span
    chunk_size: int = 5_000                # RangeSubdivider granularity
    scan_chunk_size: int = 2_000           # ChunkedLogScanner granularity
    scan_window_blocks: int = 5_000        # fallback window back from head
    discovery_span_blocks: int = 500_000   # discovery look-back when no deployment block is known
    deployment_block: int | None = None
    merge_gap_threshold: int = 100         # indexed-source block clustering
    max_event_budget: int | None = None    # None = no early stop
    pacing_s: float = 0.1
    concurrency: int = 8
    retries: int = 3
    retry_backoff_s: float = 0.8
    timeout_s: int = 20
    graph_endpoint: str | None = None

    def __post_init__(self) -> None:
        # keep addresses lowercase everywhere in the core
        object.__setattr__(self, "address", self.address.strip().lower())
        self.validate()

    def validate(self) -> None:
        if not is_address(self.address):
            raise ConfigError(f"not a valid contract address: {self.address!r}")
        if self.max_probe_width < 1:
            raise ConfigError("max_probe_width must be >= 1")
        if not 1 <= self.chunk_size <= self.max_probe_width:
            raise ConfigError(f"chunk_size must be in [1, max_probe_width={self.max_probe_width}]")
        if not 1 <= self.scan_chunk_size <= self.max_probe_width:
            raise ConfigError(f"scan_chunk_size must be in [1, max_probe_width={self.max_probe_width}]")
        if self.scan_window_blocks < 1 or self.discovery_span_blocks < 1:
            raise ConfigError("scan_window_blocks and discovery_span_blocks must be >= 1")
        if self.deployment_block is not None and self.deployment_block < 0:
            raise ConfigError("deployment_block must be >= 0")
        if self.merge_gap_threshold < 0:
            raise ConfigError("merge_gap_threshold must be >= 0")
        if self.max_event_budget is not None and self.max_event_budget < 1:
            raise ConfigError("max_event_budget must be >= 1 when set")
        if self.concurrency < 1 or self.retries < 1:
            raise ConfigError("concurrency and retries must be >= 1")
        if self.pacing_s < 0 or self.retry_backoff_s < 0:
            raise ConfigError("delays must be >= 0")

    @classmethod
    def for_chain(cls, chain_id: int, address: str, **overrides: object) -> AnalysisConfig:
        chain = CHAINS.get(chain_id)
        if chain is None:
            raise ConfigError(f"unsupported chain id {chain_id}; known: {sorted(CHAINS)}")
        overrides.setdefault("rpc_url", chain.rpc_url)
        return cls(address=address, **overrides)  # type: ignore[arg-type]

    def with_overrides(self, **changes: object) -> AnalysisConfig:
        return replace(self, **changes)  # type: ignore[arg-type]
