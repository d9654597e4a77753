from __future__ import annotations


class VaultscopeError(Exception):
    """Base class for every error raised by vaultscope."""


class ConfigError(VaultscopeError, ValueError):
    """Invalid analysis configuration."""


class ProviderError(VaultscopeError):
    """A query provider call failed."""


class RangeTooLarge(ProviderError):
    """The provider rejected a query because its block span or result count is too large.

    Always recoverable by splitting the interval, except for a single block.
    """

    def __init__(self, from_block: int, to_block: int, message: str = "") -> None:
        self.from_block = from_block
        self.to_block = to_block
        super().__init__(message or f"range too large: [{from_block}, {to_block}]")


class TransientNetworkError(ProviderError):
    """Network failure or malformed response; retry with backoff."""


class DecodeError(VaultscopeError):
    """A log carries a known signature but its topics/data do not match it."""


class EmptyLedgerError(VaultscopeError):
    """Neither canonical nor inferred extraction produced any deposit or withdrawal."""


class ContractCallError(ProviderError):
    """eth_call reverted or the target has no code."""


class NotAVaultError(VaultscopeError):
    """The address does not answer the ERC-4626 view functions."""
