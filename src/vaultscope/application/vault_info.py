from __future__ import annotations

import asyncio
import logging
from dataclasses import replace

from ..domain.decoding import decode_address, decode_string, decode_uint, function_selector
from ..domain.errors import ContractCallError, DecodeError, NotAVaultError
from ..domain.models import VaultInfo
from ..domain.value_types import Address
from ..ports.rpc import ContractReader

log = logging.getLogger(__name__)

NAME = function_selector("name()")
SYMBOL = function_selector("symbol()")
DECIMALS = function_selector("decimals()")
ASSET = function_selector("asset()")
TOTAL_ASSETS = function_selector("totalAssets()")
TOTAL_SUPPLY = function_selector("totalSupply()")


async def validate_vault(reader: ContractReader, address: Address) -> tuple[str, Address]:
    """
    ``symbol()`` and ``asset()`` must both answer for the address to count as
    an ERC-4626 vault. Returns (symbol, asset address).
    """
    try:
        symbol = decode_string(await reader.eth_call(address, SYMBOL))
        asset = decode_address(await reader.eth_call(address, ASSET))
    except (ContractCallError, DecodeError) as e:
        raise NotAVaultError(
            f"contract at {address} is not a valid ERC-4626 vault or does not exist on this network ({e})"
        ) from e
    log.info("validated vault %s: symbol=%s asset=%s", address, symbol, asset)
    return symbol, asset


async def read_vault_info(reader: ContractReader, address: Address) -> VaultInfo:
    """Vault and underlying asset metadata. Asset lookups fall back to TOKEN/18."""
    symbol, asset = await validate_vault(reader, address)
    try:
        name, decimals, total_assets, total_supply = await asyncio.gather(
            reader.eth_call(address, NAME),
            reader.eth_call(address, DECIMALS),
            reader.eth_call(address, TOTAL_ASSETS),
            reader.eth_call(address, TOTAL_SUPPLY),
        )
        info = VaultInfo(
            address=address,
            name=decode_string(name),
            symbol=symbol,
            decimals=decode_uint(decimals),
            total_assets=decode_uint(total_assets),
            total_supply=decode_uint(total_supply),
            asset_address=asset,
        )
    except (ContractCallError, DecodeError) as e:
        raise NotAVaultError(f"failed to fetch vault information for {address}: {e}") from e

    try:
        asset_symbol = decode_string(await reader.eth_call(asset, SYMBOL))
        asset_decimals = decode_uint(await reader.eth_call(asset, DECIMALS))
    except (ContractCallError, DecodeError) as e:
        log.warning("could not read asset token %s (%s), assuming TOKEN/18", asset, e)
        return info
    return replace(info, asset_symbol=asset_symbol, asset_decimals=asset_decimals)
