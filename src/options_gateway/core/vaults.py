"""
Trading against the protocol's underwriter vaults.

A vault serves one market and option type, named ``pSV-BASE/QUOTE-C`` or
``pSV-BASE/QUOTE-P``. Quotes are read-only calls; trades are sent from the
gateway wallet and must confirm before they are reported.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from eth_utils import keccak

from ..errors import UpstreamError, ValidationError
from ..interfaces import IChainClient
from ..types import ChainConfig, OptionDescriptor, TransactionStatus
from ..utils import format_ether, format_units, parse_ether, to_number
from .pool_keys import PoolKeyResolver

logger = logging.getLogger(__name__)

MAINNET_CHAIN_ID = 42161

# Reverts caused by the request rather than the vault
VAULT_USER_ERRORS = [
    "Vault__AboveMaxSlippage",
    "Vault__InsufficientFunds",
    "Vault__OptionExpired",
    "Vault__OptionPoolNotListed",
    "Vault__OutOfDeltaBounds",
    "Vault__OutOfDTEBounds",
    "Vault__StrikeZero",
    "Vault__TradeMustBeBuy",
    "Vault__ZeroSize",
]

_ERROR_SELECTORS = {"0x" + keccak(text=f"{name}()")[:4].hex(): name for name in VAULT_USER_ERRORS}


def vault_user_error(exc: BaseException) -> Optional[str]:
    """Revert reason of a user error, matched by name or by 4-byte selector"""
    text = " ".join(str(arg) for arg in exc.args) or str(exc)
    for name in VAULT_USER_ERRORS:
        if f"{name}(" in text:
            return f"execution reverted: {name}()"
    lowered = text.lower()
    for selector, name in _ERROR_SELECTORS.items():
        if selector in lowered:
            return f"execution reverted: {name}()"
    return None


class VaultDesk:
    """Quotes and trades against the configured vaults"""

    def __init__(self,
                 chain: IChainClient,
                 chain_config: ChainConfig,
                 resolver: PoolKeyResolver,
                 wallet_address: str,
                 referral_address: str,
                 confirmations: int = 1):
        self.chain = chain
        self.chain_config = chain_config
        self.resolver = resolver
        self.wallet_address = wallet_address
        self.referral_address = referral_address
        self.confirmations = confirmations

    def vault_name(self, option: OptionDescriptor) -> str:
        # Mainnet vaults are quoted in bridged USDC
        quote = option.quote
        if self.chain_config.chain_id == MAINNET_CHAIN_ID and quote == "USDC":
            quote = "USDCe"
        return f"pSV-{option.base}/{quote}-{option.option_type}"

    def vault_address(self, option: OptionDescriptor) -> str:
        name = self.vault_name(option)
        try:
            return self.chain_config.vaults[name]
        except KeyError:
            raise ValidationError("Vault does not exist")

    def _market(self, option: OptionDescriptor, size: Decimal, direction: str) -> Dict[str, Any]:
        return {
            "vault": self.vault_name(option),
            "strike": to_number(option.strike),
            "expiration": option.expiration,
            "size": to_number(size),
            "direction": direction,
        }

    def _premium(self, option: OptionDescriptor, value: int) -> float:
        # Call premiums are paid in the base token, put premiums in the quote token
        if option.is_call:
            return float(format_ether(value))
        return float(format_units(value, self.chain_config.token_decimals.get(option.quote, 6)))

    async def get_quote(self,
                        option: OptionDescriptor,
                        size: Decimal,
                        direction: str,
                        now: Optional[datetime] = None) -> Dict[str, Any]:
        """Vault premium and taker fee for trading size contracts"""
        vault = self.vault_address(option)
        pool_key = self.resolver.derive(option, now=now)
        try:
            size_wei = parse_ether(size)
        except ValueError as e:
            raise ValidationError(str(e))

        try:
            premium = await self.chain.call(
                vault, "getQuote", [pool_key.as_tuple(), size_wei, direction == "buy", self.wallet_address]
            )
            pool_address = await self.resolver.resolve_address(pool_key)
            taker_fee = await self.chain.call(pool_address, "takerFee", [vault, size_wei, 0, True, False])
        except Exception as e:
            logger.error(f"Vault quote failed for {self.vault_name(option)}: {e}")
            reason = vault_user_error(e)
            if reason:
                raise ValidationError(reason)
            raise UpstreamError("Failed to get quote from vault") from e

        return {
            "market": self._market(option, size, direction),
            "quote": self._premium(option, premium),
            "takerFee": self._premium(option, taker_fee),
        }

    async def trade(self,
                    option: OptionDescriptor,
                    size: Decimal,
                    direction: str,
                    premium_limit: Decimal,
                    now: Optional[datetime] = None) -> Dict[str, Any]:
        """Trade with a vault; premium_limit bounds the premium paid or received"""
        vault = self.vault_address(option)
        pool_key = self.resolver.derive(option, now=now)
        try:
            args = [pool_key.as_tuple(), parse_ether(size), direction == "buy", parse_ether(premium_limit),
                    self.referral_address]
        except ValueError as e:
            raise ValidationError(str(e))

        try:
            tx_hash = await self.chain.transact(vault, "trade", args)
            receipt = await self.chain.wait_for_confirmation(tx_hash, self.confirmations)
            if receipt.status != TransactionStatus.CONFIRMED:
                raise UpstreamError(f"Failed to confirm vault trade: {tx_hash}")
        except Exception as e:
            logger.error(f"Vault trade failed for {self.vault_name(option)}: {e}")
            raise UpstreamError("Failed to trade with vault") from e

        logger.info(f"Traded {size} {self.vault_name(option)} ({direction}) in block {receipt.block_number}")
        return {"market": self._market(option, size, direction)}
