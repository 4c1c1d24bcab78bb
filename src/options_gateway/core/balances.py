"""
Collateral sufficiency checks and wallet balance snapshots.
"""

import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from ..errors import InsufficientCollateral
from ..interfaces import IChainClient
from ..types import ChainConfig, FillableQuote, TokenBalance
from ..utils import format_ether, format_units
from .batch import Ok, run_isolated

logger = logging.getLogger(__name__)


def collateral_required(fill: FillableQuote) -> Decimal:
    """Notional of a fill in its collateral token.

    Calls are collateralized in the base token (one unit per contract), puts in
    the quote token (strike per contract).
    """
    pool_key = fill.record.pool_key
    if pool_key.is_call_pool:
        return fill.request.trade_size
    return fill.request.trade_size * format_ether(pool_key.strike)


def group_by_collateral(fills: Iterable[FillableQuote]) -> Dict[str, List[FillableQuote]]:
    groups: Dict[str, List[FillableQuote]] = OrderedDict()
    for fill in fills:
        groups.setdefault(fill.collateral_token.lower(), []).append(fill)
    return groups


class BalanceValidator:
    """Checks a balance snapshot against the aggregate notional of fills"""

    def __init__(self, chain_config: ChainConfig):
        self.chain_config = chain_config

    def _label(self, token_address: str) -> str:
        return self.chain_config.token_symbol(token_address) or token_address

    @staticmethod
    def _available(balances: Sequence[TokenBalance], token_address: str) -> Decimal:
        for balance in balances:
            if balance.token_address.lower() == token_address.lower():
                return format_units(balance.balance, balance.decimals)
        return Decimal(0)

    def check_group(self,
                    token_address: str,
                    fills: Sequence[FillableQuote],
                    balances: Sequence[TokenBalance]) -> None:
        required = sum((collateral_required(fill) for fill in fills), Decimal(0))
        available = self._available(balances, token_address)
        if required > available:
            raise InsufficientCollateral(self._label(token_address), required, available)

    def validate(self, fills: Sequence[FillableQuote], balances: Sequence[TokenBalance]) -> None:
        """Raise InsufficientCollateral for the first group that is not covered"""
        for token_address, group in group_by_collateral(fills).items():
            self.check_group(token_address, group, balances)

    def partition(self,
                  fills: Sequence[FillableQuote],
                  balances: Sequence[TokenBalance]
                  ) -> Tuple[List[FillableQuote], List[Tuple[FillableQuote, InsufficientCollateral]]]:
        """Split fills into covered ones and fills of uncovered groups"""
        covered: List[FillableQuote] = []
        rejected: List[Tuple[FillableQuote, InsufficientCollateral]] = []

        for token_address, group in group_by_collateral(fills).items():
            try:
                self.check_group(token_address, group, balances)
            except InsufficientCollateral as e:
                logger.warning(f"{e.message}", extra={"quote_ids": [fill.quote_id for fill in group]})
                rejected.extend((fill, e) for fill in group)
            else:
                covered.extend(group)

        return covered, rejected


class ChainBalanceProvider:
    """Reads collateral balances of every configured token from the chain"""

    def __init__(self, chain: IChainClient, chain_config: ChainConfig):
        self.chain = chain
        self.chain_config = chain_config

    async def get_balances(self, wallet: str) -> Tuple[List[TokenBalance], List[Dict[str, Any]]]:
        symbols = self.chain_config.supported_tokens

        async def read(symbol: str) -> TokenBalance:
            token_address = self.chain_config.token_address(symbol)
            raw = await self.chain.token_balance(token_address, wallet)
            decimals = self.chain_config.token_decimals.get(symbol)
            if decimals is None:
                decimals = await self.chain.token_decimals(token_address)
            return TokenBalance(
                token_address=token_address,
                symbol=symbol,
                balance=raw,
                decimals=decimals,
            )

        outcomes = await run_isolated(read, symbols)

        balances: List[TokenBalance] = []
        failures: List[Dict[str, Any]] = []
        for symbol, outcome in zip(symbols, outcomes):
            if isinstance(outcome, Ok):
                balances.append(outcome.value)
            else:
                failures.append({
                    "symbol": symbol,
                    "token_address": self.chain_config.tokens.get(symbol, ""),
                    "reason": outcome.reason,
                })

        if failures:
            logger.warning(f"Failed to read {len(failures)} token balance(s) for {wallet}")
        return balances, failures
