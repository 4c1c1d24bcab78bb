"""
Settlement orchestration for batch quote and position operations.

Every batch endpoint validates the whole request up front, then runs one
independent task per item (or per pool, for cancellations), joins all of
them and partitions the outcomes. A failing item never aborts its siblings.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..errors import (
    NoBalanceToSettle, NothingToAnnihilate, OptionNotExpired, UpstreamError,
    ValidationError, error_reason,
)
from ..interfaces import IBalanceProvider, IChainClient
from ..types import (
    BatchResult, ChainConfig, FailedItem, FillableQuote, FillRequest,
    OptionDescriptor, OrderbookQuote, PoolKey, PublishQuote, QuoteRequest,
    Side, TokenApproval, TokenType, TransactionResult, TransactionStatus,
)
from ..utils import MAX_UINT256, canonical_quote_id, parse_ether, parse_units, utc_now
from .balances import BalanceValidator
from .batch import Ok, check_batch_size, partition, run_isolated
from .expiration import has_expired, maturity_timestamp
from .pool_keys import PoolKeyResolver
from .proxy import OrderbookProxy, normalize_quote, normalize_rejected_quote
from .signing import QuoteSigner

logger = logging.getLogger(__name__)

MIN_DEADLINE_SECONDS = 60
DEADLINE_ERROR = "deadline is invalid (cannot be less than 60 sec)"
QUOTE_NOT_ACTIVE = "quote is not active in the orderbook"
TRADE_SIZE_TOO_LARGE = "tradeSize > fillableSize"


class SettlementOrchestrator:
    """Drives quote lifecycle and settlement batches against the orderbook and the chain"""

    def __init__(self,
                 chain: IChainClient,
                 chain_config: ChainConfig,
                 resolver: PoolKeyResolver,
                 signer: QuoteSigner,
                 proxy: OrderbookProxy,
                 balance_provider: IBalanceProvider,
                 wallet_address: str,
                 referral_address: str,
                 confirmations: int = 1):
        self.chain = chain
        self.chain_config = chain_config
        self.resolver = resolver
        self.signer = signer
        self.proxy = proxy
        self.balance_provider = balance_provider
        self.validator = BalanceValidator(chain_config)
        self.wallet_address = wallet_address
        self.referral_address = referral_address
        self.confirmations = confirmations

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    async def _execute(self, address: str, method: str, args: Sequence[Any]) -> TransactionResult:
        """Send a transaction and wait for its confirmation"""
        tx_hash = await self.chain.transact(address, method, args)
        receipt = await self.chain.wait_for_confirmation(tx_hash, self.confirmations)
        if receipt.status != TransactionStatus.CONFIRMED:
            raise UpstreamError(f"{method} transaction {tx_hash} reverted")

        logger.info(f"{method} confirmed in block {receipt.block_number}", extra={"tx_hash": tx_hash})
        return receipt

    def check_descriptors(self, options: Sequence[OptionDescriptor]) -> None:
        """Schema-level checks that reject the whole batch"""
        supported = set(self.chain_config.supported_tokens)
        for option in options:
            for symbol in (option.base, option.quote):
                if symbol not in supported:
                    raise ValidationError(f"Token {symbol} is not supported")
            if option.strike <= 0:
                raise ValidationError(f"strike must be > 0, got {option.strike}")

    @staticmethod
    def _check_unique(quote_ids: Sequence[str]) -> None:
        if len({canonical_quote_id(quote_id) for quote_id in quote_ids}) != len(quote_ids):
            raise ValidationError("quoteIds must be unique")

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    async def post_quotes(self,
                          requests: Sequence[QuoteRequest],
                          now: Optional[datetime] = None) -> Tuple[int, Any]:
        """Sign quotes and publish them to the orderbook.

        Any invalid quote rejects the whole batch before anything is signed.
        Returns the upstream status code and the normalized response body.
        """
        now = now or utc_now()
        ts = int(now.timestamp())
        self.check_descriptors([request.option for request in requests])

        prepared: List[Tuple[QuoteRequest, PoolKey, int, int, int]] = []
        for request in requests:
            if request.deadline < MIN_DEADLINE_SECONDS:
                raise ValidationError(DEADLINE_ERROR)
            pool_key = self.resolver.derive(request.option, now=now)
            try:
                size, price = parse_ether(request.size), parse_ether(request.price)
            except ValueError as e:
                raise ValidationError(str(e))
            prepared.append((request, pool_key, ts + request.deadline, size, price))

        async def sign(item: Tuple[QuoteRequest, PoolKey, int, int, int]) -> PublishQuote:
            request, pool_key, deadline, size, price = item
            pool_address = await self.resolver.resolve_address(pool_key)
            quote = self.signer.build_quote(
                size=size,
                is_buy=request.side == Side.BID,
                price=price,
                deadline=deadline,
                taker=request.taker,
            )
            signature = self.signer.sign_quote(pool_address, quote)
            return PublishQuote(pool_key=pool_key, quote=quote, signature=signature)

        outcomes = await run_isolated(sign, prepared)
        for outcome in outcomes:
            if not isinstance(outcome, Ok):
                raise outcome.error

        serialized = [outcome.value.serialize(self.chain_config.chain_id) for outcome in outcomes]
        logger.debug(f"Publishing {len(serialized)} signed quote(s)")
        response = await self.proxy.post_quotes(serialized)

        if response.status_code not in (200, 201):
            raise UpstreamError(
                "Orderbook rejected quotes",
                status_code=response.status_code,
                payload=response.data,
            )

        data = response.data
        body = {
            "failed": [
                {
                    "reason": failure.get("reason"),
                    "quote": normalize_rejected_quote(failure["quote"], self.chain_config),
                }
                for failure in data.get("failed", [])
            ],
            "exists": [normalize_quote(record, self.chain_config) for record in data.get("exists", [])],
        }
        if response.status_code == 201:
            body = {
                "created": [normalize_quote(record, self.chain_config) for record in data.get("created", [])],
                **body,
            }
        return response.status_code, body

    async def fill_quotes(self, requests: Sequence[FillRequest]) -> BatchResult[FillRequest]:
        """Fill active quotes on-chain.

        Requests are matched against freshly fetched active quotes. Fills are
        grouped by collateral token and a group whose aggregate notional is not
        covered by the wallet balance fails as a whole without execution.
        """
        check_batch_size(requests)
        quote_ids = [request.quote_id for request in requests]
        self._check_unique(quote_ids)

        records = await self.proxy.get_active_quotes([canonical_quote_id(quote_id) for quote_id in quote_ids])
        active = {canonical_quote_id(record.quote_id): record for record in records}
        failures: Dict[str, str] = {}
        fillable: List[FillableQuote] = []
        for request in requests:
            record = active.get(canonical_quote_id(request.quote_id))
            if record is None:
                failures[request.quote_id] = QUOTE_NOT_ACTIVE
            else:
                fillable.append(FillableQuote(request=request, record=record))

        if fillable:
            balances, balance_failures = await self.balance_provider.get_balances(self.wallet_address)
            if balance_failures:
                logger.warning(f"Missing collateral balances: {balance_failures}")

            covered, rejected = self.validator.partition(fillable, balances)
            for fill, error in rejected:
                failures[fill.quote_id] = error.message

            outcomes = await run_isolated(self._fill, covered)
            for fill, outcome in zip(covered, outcomes):
                if not isinstance(outcome, Ok):
                    failures[fill.quote_id] = outcome.reason

        result: BatchResult[FillRequest] = BatchResult()
        for request in requests:
            if request.quote_id in failures:
                result.failed.append(FailedItem(item=request, reason=failures[request.quote_id]))
            else:
                result.success.append(request)

        logger.info(f"Filled {len(result.success)} of {len(requests)} quote(s)")
        return result

    async def _fill(self, fill: FillableQuote) -> TransactionResult:
        trade_size = parse_ether(fill.request.trade_size)
        if trade_size > fill.record.fillable_size:
            raise ValidationError(TRADE_SIZE_TOO_LARGE)

        record = fill.record
        logger.debug(f"Filling quote {record.quote_id} on {record.pool_address}")
        return await self._execute(
            record.pool_address,
            "fillQuoteOB",
            [record.quote.as_tuple(), trade_size, record.signature.as_tuple(), self.referral_address],
        )

    async def cancel_quotes(self, quote_ids: Sequence[str]) -> BatchResult[str]:
        """Cancel quotes with one on-chain call per pool.

        Requested ids with no active quote are reported as omitted; a failed
        pool call fails every id of that pool.
        """
        check_batch_size(quote_ids)
        self._check_unique(quote_ids)

        active = await self.proxy.get_active_quotes([canonical_quote_id(quote_id) for quote_id in quote_ids])
        pool_of = {canonical_quote_id(record.quote_id): record.pool_address.lower() for record in active}

        by_pool: Dict[str, List[OrderbookQuote]] = {}
        for record in active:
            by_pool.setdefault(record.pool_address.lower(), []).append(record)

        async def cancel(pool_address: str) -> TransactionResult:
            ids = [record.quote_id for record in by_pool[pool_address]]
            logger.debug(f"Cancelling quotes {ids} on {pool_address}")
            return await self._execute(
                pool_address,
                "cancelQuotesOB",
                [[bytes.fromhex(canonical_quote_id(quote_id)[2:]) for quote_id in ids]],
            )

        pools = list(by_pool.keys())
        outcomes = await run_isolated(cancel, pools)
        pool_outcome = dict(zip(pools, outcomes))

        result: BatchResult[str] = BatchResult()
        for quote_id in quote_ids:
            pool_address = pool_of.get(canonical_quote_id(quote_id))
            if pool_address is None:
                result.omitted.append(quote_id)
                continue
            outcome = pool_outcome[pool_address]
            if isinstance(outcome, Ok):
                result.success.append(quote_id)
            else:
                result.failed.append(FailedItem(item=quote_id, reason=outcome.reason))

        logger.info(
            f"Cancelled {len(result.success)} quote(s), "
            f"{len(result.failed)} failed, {len(result.omitted)} omitted"
        )
        return result

    async def get_fillable_quotes(self,
                                  option: OptionDescriptor,
                                  size: Any,
                                  side: Side,
                                  provider: Optional[str] = None,
                                  taker: Optional[str] = None) -> List[Dict[str, Any]]:
        """Active quotes of one option series up to a size"""
        self.check_descriptors([option])
        pool_key = self.resolver.derive(option)
        pool_address = await self.resolver.resolve_address(pool_key)
        records = await self.proxy.get_quotes(
            pool_address=pool_address,
            size=parse_ether(size),
            side=side.value,
            provider=provider,
            taker=taker,
        )
        return [normalize_quote(record, self.chain_config) for record in records]

    async def get_orders(self,
                         quote_ids: Optional[Sequence[str]] = None,
                         provider: Optional[str] = None,
                         pool_address: Optional[str] = None,
                         size: Optional[str] = None,
                         side: Optional[Side] = None,
                         invalid: bool = False) -> List[Dict[str, Any]]:
        """Orders by id or filter; invalid=True returns rejected quotes with reasons"""
        if quote_ids:
            check_batch_size(quote_ids)

        orders = await self.proxy.get_orders(
            quote_ids=[canonical_quote_id(quote_id) for quote_id in quote_ids] if quote_ids else None,
            provider=provider,
            pool_address=pool_address,
            size=str(parse_ether(size)) if size else None,
            side=side.value if side else None,
        )

        if invalid:
            return [
                {"reason": record.get("reason"), "quote": normalize_quote(record["quote"], self.chain_config)}
                for record in orders["invalidQuotes"]
            ]
        return [normalize_quote(record, self.chain_config) for record in orders["validQuotes"]]

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    async def _expired_pool(self, option: OptionDescriptor, token_type: TokenType,
                            now: Optional[datetime]) -> str:
        if not has_expired(option.expiration, now=now):
            raise OptionNotExpired()

        pool_key = self.resolver.derive(option, maturity=maturity_timestamp(option.expiration))
        pool_address = await self.resolver.require_deployed(pool_key)

        balance = await self.chain.balance_of(pool_address, self.wallet_address, token_type)
        logger.info(f"{token_type.name.capitalize()} balance of {pool_address}: {balance}")
        if balance == 0:
            raise NoBalanceToSettle()
        return pool_address

    async def _position_batch(self, options: Sequence[OptionDescriptor], token_type: TokenType,
                              method: str, now: Optional[datetime]) -> BatchResult[OptionDescriptor]:
        self.check_descriptors(options)

        async def run(option: OptionDescriptor) -> TransactionResult:
            pool_address = await self._expired_pool(option, token_type, now)
            return await self._execute(pool_address, method, [])

        outcomes = await run_isolated(run, options)
        result = partition(options, outcomes)
        logger.info(f"{method}: {len(result.success)} succeeded, {len(result.failed)} failed")
        return result

    async def settle(self, options: Sequence[OptionDescriptor],
                     now: Optional[datetime] = None) -> BatchResult[OptionDescriptor]:
        """Settle expired short positions"""
        return await self._position_batch(options, TokenType.SHORT, "settle", now)

    async def exercise(self, options: Sequence[OptionDescriptor],
                       now: Optional[datetime] = None) -> BatchResult[OptionDescriptor]:
        """Exercise expired long positions"""
        return await self._position_batch(options, TokenType.LONG, "exercise", now)

    async def annihilate(self, options: Sequence[OptionDescriptor],
                         now: Optional[datetime] = None) -> BatchResult[OptionDescriptor]:
        """Close offsetting long and short positions"""
        self.check_descriptors(options)

        async def run(option: OptionDescriptor) -> TransactionResult:
            pool_key = self.resolver.derive(option, now=now)
            pool_address = await self.resolver.require_deployed(pool_key)
            short_balance = await self.chain.balance_of(pool_address, self.wallet_address, TokenType.SHORT)
            long_balance = await self.chain.balance_of(pool_address, self.wallet_address, TokenType.LONG)
            size = min(short_balance, long_balance)
            logger.info(f"Annihilating {size} on {pool_address} (short {short_balance}, long {long_balance})")
            if size <= 0:
                raise NothingToAnnihilate()
            return await self._execute(pool_address, "annihilate", [size])

        outcomes = await run_isolated(run, options)
        return partition(options, outcomes)

    # ------------------------------------------------------------------
    # Account and pools
    # ------------------------------------------------------------------

    async def approve_tokens(self, approvals: Sequence[TokenApproval]) -> Dict[str, List[Any]]:
        """Set ERC20 router allowances; success only for confirmed receipts"""
        supported = set(self.chain_config.supported_tokens)
        for approval in approvals:
            if approval.token not in supported:
                raise ValidationError(f"Token {approval.token} is not supported")

        async def approve(approval: TokenApproval) -> TransactionResult:
            token_address = self.chain_config.token_address(approval.token)
            if approval.is_max:
                amount = MAX_UINT256
            else:
                decimals = await self.chain.token_decimals(token_address)
                amount = parse_units(approval.amount, decimals)

            receipt = await self._execute(token_address, "approve", [self.chain_config.router, amount])
            logger.info(f"{approval.token} approval set to {'MAX' if approval.is_max else approval.amount}")
            return receipt

        outcomes = await run_isolated(approve, approvals)
        success, failed = [], []
        for approval, outcome in zip(approvals, outcomes):
            if isinstance(outcome, Ok):
                success.append(approval.to_dict())
            else:
                failed.append({"message": "approval error", "token": approval.to_dict(), "error": outcome.reason})
        return {"success": success, "failed": failed}

    async def deploy_pools(self, options: Sequence[OptionDescriptor],
                           now: Optional[datetime] = None) -> Dict[str, List[Dict[str, Any]]]:
        """Deploy missing pools; existing ones are reported as existed"""
        self.check_descriptors(options)
        pool_keys = [self.resolver.derive(option, now=now) for option in options]

        async def deploy(item: Tuple[OptionDescriptor, PoolKey]) -> Tuple[str, str]:
            option, pool_key = item
            pool_address, deployed = await self.resolver.is_deployed(pool_key)
            if deployed:
                return "existed", pool_address

            await self._execute(self.chain_config.pool_factory, "deployPool", [pool_key.as_tuple()])
            pool_address, deployed = await self.resolver.is_deployed(pool_key)
            if not deployed:
                raise UpstreamError("pool TX was successful but the pool was not deployed")
            logger.info(f"Deployed pool {pool_address}")
            return "created", pool_address

        items = list(zip(options, pool_keys))
        outcomes = await run_isolated(deploy, items)

        summary: Dict[str, List[Dict[str, Any]]] = {"created": [], "existed": [], "failed": []}
        for option, outcome in zip(options, outcomes):
            if isinstance(outcome, Ok):
                status, pool_address = outcome.value
                summary[status].append({**option.to_dict(), "poolAddress": pool_address})
            else:
                logger.error(f"Failed to deploy pool: {error_reason(outcome.error)}")
                summary["failed"].append({**option.to_dict(), "reason": outcome.reason})
        return summary
