"""
Proxy to the external orderbook store.

Requests carry the orderbook API key in the ``x-apikey`` header. Upstream
responses below 500 are handed back to callers untouched; 5xx responses and
transport failures become UpstreamError.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from ..errors import UpstreamError
from ..types import ChainConfig, OrderbookQuote
from ..utils import format_ether, format_expiration, to_number

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal server error"


@dataclass
class ProxyResponse:
    status_code: int
    data: Any


class OrderbookProxy:
    """HTTP client for the orderbook REST API"""

    def __init__(self,
                 base_url: str,
                 api_key: str,
                 chain_id: int,
                 client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.chain_id = str(chain_id)
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self):
        await self.client.aclose()

    async def request(self,
                      path: str,
                      method: str,
                      params: Optional[Dict[str, Any]] = None,
                      body: Any = None) -> ProxyResponse:
        if method not in ("GET", "POST"):
            raise ValueError(f"HTTP method {method} is not allowed")

        url = f"{self.base_url}/{path}"
        try:
            response = await self.client.request(
                method,
                url,
                params=params,
                json=body if method == "POST" else None,
                headers={"x-apikey": self.api_key},
            )
        except httpx.HTTPError as e:
            logger.error(f"Orderbook {method} /{path} failed: {e}")
            raise UpstreamError(INTERNAL_ERROR_MESSAGE) from e

        if response.status_code >= 500:
            logger.error(f"Orderbook {method} /{path} responded {response.status_code}")
            raise UpstreamError(INTERNAL_ERROR_MESSAGE)

        try:
            data = response.json()
        except ValueError:
            data = response.text

        logger.debug(f"Orderbook {method} /{path} -> {response.status_code}")
        return ProxyResponse(status_code=response.status_code, data=data)

    @staticmethod
    def _expect_ok(response: ProxyResponse) -> Any:
        if response.status_code != 200:
            raise UpstreamError(
                "Orderbook request rejected",
                status_code=response.status_code,
                payload={"message": response.data},
            )
        return response.data

    async def post_quotes(self, quotes: List[Dict[str, Any]]) -> ProxyResponse:
        return await self.request("quotes", "POST", body=quotes)

    async def get_quotes(self,
                         pool_address: str,
                         size: int,
                         side: str,
                         provider: Optional[str] = None,
                         taker: Optional[str] = None) -> List[Dict[str, Any]]:
        """Active quotes of a pool up to the requested size"""
        params: Dict[str, Any] = {
            "poolAddress": pool_address,
            "size": str(size),
            "side": side,
            "chainId": self.chain_id,
        }
        if provider:
            params["provider"] = provider
        if taker:
            params["taker"] = taker

        response = await self.request("quotes", "GET", params=params)
        return self._expect_ok(response)

    async def get_orders(self,
                         quote_ids: Optional[List[str]] = None,
                         provider: Optional[str] = None,
                         pool_address: Optional[str] = None,
                         size: Optional[str] = None,
                         side: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        """Orders by id or filter; returns {validQuotes, invalidQuotes}"""
        params: Dict[str, Any] = {"chainId": self.chain_id}
        if quote_ids:
            params["quoteIds[]"] = list(quote_ids)
        if provider:
            params["provider"] = provider
        if pool_address:
            params["poolAddress"] = pool_address
        if size:
            params["size"] = size
        if side:
            params["side"] = side

        response = await self.request("orders", "GET", params=params)
        data = self._expect_ok(response)
        return {
            "validQuotes": data.get("validQuotes", []),
            "invalidQuotes": data.get("invalidQuotes", []),
        }

    async def get_active_quotes(self, quote_ids: List[str]) -> List[OrderbookQuote]:
        orders = await self.get_orders(quote_ids=quote_ids)
        return [OrderbookQuote.from_dict(record) for record in orders["validQuotes"]]

    async def get_option_balances(self, wallet: str) -> Any:
        response = await self.request(
            "account/option_balances",
            "GET",
            params={"chainId": self.chain_id, "wallet": wallet},
        )
        return self._expect_ok(response)


def _option_terms(pool_key: Dict[str, Any], chain_config: ChainConfig) -> Dict[str, Any]:
    return {
        "base": chain_config.token_symbol(pool_key["base"]),
        "quote": chain_config.token_symbol(pool_key["quote"]),
        "expiration": format_expiration(pool_key["maturity"]),
        "strike": to_number(format_ether(pool_key["strike"])),
        "type": "C" if pool_key["isCallPool"] else "P",
    }


def normalize_quote(record: Dict[str, Any], chain_config: ChainConfig) -> Dict[str, Any]:
    """Client view of an orderbook quote record"""
    return {
        **_option_terms(record["poolKey"], chain_config),
        "side": "bid" if record["isBuy"] else "ask",
        "size": float(format_ether(record["fillableSize"])),
        "price": float(format_ether(record["price"])),
        "provider": record["provider"],
        "taker": record["taker"],
        "deadline": int(record["deadline"]) - int(record["ts"]),
        "quoteId": record["quoteId"],
        "ts": int(record["ts"]),
    }


def normalize_rejected_quote(record: Dict[str, Any], chain_config: ChainConfig) -> Dict[str, Any]:
    """Client view of a quote the orderbook refused to store"""
    return {
        **_option_terms(record["poolKey"], chain_config),
        "side": "bid" if record["isBuy"] else "ask",
        "size": float(format_ether(record["size"])),
        "price": float(format_ether(record["price"])),
        "provider": record.get("provider"),
        "taker": record.get("taker"),
        "deadline": int(record["deadline"]),
    }


def normalize_rfq(body: Dict[str, Any], chain_config: ChainConfig) -> Dict[str, Any]:
    """Client view of an RFQ broadcast"""
    rfq = _option_terms(body["poolKey"], chain_config) if body.get("poolKey") else {}
    if body.get("poolAddress"):
        rfq["poolAddress"] = body["poolAddress"]
    rfq.update({
        "side": body["side"],
        "size": float(format_ether(body["size"])),
        "taker": body["taker"],
        "chainId": body.get("chainId"),
    })
    return rfq
