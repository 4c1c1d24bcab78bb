"""
Tests for the orderbook proxy and record normalization.
"""

import httpx
import pytest

from options_gateway.core.proxy import (
    OrderbookProxy, normalize_quote, normalize_rejected_quote, normalize_rfq,
)
from options_gateway.errors import UpstreamError
from options_gateway.types import PoolKey

from conftest import ORACLE_ADAPTER, ORDERBOOK_API_KEY, USDC, WETH, make_record, quote_id

POOL_KEY = PoolKey(WETH, USDC, ORACLE_ADAPTER, 1800 * 10 ** 18, 1698393600, True)


class TestOrderbookProxy:
    """Test upstream requests and status handling"""

    @pytest.mark.asyncio
    async def test_sends_api_key_and_chain(self, proxy, orderbook):
        orderbook.add(make_record(POOL_KEY, quote_id(1)))

        orders = await proxy.get_orders(quote_ids=[quote_id(1)])

        request = orderbook.requests[-1]
        assert request.headers["x-apikey"] == ORDERBOOK_API_KEY
        assert request.url.params["chainId"] == "421613"
        assert request.url.params.get_list("quoteIds[]") == [quote_id(1)]
        assert [record["quoteId"] for record in orders["validQuotes"]] == [quote_id(1)]
        assert orders["invalidQuotes"] == []

    @pytest.mark.asyncio
    async def test_active_quotes_are_parsed(self, proxy, orderbook):
        orderbook.add(make_record(POOL_KEY, quote_id(1), size="2", fillable="1.5"))

        [record] = await proxy.get_active_quotes([quote_id(1)])

        assert record.pool_key == POOL_KEY
        assert record.fillable_size == 1_500_000_000_000_000_000
        assert record.quote.size == 2 * 10 ** 18

    @pytest.mark.asyncio
    async def test_server_error_is_hidden(self, proxy, orderbook):
        orderbook.fail_status = 503

        with pytest.raises(UpstreamError) as exc_info:
            await proxy.get_orders(provider="0xabc")

        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Internal server error"
        assert exc_info.value.payload is None

    @pytest.mark.asyncio
    async def test_client_error_is_passed_through(self, proxy, orderbook):
        orderbook.fail_status = 400

        response = await proxy.post_quotes([])
        assert response.status_code == 400
        assert response.data == "orderbook failure"

        with pytest.raises(UpstreamError) as exc_info:
            await proxy.get_option_balances("0xabc")
        assert exc_info.value.status_code == 400
        assert exc_info.value.payload == {"message": "orderbook failure"}

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        proxy = OrderbookProxy(
            base_url="https://orderbook.test/",
            api_key=ORDERBOOK_API_KEY,
            chain_id=421613,
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        with pytest.raises(UpstreamError):
            await proxy.get_quotes("0xpool", size=1, side="ask")
        await proxy.close()

    @pytest.mark.asyncio
    async def test_rejects_other_methods(self, proxy):
        with pytest.raises(ValueError):
            await proxy.request("quotes", "DELETE")


class TestNormalization:
    """Test client views of orderbook records"""

    def test_normalize_quote(self, chain_config):
        record = make_record(POOL_KEY, quote_id(7), is_buy=True, size="3", fillable="2.5", price="0.25")

        assert normalize_quote(record, chain_config) == {
            "base": "WETH",
            "quote": "USDC",
            "expiration": "27OCT23",
            "strike": 1800,
            "type": "C",
            "side": "bid",
            "size": 2.5,
            "price": 0.25,
            "provider": record["provider"],
            "taker": record["taker"],
            "deadline": 300,
            "quoteId": quote_id(7),
            "ts": 1_700_000_000,
        }

    def test_normalize_rejected_quote(self, chain_config):
        record = make_record(POOL_KEY, quote_id(7), size="3")

        rejected = normalize_rejected_quote(record, chain_config)

        assert rejected["side"] == "ask"
        assert rejected["size"] == 3.0
        assert rejected["deadline"] == 1_700_000_300

    def test_normalize_rfq(self, chain_config):
        body = {
            "poolKey": POOL_KEY.serialize(),
            "side": "ask",
            "chainId": "421613",
            "size": str(10 ** 18),
            "taker": "0xabc",
        }

        assert normalize_rfq(body, chain_config) == {
            "base": "WETH",
            "quote": "USDC",
            "expiration": "27OCT23",
            "strike": 1800,
            "type": "C",
            "side": "ask",
            "size": 1.0,
            "taker": "0xabc",
            "chainId": "421613",
        }
