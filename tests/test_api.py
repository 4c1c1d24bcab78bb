"""
API tests for the options gateway.
"""

import pytest
from fastapi.testclient import TestClient

from options_gateway.core.expiration import maturity_timestamp
from options_gateway.core.orchestrator import DEADLINE_ERROR
from options_gateway.main import create_app
from options_gateway.types import OptionDescriptor, TokenBalance, TokenType
from options_gateway.utils import MAX_UINT256

from conftest import (
    ROUTER, USDC, VALID_API_KEY, WETH, future_label, make_record, pool_address_of, quote_id,
)

HEADERS = {"x-apikey": VALID_API_KEY}
IV_ORACLE = "0x4444444444444444444444444444444444444444"
VAULT = "0x5555555555555555555555555555555555555555"


@pytest.fixture
def client(settings, gateway):
    app = create_app(settings=settings, context=gateway)
    with TestClient(app) as test_client:
        yield test_client


def option_body(expiration: str, strike: int = 1800, type: str = "C") -> dict:
    return {"base": "WETH", "quote": "USDC", "expiration": expiration, "strike": strike, "type": type}


def quote_body(expiration: str, **overrides) -> dict:
    return {
        **option_body(expiration),
        "side": "ask",
        "size": 1,
        "price": 0.5,
        "deadline": 300,
        **overrides,
    }


def descriptor(expiration: str, strike: int = 1800) -> OptionDescriptor:
    return OptionDescriptor.from_dict(option_body(expiration, strike))


class TestService:
    """Test health and authentication"""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["service"] == "options-gateway"

    def test_missing_api_key(self, client):
        response = client.get("/account/orders")

        assert response.status_code == 401
        assert response.json()["error_code"] == "AUTHORIZATION_ERROR"
        assert response.json()["message"] == "API key not provided"

    def test_rejected_api_key(self, client, verifier):
        response = client.get("/account/orders", headers={"x-apikey": "wrong"})

        assert response.status_code == 401
        assert response.json()["message"] == "NOT_FOUND"
        assert verifier.calls == ["wrong"]

    def test_verifier_failure(self, client):
        response = client.get("/account/orders", headers={"x-apikey": "explode"})

        assert response.status_code == 401
        assert response.json()["message"] == "Failed to validate api key"

    def test_api_key_check_can_be_disabled(self, settings, gateway):
        settings.require_api_key = False
        with TestClient(create_app(settings=settings, context=gateway)) as client:
            assert client.get("/account/orders").status_code == 200


class TestOrderbookEndpoints:
    """Test /orderbook routes"""

    def test_publish_quotes(self, client, orderbook):
        response = client.post("/orderbook/quotes", json=[quote_body(future_label())], headers=HEADERS)

        assert response.status_code == 201
        body = response.json()
        assert len(body["created"]) == 1
        assert body["created"][0]["price"] == 0.5
        assert len(orderbook.posted) == 1

    def test_publish_short_deadline(self, client, orderbook):
        response = client.post("/orderbook/quotes", json=[quote_body(future_label(), deadline=20)], headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"
        assert response.json()["message"] == DEADLINE_ERROR
        assert orderbook.posted == []

    def test_publish_expired(self, client):
        response = client.post("/orderbook/quotes", json=[quote_body("03NOV23")], headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_EXPIRATION"
        assert response.json()["message"] == "Invalid expiration date: 03NOV23 is in the past"

    def test_publish_rejects_unknown_fields(self, client):
        response = client.post(
            "/orderbook/quotes",
            json=[quote_body(future_label(), leverage=10)],
            headers=HEADERS,
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_upstream_rejection_is_passed_through(self, client, orderbook):
        orderbook.fail_status = 400

        response = client.post("/orderbook/quotes", json=[quote_body(future_label())], headers=HEADERS)

        assert response.status_code == 400
        assert response.json() == "orderbook failure"

    def test_fill_quotes(self, client, gateway, orderbook, balances):
        pool_key = gateway.resolver.derive(descriptor(future_label()))
        orderbook.add(make_record(pool_key, quote_id(1), size="2"))
        balances.balances = [TokenBalance(WETH, "WETH", 10 ** 18, 18)]

        response = client.patch(
            "/orderbook/quotes",
            json=[
                {"tradeSize": 1, "quoteId": quote_id(1)},
                {"tradeSize": 1, "quoteId": quote_id(2)},
            ],
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {"success": [quote_id(1)], "failed": [quote_id(2)]}

    def test_fill_batch_too_large(self, client):
        fills = [{"tradeSize": 1, "quoteId": quote_id(n)} for n in range(26)]

        response = client.patch("/orderbook/quotes", json=fills, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["error_code"] == "BATCH_TOO_LARGE"

    def test_cancel_quotes(self, client, gateway, orderbook, chain):
        pool_key = gateway.resolver.derive(descriptor(future_label()))
        orderbook.add(make_record(pool_key, quote_id(1)))

        response = client.request(
            "DELETE",
            "/orderbook/quotes",
            json={"quoteIds": [quote_id(1), quote_id(2)]},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {"success": [quote_id(1)], "failed": [], "omitted": [quote_id(2)]}
        assert chain.methods() == ["cancelQuotesOB"]

    def test_cancel_matches_unprefixed_ids(self, client, gateway, orderbook, chain):
        pool_key = gateway.resolver.derive(descriptor(future_label()))
        orderbook.add(make_record(pool_key, quote_id(10)))
        raw_id = quote_id(10)[2:].upper()

        response = client.request("DELETE", "/orderbook/quotes", json={"quoteIds": [raw_id]}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"success": [raw_id], "failed": [], "omitted": []}

    def test_fillable_quotes(self, client, gateway, orderbook):
        label = future_label()
        pool_key = gateway.resolver.derive(descriptor(label))
        orderbook.add(make_record(pool_key, quote_id(1)))

        response = client.get(
            "/orderbook/quotes",
            params={"base": "WETH", "quote": "USDC", "expiration": label, "strike": "1800",
                    "type": "C", "size": "1", "side": "ask"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert [quote["quoteId"] for quote in response.json()] == [quote_id(1)]
        assert response.json()[0]["expiration"] == label

    def test_orders_by_id(self, client, gateway, orderbook):
        pool_key = gateway.resolver.derive(descriptor(future_label()))
        orderbook.add(make_record(pool_key, quote_id(1)))
        orderbook.add(make_record(pool_key, quote_id(2)))

        response = client.get("/orderbook/orders", params={"quoteIds": [quote_id(2)]}, headers=HEADERS)

        assert response.status_code == 200
        assert [order["quoteId"] for order in response.json()] == [quote_id(2)]

    def test_orders_invalid_quote_id(self, client):
        response = client.get("/orderbook/orders", params={"quoteIds": ["0x1234"]}, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid quoteId: 0x1234"


class TestPoolEndpoints:
    """Test /pool routes"""

    def test_settle(self, client, gateway, chain):
        pool_key = gateway.resolver.derive(descriptor("29SEP23"), maturity=maturity_timestamp("29SEP23"))
        chain.deployed.add(pool_key)
        chain.option_balances[(pool_address_of(pool_key), TokenType.SHORT)] = 10 ** 18

        response = client.post(
            "/pool/settle",
            json=[option_body("29SEP23"), option_body("29SEP23", strike=2000)],
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] == [option_body("29SEP23")]
        assert body["failed"][0]["failedOption"] == option_body("29SEP23", strike=2000)
        assert "is not deployed" in body["failed"][0]["reason"]

    def test_annihilate_nothing(self, client, gateway, chain):
        pool_key = gateway.resolver.derive(descriptor(future_label()))
        chain.deployed.add(pool_key)

        response = client.post("/pool/annihilate", json=[option_body(future_label())], headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["failed"][0]["reason"] == "No positions to annihilate"

    def test_invalid_option_type(self, client):
        response = client.post("/pool/exercise", json=[option_body("29SEP23", type="X")], headers=HEADERS)

        assert response.status_code == 400


class TestAccountEndpoints:
    """Test /account routes"""

    def test_collateral_balances(self, client, balances):
        balances.balances = [TokenBalance(USDC, "USDC", 250 * 10 ** 6, 6)]

        response = client.get("/account/collateral_balances", headers=HEADERS)

        assert response.json() == {
            "success": [{"token_address": USDC, "symbol": "USDC", "balance": 250.0}],
            "failed": [],
        }

    def test_native_balance(self, client, chain):
        chain.native = 15 * 10 ** 17

        response = client.get("/account/native_balance", headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == 1.5

    def test_option_balances(self, client, orderbook):
        orderbook.option_balances = [{"name": "WETH-USDC-27OCT23-1800-C", "balance": 1}]

        response = client.get("/account/option_balances", headers=HEADERS)

        assert response.json() == orderbook.option_balances

    def test_collateral_approval(self, client, chain):
        response = client.post(
            "/account/collateral_approval",
            json=[{"token": "WETH", "amt": "max"}],
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {"success": [{"token": "WETH", "amt": "max"}], "failed": []}
        assert chain.transactions == [(WETH, "approve", [ROUTER, MAX_UINT256])]

    def test_approval_batch_limited_to_supported_tokens(self, client):
        approvals = [{"token": "WETH", "amt": "max"}] * 3

        response = client.post("/account/collateral_approval", json=approvals, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["error_code"] == "BATCH_TOO_LARGE"


class TestMarketEndpoints:
    """Test pools, maturities, spot and RFQ routes"""

    def test_maturities(self, client):
        response = client.get("/pools/maturities", headers=HEADERS)

        assert response.status_code == 200
        assert future_label() in response.json()

    def test_list_pools_empty(self, client):
        response = client.get("/pools", headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == []

    def test_deploy_pools(self, client, chain):
        label = future_label()

        response = client.post("/pools", json=[option_body(label)], headers=HEADERS)

        assert response.status_code == 200
        assert len(response.json()["created"]) == 1
        assert chain.methods() == ["deployPool"]

    def test_spot_prices(self, client, chain):
        chain.call_results["getPrice"] = 2000 * 10 ** 18

        response = client.get("/oracles/spot", params={"markets": ["WETH"]}, headers=HEADERS)

        assert response.json() == [{"market": "WETH", "price": 2000.0}]

    def test_rfq_message(self, client, settings):
        response = client.get(
            "/rfq/message",
            params={"base": "WETH", "quote": "USDC", "expiration": future_label(), "strike": "1800",
                    "type": "P", "size": "3", "direction": "sell"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()["body"]
        assert body["side"] == "bid"
        assert body["size"] == str(3 * 10 ** 18)
        assert body["taker"] == settings.wallet_address.lower()
        assert body["poolKey"]["isCallPool"] is False

    def test_strikes_from_spot_price(self, client, chain):
        response = client.get("/pools/strikes", params={"spotPrice": "2000"}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json()[:3] == [1000, 1100, 1200]
        assert response.json()[-1] == 4000
        assert chain.calls == []

    def test_strikes_from_oracle(self, client, chain):
        chain.call_results["getPrice"] = 1500 * 10 ** 18

        response = client.get("/pools/strikes", params={"market": "WETH"}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json()[:2] == [750, 800]

    def test_strikes_need_one_source(self, client):
        neither = client.get("/pools/strikes", headers=HEADERS)
        both = client.get("/pools/strikes", params={"market": "WETH", "spotPrice": "2000"}, headers=HEADERS)

        assert neither.status_code == 400
        assert both.status_code == 400
        assert neither.json()["error_code"] == "VALIDATION_ERROR"

    def test_strikes_oracle_failure(self, client, gateway, chain):
        gateway.oracle.retry_delay = 0
        chain.call_results["getPrice"] = ConnectionError("rpc down")

        response = client.get("/pools/strikes", params={"market": "WETH"}, headers=HEADERS)

        assert response.status_code == 500
        assert "provide spot price" in response.json()["message"]

    def test_implied_volatilities(self, client, gateway, chain):
        gateway.chain_config.volatility_oracle = IV_ORACLE
        chain.call_results["getVolatility"] = 7 * 10 ** 17

        response = client.get(
            "/oracles/iv",
            params={"market": "WETH", "expiration": future_label(), "spotPrice": "2000"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()[0] == {"strike": 1000, "iv": 0.7}
        assert len(response.json()) == 31


class TestVaultEndpoints:
    """Test vault quote and trade routes"""

    @pytest.fixture(autouse=True)
    def vaults(self, gateway):
        gateway.chain_config.vaults["pSV-WETH/USDC-C"] = VAULT

    def test_quote(self, client, chain):
        chain.call_results["getQuote"] = 3 * 10 ** 16
        chain.call_results["takerFee"] = 3 * 10 ** 14
        label = future_label()

        response = client.get(
            "/vaults/quote",
            params={"base": "WETH", "quote": "USDC", "expiration": label, "strike": "1800",
                    "type": "C", "size": "1", "direction": "buy"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {
            "market": {"vault": "pSV-WETH/USDC-C", "strike": 1800, "expiration": label, "size": 1,
                       "direction": "buy"},
            "quote": 0.03,
            "takerFee": 0.0003,
        }

    def test_quote_unknown_vault(self, client):
        response = client.get(
            "/vaults/quote",
            params={"base": "WETH", "quote": "USDC", "expiration": future_label(), "strike": "1800",
                    "type": "P", "size": "1", "direction": "buy"},
            headers=HEADERS,
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Vault does not exist"

    def test_quote_user_error(self, client, chain):
        chain.call_results["getQuote"] = ValueError("execution reverted: Vault__OutOfDTEBounds()")

        response = client.get(
            "/vaults/quote",
            params={"base": "WETH", "quote": "USDC", "expiration": future_label(), "strike": "1800",
                    "type": "C", "size": "1", "direction": "sell"},
            headers=HEADERS,
        )

        assert response.status_code == 400
        assert response.json()["message"] == "execution reverted: Vault__OutOfDTEBounds()"

    def test_trade(self, client, chain):
        body = {**option_body(future_label()), "size": 2, "direction": "buy", "premiumLimit": 0.1}

        response = client.post("/vaults/trade", json=body, headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["market"]["size"] == 2
        assert chain.methods() == ["trade"]
        assert chain.transactions[0][0] == VAULT

    def test_trade_rejects_unknown_fields(self, client):
        body = {**option_body(future_label()), "size": 2, "direction": "buy", "premiumLimit": 0.1, "slippage": 1}

        response = client.post("/vaults/trade", json=body, headers=HEADERS)

        assert response.status_code == 400


class TestStream:
    """Test the websocket endpoint"""

    def test_auth_and_subscribe(self, client, gateway):
        with client.websocket_connect("/ws") as websocket:
            websocket.send_text('{"type": "FILTER", "channel": "QUOTES", "body": {"chainId": "421613"}}')
            assert websocket.receive_json()["message"] == "Not Authorized"

            websocket.send_text(f'{{"type": "AUTH", "apiKey": "{VALID_API_KEY}"}}')
            assert websocket.receive_json() == {"type": "INFO", "body": None, "message": "Session authenticated"}

            websocket.send_text('{"type": "FILTER", "channel": "QUOTES", "body": {"chainId": "421613"}}')
            assert websocket.receive_json()["message"] == "Subscribed to QUOTES channel"
            assert len(gateway.hub.connections) == 1
