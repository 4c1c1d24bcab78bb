"""
Streaming quote and RFQ subscriptions.

Clients authenticate with ``{type: "AUTH", apiKey}`` and then subscribe with
``{type: "FILTER", channel, body}`` or drop a channel with
``{type: "UNSUBSCRIBE", channel}``. Events received from the orderbook's own
stream are normalized once and pushed to every connection whose filter for
the event's channel matches.
"""

import asyncio
import contextlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiohttp

from ..interfaces import IApiKeyVerifier
from ..types import ChainConfig, ChannelType
from ..utils import format_ether
from .proxy import normalize_quote, normalize_rfq

logger = logging.getLogger(__name__)

QUOTE_EVENTS = ("POST_QUOTE", "FILL_QUOTE", "DELETE_QUOTE")
RFQ_EVENT = "RFQ"
FILTER_FIELDS = ("chainId", "poolAddress", "side", "taker", "provider")


def info(message: str) -> Dict[str, Any]:
    return {"type": "INFO", "body": None, "message": message}


def error(message: str) -> Dict[str, Any]:
    return {"type": "ERROR", "body": None, "message": message}


@dataclass
class ConnectionState:
    """Per-connection authentication state and channel filters"""
    websocket: Any
    connection_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    authenticated: bool = False
    filters: Dict[ChannelType, Dict[str, str]] = field(default_factory=dict)


def event_attributes(event_type: str, body: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """Filterable attributes of a raw upstream event body"""
    if event_type == RFQ_EVENT:
        side = body.get("side")
    else:
        side = "bid" if body.get("isBuy") else "ask"

    return {
        "chainId": str(body["chainId"]) if body.get("chainId") is not None else None,
        "poolAddress": body.get("poolAddress"),
        "side": side,
        "taker": body.get("taker"),
        "provider": body.get("provider"),
    }


def matches(filter_body: Dict[str, str], attributes: Dict[str, Optional[str]]) -> bool:
    """Exact match on chainId; optional fields act as wildcards when unset"""
    for name in FILTER_FIELDS:
        expected = filter_body.get(name)
        if expected is None:
            continue
        actual = attributes.get(name)
        if actual is None or str(actual).lower() != str(expected).lower():
            return False
    return True


class SubscriptionHub:
    """Manages streaming connections, their authentication and filters"""

    def __init__(self, verifier: IApiKeyVerifier, chain_config: ChainConfig):
        self.verifier = verifier
        self.chain_config = chain_config
        self.connections: Dict[str, ConnectionState] = {}

    async def connect(self, websocket: Any) -> ConnectionState:
        await websocket.accept()
        state = ConnectionState(websocket=websocket)
        self.connections[state.connection_id] = state
        logger.info(f"WebSocket connected: {state.connection_id}")
        return state

    def disconnect(self, state: ConnectionState):
        self.connections.pop(state.connection_id, None)
        logger.info(f"WebSocket disconnected: {state.connection_id}")

    async def handle_message(self, state: ConnectionState, raw: str) -> Dict[str, Any]:
        """Apply a client message and send the INFO/ERROR reply"""
        reply = await self._apply(state, raw)
        await state.websocket.send_json(reply)
        return reply

    async def _apply(self, state: ConnectionState, raw: str) -> Dict[str, Any]:
        try:
            message = json.loads(raw)
        except ValueError:
            return error("Invalid message format")
        if not isinstance(message, dict):
            return error("Invalid message format")

        message_type = message.get("type")
        if message_type == "AUTH":
            return await self._authenticate(state, message.get("apiKey"))

        if message_type not in ("FILTER", "UNSUBSCRIBE"):
            return error(f"Unsupported message type: {message_type}")

        if not state.authenticated:
            return error("Not Authorized")

        try:
            channel = ChannelType(message.get("channel"))
        except ValueError:
            return error(f"Invalid channel: {message.get('channel')}")

        if message_type == "UNSUBSCRIBE":
            state.filters.pop(channel, None)
            return info(f"Unsubscribed from {channel.value} channel")

        body = message.get("body") or {}
        if not isinstance(body, dict) or not body.get("chainId"):
            return error("chainId is required")

        state.filters[channel] = {
            name: str(body[name]) for name in FILTER_FIELDS if body.get(name) is not None
        }
        return info(f"Subscribed to {channel.value} channel")

    async def _authenticate(self, state: ConnectionState, api_key: Optional[str]) -> Dict[str, Any]:
        if not api_key:
            return error("API key not provided")

        try:
            valid, code = await self.verifier.verify(api_key)
        except Exception as e:
            logger.error(f"API key verification failed: {e}")
            return error("Failed to validate api key")

        if not valid:
            return error(code)

        state.authenticated = True
        return info("Session authenticated")

    def normalize(self, event: Dict[str, Any]) -> Dict[str, Any]:
        event_type = event["type"]
        body = event["body"]
        if event_type == RFQ_EVENT:
            return {"type": event_type, "body": normalize_rfq(body, self.chain_config)}

        message = {"type": event_type, "body": normalize_quote(body, self.chain_config)}
        if event_type == "FILL_QUOTE" and event.get("size") is not None:
            message["tradeSize"] = str(format_ether(event["size"]))
        return message

    async def publish(self, event: Dict[str, Any]) -> int:
        """Push an upstream event to matching subscribers; returns deliveries"""
        event_type = event.get("type")
        if event_type in QUOTE_EVENTS:
            channel = ChannelType.QUOTES
        elif event_type == RFQ_EVENT:
            channel = ChannelType.RFQ
        else:
            logger.debug(f"Ignoring upstream message of type {event_type}")
            return 0

        attributes = event_attributes(event_type, event["body"])
        targets: List[ConnectionState] = [
            state for state in list(self.connections.values())
            if state.authenticated and channel in state.filters and matches(state.filters[channel], attributes)
        ]
        if not targets:
            return 0

        message = self.normalize(event)
        delivered = 0
        disconnected = []
        for state in targets:
            try:
                await state.websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping connection {state.connection_id}: {e}")
                disconnected.append(state)

        for state in disconnected:
            self.disconnect(state)
        return delivered


class QuoteStreamRelay:
    """Feeds the hub from the orderbook's websocket stream"""

    def __init__(self,
                 url: str,
                 api_key: str,
                 chain_id: int,
                 hub: SubscriptionHub,
                 reconnect_delay: float = 5.0):
        self.url = url
        self.api_key = api_key
        self.chain_id = str(chain_id)
        self.hub = hub
        self.reconnect_delay = reconnect_delay
        self._session: Optional[aiohttp.ClientSession] = None
        self._task: Optional[asyncio.Task] = None

    def subscription_messages(self) -> List[Dict[str, Any]]:
        return [
            {"type": "AUTH", "apiKey": self.api_key, "body": None},
            {"type": "FILTER", "channel": ChannelType.QUOTES.value, "body": {"chainId": self.chain_id}},
            {"type": "FILTER", "channel": ChannelType.RFQ.value, "body": {"chainId": self.chain_id}},
        ]

    async def start(self):
        if self._task:
            return
        self._session = aiohttp.ClientSession()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Quote stream relay started for {self.url}")

    async def stop(self):
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        if self._session:
            await self._session.close()
        self._session = None
        logger.info("Quote stream relay stopped")

    async def handle_upstream(self, raw: str):
        try:
            message = json.loads(raw)
            message_type = message.get("type")
            if message_type == "ERROR":
                logger.error(f"Quote stream error: {message.get('message')}")
            elif message_type == "INFO":
                logger.info(f"Quote stream: {message.get('message')}")
            else:
                await self.hub.publish(message)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Malformed quote stream message ({e}): {raw[:200]}")

    async def _run(self):
        while True:
            try:
                async with self._session.ws_connect(self.url, heartbeat=30) as ws:
                    for subscription in self.subscription_messages():
                        await ws.send_json(subscription)
                    async for msg in ws:
                        if msg.type != aiohttp.WSMsgType.TEXT:
                            continue
                        await self.handle_upstream(msg.data)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Quote stream disconnected ({e}). Reconnecting...")
            await asyncio.sleep(self.reconnect_delay)
