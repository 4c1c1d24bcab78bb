"""
Client API key verification against Unkey.
"""

import logging
from typing import Optional, Tuple

import httpx

logger = logging.getLogger(__name__)


class UnkeyVerifier:
    """Verifies API keys with the Unkey keys.verifyKey endpoint.

    A key that Unkey rejects yields ``(False, code)`` where code is one of
    NOT_FOUND, FORBIDDEN, USAGE_EXCEEDED, RATE_LIMITED and similar. Transport
    and protocol failures raise.
    """

    def __init__(self,
                 api_url: str = "https://api.unkey.dev",
                 client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 10.0):
        self.api_url = api_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self):
        await self.client.aclose()

    async def verify(self, api_key: str) -> Tuple[bool, str]:
        response = await self.client.post(f"{self.api_url}/v1/keys.verifyKey", json={"key": api_key})
        response.raise_for_status()
        result = response.json()

        valid = bool(result.get("valid"))
        code = str(result.get("code") or ("VALID" if valid else "NOT_FOUND"))
        if not valid:
            logger.info(f"API key rejected: {code}")
        return valid, code
