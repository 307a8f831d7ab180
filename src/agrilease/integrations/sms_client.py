"""SMS gateway client with circuit breaker protection."""

import logging
from typing import Any, Optional

import httpx

from agrilease.config import settings
from agrilease.integrations.circuit_breaker import CircuitBreaker, CircuitBreakerConfig

logger = logging.getLogger(__name__)


def format_phone_number(phone: str, default_country_code: str = "+91") -> str:
    """Prefix the default country code unless the number already carries one."""
    trimmed = phone.strip()
    if trimmed.startswith("+"):
        return trimmed
    return f"{default_country_code}{trimmed}"


class SmsGatewayClient:
    """
    HTTP client for the SMS gateway.

    When no gateway URL is configured messages are logged and reported as
    skipped. While the circuit is open messages are logged and dropped.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url if base_url is not None else settings.sms_gateway_url
        self.token = token if token is not None else settings.sms_gateway_token
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._circuit_breaker: Optional[CircuitBreaker] = None
        if settings.circuit_breaker_enabled:
            self._circuit_breaker = CircuitBreaker(
                "sms_gateway",
                CircuitBreakerConfig(
                    failure_threshold=settings.circuit_breaker_failure_threshold,
                    timeout_seconds=settings.circuit_breaker_timeout_seconds,
                    half_open_max_calls=settings.circuit_breaker_half_open_max_calls,
                    success_threshold=settings.circuit_breaker_success_threshold,
                ),
            )

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    async def send(self, phone: str, message: str) -> dict[str, Any]:
        """Send one SMS."""
        to = format_phone_number(phone, settings.sms_default_country_code)
        if not self.configured:
            logger.info(f"SMS gateway not configured; would send to {to}: {message}")
            return {"status": "skipped"}

        if self._circuit_breaker:
            return await self._circuit_breaker.call(
                self._post, to, message, fallback=self._drop_while_open
            )
        return await self._post(to, message)

    async def _post(self, to: str, message: str) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        response = await self._http().post(
            f"{self.base_url.rstrip('/')}/messages",
            json={"to": to, "from": settings.sms_sender_id, "body": message},
            headers=headers,
        )
        response.raise_for_status()
        return response.json() if response.content else {"status": "sent"}

    async def _drop_while_open(self, to: str, message: str) -> dict[str, Any]:
        logger.warning(f"SMS gateway circuit open, dropping message to {to}")
        return {"status": "dropped"}

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=settings.sms_timeout_seconds, transport=self._transport
            )
        return self._client

    def get_circuit_stats(self) -> Optional[dict[str, Any]]:
        return self._circuit_breaker.snapshot() if self._circuit_breaker else None

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


_sms_client: Optional[SmsGatewayClient] = None


def get_sms_client() -> SmsGatewayClient:
    """Get or create the SMS client singleton."""
    global _sms_client
    if _sms_client is None:
        _sms_client = SmsGatewayClient()
    return _sms_client


async def close_sms_client() -> None:
    global _sms_client
    if _sms_client is not None:
        await _sms_client.aclose()
        _sms_client = None
