"""
GenerationGateway: builds backend payloads, sends them through the configured
transport strategy and decodes structured responses.
"""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional, Dict, Any

from deeptutor.gateway.request import GenerationRequest, ModelTier, build_payload, resolve_model
from deeptutor.gateway.sanitizer import ParseFailure, parse_json_response
from deeptutor.gateway.transports import DirectTransport, ProxyTransport, Transport
from deeptutor.shared.config import settings
from deeptutor.shared.exceptions import GatewayTimeout, MalformedResponse, ProxyUnavailable
from deeptutor.shared.logging import get_logger

logger = get_logger(__name__)


class TransportMode(str, Enum):
    """proxy: proxy first with one direct fallback. direct: direct only."""
    PROXY = "proxy"
    DIRECT = "direct"


async def send_with_timeout(transport: Transport, payload: Dict[str, Any]) -> str:
    """Send through a transport with a hard timeout."""
    try:
        return await asyncio.wait_for(transport.send(payload), timeout=transport.timeout_seconds)
    except asyncio.TimeoutError as e:
        logger.warning(f"{transport.name} call exceeded {transport.timeout_seconds}s")
        raise GatewayTimeout(
            f"{transport.name} call timed out after {transport.timeout_seconds}s"
        ) from e


class TransportStrategy(ABC):
    """How a payload reaches the backend."""

    @abstractmethod
    async def dispatch(self, payload: Dict[str, Any]) -> str:
        pass

    async def aclose(self) -> None:
        pass


class DirectOnlyStrategy(TransportStrategy):

    def __init__(self, direct: Optional[DirectTransport] = None):
        self.direct = direct or DirectTransport()

    async def dispatch(self, payload: Dict[str, Any]) -> str:
        return await send_with_timeout(self.direct, payload)

    async def aclose(self) -> None:
        await self.direct.aclose()


class ProxyWithFallbackStrategy(TransportStrategy):
    """Proxy first; a missing or timed-out proxy gets exactly one direct retry."""

    def __init__(
        self,
        proxy: Optional[ProxyTransport] = None,
        direct: Optional[DirectTransport] = None,
    ):
        self.proxy = proxy or ProxyTransport()
        self.direct = direct or DirectTransport()

    async def dispatch(self, payload: Dict[str, Any]) -> str:
        try:
            return await send_with_timeout(self.proxy, payload)
        except (ProxyUnavailable, GatewayTimeout) as e:
            logger.warning(
                f"Proxy failed ({type(e).__name__}: {e}); falling back to direct transport",
                extra={"action": "transport_fallback"},
            )
        return await send_with_timeout(self.direct, payload)

    async def aclose(self) -> None:
        await self.proxy.aclose()
        await self.direct.aclose()


def create_strategy(mode: Optional[str] = None) -> TransportStrategy:
    """Select the transport strategy from configuration."""
    mode = TransportMode(mode or settings.gateway.mode)
    if mode == TransportMode.DIRECT:
        return DirectOnlyStrategy()
    return ProxyWithFallbackStrategy()


class GenerationGateway:
    """Single entry point for generation calls."""

    def __init__(
        self,
        strategy: Optional[TransportStrategy] = None,
        provider: Optional[str] = None,
        light_model: Optional[str] = None,
        capable_model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_inline_text_chars: Optional[int] = None,
    ):
        self.strategy = strategy or create_strategy()
        self.provider = provider or settings.backend.provider
        self.light_model = light_model or settings.backend.light_model
        self.capable_model = capable_model or settings.backend.capable_model
        self.temperature = temperature if temperature is not None else settings.backend.temperature
        self.max_inline_text_chars = max_inline_text_chars or settings.gateway.max_inline_text_chars

    def model_for(self, tier: ModelTier) -> str:
        return resolve_model(tier, self.provider, self.light_model, self.capable_model)

    async def generate(self, request: GenerationRequest) -> Any:
        """
        Run one generation call.

        Returns:
            Parsed JSON value for JSON requests, raw text otherwise

        Raises:
            CredentialMissing, GatewayTimeout, ProxyUnavailable, BackendRejected,
            MalformedResponse (JSON could not be recovered)
        """
        payload = build_payload(
            request,
            model=self.model_for(request.model_tier),
            temperature=self.temperature,
            max_inline_chars=self.max_inline_text_chars,
        )
        text = await self.strategy.dispatch(payload)

        if not request.wants_json:
            return text

        result = parse_json_response(text)
        if isinstance(result, ParseFailure):
            logger.warning(f"Could not recover JSON from response: {result.reason}")
            raise MalformedResponse(result.reason, raw_text=text)
        if result.repaired:
            logger.debug("Recovered JSON from a truncated or wrapped response")
        return result.value

    async def aclose(self) -> None:
        await self.strategy.aclose()
