"""
Transports that carry a {model, contents, config} payload to the LLM backend.

ProxyTransport posts the payload to the proxy service, which holds the credential
server-side. DirectTransport talks to the backend itself with a locally configured
credential: Gemini REST by default, or the OpenAI / Anthropic SDKs.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional, Dict, Any, List

import anthropic
import httpx
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from deeptutor.shared.config import settings
from deeptutor.shared.exceptions import (
    BackendRejected,
    CredentialMissing,
    GatewayTimeout,
    MalformedResponse,
    ProxyUnavailable,
)
from deeptutor.shared.logging import get_logger

logger = get_logger(__name__)


class LLMProvider(str, Enum):
    """Supported direct backends."""
    GEMINI = "gemini"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


# Set by the proxy service when it holds no backend credential
CREDENTIAL_MISSING_CODE = "credential_missing"


def _error_code(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return ""
    return str(data.get("code") or "") if isinstance(data, dict) else ""


def _error_message(response: httpx.Response) -> str:
    """Pull an error/message field out of a failure body; no body means an empty message."""
    try:
        data = response.json()
    except ValueError:
        return ""
    if not isinstance(data, dict):
        return ""
    error = data.get("error", data.get("message", ""))
    if isinstance(error, dict):
        error = error.get("message", "")
    return str(error or "")


class Transport(ABC):
    """One path to the backend."""

    name = "transport"
    timeout_seconds: float = 30.0

    @abstractmethod
    async def send(self, payload: Dict[str, Any]) -> str:
        """Send a payload and return the response text."""
        pass

    async def aclose(self) -> None:
        pass


class ProxyTransport(Transport):
    """POST the payload to the proxy service."""

    name = "proxy"

    def __init__(
        self,
        url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url or settings.gateway.proxy_url
        self.timeout_seconds = timeout_seconds or settings.gateway.proxy_timeout_seconds
        self._client = client or httpx.AsyncClient(timeout=self.timeout_seconds)

    async def send(self, payload: Dict[str, Any]) -> str:
        try:
            response = await self._client.post(self.url, json=payload)
        except httpx.TimeoutException as e:
            raise GatewayTimeout(f"Proxy call timed out after {self.timeout_seconds}s") from e
        except httpx.RequestError as e:
            raise ProxyUnavailable(f"Proxy unreachable at {self.url}: {e}") from e

        if response.status_code == 404:
            raise ProxyUnavailable(f"Proxy endpoint not found: {self.url}")
        if not response.is_success and _error_code(response) == CREDENTIAL_MISSING_CODE:
            raise CredentialMissing(_error_message(response) or "Backend credential not configured on the proxy")
        if response.status_code == 504:
            raise GatewayTimeout(_error_message(response) or "Backend timed out behind the proxy")
        if not response.is_success:
            raise BackendRejected(_error_message(response), status_code=response.status_code)

        try:
            data = response.json()
        except ValueError:
            return response.text
        if isinstance(data, dict) and isinstance(data.get("text"), str):
            return data["text"]
        raise MalformedResponse("Proxy response has no text field", raw_text=response.text)

    async def aclose(self) -> None:
        await self._client.aclose()


class DirectTransport(Transport):
    """Call the backend directly with a locally held credential."""

    name = "direct"

    def __init__(
        self,
        provider: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sdk_client: Any = None,
    ):
        self.provider = LLMProvider(provider or settings.backend.provider)
        self.api_key = api_key or self._configured_key()
        self.timeout_seconds = timeout_seconds or settings.backend.direct_timeout_seconds
        self.base_url = (base_url or settings.backend.gemini_base_url).rstrip("/")
        self._http_client = http_client
        self._sdk_client = sdk_client

    def _configured_key(self) -> Optional[str]:
        if self.provider == LLMProvider.OPENAI:
            return settings.backend.openai_api_key
        if self.provider == LLMProvider.ANTHROPIC:
            return settings.backend.anthropic_api_key
        return settings.backend.gemini_api_key

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _require_credential(self) -> str:
        if not self.api_key:
            raise CredentialMissing(f"{self.provider.value} API key not configured")
        return self.api_key

    async def send(self, payload: Dict[str, Any]) -> str:
        api_key = self._require_credential()

        if self.provider == LLMProvider.OPENAI:
            return await self._openai_send(payload, api_key)
        elif self.provider == LLMProvider.ANTHROPIC:
            return await self._anthropic_send(payload, api_key)
        return await self._gemini_send(payload, api_key)

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
        if self._sdk_client is not None and hasattr(self._sdk_client, "close"):
            await self._sdk_client.close()

    # ------------------------------------------------------------------
    # Gemini REST

    async def _gemini_send(self, payload: Dict[str, Any], api_key: str) -> str:
        config = payload.get("config", {})
        body: Dict[str, Any] = {"contents": payload["contents"]}
        if config.get("systemInstruction"):
            body["systemInstruction"] = {"parts": [{"text": config["systemInstruction"]}]}

        generation_config: Dict[str, Any] = {}
        for key in ("temperature", "maxOutputTokens", "responseMimeType"):
            if key in config:
                generation_config[key] = config[key]
        body["generationConfig"] = generation_config
        if config.get("tools"):
            body["tools"] = config["tools"]

        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)

        url = f"{self.base_url}/models/{payload['model']}:generateContent"
        try:
            response = await self._http_client.post(
                url, headers={"x-goog-api-key": api_key}, json=body
            )
        except httpx.TimeoutException as e:
            raise GatewayTimeout(f"Backend call timed out after {self.timeout_seconds}s") from e
        except httpx.RequestError as e:
            raise BackendRejected(f"Backend unreachable: {e}") from e

        if not response.is_success:
            raise BackendRejected(_error_message(response), status_code=response.status_code)

        try:
            data = response.json()
            candidates = data.get("candidates") or []
        except (ValueError, AttributeError) as e:
            raise MalformedResponse("Backend returned a non-JSON envelope", raw_text=response.text) from e

        if not candidates:
            reason = (data.get("promptFeedback") or {}).get("blockReason", "no candidates")
            raise BackendRejected(f"Backend returned no candidates ({reason})", status_code=response.status_code)

        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts if not p.get("thought"))

    # ------------------------------------------------------------------
    # OpenAI

    @staticmethod
    def _openai_content(parts: List[Dict[str, Any]]):
        if all("inlineData" not in p for p in parts):
            return "\n".join(p.get("text", "") for p in parts)

        blocks = []
        for part in parts:
            if "text" in part:
                blocks.append({"type": "text", "text": part["text"]})
                continue
            inline = part["inlineData"]
            data_uri = f"data:{inline['mimeType']};base64,{inline['data']}"
            if inline["mimeType"] == "application/pdf":
                blocks.append({"type": "file", "file": {"filename": "document.pdf", "file_data": data_uri}})
            else:
                blocks.append({"type": "image_url", "image_url": {"url": data_uri}})
        return blocks

    async def _openai_send(self, payload: Dict[str, Any], api_key: str) -> str:
        config = payload.get("config", {})
        if config.get("tools"):
            logger.debug("Search augmentation is only supported by the gemini provider; ignoring")

        messages = []
        if config.get("systemInstruction"):
            messages.append({"role": "system", "content": config["systemInstruction"]})
        for turn in payload["contents"]:
            messages.append({
                "role": "assistant" if turn["role"] == "model" else "user",
                "content": self._openai_content(turn["parts"]),
            })

        completion_kwargs = {
            "model": payload["model"],
            "messages": messages,
            "temperature": config.get("temperature", 0.1),
            "max_tokens": config.get("maxOutputTokens", 2048),
        }
        if config.get("responseMimeType") == "application/json":
            completion_kwargs["response_format"] = {"type": "json_object"}

        if self._sdk_client is None:
            self._sdk_client = AsyncOpenAI(api_key=api_key, timeout=self.timeout_seconds, max_retries=0)

        try:
            response = await self._sdk_client.chat.completions.create(**completion_kwargs)
        except openai.APITimeoutError as e:
            raise GatewayTimeout(f"Backend call timed out after {self.timeout_seconds}s") from e
        except openai.APIStatusError as e:
            raise BackendRejected(e.message, status_code=e.status_code) from e
        except openai.APIConnectionError as e:
            raise BackendRejected(f"Backend unreachable: {e}") from e

        return response.choices[0].message.content or ""

    # ------------------------------------------------------------------
    # Anthropic

    @staticmethod
    def _anthropic_content(parts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        blocks = []
        for part in parts:
            if "text" in part:
                blocks.append({"type": "text", "text": part["text"]})
                continue
            inline = part["inlineData"]
            source = {"type": "base64", "media_type": inline["mimeType"], "data": inline["data"]}
            block_type = "document" if inline["mimeType"] == "application/pdf" else "image"
            blocks.append({"type": block_type, "source": source})
        return blocks

    async def _anthropic_send(self, payload: Dict[str, Any], api_key: str) -> str:
        config = payload.get("config", {})
        if config.get("tools"):
            logger.debug("Search augmentation is only supported by the gemini provider; ignoring")

        completion_kwargs = {
            "model": payload["model"],
            "max_tokens": config.get("maxOutputTokens", 2048),
            "temperature": config.get("temperature", 0.1),
            "messages": [
                {
                    "role": "assistant" if turn["role"] == "model" else "user",
                    "content": self._anthropic_content(turn["parts"]),
                }
                for turn in payload["contents"]
            ],
        }
        if config.get("systemInstruction"):
            completion_kwargs["system"] = config["systemInstruction"]

        if self._sdk_client is None:
            self._sdk_client = AsyncAnthropic(api_key=api_key, timeout=self.timeout_seconds, max_retries=0)

        try:
            response = await self._sdk_client.messages.create(**completion_kwargs)
        except anthropic.APITimeoutError as e:
            raise GatewayTimeout(f"Backend call timed out after {self.timeout_seconds}s") from e
        except anthropic.APIStatusError as e:
            raise BackendRejected(e.message, status_code=e.status_code) from e
        except anthropic.APIConnectionError as e:
            raise BackendRejected(f"Backend unreachable: {e}") from e

        return "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
