"""
Generation request model and the backend payload builder.

The payload shape ({model, contents, config}) is shared by the proxy transport,
the proxy service and the direct transports.
"""

import base64
import binascii
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, List

from deeptutor.workspace.models import Attachment, Message


class ModelTier(str, Enum):
    """Lightweight (fast, cheap) or capable model."""
    LIGHT = "light"
    CAPABLE = "capable"


class ResponseFormat(str, Enum):
    JSON = "json"
    TEXT = "text"


DEFAULT_SYSTEM_INSTRUCTION = """You are DeepTutor, an academic document processing engine.
PRIORITIES: Speed, academic rigor, progressive generation.
All outputs must be grounded in the provided document.
Use LaTeX $$ for all math formulas."""

# Decoded and inlined into the prompt text
TEXT_MIME_TYPES = {
    "application/json",
    "application/xml",
    "application/x-yaml",
}

# Sent to the backend as binary parts
INLINE_MIME_TYPES = {
    "application/pdf",
    "image/png",
    "image/jpeg",
    "image/webp",
    "image/heic",
    "image/heif",
}

DEFAULT_MODELS = {
    "gemini": {ModelTier.LIGHT: "gemini-2.5-flash", ModelTier.CAPABLE: "gemini-2.5-pro"},
    "openai": {ModelTier.LIGHT: "gpt-4o-mini", ModelTier.CAPABLE: "gpt-4o"},
    "anthropic": {
        ModelTier.LIGHT: "claude-3-5-haiku-latest",
        ModelTier.CAPABLE: "claude-sonnet-4-20250514",
    },
}

SEARCH_TOOL = {"googleSearch": {}}


@dataclass
class GenerationRequest:
    """Everything needed for one generation call."""
    prompt: str
    attachment: Optional[Attachment] = None
    history: List[Message] = field(default_factory=list)
    model_tier: ModelTier = ModelTier.LIGHT
    response_format: ResponseFormat = ResponseFormat.JSON
    use_search: bool = False
    max_output_tokens: int = 2048
    system_instruction: Optional[str] = None

    @property
    def wants_json(self) -> bool:
        return self.response_format == ResponseFormat.JSON


def is_text_mime(mime_type: str) -> bool:
    return mime_type.startswith("text/") or mime_type in TEXT_MIME_TYPES


def resolve_model(
    tier: ModelTier,
    provider: str = "gemini",
    light_model: Optional[str] = None,
    capable_model: Optional[str] = None,
) -> str:
    """Pick the model identifier for a tier, honouring configured overrides."""
    override = light_model if tier == ModelTier.LIGHT else capable_model
    if override:
        return override
    return DEFAULT_MODELS.get(provider, DEFAULT_MODELS["gemini"])[tier]


def _prompt_parts(prompt: str, attachment: Optional[Attachment], max_inline_chars: int) -> List[Dict[str, Any]]:
    """Embed the attachment according to its kind; unsupported kinds never fail the request."""
    if attachment is None or not attachment.data:
        return [{"text": prompt}]

    mime = attachment.mime_type
    if is_text_mime(mime):
        try:
            decoded = base64.b64decode(attachment.data).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError):
            return [{"text": f"[WARNING: Unreadable Text File: {attachment.name}]\n{prompt}"}]
        if len(decoded) > max_inline_chars:
            decoded = decoded[:max_inline_chars] + "\n[... document truncated ...]"
        return [{"text": f"[DOCUMENT CONTEXT START]\n{decoded}\n[DOCUMENT CONTEXT END]\n\n{prompt}"}]

    if mime in INLINE_MIME_TYPES:
        return [
            {"text": prompt},
            {"inlineData": {"data": attachment.data, "mimeType": mime}},
        ]

    # e.g. PowerPoint: binary is not sent, the backend would reject it
    return [{"text": f"[WARNING: Unsupported Binary File: {attachment.name}]\n{prompt}"}]


def build_contents(request: GenerationRequest, max_inline_chars: int = 30000) -> List[Dict[str, Any]]:
    """Prior turns followed by the user turn carrying prompt and attachment."""
    contents = [
        {
            "role": "model" if message.role == "model" else "user",
            "parts": [{"text": message.text}],
        }
        for message in request.history
    ]
    contents.append({
        "role": "user",
        "parts": _prompt_parts(request.prompt, request.attachment, max_inline_chars),
    })
    return contents


def build_config(request: GenerationRequest, temperature: float = 0.1) -> Dict[str, Any]:
    config: Dict[str, Any] = {
        "systemInstruction": request.system_instruction or DEFAULT_SYSTEM_INSTRUCTION,
        "temperature": temperature,
        "maxOutputTokens": request.max_output_tokens,
    }
    if request.use_search:
        # Gemini rejects search grounding combined with a JSON response MIME type;
        # JSON requests still go through the response sanitizer
        config["tools"] = [SEARCH_TOOL]
    elif request.wants_json:
        config["responseMimeType"] = "application/json"
    return config


def build_payload(
    request: GenerationRequest,
    model: str,
    temperature: float = 0.1,
    max_inline_chars: int = 30000,
) -> Dict[str, Any]:
    """Build the {model, contents, config} body sent to the proxy or a direct backend."""
    return {
        "model": model,
        "contents": build_contents(request, max_inline_chars),
        "config": build_config(request, temperature),
    }
