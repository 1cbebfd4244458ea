"""
Generation proxy: forwards {model, contents, config} to the backend with the
server-side credential so clients never hold it.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from deeptutor.api.dependencies import get_transport
from deeptutor.gateway.client import send_with_timeout
from deeptutor.gateway.transports import CREDENTIAL_MISSING_CODE, DirectTransport
from deeptutor.shared.exceptions import (
    BackendRejected,
    CredentialMissing,
    GatewayError,
    GatewayTimeout,
)
from deeptutor.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["generation"])


class GenerateRequest(BaseModel):
    model: str
    contents: List[Dict[str, Any]]
    config: Dict[str, Any] = Field(default_factory=dict)


class GenerateResponse(BaseModel):
    text: str


def _error(status_code: int, message: str, code: Optional[str] = None) -> JSONResponse:
    content = {"error": message}
    if code:
        content["code"] = code
    return JSONResponse(status_code=status_code, content=content)


@router.post("/generate", response_model=GenerateResponse)
async def generate(body: GenerateRequest, transport: DirectTransport = Depends(get_transport)):
    """
    Run one generation call.

    500: no backend credential on the server (code "credential_missing")
    504: backend timed out
    502: backend rejected the request or answered with nothing usable
    """
    try:
        text = await send_with_timeout(transport, body.model_dump())
    except CredentialMissing as e:
        logger.error(f"Proxy has no backend credential: {e}")
        return _error(500, "API key not configured on the server", CREDENTIAL_MISSING_CODE)
    except GatewayTimeout as e:
        logger.warning(f"Backend timed out: {e}")
        return _error(504, str(e))
    except BackendRejected as e:
        logger.warning(f"Backend rejected request (status {e.status_code}): {e}")
        return _error(502, str(e) or "Backend rejected the request")
    except GatewayError as e:
        logger.warning(f"Backend call failed: {type(e).__name__}: {e}")
        return _error(502, str(e) or type(e).__name__)

    return GenerateResponse(text=text)
