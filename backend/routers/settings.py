import logging
import httpx
from fastapi import APIRouter, HTTPException

from models.errors import ConfigError
from models.schemas import LlmEndpointUpdate, UnlockRequest
from services import credentials
from settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/api-key-status")
async def get_api_key_status():
    key = credentials.get_api_key()
    if not key:
        return {"is_locked": True, "valid": False}

    # Verify it against the LLM API to ensure it wasn't revoked
    try:
        async with httpx.AsyncClient() as client:
            res = await client.get(
                f"{settings.get_llm_base_url()}/models",
                headers={"Authorization": credentials.auth_header(key)},
                timeout=5.0,
            )
        return {"is_locked": False, "valid": res.status_code == 200}
    except httpx.HTTPError as e:
        logger.warning("API key check failed: %s", e)
        return {"is_locked": False, "valid": False}


@router.post("/unlock-key")
async def unlock_api_key(req: UnlockRequest):
    try:
        credentials.unlock_api_key(req.password)
    except ConfigError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except Exception as e:
        raise HTTPException(status_code=401, detail=f"Failed to unlock API key. Invalid password? ({str(e)})")
    return {"status": "success", "message": "API key unlocked successfully."}


@router.get("/llm-endpoint")
async def get_llm_endpoint():
    return {"url": settings.get_llm_base_url(), "model": settings.get_model()}


@router.put("/llm-endpoint")
async def set_llm_endpoint(update: LlmEndpointUpdate):
    """Point completions at a different OpenAI-compatible base URL at runtime."""
    url = update.url.strip()
    if not url.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="URL must start with http:// or https://")
    settings.set_llm_base_url(url)
    return {"status": "success", "url": settings.get_llm_base_url()}
