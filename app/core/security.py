from fastapi import HTTPException, Header
from app.core.config import settings
from app.core.logger import logger

async def verify_vapi_secret(x_vapi_secret: str = Header(None)):
    """
    Verify the shared secret VAPI sends in the `x-vapi-secret` header.
    Skipped when VAPI_WEBHOOK_SECRET is not configured (local development).
    """
    if not settings.VAPI_WEBHOOK_SECRET:
        return True

    if x_vapi_secret != settings.VAPI_WEBHOOK_SECRET:
        logger.warning("⛔ Rejected request with invalid x-vapi-secret header")
        raise HTTPException(status_code=403, detail="Invalid secret token")
    return True
