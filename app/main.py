from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.api import availability, tools, webhook
from app.core.datetime_utils import utc_now
from app.core.logger import setup_logging, logger
from contextlib import asynccontextmanager

setup_logging()

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"🚀 Starting {settings.PROJECT_NAME} ({settings.ENVIRONMENT})")
    if not (settings.SUPABASE_URL and settings.SUPABASE_KEY):
        logger.warning("⚠️ Supabase not configured, agent calendars cannot be loaded")
    if not settings.VAPI_WEBHOOK_SECRET:
        logger.warning("⚠️ VAPI_WEBHOOK_SECRET not set, webhook requests are not authenticated")
    yield
    # Shutdown
    logger.info("🛑 Shutting down backend")

app = FastAPI(
    title=settings.PROJECT_NAME,
    version="0.1.0",
    lifespan=lifespan
)

# Global Exception Handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error(f"🔥 UNHANDLED ERROR on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"message": "Internal Server Error", "detail": "An unexpected error occurred. Please contact support."}
    )

# Include routers
app.include_router(webhook.router, prefix=settings.API_V1_STR, tags=["Webhook"])
app.include_router(tools.router, tags=["Tools"])
app.include_router(availability.router, tags=["Availability"])

@app.get("/")
async def health_check():
    return {'status': 'active', 'time': utc_now().isoformat()}

@app.get("/health")
async def health_check_std():
    return {"status": "ok", "environment": settings.ENVIRONMENT, "timestamp": utc_now().isoformat()}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.PORT, reload=True)
