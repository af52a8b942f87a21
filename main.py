import sys

from fastapi import FastAPI, Request, Response
from loguru import logger

from chatledger.api.routes import router
from chatledger.config import get_settings
from chatledger.deps import get_engine

settings = get_settings()

# Configure loguru
logger.remove()
logger.add(sys.stderr, level=settings.log_level, format="{time:HH:mm:ss} | {level:<7} | {message}")

app = FastAPI(title="Chat Ledger", version="0.1.0")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info("{} {}", request.method, request.url.path)
    response: Response = await call_next(request)
    logger.info("→ {}", response.status_code)
    return response


app.include_router(router)


@app.on_event("startup")
async def startup():
    if not settings.line_channel_secret or not settings.line_channel_access_token:
        logger.warning("LINE_CHANNEL_SECRET / LINE_CHANNEL_ACCESS_TOKEN not set, replies will fail")
    if not settings.openrouter_api_key:
        logger.info("OPENROUTER_API_KEY not set, using the heuristic parser only")
    logger.info("Chat ledger started ({}), db at {}", settings.environment, settings.db_path)


@app.on_event("shutdown")
async def shutdown():
    """Let background notifications finish, then close the outbound session."""
    engine = get_engine()
    await engine.drain_background()
    close = getattr(engine.channel.client, "close", None)
    if close is not None:
        await close()
    logger.info("Chat ledger stopped")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
