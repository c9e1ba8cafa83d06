# chatdigest/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings
from .engine import Engine
from .routers import digest_router

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # An engine already placed on app.state is used as-is
    if getattr(app.state, "engine", None) is None:
        app.state.engine = Engine.from_settings(settings)
    await app.state.engine.start()
    try:
        yield
    finally:
        await app.state.engine.stop()


app = FastAPI(
    title="Chat Digest",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(digest_router.router, tags=["Digest"])


@app.get("/")
def read_root():
    return {"message": "Chat digest is running. Use /servers and /summaries."}
