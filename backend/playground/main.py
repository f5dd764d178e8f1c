"""FastAPI application entry point for the provider gateway."""

import logging
import os
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Configure logging
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown."""
    logger.info("Provider gateway started")
    yield
    logger.info("Provider gateway stopped")


app = FastAPI(
    title="Prompt Playground Gateway",
    description="Send chat requests to OpenAI or Anthropic models and stream the output",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware - allow any localhost port for local front ends
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^http://localhost(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


# Import and include routers after app is created to avoid circular imports
from playground.api import chat  # noqa: E402

app.include_router(chat.router, prefix="/api", tags=["chat"])
