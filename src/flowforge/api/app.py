"""FastAPI application."""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flowforge.expressions import ExpressionLimits, ExpressionService
from flowforge.expressions.endpoints import create_expressions_router

logger = logging.getLogger(__name__)

# Global instance (initialized on startup)
expression_service: ExpressionService | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the expression service from the environment."""
    global expression_service

    limits = ExpressionLimits.from_env()
    expression_service = ExpressionService(limits=limits)
    logger.info(
        "Expression service ready: %d functions, max formula length %d",
        len(expression_service.registry),
        limits.max_formula_length,
    )

    yield

    expression_service = None


app = FastAPI(title="FlowForge API", lifespan=lifespan)

# CORS for frontend dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get(
        "FLOWFORGE_CORS_ORIGINS", "http://localhost:5173"
    ).split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(create_expressions_router(get_service=lambda: expression_service))


@app.get("/api/health")
async def health() -> dict[str, Any]:
    return {"status": "ok", "expressions": expression_service is not None}
