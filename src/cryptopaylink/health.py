"""Health check endpoints.

- /healthz: Liveness probe (simple alive check)
- /readyz: Readiness probe (database round trip)
"""

import time

from fastapi import FastAPI, HTTPException, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .logging_config import get_logger

logger = get_logger("health")


def register_health_endpoints(app: FastAPI) -> None:
    @app.get("/healthz")
    async def liveness() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/readyz")
    async def readiness(request: Request) -> dict[str, str | float]:
        start = time.perf_counter()
        try:
            async with request.app.state.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error("readiness_check_failed", error=str(e))
            raise HTTPException(status_code=503, detail="Database unavailable") from e
        latency_ms = (time.perf_counter() - start) * 1000
        return {"status": "ok", "database_latency_ms": round(latency_ms, 2)}
