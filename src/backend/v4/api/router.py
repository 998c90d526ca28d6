import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from src.backend.v4.api.ledger_router import ledger_router
from src.backend.v4.api.sync_router import get_runtime, sync_router
from src.backend.v4.config.settings import SyncRuntime

logger = logging.getLogger(__name__)

app_v4 = APIRouter(
    prefix="/api/v4",
    responses={404: {"description": "Not found"}},
)

app_v4.include_router(ledger_router)
app_v4.include_router(sync_router)


@app_v4.get("/health")
def health(runtime: SyncRuntime = Depends(get_runtime)):
    try:
        with runtime.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("Health check failed: %s", e)
        raise HTTPException(status_code=503, detail="Database unavailable")
    return {"status": "ok", "mirror_configured": runtime.mirror.is_configured}
