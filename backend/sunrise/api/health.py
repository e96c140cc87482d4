from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from sunrise.config import get_settings
from sunrise.db.postgres import check_database, get_db
from sunrise.errors import error_body
from sunrise.schemas.common import ok
from sunrise.utils.time import isoformat, utcnow

router = APIRouter()


@router.get("/health")
async def health(db: AsyncSession = Depends(get_db)):
    settings = get_settings()
    if not await check_database(db):
        return JSONResponse(
            status_code=503,
            content=error_body("SERVICE_UNAVAILABLE", "Database connection failed"),
        )
    return ok({
        "status": "ok",
        "version": settings.app_version,
        "database": "connected",
        "timestamp": isoformat(utcnow()),
    })
