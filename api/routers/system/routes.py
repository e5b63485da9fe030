from __future__ import annotations
import logging
from fastapi import APIRouter, Depends, Request
from api.database import get_async_session
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from scalar_fastapi import get_scalar_api_reference

router = APIRouter()


@router.get("/check-health", include_in_schema=False)
async def check_health(session: AsyncSession = Depends(get_async_session)):
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logging.error(f"Health check: database unreachable: {e}")
        return {"ok": False, "database": False}
    return {"ok": True, "database": True}


@router.get("/scalar", include_in_schema=False)
def get_scalar(request: Request):
    app = request.app

    return get_scalar_api_reference(
        title=app.title,
        openapi_url=app.openapi_url,
    )
