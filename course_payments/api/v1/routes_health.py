from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from course_payments.db.session import get_db_session

router = APIRouter()


@router.get("/health", summary="Health check endpoint", description="Checks that the database answers.")
async def health_check(db: AsyncSession = Depends(get_db_session)):
    await db.execute(text("SELECT 1"))
    return {"status": "ok"}
