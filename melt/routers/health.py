import logging
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from ..database import get_session
from ..models.common import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

@router.get("/health")
def health_check(session: Session = Depends(get_session)):
    try:
        session.exec(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Health check could not reach the database: %s", e)
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "database": "disconnected",
                "error": str(e),
                "timestamp": utcnow().isoformat(),
            },
        )

    return {"status": "ok", "database": "connected", "timestamp": utcnow().isoformat()}
