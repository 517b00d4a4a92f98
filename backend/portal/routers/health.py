from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.orm import Session

from portal.core import redis_client
from portal.db.session import get_db
from portal.services.question_bank import get_question_bank

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/health/live")
def live():
    return {"status": "live"}


@router.get("/health/ready")
def ready(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        raise HTTPException(status_code=503, detail="db not ready") from e

    try:
        r = redis_client.get_redis()
        r.ping()
    except Exception as e:
        raise HTTPException(status_code=503, detail="redis not ready") from e

    if len(get_question_bank()) == 0:
        raise HTTPException(status_code=503, detail="question bank is empty")

    return {"status": "ready"}
