"""Liveness endpoint backed by a database ping."""

from __future__ import annotations

import sqlite3

from fastapi import APIRouter, Depends, HTTPException, status

from backend.controllers.dependencies import get_repository
from backend.repository.data_repository import DataRepository
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health(repository: DataRepository = Depends(get_repository)) -> dict[str, str]:
    try:
        repository.ping()
    except sqlite3.Error as exc:
        logger.error("Database ping failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="database unavailable",
        ) from exc
    return {"status": "ok", "database": "up"}
