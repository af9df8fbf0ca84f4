"""
FastAPI dependencies.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from ..sync.engine import SyncEngine


def get_sync_engine(request: Request) -> SyncEngine:
    """Get the SyncEngine built by the application lifespan."""
    engine = getattr(request.app.state, "sync_engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync engine not started",
        )
    return engine


# Type aliases for dependency injection
Engine = Annotated[SyncEngine, Depends(get_sync_engine)]
