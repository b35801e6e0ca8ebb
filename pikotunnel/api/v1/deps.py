# pikotunnel/api/v1/deps.py
"""
Shared FastAPI dependencies
"""

import secrets
from typing import Generator, Optional
import logging

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from pikotunnel.core.runtime import RelayRuntime

logger = logging.getLogger(__name__)


def get_runtime(request: Request) -> RelayRuntime:
    return request.app.state.runtime


def get_db(runtime: RelayRuntime = Depends(get_runtime)) -> Generator[Session, None, None]:
    """
    Database session dependency
    Usage: db: Session = Depends(get_db)
    """
    db = runtime.session_factory()
    try:
        yield db
    finally:
        db.close()


async def verify_api_token(
    authorization: Optional[str] = Header(None),
    runtime: RelayRuntime = Depends(get_runtime)
):
    """
    Verify the static shared token sent in the Authorization header
    An unset API_TOKEN rejects every request
    """
    expected = runtime.settings.API_TOKEN
    if not expected or not authorization or not secrets.compare_digest(authorization.encode(), expected.encode()):
        logger.warning("Invalid API token attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "Invalid or missing API token",
                "error_code": "UNAUTHORIZED"
            }
        )
    return True
