"""
FastAPI dependencies (DB session, authentication)
"""
from fastapi import Request, HTTPException, status

from app.infrastructure.db.session import get_db as _get_db


# Re-export get_db for routers
get_db = _get_db


def get_current_user_id(request: Request) -> int:
    """
    Current user id from the session cookie

    Raises:
        HTTPException(401): if not logged in

    Usage:
        @router.get("/savings")
        def list_savings(user_id: int = Depends(get_current_user_id)):
            ...
    """
    user_id = request.session.get("user_id")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return int(user_id)
