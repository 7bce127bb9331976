"""
Auth context.

Authentication happens upstream (gateway / session middleware); by the time a
request reaches these routes the verified user id is in the X-User-Id header.
"""
from fastapi import Header, HTTPException, status


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Dependency that requires an authenticated user."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user_id
