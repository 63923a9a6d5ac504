from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, status

MAX_USER_ID_LEN = 128


def require_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Return the caller identity from the ``X-User-Id`` header."""

    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="X-User-Id header is required"
        )
    if len(user_id) > MAX_USER_ID_LEN:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User id is too long")
    return user_id
