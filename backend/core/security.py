from typing import Any, Dict

import jwt
from fastapi import Depends, Header, HTTPException, status

from core.config import settings

# Roles allowed to approve, verify and trigger syncs
BOARD_ROLES = {"board_finance", "board_internal", "board_external", "admin"}


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.AUTH_SECRET_KEY, algorithms=[settings.AUTH_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


async def get_current_user(authorization: str = Header(...)):
    token = authorization.split("Bearer ")[-1]
    payload = decode_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token subject")

    return {
        "id": user_id,
        "email": payload.get("email") or "",
        "name": payload.get("name") or "",
        "role": payload.get("role") or "member",
    }


async def require_board(user: dict = Depends(get_current_user)):
    if user.get("role") not in BOARD_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Board role required")
    return user
