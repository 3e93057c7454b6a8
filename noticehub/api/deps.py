"""
FastAPI dependencies (DB session, settings, admin key, session user)
"""
import secrets

from fastapi import Header, Request, HTTPException, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from noticehub.config import Settings
from noticehub.infrastructure.db.session import get_db as _get_db


# Re-export get_db for convenience
get_db = _get_db


class CamelModel(BaseModel):
    """Request/response model serialized with camelCase keys (snake_case accepted on input)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def require_admin(request: Request, x_admin_key: str | None = Header(default=None)) -> None:
    """
    Admin routes require header X-Admin-Key equal to ADMIN_API_KEY

    Raises:
        HTTPException(401): missing or wrong key
    """
    expected = get_app_settings(request).ADMIN_API_KEY
    if not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin key"
        )


def get_current_user_id(request: Request) -> int:
    """
    User id from the session cookie (issued by the auth service)

    Raises:
        HTTPException(401): not logged in
    """
    user_id = request.session.get("user_id")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return int(user_id)
