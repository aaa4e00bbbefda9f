import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security.api_key import APIKeyHeader
from pydantic import BaseModel
from starlette.status import HTTP_403_FORBIDDEN

from portfolio.settings import Settings, settings

logger = logging.getLogger(__name__)

API_KEY_NAME = "X-Portfolio-Key"
api_key_header = APIKeyHeader(name=API_KEY_NAME, auto_error=False)


class CurrentUser(BaseModel):
    email: str


class Identity(BaseModel):
    user: Optional[CurrentUser] = None
    is_privileged_author: bool = False


ANONYMOUS = Identity()


def get_settings() -> Settings:
    """Small wrapper to allow dependency overrides in tests."""
    return settings


def resolve_identity(email: Optional[str], author_email: str) -> Identity:
    """
    Build the caller's identity from the address the identity provider vouched for.
    The author flag only drives the UI; write routes still require the API key.
    """
    if not email or not email.strip():
        return ANONYMOUS
    user = CurrentUser(email=email.strip())
    is_author = bool(author_email) and user.email.lower() == author_email.strip().lower()
    return Identity(user=user, is_privileged_author=is_author)


def get_identity(
    request: Request, current_settings: Settings = Depends(get_settings)
) -> Identity:
    return resolve_identity(
        request.headers.get(current_settings.IDENTITY_HEADER),
        current_settings.AUTHOR_EMAIL,
    )


def get_api_key(
    api_key_header: str = Security(api_key_header),
    current_settings: Settings = Depends(get_settings),
):
    expected = current_settings.PORTFOLIO_API_KEY
    if expected and api_key_header == expected:
        return api_key_header
    if not expected:
        logger.warning("PORTFOLIO_API_KEY is not configured; refusing write request")
    raise HTTPException(
        status_code=HTTP_403_FORBIDDEN,
        detail="Could not validate API key",
    )
