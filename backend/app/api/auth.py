"""Session login/logout endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from app.schemas.auth import LoginRequest, TokenResponse
from app.services.auth import (
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES,
    JWT_COOKIE_NAME,
    SessionGate,
    get_token_from_request,
    require_auth,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth")

TOKEN_TTL_SECONDS = JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60


@router.post("/login", response_model=TokenResponse)
async def login(credentials: LoginRequest, request: Request, response: Response):
    """Open a session for the admin user.

    The token is returned in the body and also set as an httpOnly cookie, so
    both the dashboard and scripted clients can use it.
    """
    gate: SessionGate = request.app.state.session_gate
    if not gate.enabled:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Authentication is disabled"
        )

    token = gate.authenticate(credentials.username, credentials.password)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    response.set_cookie(
        JWT_COOKIE_NAME,
        token,
        max_age=TOKEN_TTL_SECONDS,
        httponly=True,
        samesite="lax",
        secure=request.url.scheme == "https",
    )
    return TokenResponse(access_token=token, expires_in=TOKEN_TTL_SECONDS)


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    session: Optional[dict] = Depends(require_auth),
    token: Optional[str] = Depends(get_token_from_request),
):
    """Revoke the caller's session and clear its cookie."""
    if session is None:
        return {"message": "Authentication is disabled"}

    request.app.state.session_gate.logout(token)
    response.delete_cookie(JWT_COOKIE_NAME)
    logger.info(f"Session {session['sid'][:8]} logged out")
    return {"message": "Logged out"}
