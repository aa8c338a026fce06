"""
Request dependencies: the application context and control-token auth
"""

from typing import Optional

from fastapi import Depends, HTTPException, Query, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from hearth.auth import TokenData
from hearth.context import HearthContext

security = HTTPBearer(auto_error=False)


def get_context(request: Request) -> HearthContext:
    """The context created at startup."""
    return request.app.state.context


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _verify(ctx: HearthContext, token: Optional[str]) -> TokenData:
    if not token:
        raise _unauthorized("Missing authentication credentials")

    token_data = ctx.verify_token(token)

    if not token_data:
        raise _unauthorized("Invalid or expired token")

    return token_data


async def require_control_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    ctx: HearthContext = Depends(get_context),
) -> TokenData:
    """
    Validate the control token from the Authorization header.

    Every control endpoint except pairing requires it.
    """
    return _verify(ctx, credentials.credentials if credentials else None)


async def require_control_token_or_query(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    token: Optional[str] = Query(default=None),
    ctx: HearthContext = Depends(get_context),
) -> TokenData:
    """
    Like ``require_control_token`` but also accepts ``?token=``.

    For navigations where the client cannot set headers.
    """
    if credentials and credentials.credentials:
        return _verify(ctx, credentials.credentials)
    return _verify(ctx, token)
