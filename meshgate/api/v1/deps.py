# meshgate/api/v1/deps.py
"""
Shared API dependencies
"""

import logging

from fastapi import Header, HTTPException, Request, status

from meshgate.bootstrap import Components

logger = logging.getLogger(__name__)


def get_components(request: Request) -> Components:
    """Components built by the lifespan and kept on app.state"""
    return request.app.state.components


async def verify_admin_token(
    request: Request,
    x_admin_token: str = Header(..., alias="X-Admin-Token"),
):
    """
    Verify admin authentication token
    """
    if x_admin_token != request.app.state.settings.ADMIN_SECRET:
        logger.warning("Invalid admin token attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "Invalid or missing admin token",
                "error_code": "UNAUTHORIZED"
            },
            headers={"WWW-Authenticate": "Bearer"}
        )
    return True
