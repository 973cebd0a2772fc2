"""
FastAPI router for the school portal session.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from studysync.api.deps import get_session_manager
from studysync.integrations.portal.session_manager import PortalSessionManager
from studysync.schemas.sync import PortalLoginRequest, PortalStatusResponse
from studysync.services.sync.types import Credentials

router = APIRouter()


@router.post("/login", response_model=PortalStatusResponse)
async def portal_login(
    request: PortalLoginRequest,
    session_manager: PortalSessionManager = Depends(get_session_manager)
):
    """Log in to the portal and store the credentials encrypted for silent renewal."""
    credentials = Credentials(
        username=request.username,
        password=request.password,
        school_code=request.school_code,
    )
    if not await session_manager.login(credentials):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Portal login failed, check username and password"
        )
    return PortalStatusResponse(**session_manager.status())


@router.post("/logout", response_model=PortalStatusResponse)
async def portal_logout(session_manager: PortalSessionManager = Depends(get_session_manager)):
    await session_manager.logout()
    return PortalStatusResponse(**session_manager.status())


@router.get("/status", response_model=PortalStatusResponse)
async def portal_status(session_manager: PortalSessionManager = Depends(get_session_manager)):
    await session_manager.is_authenticated()
    return PortalStatusResponse(**session_manager.status())
