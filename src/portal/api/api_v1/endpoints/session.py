from fastapi import APIRouter, Depends

from portal.api.deps import CurrentSession, Registry, oauth2_scheme
from portal.schemas.portal import NotifyingResponse

router = APIRouter()


@router.get("/notifications", response_model=NotifyingResponse)
async def read_notifications(session: CurrentSession) -> NotifyingResponse:
    """Hand out queued toasts; loading toasts stay until their request ends."""
    return NotifyingResponse(notifications=session.notifier.drain())


@router.post("/session/logout")
async def logout(registry: Registry, token: str = Depends(oauth2_scheme)) -> dict:
    """Tear down the caller's membership session."""
    ended = registry.end_for_token(token)
    return {"success": True, "ended": ended}
