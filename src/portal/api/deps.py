"""Session dependencies for FastAPI endpoints."""
import logging
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from portal.core.exceptions import InvalidTokenError, SessionExpiredError
from portal.services.session_registry import MembershipSession, SessionRegistry

logger = logging.getLogger(__name__)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


def get_session_registry(request: Request) -> SessionRegistry:
    """Get the registry created by the application lifespan."""
    return request.app.state.sessions


Registry = Annotated[SessionRegistry, Depends(get_session_registry)]


async def get_membership_session(
    request: Request,
    registry: Registry,
    token: str = Depends(oauth2_scheme),
    anonymous_id: Optional[str] = Header(default=None, alias="X-Anonymous-ID"),
) -> MembershipSession:
    """Get (or start) the membership session of the calling user."""
    try:
        session = registry.get_or_start(token)
    except InvalidTokenError as e:
        logger.warning(str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except SessionExpiredError as e:
        logger.info(str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Your session has expired. Please log in again.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.membership_session = session

    # a plan picked before logging in comes back once
    if anonymous_id:
        stashed_plan_id = registry.pop_stashed_selection(anonymous_id)
        if stashed_plan_id:
            await session.controller.restore_selection(stashed_plan_id)

    return session


# Type aliases for dependencies
CurrentSession = Annotated[MembershipSession, Depends(get_membership_session)]
