"""
Application-state container for per-user membership sessions.

A session is started by the first authenticated request, reused while the
user's token stays valid and torn down on logout, expiry or after sitting
idle. Nothing outlives the process: there is no persistent local store.
"""
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

import httpx
from jose import JWTError

from portal.clients.platform_api import PlatformAPIClient
from portal.core.config import settings
from portal.core.exceptions import InvalidTokenError, SessionExpiredError
from portal.services.admin_membership_service import AdminMembershipService
from portal.services.membership_service import MembershipController
from portal.services.notifier import Notifier
from portal.utils.auth import (
    decode_token,
    is_token_expired,
    read_expiry,
    roles_from_claims,
    session_key,
    token_key,
)

logger = logging.getLogger(__name__)


@dataclass
class MembershipSession:
    key: str
    api: PlatformAPIClient
    controller: MembershipController
    admin: AdminMembershipService
    notifier: Notifier
    roles: List[str] = field(default_factory=list)
    expires_at: Optional[int] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_seen: float = 0.0

    @property
    def access_token(self) -> Optional[str]:
        return self.api.access_token

    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return is_token_expired(self.expires_at, settings.TOKEN_EXPIRY_BUFFER_SECONDS)

    def teardown(self) -> None:
        self.controller.reset()
        self.notifier.clear()


class SessionRegistry:
    def __init__(
        self,
        http: httpx.AsyncClient,
        jwt_secret: Optional[str] = settings.JWT_SECRET,
        jwt_algorithm: str = settings.JWT_ALGORITHM,
        idle_seconds: float = settings.SESSION_IDLE_SECONDS,
        max_sessions: int = settings.MAX_SESSIONS,
        stash_seconds: float = settings.STASHED_SELECTION_SECONDS,
        max_stashed: int = settings.MAX_STASHED_SELECTIONS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.http = http
        self.jwt_secret = jwt_secret
        self.jwt_algorithm = jwt_algorithm
        self.idle_seconds = idle_seconds
        self.max_sessions = max_sessions
        self.stash_seconds = stash_seconds
        self.max_stashed = max_stashed
        self._clock = clock
        # least recently used first
        self._sessions: "OrderedDict[str, MembershipSession]" = OrderedDict()
        # visitor id -> (plan id, stashed at), oldest first
        self._stashed_selections: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def _identify(self, token: str) -> Tuple[str, List[str], Optional[int]]:
        """Session key, roles and expiry of ``token``.

        Raises:
            InvalidTokenError: if a signing secret is configured and the token fails verification
        """
        if not self.jwt_secret:
            return token_key(token), [], read_expiry(token)
        try:
            claims = decode_token(token, self.jwt_secret, self.jwt_algorithm)
        except JWTError as e:
            raise InvalidTokenError(f"Token verification failed: {e}") from e
        exp = claims.get("exp")
        return session_key(token, claims), roles_from_claims(claims), exp if isinstance(exp, int) else None

    def _start(self, key: str, token: str, roles: List[str], expires_at: Optional[int]) -> MembershipSession:
        notifier = Notifier()
        api = PlatformAPIClient(self.http, access_token=token)
        session = MembershipSession(
            key=key,
            api=api,
            controller=MembershipController(api, notifier),
            admin=AdminMembershipService(api, notifier),
            notifier=notifier,
            roles=roles,
            expires_at=expires_at,
        )
        self._sessions[key] = session
        logger.info(f"Started membership session {key}")
        return session

    def _prune_sessions(self) -> None:
        cutoff = self._clock() - self.idle_seconds
        for key, session in list(self._sessions.items()):
            if session.last_seen < cutoff or session.is_expired():
                self.end(key)
        while len(self._sessions) >= self.max_sessions:
            oldest = next(iter(self._sessions))
            logger.info(f"Session limit reached, evicting {oldest}")
            self.end(oldest)

    def get_or_start(self, token: str) -> MembershipSession:
        """Return the session for ``token``, starting one if needed.

        Raises:
            InvalidTokenError: if the token fails verification
            SessionExpiredError: if the token has expired; its session is ended
        """
        key, roles, expires_at = self._identify(token)
        session = self._sessions.get(key)
        if session is not None and session.last_seen < self._clock() - self.idle_seconds:
            self.end(key)
            session = None

        if session is None:
            self._prune_sessions()
            session = self._start(key, token, roles, expires_at)
        elif session.access_token != token:
            # refreshed token for the same verified user
            session.api.access_token = token
            session.roles = roles
            session.expires_at = expires_at

        if session.is_expired():
            self.end(key)
            raise SessionExpiredError(f"Session {key} has expired")

        session.last_seen = self._clock()
        self._sessions.move_to_end(key)
        return session

    def end(self, key: str) -> bool:
        session = self._sessions.pop(key, None)
        if session is None:
            return False
        session.teardown()
        logger.info(f"Ended membership session {key}")
        return True

    def end_for_token(self, token: str) -> bool:
        try:
            key, _, _ = self._identify(token)
        except InvalidTokenError:
            return False
        return self.end(key)

    def _prune_stashed(self, room: int = 0) -> None:
        cutoff = self._clock() - self.stash_seconds
        while self._stashed_selections:
            visitor_id, (_, stashed_at) = next(iter(self._stashed_selections.items()))
            if stashed_at >= cutoff and len(self._stashed_selections) + room <= self.max_stashed:
                break
            del self._stashed_selections[visitor_id]

    def stash_selection(self, visitor_id: str, plan_id: str) -> None:
        self._stashed_selections.pop(visitor_id, None)
        self._prune_stashed(room=1)
        self._stashed_selections[visitor_id] = (plan_id, self._clock())

    def pop_stashed_selection(self, visitor_id: str) -> Optional[str]:
        self._prune_stashed()
        stashed = self._stashed_selections.pop(visitor_id, None)
        return stashed[0] if stashed else None

    def close(self) -> None:
        for key in list(self._sessions):
            self.end(key)
        self._stashed_selections.clear()
