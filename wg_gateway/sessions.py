"""
Admin session state.
Each browser session is a random identity token plus an authenticated flag.
Only authenticated sessions are stored; an anonymous session lives for one
request.
Storage is pluggable: in-process memory by default, Redis when sessions must
be shared between processes.
"""
import hmac
import logging
import secrets
import time
from abc import ABC, abstractmethod
from typing import Optional

import bcrypt
import redis.asyncio as redis
from pydantic import BaseModel, Field

from .errors import AuthenticationError

logger = logging.getLogger(__name__)

BCRYPT_MAX_PASSWORD_BYTES = 72


class SessionState(BaseModel):
    token: str
    authenticated: bool = False
    created_at: float = Field(default_factory=time.time)


class SessionStore(ABC):
    """Mapping from identity token to session state."""

    @abstractmethod
    async def get(self, token: str) -> Optional[SessionState]: ...

    @abstractmethod
    async def save(self, session: SessionState) -> None: ...

    @abstractmethod
    async def delete(self, token: str) -> None: ...

    async def aclose(self) -> None:
        pass


class InMemorySessionStore(SessionStore):
    """Process-local store; everything is lost on restart."""

    def __init__(self):
        self._sessions: dict = {}

    async def get(self, token: str) -> Optional[SessionState]:
        return self._sessions.get(token)

    async def save(self, session: SessionState) -> None:
        self._sessions[session.token] = session

    async def delete(self, token: str) -> None:
        self._sessions.pop(token, None)

    def __len__(self) -> int:
        return len(self._sessions)


class RedisSessionStore(SessionStore):
    """Shared store. Records expire together with the session cookie."""
    KEY_PREFIX = "wg_gateway:session:"

    def __init__(self, client: redis.Redis, ttl: int):
        self.client = client
        self.ttl = ttl

    @classmethod
    def from_url(cls, url: str, ttl: int) -> "RedisSessionStore":
        return cls(redis.from_url(url), ttl)

    def _key(self, token: str) -> str:
        return f"{self.KEY_PREFIX}{token}"

    async def get(self, token: str) -> Optional[SessionState]:
        raw = await self.client.get(self._key(token))
        if raw is None:
            return None
        return SessionState.model_validate_json(raw)

    async def save(self, session: SessionState) -> None:
        await self.client.set(self._key(session.token), session.model_dump_json(), ex=self.ttl)

    async def delete(self, token: str) -> None:
        await self.client.delete(self._key(token))

    async def aclose(self) -> None:
        await self.client.aclose()


class SessionGate:
    """
    Authentication state machine per session:
    unauthenticated -> authenticated -> destroyed (logout).

    Without a configured password every session counts as authenticated.
    """

    def __init__(self, store: SessionStore, password: str = None, password_hash: str = None):
        self.store = store
        self._password = password
        self._password_hash = password_hash

    @property
    def requires_password(self) -> bool:
        return bool(self._password or self._password_hash)

    async def open(self, token: str = None) -> SessionState:
        """
        Return the stored session for `token`, or a new anonymous one under a
        fresh token. The new session is not saved until it logs in.
        """
        if token:
            session = await self.store.get(token)
            if session is not None:
                return session

        return SessionState(token=secrets.token_urlsafe(32))

    def is_authenticated(self, session: SessionState) -> bool:
        if not self.requires_password:
            return True
        return session.authenticated

    def status(self, session: SessionState) -> dict:
        return {
            "requiresPassword": self.requires_password,
            "authenticated": self.is_authenticated(session),
        }

    def _matches(self, password: str) -> bool:
        if self._password_hash:
            if len(password.encode()) > BCRYPT_MAX_PASSWORD_BYTES:
                logger.debug("Rejected password longer than bcrypt's 72 byte limit")
                return False
            try:
                return bcrypt.checkpw(password.encode(), self._password_hash.encode())
            except ValueError:
                logger.error("PASSWORD_HASH is not a valid bcrypt hash")
                return False
        if self._password is None:
            return False
        return hmac.compare_digest(password.encode(), self._password.encode())

    async def login(self, session: SessionState, password) -> SessionState:
        if not isinstance(password, str):
            raise AuthenticationError("Missing: Password")
        if not self._matches(password):
            raise AuthenticationError("Incorrect Password")

        # A new token on every login; the pre-login token is never promoted.
        await self.store.delete(session.token)
        session = SessionState(token=secrets.token_urlsafe(32), authenticated=True)
        await self.store.save(session)
        logger.debug(f"Authenticated Session: {session.token[:8]}")
        return session

    async def logout(self, session: SessionState) -> None:
        await self.store.delete(session.token)
        logger.debug(f"Deleted Session: {session.token[:8]}")
