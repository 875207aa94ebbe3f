"""
Session Store

Holds the single logged-in identity for one client, as a serialized
record under one fixed key of a key-value storage.

Lifecycle:
- load() on start (a corrupt value is dropped, not fatal)
- save() on login, registration and every profile change
- clear() on logout and account deletion

The storage is any MutableMapping[str, str]. In the HTTP service it is
the request/response cookie jar (web.auth.CookieJar); tests use a dict.
Values are signed with itsdangerous so a client cannot forge a role.
"""

from typing import MutableMapping, Optional

from itsdangerous import BadData, URLSafeSerializer
from pydantic import ValidationError as SchemaValidationError

from ..observability import get_logger
from ..schemas import Identity, SessionRecord


logger = get_logger(__name__)

SESSION_KEY = "bhimdatta-user"


class SessionStore:
    """
    One identity, one key.

    Usage:
        sessions = SessionStore(storage, serializer)
        sessions.save(identity)
        record = sessions.load()
        sessions.clear()
    """

    def __init__(
        self,
        storage: MutableMapping[str, str],
        serializer: URLSafeSerializer,
        key: str = SESSION_KEY,
    ):
        self._storage = storage
        self._serializer = serializer
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    def load(self) -> Optional[SessionRecord]:
        """
        Read the stored session.

        A value that fails signature or schema checks is removed from
        storage and treated as logged out.
        """
        raw = self._storage.get(self._key)
        if not raw:
            return None
        try:
            data = self._serializer.loads(raw)
            return SessionRecord.model_validate(data)
        except (BadData, SchemaValidationError) as e:
            logger.warning("Discarding unreadable session", error=type(e).__name__)
            self.clear()
            return None

    def save(self, identity: Identity) -> SessionRecord:
        record = SessionRecord.for_identity(identity)
        self._storage[self._key] = self._serializer.dumps(record.model_dump(mode="json"))
        return record

    def clear(self) -> None:
        self._storage.pop(self._key, None)
