"""
Account Service - Identity Lifecycle

Rules (enforced in code):
- Emails are unique (case-insensitive) and never change
- Self-registration always creates a citizen; agents are created by operators
- Profile updates touch name and avatar only
- Deleting an account does NOT delete the reports or comments it wrote
"""

import hashlib
import hmac
from datetime import datetime, timezone
from typing import Any, Mapping, Optional
from uuid import UUID, uuid4

from email_validator import EmailNotValidError, validate_email

from ..db.store import DuplicateRecordError, IdentityStore, RecordNotFoundError
from ..observability import get_logger, get_metrics
from ..schemas import Identity, Role, StoredIdentity
from .errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from .media import validate_avatar
from .passwords import burn_verification, hash_password, needs_rehash, verify_password
from .session import SessionStore


logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 6

# Profile fields a user may change
EDITABLE_FIELDS = frozenset({"name", "avatar"})


def _check_email(email: str) -> str:
    email = (email or "").strip()
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        raise ValidationError("Invalid email address")
    return email


def _fingerprint(password_hash: str) -> str:
    return hashlib.sha256(password_hash.encode()).hexdigest()[:16]


def _check_password(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )


class AccountService:
    """
    Registry of identities and their credentials.

    Storage is delegated to an IdentityStore implementation. Everything
    returned is a public Identity; password hashes stay inside.
    """

    def __init__(self, store: Optional[IdentityStore] = None):
        if store is None:
            from ..db.store import InMemoryIdentityStore
            store = InMemoryIdentityStore()
        self._store = store

    @property
    def store(self) -> IdentityStore:
        return self._store

    @property
    def identity_count(self) -> int:
        return self._store.count()

    def get_identity(self, identity_id: UUID) -> Optional[Identity]:
        stored = self._store.get_by_id(identity_id)
        return stored.public() if stored else None

    def find_by_email(self, email: str) -> Optional[Identity]:
        stored = self._store.get_by_email(email)
        return stored.public() if stored else None

    # ================================================================
    # REGISTRATION & LOGIN
    # ================================================================

    def create_identity(
        self,
        email: str,
        password: str,
        name: str,
        role: Role = Role.CITIZEN,
    ) -> Identity:
        """
        Create an identity with any role.

        register() is the public path; this one is for operators and seeding.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required")
        email = _check_email(email)
        _check_password(password)

        if self._store.get_by_email(email) is not None:
            raise ConflictError("User already exists")

        stored = StoredIdentity(
            id=uuid4(),
            name=name,
            email=email,
            role=role,
            avatar=None,
            password_hash=hash_password(password),
            created_at=datetime.now(timezone.utc),
        )
        try:
            self._store.create(stored)
        except DuplicateRecordError:
            # Lost a race with a concurrent registration
            raise ConflictError("User already exists")

        get_metrics().increment("registrations")
        logger.info(
            "Identity registered",
            identity_id=str(stored.id),
            role=role.value,
        )
        return stored.public()

    def register(self, email: str, password: str, name: str) -> Identity:
        """Self-registration. Always a citizen."""
        return self.create_identity(email, password, name, role=Role.CITIZEN)

    def authenticate(self, email: str, password: str) -> Identity:
        """
        Check credentials.

        Raises AuthenticationError("Invalid credentials") for an unknown
        email or a wrong password alike.
        """
        metrics = get_metrics()
        metrics.increment("login_attempts")

        stored = self._store.get_by_email(email)
        if stored is None:
            burn_verification(password)
            metrics.increment("login_failures")
            raise AuthenticationError("Invalid credentials")

        if not verify_password(password, stored.password_hash):
            metrics.increment("login_failures")
            raise AuthenticationError("Invalid credentials")

        if needs_rehash(stored.password_hash):
            new_hash = hash_password(password)
            self._store.update(
                stored.id,
                lambda s: s.model_copy(update={"password_hash": new_hash}),
            )

        return stored.public()

    # ================================================================
    # PROFILE & CREDENTIALS
    # ================================================================

    def update_profile(self, identity_id: UUID, changes: Mapping[str, Any]) -> Identity:
        """
        Change name and/or avatar.

        Email and role cannot be changed here; an avatar of None removes it.
        """
        if "email" in changes:
            raise ValidationError("Email cannot be changed")
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        update: dict[str, Any] = {}
        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationError("Name is required")
            update["name"] = name
        if "avatar" in changes:
            avatar = changes["avatar"]
            update["avatar"] = validate_avatar(avatar) if avatar else None

        stored = self._update(identity_id, lambda s: s.model_copy(update=update))
        logger.info(
            "Profile updated",
            identity_id=str(identity_id),
            fields=sorted(update),
        )
        return stored.public()

    def change_password(self, identity_id: UUID, old_password: str, new_password: str) -> None:
        stored = self._store.get_by_id(identity_id)
        if stored is None:
            raise NotFoundError("User not found")
        if not verify_password(old_password, stored.password_hash):
            raise AuthenticationError("Current password is incorrect")
        self.set_password(identity_id, new_password)

    def set_password(self, identity_id: UUID, new_password: str) -> None:
        """Replace a password without checking the old one."""
        _check_password(new_password)
        new_hash = hash_password(new_password)
        self._update(identity_id, lambda s: s.model_copy(update={"password_hash": new_hash}))
        logger.info("Password changed", identity_id=str(identity_id))

    def password_fingerprint(self, identity_id: UUID) -> Optional[str]:
        """
        Short digest of the current password hash.

        Reset tokens carry it, so any password change (including the
        reset itself) invalidates every token issued before it.
        """
        stored = self._store.get_by_id(identity_id)
        return _fingerprint(stored.password_hash) if stored else None

    def reset_password(self, identity_id: UUID, fingerprint: str, new_password: str) -> None:
        """
        Set a new password from a reset token.

        Raises AuthenticationError if the password changed since the
        token was issued.
        """
        _check_password(new_password)
        new_hash = hash_password(new_password)

        def mutate(stored: StoredIdentity) -> StoredIdentity:
            if not hmac.compare_digest(_fingerprint(stored.password_hash), fingerprint):
                raise AuthenticationError("Invalid or expired reset token")
            return stored.model_copy(update={"password_hash": new_hash})

        self._update(identity_id, mutate)
        logger.info("Password reset", identity_id=str(identity_id))

    def request_password_reset(self, email: str) -> Identity:
        """
        Look up the identity a reset link is for.

        Token issuing and delivery belong to the caller.
        """
        identity = self.find_by_email(email)
        if identity is None:
            raise NotFoundError("User not found")
        return identity

    def delete_account(self, identity_id: UUID) -> None:
        """
        Remove an identity.

        Reports and comments it authored stay as they are, still carrying
        its id and name.
        """
        if not self._store.delete(identity_id):
            raise NotFoundError("User not found")
        logger.info("Identity deleted", identity_id=str(identity_id))

    def _update(self, identity_id: UUID, mutate) -> StoredIdentity:
        try:
            return self._store.update(identity_id, mutate)
        except RecordNotFoundError:
            raise NotFoundError("User not found")


class AccountSession:
    """
    Account operations on behalf of one client.

    Pairs the shared AccountService with the client's SessionStore, the
    way the browser's auth context paired the user list with local
    storage: every mutation of the logged-in identity is written back to
    the session, and logout or deletion erases it.
    """

    def __init__(self, accounts: AccountService, sessions: SessionStore):
        self.accounts = accounts
        self.sessions = sessions

    def current(self) -> Optional[Identity]:
        """
        The logged-in identity, or None.

        A session whose identity no longer exists is cleared.
        """
        record = self.sessions.load()
        if record is None:
            return None
        identity = self.accounts.get_identity(record.identity_id)
        if identity is None:
            self.sessions.clear()
            return None
        return identity

    def require(self) -> Identity:
        identity = self.current()
        if identity is None:
            raise AuthenticationError("Not authenticated")
        return identity

    def register(self, email: str, password: str, name: str) -> Identity:
        identity = self.accounts.register(email, password, name)
        self.sessions.save(identity)
        return identity

    def login(self, email: str, password: str) -> Identity:
        identity = self.accounts.authenticate(email, password)
        self.sessions.save(identity)
        logger.info("Login successful", identity_id=str(identity.id))
        return identity

    def logout(self) -> None:
        self.sessions.clear()

    def update_profile(self, changes: Mapping[str, Any]) -> Identity:
        identity = self.require()
        updated = self.accounts.update_profile(identity.id, changes)
        self.sessions.save(updated)
        return updated

    def change_password(self, old_password: str, new_password: str) -> None:
        identity = self.require()
        self.accounts.change_password(identity.id, old_password, new_password)

    def delete_account(self) -> Identity:
        identity = self.require()
        self.accounts.delete_account(identity.id)
        self.sessions.clear()
        return identity
