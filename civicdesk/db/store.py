"""
Store Abstraction

This module defines the repository interfaces and the in-memory
implementations:
- ReportStore / InMemoryReportStore: reports with their media and comments
- IdentityStore / InMemoryIdentityStore: identities with password hashes

PostgreSQL implementations live in db/postgres.py.

The stores are responsible for:
- Holding records and handing out copies (callers never share state)
- Atomic read-modify-write through update()

The services retain responsibility for:
- Business rules (who may do what, required fields)
- Timestamps and status transitions

UPDATE CONTRACT:
update() takes a mutator and applies it under the store's lock (or row
lock), so two requests cannot interleave a read-modify-write:

    store.update(report_id, lambda r: r.model_copy(update={"status": s}))

If the mutator raises, nothing is written.
"""

from abc import ABC, abstractmethod
from threading import Lock
from typing import Callable, Optional
from uuid import UUID

from ..schemas import Report, StoredIdentity


# ============================================================
# EXCEPTIONS
# ============================================================

class StoreError(Exception):
    """Base exception for store errors."""
    pass


class DuplicateRecordError(StoreError):
    """Raised when a record with the same key already exists."""
    pass


class RecordNotFoundError(StoreError):
    """Raised when update() targets a missing record."""
    pass


ReportMutator = Callable[[Report], Report]
IdentityMutator = Callable[[StoredIdentity], StoredIdentity]


# ============================================================
# ABSTRACT BASE CLASSES
# ============================================================

class ReportStore(ABC):
    """
    Repository for reports.

    Reports are never deleted, so there is no delete().
    list_all() returns reports in creation order; feed ordering is the
    service's concern.
    """

    @abstractmethod
    def create(self, report: Report) -> Report:
        """Persist a new report. Raises DuplicateRecordError on id clash."""
        pass

    @abstractmethod
    def get_by_id(self, report_id: UUID) -> Optional[Report]:
        pass

    @abstractmethod
    def list_all(self) -> list[Report]:
        pass

    @abstractmethod
    def update(self, report_id: UUID, mutate: ReportMutator) -> Report:
        """
        Atomically replace a report with mutate(current).

        Raises RecordNotFoundError if the report does not exist.
        """
        pass

    @abstractmethod
    def count(self) -> int:
        pass


class IdentityStore(ABC):
    """
    Repository for identities.

    Emails are unique, compared case-insensitively.
    """

    @abstractmethod
    def create(self, identity: StoredIdentity) -> StoredIdentity:
        """Persist a new identity. Raises DuplicateRecordError on email clash."""
        pass

    @abstractmethod
    def get_by_id(self, identity_id: UUID) -> Optional[StoredIdentity]:
        pass

    @abstractmethod
    def get_by_email(self, email: str) -> Optional[StoredIdentity]:
        pass

    @abstractmethod
    def list_all(self) -> list[StoredIdentity]:
        pass

    @abstractmethod
    def update(self, identity_id: UUID, mutate: IdentityMutator) -> StoredIdentity:
        """Atomically replace an identity with mutate(current)."""
        pass

    @abstractmethod
    def delete(self, identity_id: UUID) -> bool:
        """Remove an identity. Returns False if it did not exist."""
        pass

    @abstractmethod
    def count(self) -> int:
        pass


# ============================================================
# IN-MEMORY IMPLEMENTATIONS
# ============================================================

class InMemoryReportStore(ReportStore):
    """
    In-memory implementation of ReportStore.

    Suitable for:
    - Development
    - Testing
    - Demo deployments (state resets on restart)

    NOT suitable for:
    - Production (no durability)
    - Multi-instance deployments (no shared state)
    """

    def __init__(self):
        self._reports: dict[UUID, Report] = {}
        self._lock = Lock()

    def create(self, report: Report) -> Report:
        with self._lock:
            if report.id in self._reports:
                raise DuplicateRecordError(f"Report {report.id} already exists")
            self._reports[report.id] = report.model_copy(deep=True)
        return report.model_copy(deep=True)

    def get_by_id(self, report_id: UUID) -> Optional[Report]:
        with self._lock:
            report = self._reports.get(report_id)
            return report.model_copy(deep=True) if report else None

    def list_all(self) -> list[Report]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._reports.values()]

    def update(self, report_id: UUID, mutate: ReportMutator) -> Report:
        with self._lock:
            current = self._reports.get(report_id)
            if current is None:
                raise RecordNotFoundError(f"Report {report_id} does not exist")
            updated = mutate(current.model_copy(deep=True))
            if updated.id != report_id:
                raise StoreError("update() must not change the report id")
            self._reports[report_id] = updated.model_copy(deep=True)
        return updated

    def count(self) -> int:
        return len(self._reports)


class InMemoryIdentityStore(IdentityStore):
    """In-memory implementation of IdentityStore."""

    def __init__(self):
        self._identities: dict[UUID, StoredIdentity] = {}
        self._by_email: dict[str, UUID] = {}  # lowercased email -> id
        self._lock = Lock()

    def create(self, identity: StoredIdentity) -> StoredIdentity:
        key = identity.email.lower()
        with self._lock:
            if key in self._by_email:
                raise DuplicateRecordError(f"Identity with email {identity.email} already exists")
            if identity.id in self._identities:
                raise DuplicateRecordError(f"Identity {identity.id} already exists")
            self._identities[identity.id] = identity.model_copy(deep=True)
            self._by_email[key] = identity.id
        return identity.model_copy(deep=True)

    def get_by_id(self, identity_id: UUID) -> Optional[StoredIdentity]:
        with self._lock:
            identity = self._identities.get(identity_id)
            return identity.model_copy(deep=True) if identity else None

    def get_by_email(self, email: str) -> Optional[StoredIdentity]:
        with self._lock:
            identity_id = self._by_email.get(email.lower())
            if identity_id is None:
                return None
            return self._identities[identity_id].model_copy(deep=True)

    def list_all(self) -> list[StoredIdentity]:
        with self._lock:
            return [i.model_copy(deep=True) for i in self._identities.values()]

    def update(self, identity_id: UUID, mutate: IdentityMutator) -> StoredIdentity:
        with self._lock:
            current = self._identities.get(identity_id)
            if current is None:
                raise RecordNotFoundError(f"Identity {identity_id} does not exist")
            updated = mutate(current.model_copy(deep=True))
            # Email and id are the lookup keys and never change
            if updated.id != current.id or updated.email.lower() != current.email.lower():
                raise StoreError("update() must not change identity id or email")
            self._identities[identity_id] = updated.model_copy(deep=True)
        return updated

    def delete(self, identity_id: UUID) -> bool:
        with self._lock:
            identity = self._identities.pop(identity_id, None)
            if identity is None:
                return False
            self._by_email.pop(identity.email.lower(), None)
            return True

    def count(self) -> int:
        return len(self._identities)
