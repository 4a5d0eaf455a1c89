import json
import logging
import os
from datetime import datetime, timezone
from typing import List, Type, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import SQLModel, Session, create_engine

from .errors import StaleSnapshot
from .models import BillingSettings, Invoice, Lesson, Payment, StoreEntry, Student

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./cadence.db")

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)


# --- STORAGE KEYS ---
class STORAGE_KEYS:
    USER = "cadence_user"
    SETUP_COMPLETE = "cadence_setup_complete"
    STUDENTS = "cadence_students"
    LESSONS = "cadence_lessons"
    INVOICES = "cadence_invoices"
    PAYMENTS = "cadence_payments"
    BILLING_SETTINGS = "cadence_billing_settings"
    DARK_MODE = "cadence_dark_mode"


R = TypeVar("R", bound=SQLModel)


class KeyValueStore:
    """
    The only place that reads or writes persisted state.

    Values are JSON documents stored one per key. Every key read through the
    store remembers the version it saw; writing that key back fails with
    ``StaleSnapshot`` if another writer changed it in between.
    """

    def __init__(self, session: Session):
        self.session = session
        self._seen = {}

    def _entry(self, key: str):
        return self.session.get(StoreEntry, key, populate_existing=True)

    def get(self, key: str, fallback=None):
        entry = self._entry(key)
        self._seen[key] = entry.version if entry else None
        if entry is None:
            return fallback
        return json.loads(entry.value)

    def set(self, key: str, value) -> None:
        payload = json.dumps(value)
        if key not in self._seen:
            entry = self._entry(key)
            self._seen[key] = entry.version if entry else None
        seen = self._seen[key]

        if seen is None:
            self.session.add(StoreEntry(key=key, value=payload, version=1))
            try:
                self.session.flush()
            except IntegrityError:
                self.session.rollback()
                raise StaleSnapshot(f"{key} was created by another writer")
            self._seen[key] = 1
            return

        result = self.session.exec(
            update(StoreEntry)
            .where(StoreEntry.key == key, StoreEntry.version == seen)
            .values(value=payload, version=seen + 1, updated_at=datetime.now(timezone.utc))
        )
        if result.rowcount != 1:
            raise StaleSnapshot(f"{key} changed since it was read")
        self._seen[key] = seen + 1
        logger.debug("stored %s (version %d)", key, seen + 1)

    def remove(self, key: str) -> None:
        entry = self._entry(key)
        if entry is not None:
            self.session.delete(entry)
            self.session.flush()
        self._seen.pop(key, None)

    # typed collections
    def load(self, key: str, model: Type[R]) -> List[R]:
        return [model.model_validate(item) for item in self.get(key, [])]

    def save(self, key: str, records) -> None:
        self.set(key, [record.model_dump(mode="json") for record in records])

    def students(self) -> List[Student]:
        return self.load(STORAGE_KEYS.STUDENTS, Student)

    def lessons(self) -> List[Lesson]:
        return self.load(STORAGE_KEYS.LESSONS, Lesson)

    def invoices(self) -> List[Invoice]:
        return self.load(STORAGE_KEYS.INVOICES, Invoice)

    def payments(self) -> List[Payment]:
        return self.load(STORAGE_KEYS.PAYMENTS, Payment)

    def billing_settings(self) -> BillingSettings:
        return BillingSettings.model_validate(self.get(STORAGE_KEYS.BILLING_SETTINGS, {}))

    def save_billing_settings(self, settings: BillingSettings) -> None:
        self.set(STORAGE_KEYS.BILLING_SETTINGS, settings.model_dump(mode="json"))


def init_db(bind=engine):
    SQLModel.metadata.create_all(bind=bind)


def get_session():
    with Session(engine) as session:
        yield session
