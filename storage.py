from functools import lru_cache
from typing import Callable, List, Optional, Sequence, Type, TypeVar, Union

from pydantic import BaseModel, TypeAdapter
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config import get_logger
import models

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
Seed = Union[Sequence[ModelT], Callable[[], Sequence[ModelT]]]

# Collection name -> key suffix; the full key is the configured prefix + suffix
STORAGE_KEYS = {
    "students": "students",
    "health_records": "health_records",
    "medical_conditions": "medical_conditions",
    "allergies": "allergies",
    "emergency_contacts": "emergency_contacts",
    "vaccinations": "vaccinations",
    "vision_tests": "vision_tests",
    "alerts": "alerts",
    "messages": "messages",
    "blood_requests": "blood_requests",
    "appointments": "appointments",
}


@lru_cache(maxsize=None)
def _list_adapter(model_cls: Type[BaseModel]) -> TypeAdapter:
    return TypeAdapter(List[model_cls])


class SessionStorage:
    """String key-value store kept in the `storage_slots` table."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        models.Base.metadata.create_all(bind=session_factory.kw["bind"])

    def _slot(self, db: Session, key: str) -> Optional[models.StorageSlot]:
        return db.query(models.StorageSlot).filter(models.StorageSlot.key == key).first()

    def get_item(self, key: str) -> Optional[str]:
        with self.session_factory() as db:
            slot = self._slot(db, key)
            return slot.payload if slot else None

    def set_item(self, key: str, value: str) -> None:
        with self.session_factory() as db:
            slot = self._slot(db, key)
            if slot:
                slot.payload = value
            else:
                db.add(models.StorageSlot(key=key, payload=value))
            db.commit()

    def remove_item(self, key: str) -> None:
        with self.session_factory() as db:
            slot = self._slot(db, key)
            if slot:
                db.delete(slot)
                db.commit()

    def keys(self) -> List[str]:
        with self.session_factory() as db:
            return [row.key for row in db.query(models.StorageSlot.key).order_by(models.StorageSlot.key)]

    def clear(self) -> None:
        with self.session_factory() as db:
            db.query(models.StorageSlot).delete()
            db.commit()


class PersistenceAdapter:
    """Hydrates collections from `SessionStorage` at startup and writes them back on every change.

    Neither direction ever raises: a missing or corrupt snapshot falls back to the
    seed, and a failed write is logged while the in-memory state stays authoritative.
    """

    def __init__(self, storage: SessionStorage, prefix: str = "shis_"):
        self.storage = storage
        self.prefix = prefix

    def key_for(self, collection: str) -> str:
        return f"{self.prefix}{STORAGE_KEYS[collection]}"

    def hydrate(self, collection: str, model_cls: Type[ModelT], seed: Seed = ()) -> List[ModelT]:
        key = self.key_for(collection)
        try:
            raw = self.storage.get_item(key)
        except SQLAlchemyError:
            logger.warning("Could not read %s, using seed data", key, exc_info=True)
            return self._seed(seed)

        if raw is None:
            logger.debug("No snapshot for %s, using seed data", key)
            return self._seed(seed)

        try:
            records = _list_adapter(model_cls).validate_json(raw)
        except ValueError:
            # pydantic.ValidationError is a ValueError as well
            logger.warning("Discarding corrupt snapshot for %s", key)
            self._discard(key)
            return self._seed(seed)

        logger.debug("Hydrated %d %s from snapshot", len(records), collection)
        return records

    def persist(self, collection: str, records: Sequence[BaseModel]) -> bool:
        key = self.key_for(collection)
        try:
            if records:
                adapter = _list_adapter(type(records[0]))
                payload = adapter.dump_json(list(records), by_alias=True, exclude_none=True).decode()
            else:
                payload = "[]"
            self.storage.set_item(key, payload)
        except (SQLAlchemyError, ValueError, TypeError):
            logger.warning("Failed to persist %s; in-memory state is kept", key, exc_info=True)
            return False
        return True

    def _discard(self, key: str) -> None:
        try:
            self.storage.remove_item(key)
        except SQLAlchemyError:
            logger.warning("Could not discard %s", key, exc_info=True)

    @staticmethod
    def _seed(seed: Seed) -> list:
        if callable(seed):
            seed = seed()
        return list(seed)
