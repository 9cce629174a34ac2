"""Document store contract and its two backends.

The archive engine only needs two things from storage: a transactional
read-then-write of one restaurant document, and a collection of archive
parts that can be queried by restaurant id. Parts are only replaced inside
a restaurant transaction, when a day is archived again. ``SqlDocumentStore``
is the primary backend; ``MemoryDocumentStore`` is the in-process local
cache with the same semantics.

Both backends use optimistic concurrency: the transaction function runs
against a snapshot, and the commit only succeeds if nobody committed to the
same restaurant in the meantime. Conflicting attempts are retried here, so
callers never hand-roll retries.
"""

import copy
import logging
import threading
from datetime import date, datetime
from typing import Callable, Iterable, Optional, Protocol, TypeVar

from pydantic import ValidationError
from sqlalchemy import delete, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .config import Settings, get_settings
from .database import build_engine, get_session, init_db
from .errors import ArchiveStoreUnavailable, RestaurantExists, RestaurantNotFound, TransactionConflict
from .models import ArchiveDocument, RestaurantDocument
from .schemas import ArchivePart, Restaurant

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreTransaction(Protocol):
    restaurant: Optional[Restaurant]

    def update_restaurant(self, restaurant: Restaurant) -> None:
        ...

    def archives_for(self, day: date) -> list[ArchivePart]:
        ...

    def set_archive(self, part: ArchivePart) -> None:
        ...

    def delete_archive(self, doc_id: str) -> None:
        ...


class DocumentStore(Protocol):
    def run_transaction(self, restaurant_id: str, fn: Callable[[StoreTransaction], T]) -> T:
        ...

    def get_restaurant(self, restaurant_id: str) -> Optional[Restaurant]:
        ...

    def create_restaurant(self, restaurant: Restaurant) -> None:
        ...

    def list_restaurant_ids(self) -> list[str]:
        ...

    def query_archives(self, restaurant_id: str) -> list[ArchivePart]:
        ...

    def get_archive(self, doc_id: str) -> Optional[ArchivePart]:
        ...


class BufferedTransaction:
    """Collects writes until the store commits them all at once.

    Archive reads see the transaction's own pending writes and deletes.
    """

    def __init__(
        self,
        restaurant_id: str,
        restaurant: Optional[Restaurant],
        load_archives: Callable[[str, date], list[ArchivePart]],
    ):
        self.restaurant_id = restaurant_id
        self.restaurant = restaurant
        self.pending_restaurant: Optional[Restaurant] = None
        self.pending_archives: dict[str, ArchivePart] = {}
        self.pending_deletes: set[str] = set()
        self._load_archives = load_archives

    def update_restaurant(self, restaurant: Restaurant) -> None:
        if self.restaurant is None:
            raise RestaurantNotFound(restaurant.id)
        self.pending_restaurant = restaurant

    def archives_for(self, day: date) -> list[ArchivePart]:
        parts = {part.doc_id: part for part in self._load_archives(self.restaurant_id, day)}
        for doc_id, part in self.pending_archives.items():
            if part.restaurant_id == self.restaurant_id and part.date == day:
                parts[doc_id] = part
        for doc_id in self.pending_deletes:
            parts.pop(doc_id, None)
        return sorted(parts.values(), key=lambda part: part.part_number)

    def set_archive(self, part: ArchivePart) -> None:
        self.pending_deletes.discard(part.doc_id)
        self.pending_archives[part.doc_id] = part

    def delete_archive(self, doc_id: str) -> None:
        self.pending_archives.pop(doc_id, None)
        self.pending_deletes.add(doc_id)

    @property
    def has_writes(self) -> bool:
        return self.pending_restaurant is not None or bool(self.pending_archives) or bool(self.pending_deletes)


def parse_parts(payloads: Iterable[dict]) -> list[ArchivePart]:
    """Validate stored part payloads, skipping any that are malformed."""
    parts = []
    for payload in payloads:
        try:
            parts.append(ArchivePart.model_validate(payload))
        except ValidationError as exc:
            logger.error(
                "Skipping malformed archive part %s: %d validation error(s)",
                payload.get("doc_id", "<unknown>") if isinstance(payload, dict) else "<unknown>",
                exc.error_count(),
            )
    return parts


class SqlDocumentStore:
    def __init__(self, engine: Engine, max_attempts: int = 5):
        self.engine = engine
        self.max_attempts = max_attempts

    def run_transaction(self, restaurant_id: str, fn: Callable[[StoreTransaction], T]) -> T:
        for attempt in range(1, self.max_attempts + 1):
            with Session(self.engine) as session:
                row = session.get(RestaurantDocument, restaurant_id)
                restaurant = Restaurant.model_validate(row.document) if row is not None else None

                def load_archives(rid: str, day: date) -> list[ArchivePart]:
                    rows = session.exec(
                        select(ArchiveDocument).where(
                            ArchiveDocument.restaurant_id == rid,
                            ArchiveDocument.archive_date == day,
                        )
                    ).all()
                    return parse_parts(archive.payload for archive in rows)

                txn = BufferedTransaction(restaurant_id, restaurant, load_archives)
                result = fn(txn)
                if not txn.has_writes:
                    return result

                if txn.pending_restaurant is not None:
                    updated = txn.pending_restaurant
                    outcome = session.exec(
                        update(RestaurantDocument)
                        .where(
                            RestaurantDocument.id == restaurant_id,
                            RestaurantDocument.version == row.version,
                        )
                        .values(
                            name=updated.name,
                            document=updated.model_dump(mode="json"),
                            version=row.version + 1,
                            updated_at=datetime.now(),
                        )
                    )
                    if outcome.rowcount != 1:
                        session.rollback()
                        logger.info(
                            "Write conflict on restaurant %s (attempt %d/%d)",
                            restaurant_id, attempt, self.max_attempts,
                        )
                        continue

                if txn.pending_deletes:
                    session.exec(
                        delete(ArchiveDocument).where(ArchiveDocument.doc_id.in_(sorted(txn.pending_deletes)))
                    )
                for part in txn.pending_archives.values():
                    session.merge(
                        ArchiveDocument(
                            doc_id=part.doc_id,
                            restaurant_id=part.restaurant_id,
                            restaurant_name=part.restaurant_name,
                            archive_date=part.date,
                            part_number=part.part_number,
                            total_parts=part.total_parts,
                            has_more_parts=part.has_more_parts,
                            next_part=part.next_part,
                            payload=part.model_dump(mode="json"),
                        )
                    )
                session.commit()
                return result

        raise TransactionConflict(
            f"Restaurant {restaurant_id} kept changing after {self.max_attempts} attempts"
        )

    def get_restaurant(self, restaurant_id: str) -> Optional[Restaurant]:
        with get_session(self.engine) as session:
            row = session.get(RestaurantDocument, restaurant_id)
            if row is None:
                return None
            return Restaurant.model_validate(row.document)

    def create_restaurant(self, restaurant: Restaurant) -> None:
        with get_session(self.engine) as session:
            if session.get(RestaurantDocument, restaurant.id) is not None:
                raise RestaurantExists(restaurant.id)
            session.add(
                RestaurantDocument(
                    id=restaurant.id,
                    name=restaurant.name,
                    document=restaurant.model_dump(mode="json"),
                )
            )
            session.commit()

    def list_restaurant_ids(self) -> list[str]:
        with get_session(self.engine) as session:
            return list(session.exec(select(RestaurantDocument.id).order_by(RestaurantDocument.id)).all())

    def query_archives(self, restaurant_id: str) -> list[ArchivePart]:
        try:
            with get_session(self.engine) as session:
                rows = session.exec(
                    select(ArchiveDocument)
                    .where(ArchiveDocument.restaurant_id == restaurant_id)
                    .order_by(ArchiveDocument.archive_date.asc(), ArchiveDocument.part_number.asc())
                ).all()
                return parse_parts(row.payload for row in rows)
        except SQLAlchemyError as exc:
            raise ArchiveStoreUnavailable(f"Archive query failed for {restaurant_id}: {exc}") from exc

    def get_archive(self, doc_id: str) -> Optional[ArchivePart]:
        try:
            with get_session(self.engine) as session:
                row = session.get(ArchiveDocument, doc_id)
                parts = parse_parts([row.payload]) if row is not None else []
                return parts[0] if parts else None
        except SQLAlchemyError as exc:
            raise ArchiveStoreUnavailable(f"Archive read failed for {doc_id}: {exc}") from exc


class MemoryDocumentStore:
    def __init__(self, max_attempts: int = 5):
        self.max_attempts = max_attempts
        self._lock = threading.Lock()
        self._restaurants: dict[str, tuple[int, dict]] = {}
        self._archives: dict[str, dict] = {}

    def run_transaction(self, restaurant_id: str, fn: Callable[[StoreTransaction], T]) -> T:
        for attempt in range(1, self.max_attempts + 1):
            with self._lock:
                version, document = self._restaurants.get(restaurant_id, (0, None))
                snapshot = copy.deepcopy(document)
            restaurant = Restaurant.model_validate(snapshot) if snapshot is not None else None
            txn = BufferedTransaction(restaurant_id, restaurant, self._archives_for)
            result = fn(txn)
            if not txn.has_writes:
                return result

            with self._lock:
                if txn.pending_restaurant is not None:
                    current_version = self._restaurants.get(restaurant_id, (0, None))[0]
                    if current_version != version:
                        logger.info(
                            "Write conflict on restaurant %s (attempt %d/%d)",
                            restaurant_id, attempt, self.max_attempts,
                        )
                        continue
                    self._restaurants[restaurant_id] = (
                        version + 1,
                        txn.pending_restaurant.model_dump(mode="json"),
                    )
                for doc_id in txn.pending_deletes:
                    self._archives.pop(doc_id, None)
                for part in txn.pending_archives.values():
                    self._archives[part.doc_id] = part.model_dump(mode="json")
            return result

        raise TransactionConflict(
            f"Restaurant {restaurant_id} kept changing after {self.max_attempts} attempts"
        )

    def get_restaurant(self, restaurant_id: str) -> Optional[Restaurant]:
        with self._lock:
            entry = self._restaurants.get(restaurant_id)
            document = copy.deepcopy(entry[1]) if entry is not None else None
        return Restaurant.model_validate(document) if document is not None else None

    def create_restaurant(self, restaurant: Restaurant) -> None:
        with self._lock:
            if restaurant.id in self._restaurants:
                raise RestaurantExists(restaurant.id)
            self._restaurants[restaurant.id] = (1, restaurant.model_dump(mode="json"))

    def list_restaurant_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._restaurants)

    def query_archives(self, restaurant_id: str) -> list[ArchivePart]:
        with self._lock:
            documents = [
                copy.deepcopy(doc)
                for doc in self._archives.values()
                if doc.get("restaurant_id") == restaurant_id
            ]
        parts = parse_parts(documents)
        parts.sort(key=lambda part: (part.date, part.part_number))
        return parts

    def get_archive(self, doc_id: str) -> Optional[ArchivePart]:
        with self._lock:
            document = copy.deepcopy(self._archives.get(doc_id))
        parts = parse_parts([document]) if document is not None else []
        return parts[0] if parts else None

    def _archives_for(self, restaurant_id: str, day: date) -> list[ArchivePart]:
        day_iso = day.isoformat()
        with self._lock:
            documents = [
                copy.deepcopy(doc)
                for doc in self._archives.values()
                if doc.get("restaurant_id") == restaurant_id and doc.get("date") == day_iso
            ]
        return parse_parts(documents)


def build_store(settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> DocumentStore:
    settings = settings or get_settings()
    if settings.store_backend == "memory":
        return MemoryDocumentStore(max_attempts=settings.transaction_max_attempts)
    engine = engine or build_engine(settings)
    init_db(engine)
    return SqlDocumentStore(engine, max_attempts=settings.transaction_max_attempts)
