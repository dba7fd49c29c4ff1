"""
Durable history of completed tasks.

The whole collection lives in one storage slot (default key
``mcc_history``) as a JSON array of HistoryItem objects, newest first.
It is read once by ``load()`` and rewritten after every mutation.

Failure policy
──────────────
* unreadable or foreign slot data → empty history, warning logged
* one invalid record              → that record skipped, warning logged
* write failure                   → in-memory history stays authoritative,
                                     warning logged
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterable, Iterator
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

from studio.errors import PersistenceError
from studio.models import HistoryItem
from studio.storage import SlotStorage

logger = logging.getLogger(__name__)

DEFAULT_KEY = "mcc_history"
ALL_TYPES = "all"

_ITEMS = TypeAdapter(list[HistoryItem])


def _records(raw: Optional[str], key: str) -> list[Any]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring unparseable history slot %r", key)
        return []
    if not isinstance(data, list):
        logger.warning("Ignoring history slot %r: expected a list", key)
        return []
    return data


def filter_items(
    items: Iterable[HistoryItem],
    type_filter: str = ALL_TYPES,
    search: str = "",
) -> list[HistoryItem]:
    """Return the items matching a type and a title search, order kept.

    Args:
        items: Items in display order.
        type_filter: ``"all"`` or one HistoryType value.
        search: Case-insensitive substring of the title; blank matches all.
    """
    wanted = (type_filter or ALL_TYPES).lower()
    needle = search.strip().lower()
    return [
        item
        for item in items
        if (wanted == ALL_TYPES or item.type.value == wanted)
        and (not needle or needle in item.title.lower())
    ]


class HistoryStore:
    """Newest-first collection of HistoryItems backed by a storage slot."""

    def __init__(self, storage: SlotStorage, key: str = DEFAULT_KEY) -> None:
        self._storage = storage
        self._key = key
        self._items: list[HistoryItem] = []
        self._lock = threading.RLock()

    # ── Lifecycle ──────────────────────────────────────────────────────────

    def load(self) -> int:
        """Replace the in-memory collection with the persisted one.

        Returns:
            The number of items loaded.
        """
        try:
            raw = self._storage.read(self._key)
        except PersistenceError as exc:
            logger.warning("History slot %r unreadable, starting empty: %s", self._key, exc)
            raw = None

        items: list[HistoryItem] = []
        for index, record in enumerate(_records(raw, self._key)):
            try:
                items.append(HistoryItem.model_validate(record))
            except ValidationError as exc:
                logger.warning(
                    "Skipping corrupt history entry #%d in slot %r: %d errors",
                    index,
                    self._key,
                    exc.error_count(),
                )

        seen: set[str] = set()
        unique: list[HistoryItem] = []
        for item in items:
            if item.id in seen:
                logger.warning("Dropping duplicate history id=%s", item.id)
                continue
            seen.add(item.id)
            unique.append(item)

        with self._lock:
            self._items = unique
        logger.info("Loaded %d history items from slot %r", len(unique), self._key)
        return len(unique)

    def _save(self) -> None:
        payload = _ITEMS.dump_json(self._items, by_alias=True).decode("utf-8")
        try:
            self._storage.write(self._key, payload)
        except PersistenceError as exc:
            logger.warning("History not persisted, keeping it in memory: %s", exc)

    # ── Mutations ──────────────────────────────────────────────────────────

    def append(self, item: HistoryItem) -> None:
        """Insert *item* at the front and persist.

        Raises:
            ValueError: If an item with the same id is already stored.
        """
        with self._lock:
            if any(existing.id == item.id for existing in self._items):
                raise ValueError(f"History item {item.id!r} already exists.")
            self._items.insert(0, item)
            self._save()
        logger.info("Saved history item id=%s type=%s", item.id, item.type.value)

    def delete(self, item_id: str) -> bool:
        """Delete an item by id.

        Returns:
            True if an item was removed, False if it was not there.
        """
        with self._lock:
            remaining = [item for item in self._items if item.id != item_id]
            if len(remaining) == len(self._items):
                return False
            self._items = remaining
            self._save()
        logger.info("Deleted history item id=%s", item_id)
        return True

    # ── Queries ────────────────────────────────────────────────────────────

    def list(self, type_filter: str = ALL_TYPES, search: str = "") -> list[HistoryItem]:
        with self._lock:
            snapshot = tuple(self._items)
        return filter_items(snapshot, type_filter, search)

    def get(self, item_id: str) -> Optional[HistoryItem]:
        with self._lock:
            return next((item for item in self._items if item.id == item_id), None)

    @property
    def items(self) -> tuple[HistoryItem, ...]:
        with self._lock:
            return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[HistoryItem]:
        return iter(self.items)
