"""
In-memory entity store for products, campaigns, plan versions and line items.
"""

import copy
import logging
import threading
import weakref
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Type, TypeVar

from models.data_models import Product, Campaign, PlanVersion, LineItem
from business_logic.error_handler import NotFoundError, ValidationError

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

T = TypeVar('T')

ENTITY_TYPES = (Product, Campaign, PlanVersion, LineItem)

# Fields owned by the store itself
READ_ONLY_FIELDS = ('id', 'created_at', 'updated_at')


class EntityStore:
    """
    Generic create/read/update/delete per entity type, keyed by integer id.

    Ids come from a per-type counter owned by the store. Every entity handed
    out is a copy, so changes only reach the store through update().
    Writes can be grouped with transaction(), which restores the previous
    state if the block raises.
    """

    def __init__(self):
        self._tables: Dict[type, Dict[int, Any]] = {entity_type: {} for entity_type in ENTITY_TYPES}
        self._counters: Dict[type, int] = {entity_type: 1 for entity_type in ENTITY_TYPES}

        self._lock = threading.RLock()
        self._version_locks: "weakref.WeakValueDictionary[int, Any]" = weakref.WeakValueDictionary()
        self._transaction_depth = 0
        # Entity state before its first write in the open transaction; None if created there
        self._undo_log: Optional[Dict[Tuple[type, int], Any]] = None

    def _table(self, entity_type: Type[T]) -> Dict[int, T]:
        if entity_type not in self._tables:
            raise TypeError(f"Unsupported entity type: {entity_type!r}")
        return self._tables[entity_type]

    def _record_undo(self, entity_type: type, entity_id: int):
        """Remember an entity's current state before the first write to it in a transaction."""
        if self._undo_log is not None and (entity_type, entity_id) not in self._undo_log:
            self._undo_log[(entity_type, entity_id)] = self._tables[entity_type].get(entity_id)

    def _check_fields(self, entity_type: type, data: Dict[str, Any]):
        known = set(entity_type.field_names())
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValidationError([f"Unknown {entity_type.__name__} field: {name}" for name in unknown])

    def get(self, entity_type: Type[T], entity_id: int) -> Optional[T]:
        """Return a copy of the entity, or None if it does not exist."""
        with self._lock:
            entity = self._table(entity_type).get(entity_id)
            return copy.deepcopy(entity) if entity is not None else None

    def require(self, entity_type: Type[T], entity_id: int) -> T:
        """Return a copy of the entity or raise NotFoundError."""
        entity = self.get(entity_type, entity_id)
        if entity is None:
            raise NotFoundError(entity_type.__name__, entity_id)
        return entity

    def exists(self, entity_type: type, entity_id: int) -> bool:
        with self._lock:
            return entity_id in self._table(entity_type)

    def list(self, entity_type: Type[T], filter: Optional[Callable[[T], bool]] = None,
             **equals: Any) -> List[T]:
        """
        List entities ordered by id.

        Args:
            entity_type: Entity class to list
            filter: Optional predicate applied to each entity
            **equals: Field values that must match exactly

        Returns:
            List of entity copies
        """
        with self._lock:
            results = []
            for entity_id in sorted(self._table(entity_type)):
                entity = self._table(entity_type)[entity_id]
                if any(getattr(entity, name) != value for name, value in equals.items()):
                    continue
                if filter is not None and not filter(entity):
                    continue
                results.append(copy.deepcopy(entity))
            return results

    def count(self, entity_type: type, **equals: Any) -> int:
        return len(self.list(entity_type, **equals))

    def create(self, entity_type: Type[T], data: Dict[str, Any]) -> T:
        """
        Create an entity with the next id for its type.

        Args:
            entity_type: Entity class to create
            data: Field values; id and timestamps are assigned here

        Returns:
            Copy of the created entity
        """
        data = {key: value for key, value in data.items() if key not in READ_ONLY_FIELDS}
        self._check_fields(entity_type, data)

        with self._lock:
            entity_id = self._counters[entity_type]
            now = datetime.now()
            stamps = {'created_at': now}
            if 'updated_at' in entity_type.field_names():
                stamps['updated_at'] = now

            try:
                entity = entity_type(id=entity_id, **data, **stamps)
            except TypeError as e:
                raise ValidationError(f"Invalid {entity_type.__name__} data: {e}")

            self._record_undo(entity_type, entity_id)
            self._counters[entity_type] = entity_id + 1
            self._table(entity_type)[entity_id] = entity
            logger.debug(f"Created {entity_type.__name__} {entity_id}")
            return copy.deepcopy(entity)

    def update(self, entity_type: Type[T], entity_id: int, partial: Dict[str, Any]) -> T:
        """
        Apply a partial update to an existing entity.

        Raises:
            NotFoundError: If the entity does not exist
            ValidationError: If a field name is unknown or read-only
        """
        self._check_fields(entity_type, partial)
        read_only = sorted(set(partial) & set(READ_ONLY_FIELDS))
        if read_only:
            raise ValidationError([f"Field is read-only: {name}" for name in read_only])

        with self._lock:
            table = self._table(entity_type)
            if entity_id not in table:
                raise NotFoundError(entity_type.__name__, entity_id)

            changes = dict(partial)
            if 'updated_at' in entity_type.field_names():
                changes['updated_at'] = datetime.now()

            updated = replace(table[entity_id], **changes)
            self._record_undo(entity_type, entity_id)
            table[entity_id] = updated
            return copy.deepcopy(updated)

    def delete(self, entity_type: type, entity_id: int):
        """
        Delete an entity.

        Raises:
            NotFoundError: If the entity does not exist
        """
        with self._lock:
            table = self._table(entity_type)
            if entity_id not in table:
                raise NotFoundError(entity_type.__name__, entity_id)
            self._record_undo(entity_type, entity_id)
            del table[entity_id]
            logger.debug(f"Deleted {entity_type.__name__} {entity_id}")

    @contextmanager
    def transaction(self) -> Iterator['EntityStore']:
        """
        Group writes into one unit of work.

        The store lock is held for the whole block. If the block raises,
        every entity written in the block and every id counter is restored
        to its state on entry. Only entities written in the block are
        recorded. Nested transactions join the outermost one.
        """
        with self._lock:
            if self._transaction_depth > 0:
                self._transaction_depth += 1
                try:
                    yield self
                finally:
                    self._transaction_depth -= 1
                return

            counters = dict(self._counters)
            self._undo_log = {}
            self._transaction_depth = 1
            try:
                yield self
            except BaseException:
                self._rollback(self._undo_log, counters)
                raise
            finally:
                self._undo_log = None
                self._transaction_depth = 0

    def _rollback(self, undo_log: Dict[Tuple[type, int], Any], counters: Dict[type, int]):
        for (entity_type, entity_id), previous in undo_log.items():
            if previous is None:
                self._tables[entity_type].pop(entity_id, None)
            else:
                self._tables[entity_type][entity_id] = previous
        self._counters = counters
        logger.warning(f"Transaction rolled back ({len(undo_log)} entity write(s) undone)")

    def version_lock(self, plan_version_id: int) -> threading.RLock:
        """
        Lock that serializes writes and rollups for one plan version.

        Locks are held weakly: an entry lives only while some caller still
        references the lock.
        """
        with self._lock:
            lock = self._version_locks.get(plan_version_id)
            if lock is None:
                lock = threading.RLock()
                self._version_locks[plan_version_id] = lock
            return lock

    def version_lock_count(self) -> int:
        """Number of plan version locks currently in use."""
        with self._lock:
            return len(self._version_locks)

    def clear(self):
        """Remove every entity and reset id counters."""
        with self._lock:
            for entity_type in ENTITY_TYPES:
                self._tables[entity_type] = {}
                self._counters[entity_type] = 1
