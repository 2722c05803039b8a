"""
Data access port consumed by the engine, and a thread-safe in-memory store
"""

import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Any, Iterable, Union
from loguru import logger

from .models import Record
from .exceptions import (
    RecordNotFoundError,
    ConcurrencyConflictError,
    TransientDataAccessError,
    PermanentDataAccessError,
)


RecordTypeLike = Union[str, Enum]


def record_type_name(record_type: RecordTypeLike) -> str:
    """Normalize a RecordType member or plain string to the stored type name"""
    if isinstance(record_type, Enum):
        return str(record_type.value)
    return str(record_type)


class DataAccessPort(ABC):
    """
    Record read/write capability supplied by the host platform.

    Every call accepts a timeout in seconds. Implementations raise
    TransientDataAccessError when a call cannot complete in time and
    PermanentDataAccessError for schema or data problems.
    """

    @abstractmethod
    def get_record(self, record_type: RecordTypeLike, record_id: str,
                   fields: Optional[Iterable[str]] = None,
                   timeout: Optional[float] = None) -> Record:
        """Fetch one record; raises RecordNotFoundError when it does not exist"""

    @abstractmethod
    def query(self, record_type: RecordTypeLike, filters: Optional[Dict[str, Any]] = None,
              order_by: Optional[List[str]] = None, limit: Optional[int] = None,
              timeout: Optional[float] = None) -> List[Record]:
        """
        Fetch records matching all equality filters

        Args:
            record_type: Record type to search
            filters: Field name to required value
            order_by: Field names, prefixed with '-' for descending order
            limit: Maximum number of records to return

        Returns:
            Matching records
        """

    @abstractmethod
    def create_record(self, record_type: RecordTypeLike, fields: Dict[str, Any],
                      timeout: Optional[float] = None) -> str:
        """Create a record and return its id"""

    @abstractmethod
    def update_record(self, record_type: RecordTypeLike, record_id: str, fields: Dict[str, Any],
                      expected_version: Optional[int] = None,
                      timeout: Optional[float] = None) -> int:
        """
        Update fields on a record

        Args:
            record_type: Record type
            record_id: Record identifier
            fields: Field values to write
            expected_version: When given, the write only succeeds if the stored
                version still matches (raises ConcurrencyConflictError otherwise)
            timeout: Call timeout in seconds

        Returns:
            The record's new version
        """


class InMemoryRecordStore(DataAccessPort):
    """
    Thread-safe in-memory implementation of DataAccessPort.

    Used by tests, batch replay and embedding hosts. Each update bumps the
    record version so callers can write back optimistically.
    """

    def __init__(self, default_timeout: float = 5.0):
        self._lock = threading.Lock()
        self._records: Dict[str, Dict[str, Record]] = {}
        self.default_timeout = default_timeout

    def _acquire(self, timeout: Optional[float]) -> None:
        wait = self.default_timeout if timeout is None else timeout
        if not self._lock.acquire(timeout=wait):
            raise TransientDataAccessError(f"Record store busy, gave up after {wait}s")

    def get_record(self, record_type: RecordTypeLike, record_id: str,
                   fields: Optional[Iterable[str]] = None,
                   timeout: Optional[float] = None) -> Record:
        type_name = record_type_name(record_type)
        self._acquire(timeout)
        try:
            record = self._records.get(type_name, {}).get(record_id)
            if record is None:
                raise RecordNotFoundError(type_name, record_id)
            return self._copy(record, fields)
        finally:
            self._lock.release()

    def query(self, record_type: RecordTypeLike, filters: Optional[Dict[str, Any]] = None,
              order_by: Optional[List[str]] = None, limit: Optional[int] = None,
              timeout: Optional[float] = None) -> List[Record]:
        type_name = record_type_name(record_type)
        filters = filters or {}
        self._acquire(timeout)
        try:
            matches = [
                self._copy(record)
                for record in self._records.get(type_name, {}).values()
                if all(record.fields.get(key) == value for key, value in filters.items())
            ]
        finally:
            self._lock.release()

        # Apply sort keys last-to-first so the first key dominates
        for key in reversed(order_by or []):
            descending = key.startswith('-')
            name = key.lstrip('-')
            try:
                matches.sort(key=lambda r: self._sort_key(r, name), reverse=descending)
            except TypeError as e:
                raise PermanentDataAccessError(f"Cannot order {type_name} by {name}: {e}")

        if limit is not None:
            matches = matches[:limit]
        return matches

    def create_record(self, record_type: RecordTypeLike, fields: Dict[str, Any],
                      timeout: Optional[float] = None) -> str:
        type_name = record_type_name(record_type)
        values = dict(fields)
        record_id = str(values.pop("id", None) or uuid.uuid4())
        values.setdefault("created_on", datetime.now(timezone.utc))
        self._acquire(timeout)
        try:
            table = self._records.setdefault(type_name, {})
            if record_id in table:
                raise PermanentDataAccessError(f"{type_name} record {record_id} already exists")
            table[record_id] = Record(record_type=type_name, id=record_id, version=1, fields=values)
        finally:
            self._lock.release()
        logger.trace(f"Created {type_name} {record_id}")
        return record_id

    def update_record(self, record_type: RecordTypeLike, record_id: str, fields: Dict[str, Any],
                      expected_version: Optional[int] = None,
                      timeout: Optional[float] = None) -> int:
        type_name = record_type_name(record_type)
        if "id" in fields or "version" in fields:
            raise PermanentDataAccessError("Record id and version cannot be written directly")
        self._acquire(timeout)
        try:
            record = self._records.get(type_name, {}).get(record_id)
            if record is None:
                raise RecordNotFoundError(type_name, record_id)
            if expected_version is not None and record.version != expected_version:
                raise ConcurrencyConflictError(
                    f"{type_name} {record_id} is at version {record.version}, expected {expected_version}"
                )
            new_version = record.version + 1
            self._records[type_name][record_id] = Record(
                record_type=type_name,
                id=record_id,
                version=new_version,
                fields={**record.fields, **fields},
            )
            return new_version
        finally:
            self._lock.release()

    def count(self, record_type: RecordTypeLike) -> int:
        """Number of stored records of a type"""
        with self._lock:
            return len(self._records.get(record_type_name(record_type), {}))

    @staticmethod
    def _copy(record: Record, fields: Optional[Iterable[str]] = None) -> Record:
        if fields is None:
            values = dict(record.fields)
        else:
            values = {name: record.fields.get(name) for name in fields}
        return Record(record_type=record.record_type, id=record.id, version=record.version, fields=values)

    @staticmethod
    def _sort_key(record: Record, name: str):
        value = record.id if name == "id" else record.fields.get(name)
        # Missing values sort before everything else
        return (value is not None, value)
