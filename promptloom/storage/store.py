"""Versioned JSON-file storage for every durable entity.

Layout under the data directory::

    _schema.json            {"version": 2, "next_ids": {"roles": 4, ...}}
    provider_configs.json   [ {record}, ... ]
    roles.json
    tags.json
    dialogs.json
    prompt_presets.json

File I/O runs in the default executor so callers only suspend at storage
boundaries.  A single lock serializes read-modify-write cycles; records are
last-writer-wins and nothing spans more than one collection.
"""

import asyncio
import functools
import json
import logging
import os
from pathlib import Path
from typing import Any, Iterator, Literal, Optional, Union

from pydantic import BaseModel, ValidationError

from ..errors import (
    NotFoundError,
    QueryError,
    SchemaVersionError,
    StorageUnavailableError,
    StoreNotOpenError,
)
from .migrations import (
    MIGRATIONS,
    MIN_SUPPORTED_VERSION,
    SCHEMA_VERSION,
    Migration,
    indexes_for,
    steps_for,
)
from .models import COLLECTIONS

logger = logging.getLogger(__name__)

SortOrder = Literal["asc", "desc"]
Entity = Union[BaseModel, dict]


class PersistentStore:
    def __init__(
        self,
        data_dir: Union[str, Path],
        schema_version: int = SCHEMA_VERSION,
        migrations: Optional[list[Migration]] = None,
    ) -> None:
        self._data_dir = Path(data_dir)
        self._meta_file = self._data_dir / "_schema.json"
        self._schema_version = schema_version
        self._migrations = MIGRATIONS if migrations is None else migrations
        self._meta: dict = {}
        self._is_open = False
        self._open_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def version(self) -> Optional[int]:
        return self._meta.get("version")

    # ---- File helpers (run in executor) ----

    def _collection_file(self, collection: str) -> Path:
        return self._data_dir / f"{collection}.json"

    def _read_json(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.error("Corrupt storage file %s: %s", path, e)
            raise StorageUnavailableError(f"Corrupt storage file {path.name}") from e
        except OSError as e:
            raise StorageUnavailableError(f"Cannot read {path}: {e}") from e

    def _write_json(self, path: Path, data: Any) -> None:
        tmp = path.with_name(path.name + ".tmp")
        try:
            tmp.write_text(
                json.dumps(data, indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
            os.replace(tmp, path)
        except OSError as e:
            raise StorageUnavailableError(f"Cannot write {path}: {e}") from e

    def _load_records(self, collection: str) -> list[dict]:
        return self._read_json(self._collection_file(collection), [])

    def _save_records(self, collection: str, records: list[dict]) -> None:
        self._write_json(self._collection_file(collection), records)

    def _write_meta(self) -> None:
        self._write_json(self._meta_file, self._meta)

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    # ---- Open / migrate ----

    async def open(self) -> None:
        """Open the store, running pending migrations before returning."""
        async with self._open_lock:
            if self._is_open:
                return
            await self._run(self._open_sync)
            self._is_open = True
            logger.info(
                "Store opened at %s (schema v%d)", self._data_dir, self._meta["version"]
            )

    def close(self) -> None:
        self._is_open = False

    def _open_sync(self) -> None:
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailableError(
                f"Cannot create data directory {self._data_dir}: {e}"
            ) from e
        if not os.access(self._data_dir, os.R_OK | os.W_OK):
            raise StorageUnavailableError(
                f"Data directory {self._data_dir} is not readable and writable"
            )

        meta = self._read_json(self._meta_file, None)
        if meta is None:
            meta = self._initial_meta()
        self._meta = meta
        self._meta.setdefault("next_ids", {})

        version = meta.get("version")
        if not isinstance(version, int):
            raise SchemaVersionError(-1, self._schema_version, "Schema version is missing")
        if version > self._schema_version:
            raise SchemaVersionError(
                version,
                self._schema_version,
                f"Data was written by a newer schema (v{version} > v{self._schema_version})",
            )
        if version < MIN_SUPPORTED_VERSION:
            raise SchemaVersionError(version, self._schema_version)

        for target in range(version + 1, self._schema_version + 1):
            self._migrate_to(target)

    def _initial_meta(self) -> dict:
        existing = [c for c in COLLECTIONS if self._collection_file(c).exists()]
        if not existing:
            meta = {"version": self._schema_version, "next_ids": {}}
            self._meta = meta
            self._write_meta()
            logger.info("Initialized empty store at schema v%d", self._schema_version)
            return meta

        # Collections without a schema file predate version tracking
        logger.warning(
            "No schema file found next to %s; assuming schema v%d",
            ", ".join(existing),
            MIN_SUPPORTED_VERSION,
        )
        next_ids = {}
        for collection in existing:
            ids = [r.get("id", 0) for r in self._load_records(collection)]
            next_ids[collection] = max(ids, default=0) + 1
        return {"version": MIN_SUPPORTED_VERSION, "next_ids": next_ids}

    def _migrate_to(self, target: int) -> None:
        for step in steps_for(target, self._migrations):
            records = self._load_records(step.collection)
            migrated = [step.upgrade(r) for r in records]
            self._save_records(step.collection, migrated)
            logger.info(
                "Migrated %d %s record(s) to schema v%d: %s",
                len(migrated),
                step.collection,
                target,
                step.description,
            )
        self._meta["version"] = target
        self._write_meta()

    # ---- Helpers ----

    def _require_open(self) -> None:
        if not self._is_open:
            raise StoreNotOpenError("Store is not open yet; await open() first")

    @staticmethod
    def _model_for(collection: str) -> type[BaseModel]:
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise ValueError(f"Unknown collection '{collection}'") from None

    @staticmethod
    def _validate(model_cls: type[BaseModel], data: dict) -> dict:
        try:
            return model_cls.model_validate(data).model_dump(mode="json")
        except ValidationError as e:
            raise ValueError(f"Invalid {model_cls.__name__} record: {e}") from e

    # ---- CRUD ----

    async def add(self, collection: str, entity: Entity) -> int:
        """Insert a new record and return its freshly assigned id."""
        self._require_open()
        model_cls = self._model_for(collection)
        if isinstance(entity, BaseModel):
            data = entity.model_dump(exclude={"id"})
        else:
            data = {k: v for k, v in entity.items() if k != "id"}
        async with self._write_lock:
            return await self._run(self._add_sync, collection, model_cls, data)

    def _add_sync(self, collection: str, model_cls: type[BaseModel], data: dict) -> int:
        records = self._load_records(collection)
        new_id = self._meta["next_ids"].get(collection, 1)
        record = self._validate(model_cls, {**data, "id": new_id})
        # Reserve the id before writing so it is never handed out twice
        self._meta["next_ids"][collection] = new_id + 1
        self._write_meta()
        records.append(record)
        self._save_records(collection, records)
        return new_id

    async def update(self, collection: str, record_id: int, changes: dict) -> None:
        """Overwrite only the given fields of an existing record."""
        self._require_open()
        model_cls = self._model_for(collection)
        changes = {k: v for k, v in changes.items() if k != "id"}
        async with self._write_lock:
            await self._run(self._update_sync, collection, model_cls, record_id, changes)

    def _update_sync(
        self,
        collection: str,
        model_cls: type[BaseModel],
        record_id: int,
        changes: dict,
    ) -> None:
        records = self._load_records(collection)
        for i, record in enumerate(records):
            if record.get("id") == record_id:
                records[i] = self._validate(model_cls, {**record, **changes, "id": record_id})
                self._save_records(collection, records)
                return
        raise NotFoundError(collection, record_id)

    async def put(self, collection: str, entity: Entity) -> int:
        """Insert when the entity has no id, otherwise partially update it.

        For models only the fields explicitly set on the instance are written.
        """
        if isinstance(entity, BaseModel):
            record_id = getattr(entity, "id", None)
            changes = entity.model_dump(exclude_unset=True, exclude={"id"})
        else:
            record_id = entity.get("id")
            changes = entity
        if record_id is None:
            return await self.add(collection, entity)
        await self.update(collection, record_id, changes)
        return record_id

    async def get(self, collection: str, record_id: int) -> Optional[BaseModel]:
        self._require_open()
        model_cls = self._model_for(collection)
        records = await self._run(self._load_records, collection)
        for record in records:
            if record.get("id") == record_id:
                return model_cls.model_validate(record)
        return None

    async def delete(self, collection: str, record_id: int) -> None:
        self._require_open()
        self._model_for(collection)
        async with self._write_lock:
            await self._run(self._delete_sync, collection, record_id)

    def _delete_sync(self, collection: str, record_id: int) -> None:
        records = self._load_records(collection)
        remaining = [r for r in records if r.get("id") != record_id]
        if len(remaining) == len(records):
            raise NotFoundError(collection, record_id)
        self._save_records(collection, remaining)

    async def all(self, collection: str) -> list[BaseModel]:
        return list(await self.query(collection))

    async def count(self, collection: str) -> int:
        self._require_open()
        self._model_for(collection)
        return len(await self._run(self._load_records, collection))

    async def query(
        self,
        collection: str,
        sort_key: str = "id",
        order: SortOrder = "asc",
    ) -> Iterator[BaseModel]:
        """Return a one-shot iterator over the collection ordered by sort_key.

        An unindexed sort_key falls back to id ordering.  Raises QueryError if
        the stored values cannot be compared.
        """
        self._require_open()
        if order not in ("asc", "desc"):
            raise ValueError(f"order must be 'asc' or 'desc', got {order!r}")
        model_cls = self._model_for(collection)
        if sort_key not in indexes_for(collection, self._meta["version"]):
            logger.warning(
                "%s is not indexed on '%s'; ordering by id", collection, sort_key
            )
            sort_key = "id"

        records = await self._run(self._load_records, collection)
        entities = [model_cls.model_validate(r) for r in records]
        try:
            entities.sort(
                key=lambda e: getattr(e, sort_key),
                reverse=(order == "desc"),
            )
        except TypeError as e:
            raise QueryError(
                f"Cannot order {collection} by '{sort_key}': {e}"
            ) from e
        return iter(entities)
