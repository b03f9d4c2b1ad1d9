"""
Flat-file record store.

Each collection lives in one JSON file holding a top-level array. The whole
array is read on every load and rewritten on every save; saves go through a
temp file and ``os.replace`` so a crash never leaves a truncated file behind.
Async callers use ``read``/``write``, which run the file I/O in a worker thread.
"""
import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Hashable, List, Optional, Type, TypeVar

from pydantic import ValidationError

from .errors import StorageError
from .log import get_logger
from .models import Record

R = TypeVar("R", bound=Record)

logger = get_logger(__name__)


class JsonCollectionStore(Generic[R]):
    def __init__(self, path: Path, model: Type[R], key: Callable[[R], Hashable]):
        self.path = Path(path)
        self.model = model
        self.key = key
        self.lock = asyncio.Lock()

    def ensure_exists(self) -> None:
        if self.path.exists():
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.save([])
        logger.info("created empty collection", path=str(self.path))

    def load(self) -> List[R]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"cannot read {self.path}: {exc}", path=str(self.path)) from exc
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(f"{self.path} is not valid JSON: {exc}", path=str(self.path)) from exc
        if not isinstance(data, list):
            raise StorageError(f"{self.path} must hold a JSON array", path=str(self.path))
        try:
            return [self.model.model_validate(item) for item in data]
        except ValidationError as exc:
            raise StorageError(f"{self.path} holds a malformed record: {exc}", path=str(self.path)) from exc

    def save(self, collection: List[R]) -> None:
        payload = json.dumps([record.to_json() for record in collection], indent=2)
        directory = self.path.parent
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageError(f"cannot write {self.path}: {exc}", path=str(self.path)) from exc

    async def read(self) -> List[R]:
        return await asyncio.to_thread(self.load)

    async def write(self, collection: List[R]) -> None:
        await asyncio.to_thread(self.save, collection)

    def find_by_key(self, collection: List[R], key: Hashable) -> Optional[R]:
        for record in collection:
            if self.key(record) == key:
                return record
        return None

    def upsert(self, collection: List[R], record: R) -> List[R]:
        key = self.key(record)
        result = []
        replaced = False
        for existing in collection:
            if self.key(existing) != key:
                result.append(existing)
            elif not replaced:
                result.append(record)
                replaced = True
        if not replaced:
            result.append(record)
        return result

    def patch(self, collection: List[R], key: Hashable, fields: Dict[str, Any]) -> List[R]:
        result = []
        for record in collection:
            if self.key(record) == key:
                merged = {**record.to_json(), **self._wire_fields(fields)}
                try:
                    record = self.model.model_validate(merged)
                except ValidationError as exc:
                    raise StorageError(f"patch of {key!r} gives a malformed record: {exc}", path=str(self.path)) from exc
            result.append(record)
        return result

    def _wire_fields(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        # accept snake_case attribute names as well as camelCase aliases
        wire = {}
        for name, value in fields.items():
            info = self.model.model_fields.get(name)
            alias = info.alias if info and info.alias else name
            wire[alias] = value
        return wire
