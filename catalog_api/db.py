import asyncio
import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from catalog_api.exceptions import StorageCorruptedError, StorageError
from catalog_api.logging_config import get_child_logger

logger = get_child_logger("db")


class LoadResult(NamedTuple):
    documents: List[Dict[str, Any]]
    recovered_from_corruption: bool
    quarantined_path: Optional[Path] = None


class CatalogFile:
    """
    The durable medium: one JSON file holding the whole product collection.

    Writes go to a temp file in the same directory and are swapped over the
    canonical file with os.replace, so a reader sees either the previous or
    the new collection and a crash mid-write leaves the previous one intact.
    All blocking file I/O runs in a worker thread.
    """

    def __init__(self, location):
        self.path = Path(location)

    async def load(self) -> LoadResult:
        """
        Read the collection, creating or resetting the file as needed.

        A missing file is initialized to an empty collection. An unparsable
        file is moved aside and replaced with an empty collection.
        """
        return await asyncio.to_thread(self._load_sync)

    async def save(self, documents: Iterable[Dict[str, Any]]) -> None:
        """
        Atomically replace the stored collection.

        Raises:
            StorageError: If the collection could not be written
        """
        payload = list(documents)
        try:
            await asyncio.to_thread(self._write_sync, payload)
        except OSError as e:
            logger.error(
                "Failed to persist catalog",
                extra={"path": str(self.path), "count": len(payload)},
                exc_info=True,
            )
            raise StorageError(
                f"Could not write catalog file {self.path}", original_exception=e
            ) from e

    async def set_aside(self, documents: List[Any]) -> Path:
        """
        Keep stored entries the catalog could not load in a sibling file
        (`<name>.rejected-<stamp>`), so the next save does not lose them.

        Raises:
            StorageError: If the entries could not be written
        """
        try:
            return await asyncio.to_thread(self._set_aside_sync, documents)
        except OSError as e:
            raise StorageError(
                f"Could not set aside rejected entries of {self.path}", original_exception=e
            ) from e

    def _load_sync(self) -> LoadResult:
        if not self.path.exists():
            logger.info("Catalog file not found, initializing empty collection", extra={"path": str(self.path)})
            self._write_sync([])
            return LoadResult([], False)

        try:
            documents = self._read_sync()
        except StorageCorruptedError as e:
            quarantined = self._quarantine_sync()
            logger.warning(
                "Catalog file is corrupted; starting with an empty collection",
                extra={
                    "path": str(self.path),
                    "quarantined_path": str(quarantined),
                    "error": str(e),
                },
            )
            self._write_sync([])
            return LoadResult([], True, quarantined)

        return LoadResult(documents, False)

    def _read_sync(self) -> List[Dict[str, Any]]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StorageCorruptedError(f"Catalog file {self.path} is not valid JSON: {e}") from e
        if not isinstance(raw, list):
            raise StorageCorruptedError(
                f"Catalog file {self.path} must hold a JSON array, found {type(raw).__name__}"
            )
        return raw

    def _quarantine_sync(self) -> Path:
        target = self._sibling("corrupt")
        os.replace(self.path, target)
        return target

    def _set_aside_sync(self, documents: List[Any]) -> Path:
        target = self._sibling("rejected")
        self._write_sync(documents, target)
        return target

    def _sibling(self, kind: str) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        return self.path.with_name(f"{self.path.name}.{kind}-{stamp}")

    def _write_sync(self, documents: List[Any], target: Optional[Path] = None) -> None:
        target = target or self.path
        target.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=str(target.parent),
            prefix=f".{target.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp_path = Path(tmp.name)
            try:
                json.dump(documents, tmp, ensure_ascii=False, indent=2)
                tmp.flush()
                os.fsync(tmp.fileno())
            except BaseException:
                tmp.close()
                tmp_path.unlink(missing_ok=True)
                raise
        try:
            os.replace(tmp_path, target)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
