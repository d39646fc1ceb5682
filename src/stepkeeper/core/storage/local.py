"""
Local filesystem key-value store.

Each key maps to one UTF-8 file under ``base_path``.  Writes go to a
temporary sibling and are moved into place with ``os.replace`` after an
``fsync``, so a value is committed before ``set`` returns.
"""

import os
import tempfile
from pathlib import Path

from loguru import logger

from .base import KeyValueStore, StoragePermissionError

_SUFFIX = ".json"


class LocalStore(KeyValueStore):
    """Local filesystem store."""

    def __init__(self, base_path: str = "~/.stepkeeper-data/store", **config):
        super().__init__(**config)
        self.base_path = Path(base_path).expanduser().resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_full_path(self, key: str) -> Path:
        """Resolve a storage key to an absolute path under ``base_path``.

        Rejects unsafe keys (absolute paths, traversal, empty keys, and
        backslash-delimited paths) to prevent writes outside ``base_path``.
        """
        raw_key = key.strip()
        if not raw_key:
            raise StoragePermissionError("Storage key cannot be empty.")
        if "\x00" in raw_key:
            raise StoragePermissionError("Storage key cannot contain null bytes.")
        if "\\" in raw_key:
            raise StoragePermissionError("Storage key cannot contain backslashes. Use '/' separators.")

        key_path = Path(raw_key + _SUFFIX)
        if key_path.is_absolute() or raw_key.startswith("~"):
            raise StoragePermissionError(f"Unsafe storage key '{key}': absolute paths are not allowed.")

        full_path = (self.base_path / key_path).resolve()
        try:
            full_path.relative_to(self.base_path)
        except ValueError as e:
            raise StoragePermissionError(f"Unsafe storage key '{key}': path traversal is not allowed.") from e
        return full_path

    def get(self, key: str) -> str | None:
        path = self._get_full_path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except PermissionError as e:
            raise StoragePermissionError(f"Cannot read {path}: {e}") from e

    def set(self, key: str, value: str) -> None:
        path = self._get_full_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except PermissionError as e:
            raise StoragePermissionError(f"Cannot write to {path}: {e}") from e
        finally:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)

    def delete(self, key: str) -> bool:
        path = self._get_full_path(key)
        if not path.exists():
            return False
        path.unlink()
        return True

    def keys(self, prefix: str = "") -> list[str]:
        base_len = len(str(self.base_path)) + 1
        found = []
        for root, _dirs, files in os.walk(self.base_path):
            for file in files:
                if not file.endswith(_SUFFIX) or file.startswith("."):
                    continue
                key = str(Path(root) / file)[base_len : -len(_SUFFIX)]
                if prefix and not key.startswith(prefix):
                    continue
                found.append(key)
        return sorted(found)

    def flush(self) -> None:
        # Writes are committed in set(); sync the directory entry so renames survive a crash.
        try:
            dir_fd = os.open(self.base_path, os.O_RDONLY)
        except OSError as e:
            logger.debug(f"Directory sync skipped for {self.base_path}: {e}")
            return
        try:
            os.fsync(dir_fd)
        except OSError as e:
            logger.debug(f"Directory sync failed for {self.base_path}: {e}")
        finally:
            os.close(dir_fd)
