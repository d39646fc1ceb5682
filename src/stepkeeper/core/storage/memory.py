"""In-memory store.  Not durable; useful for tests and ephemeral sessions."""

from .base import KeyValueStore


class MemoryStore(KeyValueStore):
    def __init__(self, initial: dict[str, str] | None = None, **config):
        super().__init__(**config)
        self._data: dict[str, str] = dict(initial or {})
        self.write_count = 0
        self.flush_count = 0

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self.write_count += 1

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def flush(self) -> None:
        self.flush_count += 1

    def keys(self) -> list[str]:
        return sorted(self._data)
