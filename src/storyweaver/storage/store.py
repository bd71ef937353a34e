"""Persistent key-value and blob storage.

The playback core only needs two narrow contracts: a string key-value store
that can enumerate its keys (the audio cache lives there) and a blob store
that turns an opaque media id into a displayable URL.

``JsonFileStore`` is an explicit cache object: it loads the whole file when
constructed and saves on every write, so there is no process-wide state.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Protocol


class PersistentStore(Protocol):
    def get(self, key: str) -> str | bytes | None: ...

    def keys(self) -> list[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class BlobStore(Protocol):
    def get(self, blob_id: str) -> str | None: ...


class MemoryStore:
    """In-memory PersistentStore."""

    def __init__(self, data: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(data or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def keys(self) -> list[str]:
        return list(self._data)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


class JsonFileStore(MemoryStore):
    """PersistentStore backed by a single JSON object file.

    Load-on-construct, save-on-write. A missing or unreadable file starts
    empty; the file is created on the first write.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        super().__init__(self._load())

    def _load(self) -> dict[str, str]:
        if not self.path.is_file():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._data, ensure_ascii=False), encoding="utf-8")
        tmp.replace(self.path)

    def set(self, key: str, value: str) -> None:
        super().set(key, value)
        self._save()

    def delete(self, key: str) -> None:
        if key in self._data:
            super().delete(key)
            self._save()


class DirectoryBlobStore:
    """BlobStore resolving ids to files named ``<id>.<ext>`` under a directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def get(self, blob_id: str) -> str | None:
        if not blob_id or not self.root.is_dir():
            return None
        for candidate in sorted(self.root.glob(f"{blob_id}.*")):
            if candidate.is_file() and candidate.stem == blob_id:
                return candidate.resolve().as_uri()
        return None
