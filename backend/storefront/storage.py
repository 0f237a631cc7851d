# Overview: Key-addressed blob storage for digital goods (filesystem and in-memory backends).

from __future__ import annotations

import io
import json
import os
import threading
from dataclasses import dataclass
from typing import BinaryIO, Optional


DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class StoredObject:
    """A fetched blob: open byte stream plus the HTTP metadata it was stored with."""
    body: BinaryIO
    content_type: str
    content_disposition: Optional[str]
    size: int


class ObjectStore:
    """
    Blob store contract: put / get / delete by key.

    get() returns None for a missing key instead of raising; callers decide
    whether absence is an error.
    """

    def put(self, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE, content_disposition: str | None = None) -> None:
        raise NotImplementedError

    def get(self, key: str) -> StoredObject | None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryObjectStore(ObjectStore):
    """Process-local store. Used when OBJECT_STORE_PATH is unset and in tests."""

    def __init__(self) -> None:
        self._objects: dict[str, tuple[bytes, str, Optional[str]]] = {}
        self._lock = threading.Lock()

    def put(self, key, data, content_type=DEFAULT_CONTENT_TYPE, content_disposition=None):
        with self._lock:
            self._objects[key] = (bytes(data), content_type, content_disposition)

    def get(self, key):
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            return None
        data, content_type, disposition = entry
        return StoredObject(
            body=io.BytesIO(data),
            content_type=content_type,
            content_disposition=disposition,
            size=len(data),
        )

    def delete(self, key):
        with self._lock:
            self._objects.pop(key, None)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._objects


class LocalObjectStore(ObjectStore):
    """
    Filesystem store rooted at `root`.

    Each object is written as <root>/<key> with a <key>.meta.json sidecar
    holding content type and disposition. Keys may not escape the root.
    """

    META_SUFFIX = ".meta.json"

    def __init__(self, root: str) -> None:
        self.root = os.path.abspath(root)
        os.makedirs(self.root, exist_ok=True)

    def _path(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.root, key))
        if os.path.commonpath([self.root, path]) != self.root:
            raise ValueError(f"Invalid storage key: {key}")
        return path

    def put(self, key, data, content_type=DEFAULT_CONTENT_TYPE, content_disposition=None):
        path = self._path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "wb") as fh:
            fh.write(data)
        os.replace(tmp_path, path)
        with open(path + self.META_SUFFIX, "w", encoding="utf-8") as fh:
            json.dump({"content_type": content_type, "content_disposition": content_disposition}, fh)

    def get(self, key):
        path = self._path(key)
        if not os.path.isfile(path):
            return None

        meta = {}
        meta_path = path + self.META_SUFFIX
        if os.path.isfile(meta_path):
            with open(meta_path, "r", encoding="utf-8") as fh:
                meta = json.load(fh)

        return StoredObject(
            body=open(path, "rb"),
            content_type=meta.get("content_type") or DEFAULT_CONTENT_TYPE,
            content_disposition=meta.get("content_disposition"),
            size=os.path.getsize(path),
        )

    def delete(self, key):
        path = self._path(key)
        for target in (path, path + self.META_SUFFIX):
            if os.path.exists(target):
                os.remove(target)
