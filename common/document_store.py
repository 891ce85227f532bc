"""Whole-document JSON persistence with atomic replacement.

Callers read the full document, mutate it and write it back. Writes land in a
temporary sibling file first and are moved over the target with
:func:`os.replace`, so a crash mid-write leaves the previous document intact.
When a Fernet key is supplied the document is encrypted at rest.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, Protocol

from cryptography.fernet import Fernet, InvalidToken


logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    """Repository contract shared by every persisted document."""

    def load(self) -> Dict[str, Any]:
        ...

    def save(self, document: Dict[str, Any]) -> None:
        ...


class JsonDocumentStore:
    """Persist one JSON object in ``path``."""

    def __init__(self, path: Path | str, *, fernet_key: str | None = None) -> None:
        self.path = Path(path)
        self.fernet = Fernet(fernet_key.encode()) if fernet_key else None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    def _decode(self, raw: bytes) -> Dict[str, Any]:
        if self.fernet is not None:
            try:
                raw = self.fernet.decrypt(raw)
            except InvalidToken:
                logger.warning("Could not decrypt %s; starting from an empty document", self.path)
                return {}
        try:
            parsed = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable document %s: %s", self.path, exc)
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def _encode(self, document: Dict[str, Any]) -> bytes:
        raw = json.dumps(document, ensure_ascii=False, indent=2).encode("utf-8")
        if self.fernet is not None:
            return self.fernet.encrypt(raw)
        return raw

    # ------------------------------------------------------------------
    def load(self) -> Dict[str, Any]:
        """Return the stored document, or an empty one when missing."""

        with self._lock:
            try:
                raw = self.path.read_bytes()
            except FileNotFoundError:
                return {}
            return self._decode(raw)

    # ------------------------------------------------------------------
    def save(self, document: Dict[str, Any]) -> None:
        """Replace the stored document with ``document``."""

        payload = self._encode(document)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_name(f".{self.path.name}.{uuid.uuid4().hex}.tmp")
            try:
                with tmp.open("wb") as handle:
                    handle.write(payload)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp, self.path)
            finally:
                tmp.unlink(missing_ok=True)


class MemoryDocumentStore:
    """In-process document store used by tests and dry runs."""

    def __init__(self, document: Dict[str, Any] | None = None) -> None:
        self._document: Dict[str, Any] = copy.deepcopy(document or {})
        self.saves = 0

    def load(self) -> Dict[str, Any]:
        return copy.deepcopy(self._document)

    def save(self, document: Dict[str, Any]) -> None:
        self._document = copy.deepcopy(document)
        self.saves += 1


__all__ = ["DocumentStore", "JsonDocumentStore", "MemoryDocumentStore"]
