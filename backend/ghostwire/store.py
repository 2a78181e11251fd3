from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional, TypeVar

from .document import Document, normalize_document
from .errors import CorruptStoreError, PersistenceFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DocumentStore:
    """
    Exclusive-access wrapper around the shared JSON document.

    Every read and write goes through one asyncio.Lock, so no operation can
    observe a half-written document. Waiters are served in FIFO order; there
    is no further starvation policy.

    The file is the only authoritative copy: each read re-loads it and each
    write replaces it atomically (temp file + os.replace).
    """

    def __init__(self, path: Path, lock_timeout: Optional[float] = None):
        self.path = Path(path)
        self.lock_timeout = lock_timeout
        self._lock = asyncio.Lock()

    # ---------------- Exclusive section ----------------

    @asynccontextmanager
    async def exclusive(self, operation: str) -> AsyncIterator[None]:
        logger.debug("Lock requested for: %s", operation)
        if self.lock_timeout:
            try:
                await asyncio.wait_for(self._lock.acquire(), timeout=self.lock_timeout)
            except asyncio.TimeoutError:
                raise PersistenceFailure(
                    f"Timed out after {self.lock_timeout}s waiting for the document lock ({operation})"
                ) from None
        else:
            await self._lock.acquire()

        logger.debug("Lock ACQUIRED for: %s", operation)
        try:
            yield
        finally:
            self._lock.release()
            logger.debug("Lock RELEASED for: %s", operation)

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    # ---------------- Public API ----------------

    async def read(self) -> Document:
        async with self.exclusive("read"):
            return await asyncio.to_thread(self._load)

    async def write(self, doc: Any) -> Document:
        """Replace the persisted document wholesale. Returns the normalized form."""
        normalized = normalize_document(doc)
        async with self.exclusive("write"):
            await asyncio.to_thread(self._save, normalized)
        return normalized

    async def with_exclusive_access(
        self,
        operation: Callable[[Document], T],
        name: str = "update",
    ) -> T:
        """
        Run `operation` as one read-modify-write cycle.

        The operation receives the freshly loaded document and mutates it in
        place; its return value is handed back once the mutated document has
        been persisted. If the operation or the write raises, nothing is
        persisted and the error propagates.
        """
        async with self.exclusive(name):
            doc = await asyncio.to_thread(self._load)
            result = operation(doc)
            await asyncio.to_thread(self._save, doc)
            return result

    # ---------------- File I/O (runs in a worker thread) ----------------

    def _load(self) -> Document:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                content = f.read()
        except FileNotFoundError:
            logger.debug("Document %s missing, using empty document", self.path)
            return normalize_document(None)
        except OSError as e:
            raise PersistenceFailure(f"Cannot read document {self.path}: {e}") from e
        except UnicodeDecodeError as e:
            raise CorruptStoreError(f"Document {self.path} is not valid UTF-8: {e}") from e

        if not content.strip():
            return normalize_document(None)

        try:
            raw = json.loads(content)
        except json.JSONDecodeError as e:
            raise CorruptStoreError(f"Document {self.path} is not valid JSON: {e}") from e
        return normalize_document(raw)

    def _save(self, doc: Document) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError) as e:
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                logger.warning("Could not remove temp file %s", tmp)
            raise PersistenceFailure(f"Writing document {self.path} failed: {e}") from e
