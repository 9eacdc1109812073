"""Capture consumer: embeds, persists and records each captured item in order."""

import asyncio
import logging
import threading
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from shadowpaste.core.errors import StorageError
from shadowpaste.core.intelligence import EmbeddingService
from shadowpaste.core.storage import ClipStorage
from shadowpaste.models.schemas import ClipboardContent, Entry

logger = logging.getLogger(__name__)


def local_now() -> datetime:
    return datetime.now().astimezone()


class ClipHistory:
    """In-memory history, oldest first, kept in sync with storage by explicit calls."""

    def __init__(self, entries: Optional[Iterable[Entry]] = None):
        self._entries: List[Entry] = list(entries or [])
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def snapshot(self) -> List[Entry]:
        with self._lock:
            return list(self._entries)

    def append(self, entry: Entry) -> None:
        with self._lock:
            self._entries.append(entry)

    def extend(self, entries: Iterable[Entry]) -> None:
        with self._lock:
            self._entries.extend(entries)

    def remove(self, entry_id: int) -> bool:
        with self._lock:
            before = len(self._entries)
            self._entries = [e for e in self._entries if e.id != entry_id]
            return len(self._entries) != before

    def recent(self, limit: int) -> List[Entry]:
        with self._lock:
            return list(reversed(self._entries[-limit:])) if limit > 0 else []


class CapturePipeline:
    """Single sequential consumer of the monitor's queue."""

    def __init__(
        self,
        queue: "asyncio.Queue[ClipboardContent]",
        intelligence: EmbeddingService,
        storage: ClipStorage,
        history: ClipHistory,
        clock: Callable[[], datetime] = local_now,
    ):
        self.queue = queue
        self.intelligence = intelligence
        self.storage = storage
        self.history = history
        self.clock = clock

    async def process(self, content: ClipboardContent) -> Entry:
        captured_at = self.clock()
        embedding = await self.intelligence.aembed_content(content)

        entry = Entry(content=content, captured_at=captured_at, embedding=embedding)
        try:
            entry.id = await asyncio.to_thread(self.storage.insert, entry)
        except StorageError as e:
            logger.warning(f"Persisting clipboard entry failed, keeping it in memory only: {e}")

        self.history.append(entry)
        return entry

    async def run(self) -> None:
        while True:
            content = await self.queue.get()
            try:
                await self.process(content)
            except Exception:
                # One bad item must not stop capture of the next ones
                logger.exception(f"Dropping clipboard item of type {content.kind}")
            finally:
                self.queue.task_done()
