"""Clipboard change listener running on its own thread."""

import asyncio
import hashlib
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional, Tuple

import pyperclip
from PIL import Image, ImageGrab

from shadowpaste.core.content import ClipboardSnapshot, RawImage, classify
from shadowpaste.core.errors import ClipboardMonitorError
from shadowpaste.models.schemas import EMPTY, ClipboardContent

logger = logging.getLogger(__name__)


class ClipboardBackend(ABC):
    """Platform clipboard primitives."""

    @abstractmethod
    def open(self) -> None:
        """Prepare the platform listener; raise on failure."""

    @abstractmethod
    def read_text(self) -> Optional[str]:
        pass

    @abstractmethod
    def read_image(self) -> Optional[RawImage]:
        pass

    @abstractmethod
    def wait_for_change(self, timeout: float) -> bool:
        """Block until the clipboard changes (True) or ``timeout`` seconds pass (False)."""


class SystemClipboardBackend(ClipboardBackend):
    """pyperclip for text, Pillow's ImageGrab for bitmaps.

    Neither library exposes a change notification, so ``wait_for_change``
    polls a cheap change token instead.
    """

    def __init__(self, poll_interval: float = 0.25):
        self.poll_interval = poll_interval
        self._last_token: Optional[Tuple[Optional[str], Optional[str]]] = None

    def open(self) -> None:
        try:
            pyperclip.paste()
        except pyperclip.PyperclipException as e:
            raise ClipboardMonitorError(f"No clipboard mechanism available: {e}") from e
        self._last_token = self._token()

    def read_text(self) -> Optional[str]:
        text = pyperclip.paste()
        return text or None

    def read_image(self) -> Optional[RawImage]:
        grabbed = ImageGrab.grabclipboard()
        if not isinstance(grabbed, Image.Image):
            return None
        rgba = grabbed.convert("RGBA")
        return RawImage(width=rgba.width, height=rgba.height, rgba=rgba.tobytes())

    def wait_for_change(self, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            time.sleep(self.poll_interval)
            token = self._token()
            if token != self._last_token:
                self._last_token = token
                return True
        return False

    def _token(self) -> Tuple[Optional[str], Optional[str]]:
        try:
            text = self.read_text()
        except Exception:
            text = None
        try:
            image = self.read_image()
        except Exception:
            image = None
        digest = hashlib.md5(image.rgba).hexdigest() if image is not None else None
        return text, digest


class ClipboardMonitor:
    """Detects clipboard changes, classifies them, and emits each distinct item once."""

    def __init__(
        self,
        backend: ClipboardBackend,
        settle_delay: float = 0.05,
        verify_retries: int = 2,
        verify_backoff: float = 0.02,
        wait_timeout: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.backend = backend
        self.settle_delay = settle_delay
        self.verify_retries = verify_retries
        self.verify_backoff = verify_backoff
        self.wait_timeout = wait_timeout
        self._sleep = sleep

        self.last_emitted: Optional[ClipboardContent] = None
        self.error: Optional[BaseException] = None
        self._emit: Optional[Callable[[ClipboardContent], None]] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def read_current(self) -> ClipboardContent:
        """Read and classify the clipboard; any read failure yields Empty."""
        try:
            text = self.backend.read_text()
        except Exception as e:
            logger.debug(f"Clipboard text read failed: {e}")
            text = None

        image = None
        if not text:
            try:
                image = self.backend.read_image()
            except Exception as e:
                logger.debug(f"Clipboard image read failed: {e}")

        try:
            return classify(ClipboardSnapshot(text=text, image=image))
        except Exception as e:
            logger.debug(f"Clipboard classify failed: {e}")
            return EMPTY

    def on_clipboard_change(self) -> Optional[ClipboardContent]:
        """Handle one change notification; return the content if it was emitted."""
        self._sleep(self.settle_delay)
        content = self.read_current()

        # Re-read until two consecutive reads agree
        for _ in range(self.verify_retries):
            self._sleep(self.verify_backoff)
            again = self.read_current()
            if again == content:
                break
            content = again

        if self.last_emitted is not None and content == self.last_emitted:
            return None

        self.last_emitted = content
        if self._emit is not None:
            self._emit(content)
        return content

    def start(self, emit: Callable[[ClipboardContent], None]) -> threading.Thread:
        """Open the platform listener and run it on a daemon thread."""
        try:
            self.backend.open()
        except ClipboardMonitorError:
            raise
        except Exception as e:
            raise ClipboardMonitorError(f"Failed to start clipboard listener: {e}") from e

        self._emit = emit
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.run, name="shadowpaste-clipboard", daemon=True
        )
        self._thread.start()
        logger.info("Clipboard monitor started")
        return self._thread

    def run(self) -> None:
        try:
            while not self._stop.is_set():
                if self.backend.wait_for_change(self.wait_timeout):
                    self.on_clipboard_change()
        except Exception as e:
            self.error = e
            logger.exception("Clipboard monitor stopped unexpectedly")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)


def start_listener(
    monitor: ClipboardMonitor, loop: asyncio.AbstractEventLoop
) -> "asyncio.Queue[ClipboardContent]":
    """Start ``monitor`` and return the unbounded FIFO queue it feeds on ``loop``."""
    queue: "asyncio.Queue[ClipboardContent]" = asyncio.Queue()

    def emit(content: ClipboardContent) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, content)

    monitor.start(emit)
    return queue
