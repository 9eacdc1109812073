"""Tests for the clipboard monitor."""

import asyncio
import time

import pyperclip
import pytest
from PIL import Image
from unittest.mock import Mock, patch

from shadowpaste.core.content import RawImage
from shadowpaste.core.errors import ClipboardMonitorError
from shadowpaste.core.monitor import (
    ClipboardBackend,
    ClipboardMonitor,
    SystemClipboardBackend,
    start_listener,
)
from shadowpaste.models.schemas import EMPTY, ImageContent, TextContent


class FakeBackend(ClipboardBackend):
    """Scripted clipboard: each change event swaps in the next (text, image) pair."""

    def __init__(self, events=None):
        self.events = list(events or [])
        self.text = None
        self.image = None
        self.opened = False

    def set(self, text=None, image=None):
        self.text = text
        self.image = image

    def open(self):
        self.opened = True

    def read_text(self):
        return self.text

    def read_image(self):
        return self.image

    def wait_for_change(self, timeout):
        if self.events:
            self.set(*self.events.pop(0))
            return True
        time.sleep(min(timeout, 0.01))
        return False


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def monitor(backend):
    return ClipboardMonitor(backend, sleep=lambda seconds: None)


class TestDedup:
    """Test consecutive-duplicate suppression."""

    def test_first_change_is_emitted(self, monitor, backend):
        backend.set(text="abc")
        assert monitor.on_clipboard_change() == TextContent(text="abc")
        assert monitor.last_emitted == TextContent(text="abc")

    def test_repeat_is_suppressed(self, monitor, backend):
        backend.set(text="abc")
        monitor.on_clipboard_change()
        assert monitor.on_clipboard_change() is None

    def test_distinct_values_always_emit(self, monitor, backend):
        emitted = []
        for text in ["a", "b", "a", "b"]:
            backend.set(text=text)
            emitted.append(monitor.on_clipboard_change())
        assert emitted == [TextContent(text=t) for t in ["a", "b", "a", "b"]]

    def test_empty_is_emitted_once(self, monitor, backend):
        assert monitor.on_clipboard_change() == EMPTY
        assert monitor.on_clipboard_change() is None

    def test_image_after_text(self, monitor, backend):
        backend.set(text="abc")
        monitor.on_clipboard_change()
        backend.set(image=RawImage(1, 1, b"\x00\x00\x00\xff"))
        assert isinstance(monitor.on_clipboard_change(), ImageContent)


class TestReads:
    """Test read failures and the settle/verify pass."""

    def test_read_failure_is_empty(self):
        backend = Mock(spec=ClipboardBackend)
        backend.read_text.side_effect = RuntimeError("clipboard busy")
        backend.read_image.side_effect = RuntimeError("clipboard busy")
        monitor = ClipboardMonitor(backend, sleep=lambda seconds: None)

        assert monitor.read_current() == EMPTY

    def test_settle_delay_precedes_read(self, backend):
        calls = []
        backend.set(text="abc")
        monitor = ClipboardMonitor(
            backend, settle_delay=0.05, verify_retries=0, sleep=calls.append
        )

        monitor.on_clipboard_change()
        assert calls == [0.05]

    def test_verify_rereads_until_stable(self):
        backend = Mock(spec=ClipboardBackend)
        backend.read_text.side_effect = ["old", "new", "new"]
        monitor = ClipboardMonitor(
            backend, verify_retries=3, verify_backoff=0.01, sleep=lambda seconds: None
        )

        assert monitor.on_clipboard_change() == TextContent(text="new")
        assert backend.read_text.call_count == 3

    def test_verify_disabled(self):
        backend = Mock(spec=ClipboardBackend)
        backend.read_text.side_effect = ["first", "second"]
        monitor = ClipboardMonitor(backend, verify_retries=0, sleep=lambda seconds: None)

        assert monitor.on_clipboard_change() == TextContent(text="first")
        assert backend.read_text.call_count == 1


class TestListener:
    """Test thread startup and the queue handoff."""

    def test_init_failure_is_raised(self):
        backend = Mock(spec=ClipboardBackend)
        backend.open.side_effect = RuntimeError("no display")
        monitor = ClipboardMonitor(backend)

        with pytest.raises(ClipboardMonitorError):
            monitor.start(lambda content: None)
        assert monitor.running is False

    @pytest.mark.asyncio
    async def test_queue_preserves_order(self):
        backend = FakeBackend(events=[("one", None), ("two", None), ("two", None), ("three", None)])
        monitor = ClipboardMonitor(
            backend, wait_timeout=0.05, sleep=lambda seconds: None
        )

        queue = start_listener(monitor, asyncio.get_running_loop())
        try:
            received = [
                await asyncio.wait_for(queue.get(), timeout=2) for _ in range(3)
            ]
        finally:
            monitor.stop(timeout=1)

        assert backend.opened is True
        assert received == [TextContent(text=t) for t in ["one", "two", "three"]]
        assert queue.empty()

    def test_loop_failure_is_recorded(self):
        backend = Mock(spec=ClipboardBackend)
        backend.wait_for_change.side_effect = RuntimeError("listener died")
        monitor = ClipboardMonitor(backend)

        thread = monitor.start(lambda content: None)
        thread.join(timeout=1)

        assert monitor.running is False
        assert isinstance(monitor.error, RuntimeError)


class TestSystemClipboardBackend:
    """Test the pyperclip/ImageGrab backend with the platform patched out."""

    def test_open_without_mechanism(self):
        backend = SystemClipboardBackend()
        with patch(
            "shadowpaste.core.monitor.pyperclip.paste",
            side_effect=pyperclip.PyperclipException("no xclip"),
        ):
            with pytest.raises(ClipboardMonitorError):
                backend.open()

    def test_read_image_as_rgba(self):
        grabbed = Image.new("RGB", (3, 2), (1, 2, 3))
        with patch(
            "shadowpaste.core.monitor.ImageGrab.grabclipboard", return_value=grabbed
        ):
            raw = SystemClipboardBackend().read_image()

        assert (raw.width, raw.height) == (3, 2)
        assert raw.rgba == bytes([1, 2, 3, 255]) * 6

    def test_read_image_ignores_file_lists(self):
        with patch(
            "shadowpaste.core.monitor.ImageGrab.grabclipboard",
            return_value=["/tmp/a.png"],
        ):
            assert SystemClipboardBackend().read_image() is None

    def test_wait_for_change(self):
        backend = SystemClipboardBackend(poll_interval=0.001)
        with patch(
            "shadowpaste.core.monitor.pyperclip.paste", side_effect=["before", "before", "after"]
        ), patch(
            "shadowpaste.core.monitor.ImageGrab.grabclipboard", return_value=None
        ):
            backend.open()
            assert backend.wait_for_change(timeout=1.0) is True

    def test_wait_times_out_without_change(self):
        backend = SystemClipboardBackend(poll_interval=0.001)
        with patch(
            "shadowpaste.core.monitor.pyperclip.paste", return_value="same"
        ), patch(
            "shadowpaste.core.monitor.ImageGrab.grabclipboard", return_value=None
        ):
            backend.open()
            assert backend.wait_for_change(timeout=0.02) is False
