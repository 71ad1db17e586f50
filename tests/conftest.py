from __future__ import annotations

import io
from contextlib import contextmanager
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from PIL import Image

from browser_session import BrowserSession
from operator_config import OperatorConfig
from page_heuristics import (
    BUTTON_SELECTOR,
    COLLECT_IMAGES_JS,
    DROP_ZONE_MARK,
    FILE_INPUT_SELECTOR,
    MARK_DROP_ZONE_JS,
    PROBE_JS,
    TEXT_INPUT_SELECTOR,
    matches_action,
)

SOURCE_URL = "https://x/img.jpg"
RESULT_URL = "https://x/result.png"
ICON_DATA_URI = "data:image/svg+xml;base64,PHN2Zz48L3N2Zz4="


# ---------------------------------------------------------------------------
# Fake DOM / Playwright page
# ---------------------------------------------------------------------------

class FakeElement:
    def __init__(self, page: "FakePage", kind: str, text: str = "", visible: bool = True,
                 on_click: Optional[Callable[["FakePage"], None]] = None) -> None:
        self.page = page
        self.kind = kind
        self.text = text
        self.visible = visible
        self.on_click = on_click

    def is_visible(self) -> bool:
        return self.visible

    def inner_text(self) -> str:
        return self.text

    def set_input_files(self, path: str) -> None:
        self.page.record("set_input_files", path)
        if self.page.on_upload:
            self.page.on_upload(self.page)

    def fill(self, text: str) -> None:
        self.page.record("fill", text)

    def click(self, timeout: Optional[int] = None) -> None:
        self.page.record("click", self.text)
        if self.kind == "drop_zone" and self.page.pending_chooser is not None:
            self.page.pending_chooser.value = FakeFileChooser(self.page)
        if self.on_click:
            self.on_click(self.page)


class FakeLocator:
    def __init__(self, elements: List[FakeElement]) -> None:
        self.elements = elements

    def count(self) -> int:
        return len(self.elements)

    def nth(self, i: int) -> FakeElement:
        return self.elements[i]

    @property
    def first(self) -> FakeElement:
        return self.elements[0]


class FakeFileChooser:
    def __init__(self, page: "FakePage") -> None:
        self.page = page

    def set_files(self, path: str) -> None:
        self.page.record("chooser_set_files", path)


class FakePage:
    """The subset of playwright.sync_api.Page the operator touches, over an in-memory DOM."""

    def __init__(self, title: str = "Grok", url: str = "https://grok.com/") -> None:
        self.title = title
        self.url = url
        self.file_inputs: List[FakeElement] = []
        self.text_inputs: List[FakeElement] = []
        self.buttons: List[FakeElement] = []
        self.drop_zones: List[FakeElement] = []
        self.images: List[Dict[str, Any]] = []
        self.auth_gate = False
        self.goto_error: Optional[Exception] = None
        self.calls: List[tuple] = []
        self.listeners: Dict[str, List[Callable]] = {}
        self.waits: List[int] = []
        self.pending_chooser: Optional[SimpleNamespace] = None
        self.on_upload: Optional[Callable[["FakePage"], None]] = None
        # images that show up only after this many more image polls
        self.delayed_images: List[Dict[str, Any]] = []
        self.polls_until_render = 0

    # DOM builders
    def add_file_input(self) -> "FakePage":
        self.file_inputs.append(FakeElement(self, "file"))
        return self

    def add_text_input(self, visible: bool = True) -> "FakePage":
        self.text_inputs.append(FakeElement(self, "text", visible=visible))
        return self

    def add_button(self, text: str, on_click: Optional[Callable[["FakePage"], None]] = None,
                   visible: bool = True) -> "FakePage":
        self.buttons.append(FakeElement(self, "button", text=text, visible=visible, on_click=on_click))
        return self

    def add_drop_zone(self) -> "FakePage":
        self.drop_zones.append(FakeElement(self, "drop_zone", text="Drop image here"))
        return self

    def add_image(self, src: str, width: int = 0, height: int = 0) -> "FakePage":
        self.images.append({"src": src, "width": width, "height": height})
        return self

    def render_after_polls(self, polls: int, src: str, width: int = 0, height: int = 0) -> None:
        self.delayed_images.append({"src": src, "width": width, "height": height})
        self.polls_until_render = polls

    def record(self, *call: Any) -> None:
        self.calls.append(call)
        if call[0] in ("set_input_files", "chooser_set_files"):
            self.calls.append(("staged_exists", Path(call[1]).exists()))

    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls if c[0] != "staged_exists"]

    # Page API
    def on(self, event: str, handler: Callable) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable) -> None:
        self.listeners[event].remove(handler)

    def goto(self, url: str, wait_until: str = "load", timeout: int = 30_000) -> None:
        self.record("goto", url)
        if self.goto_error is not None:
            raise self.goto_error

    def wait_for_timeout(self, ms: int) -> None:
        self.waits.append(ms)

    def evaluate(self, script: str, arg: Any = None) -> Any:
        if script == PROBE_JS:
            texts = [b.text.strip() for b in self.buttons]
            return {
                "title": self.title,
                "url": self.url,
                "fileInputs": len(self.file_inputs),
                "textInputs": len(self.text_inputs),
                "dropZones": len(self.drop_zones),
                "actionButtons": [t for t in texts if matches_action(t)],
                "buttonCount": len(texts),
                "authGate": self.auth_gate,
            }
        if script == COLLECT_IMAGES_JS:
            if self.delayed_images:
                self.polls_until_render -= 1
                if self.polls_until_render <= 0:
                    self.images.extend(self.delayed_images)
                    self.delayed_images = []
            return [dict(img) for img in self.images]
        if script == MARK_DROP_ZONE_JS:
            return bool(self.drop_zones)
        raise AssertionError(f"unexpected script: {script[:40]!r}")

    def locator(self, selector: str) -> FakeLocator:
        mapping = {
            FILE_INPUT_SELECTOR: self.file_inputs,
            TEXT_INPUT_SELECTOR: self.text_inputs,
            BUTTON_SELECTOR: self.buttons,
            f"[{DROP_ZONE_MARK}]": self.drop_zones,
        }
        return FakeLocator(list(mapping[selector]))

    @contextmanager
    def expect_file_chooser(self, timeout: Optional[int] = None):
        info = SimpleNamespace(value=None)
        self.pending_chooser = info
        try:
            yield info
        finally:
            self.pending_chooser = None

    def content(self) -> str:
        return "<html></html>"

    def screenshot(self, path: str, full_page: bool = False) -> None:
        Path(path).write_bytes(b"png")


def render_result(page: FakePage) -> None:
    page.add_image(ICON_DATA_URI, 24, 24)
    page.add_image(RESULT_URL, 1024, 1024)


def grok_page() -> FakePage:
    """One file input, one textarea and a Generate button that renders a result."""
    return (
        FakePage()
        .add_file_input()
        .add_text_input()
        .add_button("Generate", on_click=render_result)
    )


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

class FakeContext:
    def __init__(self) -> None:
        self.close_calls = 0

    def close(self) -> None:
        self.close_calls += 1


class FakeLauncher:
    def __init__(self, page: FakePage, error: Optional[Exception] = None) -> None:
        self.page = page
        self.error = error
        self.sessions: List[BrowserSession] = []

    def __call__(self, config: OperatorConfig) -> BrowserSession:
        if self.error is not None:
            raise self.error
        session = BrowserSession(page=self.page, context=FakeContext())
        self.sessions.append(session)
        return session


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def png_bytes(size=(8, 8)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, (0, 0, 255)).save(buf, format="PNG")
    return buf.getvalue()


def image_client(status: int = 200, body: Optional[bytes] = None) -> httpx.Client:
    payload = png_bytes() if body is None else body

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, content=payload, headers={"content-type": "image/png"})

    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def config() -> OperatorConfig:
    return OperatorConfig(
        executable_path=None,
        quiet_window_ms=0,
        upload_settle_ms=0,
        prompt_settle_ms=0,
        result_timeout_s=0,
        result_poll_s=0,
    )


@pytest.fixture
def client():
    c = image_client()
    yield c
    c.close()
