from __future__ import annotations

from io import BytesIO
from typing import Any, Callable

import pytest
from PIL import Image


def png_bytes(width: int = 32, height: int = 16, color=(255, 0, 0, 255)) -> bytes:
    buf = BytesIO()
    Image.new("RGBA", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


class FakePage:
    """In-memory PageHandle: ``evaluate`` answers from a script -> handler table."""

    def __init__(self, handlers: dict[str, Any] | None = None, *, url: str = "about:blank", goto_error: Exception | None = None):
        self.handlers: dict[str, Any] = dict(handlers or {})
        self.current_url = url
        self.goto_error = goto_error
        self.calls: list[tuple[str, Any]] = []
        self.gotos: list[tuple[str, str, int]] = []
        self.waits: list[int] = []
        self.screenshots: list[bool] = []
        self.closed = False
        self.shot = png_bytes()

    async def goto(self, url: str, *, wait_until: str = "load", timeout_ms: int = 30000) -> None:
        self.gotos.append((url, wait_until, timeout_ms))
        if self.goto_error is not None:
            raise self.goto_error
        self.current_url = url

    async def screenshot(self, *, full_page: bool = False, type: str = "png") -> bytes:
        self.screenshots.append(full_page)
        return self.shot

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.calls.append((script, arg))
        handler = self.handlers.get(script)
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            return handler(arg)
        return handler

    async def wait(self, ms: int) -> None:
        self.waits.append(ms)

    def url(self) -> str:
        return self.current_url

    async def content(self) -> str:
        return "<html><body></body></html>"

    async def close(self) -> None:
        self.closed = True

    def scripts_called(self, script: str) -> list[Any]:
        return [arg for s, arg in self.calls if s == script]


class FakeEngine:
    def __init__(self, page_factory: Callable[[], FakePage], *, launch_error: Exception | None = None):
        self.page_factory = page_factory
        self.launch_error = launch_error
        self.launches = 0
        self.closes = 0
        self.pages: list[FakePage] = []

    async def launch(self) -> None:
        self.launches += 1
        if self.launch_error is not None:
            raise self.launch_error

    async def new_page(self) -> FakePage:
        page = self.page_factory()
        self.pages.append(page)
        return page

    async def close(self) -> None:
        self.closes += 1


@pytest.fixture
def make_page() -> Callable[..., FakePage]:
    return FakePage


@pytest.fixture
def make_engine() -> Callable[..., FakeEngine]:
    return FakeEngine


@pytest.fixture
def make_png() -> Callable[..., bytes]:
    return png_bytes
