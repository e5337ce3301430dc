"""Browser engine capability consumed by the capture pipeline.

The pipeline never talks to Playwright directly: it drives a :class:`PageHandle`
obtained from a :class:`BrowserEngine`. ``evaluate`` is the single seam through
which DOM analysis and mutation scripts run inside the page.
"""

from __future__ import annotations

from typing import Any, Protocol


class PageHandle(Protocol):
    async def goto(self, url: str, *, wait_until: str = "load", timeout_ms: int = 30000) -> None: ...

    async def screenshot(self, *, full_page: bool = False, type: str = "png") -> bytes: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def wait(self, ms: int) -> None: ...

    def url(self) -> str: ...

    async def content(self) -> str: ...

    async def close(self) -> None: ...


class BrowserEngine(Protocol):
    async def launch(self) -> None: ...

    async def new_page(self) -> PageHandle: ...

    async def close(self) -> None: ...


__all__ = ["BrowserEngine", "PageHandle"]
