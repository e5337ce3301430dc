import asyncio

from placement_capture.lazyload import (
    PROMOTE_LAZY_SCRIPT,
    RESET_SCROLL_SCRIPT,
    SCROLL_STEP_SCRIPT,
    force_lazy_load,
)


def test_force_lazy_load_sweeps_and_returns_to_top(make_page):
    page = make_page({PROMOTE_LAZY_SCRIPT: 3, SCROLL_STEP_SCRIPT: 4000})
    promoted = asyncio.run(force_lazy_load(page, viewports=4, pause_ms=250))
    assert promoted == 3
    assert page.scripts_called(SCROLL_STEP_SCRIPT) == [1, 2, 3, 4]
    assert page.waits == [250] * 4
    assert page.calls[-1][0] == RESET_SCROLL_SCRIPT
    (args,) = page.scripts_called(PROMOTE_LAZY_SCRIPT)
    assert "data-src" in args["srcAttributes"]


def test_scroll_failure_still_resets_position(make_page):
    page = make_page({PROMOTE_LAZY_SCRIPT: 1, SCROLL_STEP_SCRIPT: RuntimeError("page crashed")})
    promoted = asyncio.run(force_lazy_load(page, viewports=3, pause_ms=0))
    assert promoted == 1
    assert len(page.scripts_called(SCROLL_STEP_SCRIPT)) == 1
    assert len(page.scripts_called(RESET_SCROLL_SCRIPT)) == 1


def test_reset_errors_are_ignored(make_page):
    page = make_page({RESET_SCROLL_SCRIPT: RuntimeError("closed")})
    assert asyncio.run(force_lazy_load(page, viewports=0, pause_ms=0)) == 0
