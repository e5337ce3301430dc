#!/usr/bin/env python3
"""CLI shim for the placement capture batch runner.

Delegates to ``placement_capture.batch`` so automation can keep executing
``scripts/capture_placements.py`` directly.
"""
from __future__ import annotations

import asyncio

from placement_capture.batch import CliArgs, parse_args, run
from placement_capture.logging import configure_logging, logging_context, set_global_context
from placement_capture.versioning import get_capture_version

SCRIPT_NAME = "capture_placements"


def main() -> None:
    """Parse CLI arguments and run the capture batch."""
    configure_logging()
    set_global_context(app="placement_capture", pipeline=SCRIPT_NAME)
    version = get_capture_version()
    with logging_context(script=SCRIPT_NAME, capture_version=version):
        args: CliArgs = parse_args()
        asyncio.run(run(args))


if __name__ == "__main__":
    main()
