"""Thin async wrapper over the docker/podman command line."""

from __future__ import annotations

import asyncio
import json

from loguru import logger

from nimbus.core.exceptions import ProviderError

log = logger.bind(component="container")


async def run(runtime: str, *args: str) -> str:
    """Run ``runtime args...`` and return its stripped stdout.

    Raises:
        ProviderError: If the runtime binary is missing or exits non-zero.
    """
    log.debug("{runtime} {args}", runtime=runtime, args=" ".join(args))
    try:
        proc = await asyncio.create_subprocess_exec(
            runtime, *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise ProviderError(f"Container runtime '{runtime}' not found on PATH") from e

    out, err = await proc.communicate()
    if proc.returncode:
        raise ProviderError(
            f"'{runtime} {args[0] if args else ''}' exited {proc.returncode}: {err.decode().strip()}"
        )
    return out.decode().strip()


async def run_json(runtime: str, *args: str) -> list[dict]:
    """Run a command with JSON output; ``inspect`` returns a list of objects."""
    out = await run(runtime, *args)
    return json.loads(out) if out else []
