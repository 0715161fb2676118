"""Shell-command build producers for the `serve --build` option.

Each producer runs its command once, then again whenever its watch paths
change, reporting every pass to the dev server as `invalid` then `done`.
"""

from __future__ import annotations

import asyncio
import os
import subprocess
import time
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

import watchfiles

from hotserve.cli.dev.logging import DevLogComponent, get_logger
from hotserve.models import CompilationMessages
from hotserve.utils import format_elapsed_ms

if TYPE_CHECKING:
    from hotserve.cli.dev.server import DevServer

logger = get_logger(DevLogComponent.PRODUCER)


class CommandProducer:
    """A build step driven by a shell command.

    Attributes:
        name: Shown in compile summaries instead of the producer id
        command: Shell command line for one build pass
        cwd: Working directory of the command
        watch_paths: Paths whose changes trigger another pass; empty runs once
    """

    def __init__(
        self,
        name: str,
        command: str,
        *,
        cwd: Path | None = None,
        watch_paths: Sequence[Path] = (),
    ) -> None:
        self.name: str = name
        self.command: str = command
        self.cwd: Path | None = cwd
        self.watch_paths: list[Path] = list(watch_paths)
        self.passes: int = 0

    async def run(self, server: DevServer) -> None:
        """Register with `server` and report build passes until cancelled."""
        producer_id = server.register_producer(self)
        try:
            while True:
                server.compilation_invalid(producer_id)
                messages = await self.build()
                server.compilation_done(producer_id, messages)

                if not self.watch_paths:
                    return
                await self._wait_for_changes()
        finally:
            server.deregister_producer(producer_id)

    async def build(self) -> CompilationMessages:
        """Run the command once and translate its outcome into messages."""
        self.passes += 1
        start_time = time.perf_counter()
        logger.debug(f"{self.name}: running {self.command}")

        process = await asyncio.create_subprocess_shell(
            self.command,
            cwd=self.cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=os.name != "nt",
            creationflags=subprocess.CREATE_NEW_PROCESS_GROUP if os.name == "nt" else 0,  # type: ignore[attr-defined]
        )

        lines: list[str] = []
        try:
            assert process.stdout is not None
            async for raw in process.stdout:
                line = raw.decode("utf-8", errors="replace").rstrip()
                if line:
                    lines.append(line)
                    logger.debug(f"{self.name} | {line}")
            await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.terminate()
                await process.wait()
            raise

        logger.info(
            f"{self.name}: exited with code {process.returncode} in {format_elapsed_ms(start_time)}"
        )
        return self.parse_output(process.returncode or 0, lines)

    @staticmethod
    def parse_output(returncode: int, lines: list[str]) -> CompilationMessages:
        """A failed command is one error with its whole output; warning lines become warnings."""
        if returncode != 0:
            output = "\n".join(lines) or f"Command exited with code {returncode}"
            return CompilationMessages(errors=[output])
        return CompilationMessages(
            warnings=[line for line in lines if "warning" in line.lower()]
        )

    async def _wait_for_changes(self) -> None:
        async for changes in watchfiles.awatch(*self.watch_paths):
            logger.debug(f"{self.name}: detected changes in {len(changes)} file(s)")
            return
