"""Aggregation of build producer results into a single compile status.

Every producer reports `invalid` when it starts a pass and `done` when it
finishes. A batch spans from the first `invalid` to the moment no producer is
compiling anymore; at that point the batch is flushed to the console and reset.

Display deliberately looks at one producer only (the first that reported in
the batch) and, if it failed, at its first error only. Further errors are
usually symptoms of the same root cause and bury it in noise. Counts still
include every producer.
"""

from __future__ import annotations

from collections.abc import Callable

from rich.markup import escape

from hotserve.cli.dev.logging import DevLogComponent, get_logger
from hotserve.cli.dev.registry import ProducerRegistry
from hotserve.models import BatchState, CompilationMessages, CompilationSummary
from hotserve.utils import clear_console, console

logger = get_logger(DevLogComponent.COMPILATION)


class CompilationBatch:
    """State of one in-flight aggregation cycle."""

    def __init__(self) -> None:
        # dict keys keep arrival order and give O(1) membership
        self.compiling: dict[str, None] = {}
        self.errors_count: int = 0
        self.warnings_count: int = 0
        self.messages: dict[str, CompilationMessages] = {}

    @property
    def complete(self) -> bool:
        return not self.compiling


class CompilationAggregator:
    """Merges per-producer invalid/done events into one build status."""

    def __init__(
        self,
        registry: ProducerRegistry,
        *,
        interactive: bool = False,
        print_instructions: Callable[[], None] | None = None,
    ) -> None:
        self.registry: ProducerRegistry = registry
        self.interactive: bool = interactive
        self.print_instructions: Callable[[], None] | None = print_instructions
        self.batch: CompilationBatch = CompilationBatch()
        self.state: BatchState = BatchState.IDLE
        self.is_first_compile: bool = True
        self.flush_count: int = 0

    def on_invalid(self, producer_id: str) -> None:
        """Mark a producer as compiling."""
        if producer_id in self.batch.compiling:
            return

        fresh_cycle = self.batch.complete
        self.batch.compiling[producer_id] = None
        self.state = BatchState.ACCUMULATING
        logger.debug(f"{self.registry.display_name(producer_id)} started compiling")

        if fresh_cycle:
            if self.interactive:
                clear_console()
            console.print("Compiling...")

    def on_done(
        self, producer_id: str, messages: CompilationMessages
    ) -> CompilationSummary | None:
        """Record a finished pass; returns the flush summary when the batch completed."""
        self.batch.compiling.pop(producer_id, None)

        self.batch.errors_count += len(messages.errors)
        self.batch.warnings_count += len(messages.warnings)
        self.batch.messages[producer_id] = messages
        logger.debug(
            f"{self.registry.display_name(producer_id)} done with "
            f"{len(messages.errors)} error(s), {len(messages.warnings)} warning(s)"
        )

        if self.batch.complete:
            return self.flush()
        self.state = BatchState.ACCUMULATING
        return None

    def flush(self) -> CompilationSummary:
        """Print the combined result of the batch and reset it."""
        batch = self.batch
        self.batch = CompilationBatch()
        self.state = BatchState.FLUSHED
        self.flush_count += 1

        try:
            return self._report(batch)
        finally:
            self.state = BatchState.IDLE

    def _report(self, batch: CompilationBatch) -> CompilationSummary:
        if self.interactive:
            clear_console()

        successful = not batch.errors_count and not batch.warnings_count
        summary = CompilationSummary(
            successful=successful,
            errors_count=batch.errors_count,
            warnings_count=batch.warnings_count,
        )

        if successful:
            console.print("[green]Compiled successfully![/green]")
        if successful and (self.interactive or self.is_first_compile):
            if self.print_instructions is not None:
                self.print_instructions()
        self.is_first_compile = False

        if not batch.messages:
            return summary

        producer_id = next(iter(batch.messages))
        messages = batch.messages[producer_id]
        name = self.registry.display_name(producer_id)
        summary.producer_id = producer_id
        summary.producer_name = name

        # If errors exist, only show errors.
        if messages.errors:
            # Only keep the first error. Others are often indicative
            # of the same problem, but confuse the reader with noise.
            errors = messages.errors[:1]
            summary.errors = errors
            console.print(
                f"[red]Compilation [bold]{escape(name)}[/bold] failed to compile.[/red]\n"
            )
            console.print(escape("\n\n".join(errors)))
            return summary

        # Show warnings if no errors were found.
        if messages.warnings:
            summary.warnings = list(messages.warnings)
            console.print(
                f"[yellow]Compilation [bold]{escape(name)}[/bold] compiled with warnings.[/yellow]\n"
            )
            console.print(escape("\n\n".join(messages.warnings)))

        return summary
