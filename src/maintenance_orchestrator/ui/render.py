"""Plain-text rendering for the maintenance CLI.

Output is deterministic and uncolored so that it reads the same in a
terminal, a scheduled-task log, or a captured pipe.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from maintenance_orchestrator.campaign.orchestrator import CampaignResult


class CLIRenderer:
    """Thin CLI output renderer writing to stdout."""

    def __init__(self, *, verbose: bool = False) -> None:
        self.verbose = verbose

    def heading(self, text: str) -> None:
        print(text)

    def kv(self, key: str, value: object) -> None:
        print(f"{key}: {value}")

    def text(self, line: str) -> None:
        print(line)

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        print(f"\n{title}")

    def warning(self, text: str) -> None:
        print(f"  Warning: {text}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            print(f"  {prefix}{entry}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Print left-aligned columns; nothing at all when there are no rows."""

        if not rows:
            return
        grid = [list(headers)] + [
            [str(row[i]) if i < len(row) else "" for i in range(len(headers))] for row in rows
        ]
        widths = [max(len(cell) for cell in column) for column in zip(*grid)]
        grid.insert(1, ["-" * width for width in widths])
        if title:
            self.section(title)
        for cells in grid:
            padded = (cell.ljust(width) for cell, width in zip(cells, widths, strict=True))
            print("  " + "  ".join(padded).rstrip())

    def campaign(self, result: CampaignResult) -> None:
        """Render a finished campaign: header, one row per step, final verdict."""

        self.heading(f"Campaign {result.campaign} ({result.profile.value}) on {result.target}")
        self.kv("Campaign ID", result.campaign_id)
        rows = [
            (
                str(outcome.step_index + 1),
                outcome.operation,
                f"{int(outcome.code)} {outcome.code.name}",
                outcome.reason if self.verbose else _truncate(outcome.reason, 60),
            )
            for outcome in result.outcomes
        ]
        self.table(("#", "Operation", "Result", "Reason"), rows, title="Steps:")
        if result.skipped:
            self.warning(f"{result.skipped} step(s) not run after halt")
        for outcome in result.outcomes:
            if outcome.record_error:
                step = outcome.step_index + 1
                self.warning(f"step {step} was not recorded: {outcome.record_error}")
        self.section(f"Result: {int(result.code)} {result.code.name} ({result.phase.value})")


def create_renderer(*, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(verbose=verbose)


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


__all__ = ["CLIRenderer", "create_renderer"]
