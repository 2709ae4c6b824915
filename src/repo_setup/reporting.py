from typing import Literal

from pydantic import BaseModel, Field
from rich.console import Console
from rich.markup import escape
from rich.tree import Tree

StepStatus = Literal["success", "info", "skipped", "warning", "error"]

STATUS_SYMBOLS: dict[StepStatus, str] = {
    "success": "[green]●[/green]",
    "info": "[cyan]●[/cyan]",
    "skipped": "[yellow]○[/yellow]",
    "warning": "[yellow]●[/yellow]",
    "error": "[red]●[/red]",
}


class StepRecord(BaseModel):
    step: str = Field(description="The name of the setup step.")
    status: StepStatus = Field(description="How the step ended.")
    message: str = Field(description="What happened.")
    remediation: str | None = Field(default=None, description="A URL or manual command to finish the step by hand.")


class RunSummary(BaseModel):
    """Everything a run did, in order, so a partially failed run stays actionable."""

    records: list[StepRecord] = Field(default_factory=list)
    furthest_completed_step: str | None = Field(default=None, description="The last step that completed without a fatal error.")

    def add(self, record: StepRecord) -> None:
        self.records.append(record)

    def by_status(self, *statuses: StepStatus) -> list[StepRecord]:
        return [record for record in self.records if record.status in statuses]

    @property
    def follow_ups(self) -> list[StepRecord]:
        return self.by_status("warning", "error")


class StepReporter:
    """Prints one status line per step and collects them into a `RunSummary`."""

    console: Console
    summary: RunSummary

    def __init__(self, console: Console | None = None):
        self.console = console or Console()
        self.summary = RunSummary()

    def header(self, title: str) -> None:
        self.console.print()
        self.console.print(f"[bold cyan]{escape(title)}[/bold cyan]")

    def note(self, message: str) -> None:
        """Print an indented detail line that is not recorded in the summary."""

        self.console.print(f"   {escape(message)}")

    def record(self, step: str, status: StepStatus, message: str, remediation: str | None = None) -> StepRecord:
        record = StepRecord(step=step, status=status, message=message, remediation=remediation)
        self.summary.add(record)

        self.console.print(f"{STATUS_SYMBOLS[status]} [bold]{escape(step)}[/bold]: {escape(message)}")
        if remediation:
            self.console.print(f"   [bright_black]-> {escape(remediation)}[/bright_black]")

        return record

    def success(self, step: str, message: str) -> StepRecord:
        self.summary.furthest_completed_step = step
        return self.record(step, "success", message)

    def info(self, step: str, message: str) -> StepRecord:
        self.summary.furthest_completed_step = step
        return self.record(step, "info", message)

    def skipped(self, step: str, message: str) -> StepRecord:
        self.summary.furthest_completed_step = step
        return self.record(step, "skipped", message)

    def warning(self, step: str, message: str, remediation: str | None = None) -> StepRecord:
        # Non-fatal: the run moves on, so the step still counts as passed.
        self.summary.furthest_completed_step = step
        return self.record(step, "warning", message, remediation)

    def error(self, step: str, message: str, remediation: str | None = None) -> StepRecord:
        return self.record(step, "error", message, remediation)

    def print_summary(self, title: str = "Summary") -> None:
        tree = Tree(f"[bold]{escape(title)}[/bold]", guide_style="grey50")

        for record in self.summary.records:
            branch = tree.add(f"{STATUS_SYMBOLS[record.status]} {escape(record.step)} [bright_black]({escape(record.message)})[/bright_black]")
            if record.remediation:
                _ = branch.add(f"[bright_black]{escape(record.remediation)}[/bright_black]")

        self.console.print()
        self.console.print(tree)

        if self.summary.furthest_completed_step:
            self.console.print(f"Furthest completed step: [bold]{escape(self.summary.furthest_completed_step)}[/bold]")

        if follow_ups := self.summary.follow_ups:
            self.console.print(f"[yellow]{len(follow_ups)} step(s) need manual follow-up.[/yellow]")
