"""Gate report artifacts and console summary."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any, TextIO

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from changegate.types import Outcome

if TYPE_CHECKING:
    from changegate.gate.runner import GateReport

REPORT_JSON_FILENAME = "GATE_REPORT.json"
REPORT_MD_FILENAME = "GATE_REPORT.md"

OUTCOME_STYLES: dict[Outcome, str] = {
    Outcome.ALLOW: "bold green",
    Outcome.WARN: "bold yellow",
    Outcome.BLOCK: "bold white on red",
}

OUTCOME_EMOJI: dict[Outcome, str] = {
    Outcome.ALLOW: "✅",
    Outcome.WARN: "⚠️",
    Outcome.BLOCK: "❌",
}

SEVERITY_STYLES: dict[str, str] = {
    "CRITICAL": "bold red",
    "HIGH": "red",
    "MEDIUM": "yellow",
    "LOW": "cyan",
    "INFO": "dim",
}


def canonical_dumps(obj: Any) -> str:
    """Serialize a JSON-compatible object with stable formatting."""
    return json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False) + "\n"


def write_report(report: GateReport, out_dir: Path) -> tuple[Path, Path]:
    """Write GATE_REPORT.json and GATE_REPORT.md into ``out_dir``."""
    out_dir.mkdir(parents=True, exist_ok=True)

    json_path = out_dir / REPORT_JSON_FILENAME
    json_path.write_text(canonical_dumps(report.to_dict()), encoding="utf-8")

    md_path = out_dir / REPORT_MD_FILENAME
    with open(md_path, "w", encoding="utf-8") as f:
        _write_markdown_report(f, report)

    return json_path, md_path


def _write_markdown_report(f: TextIO, report: GateReport) -> None:
    decision = report.decision
    f.write("# Change Gate Report\n\n")
    f.write(f"**Decision**: {OUTCOME_EMOJI[decision.outcome]} {decision.outcome.value}\n\n")
    f.write(f"**Reason**: {decision.reason}\n\n")
    if report.degraded:
        f.write(f"**DEGRADED**: {len(report.failures)} analysis task(s) did not complete\n\n")
    f.write(f"**Generated**: {report.generated_at}\n\n")

    f.write("## Summary\n\n")
    f.write(f"- Changed files: {len(report.files)}\n")
    f.write(f"- Analyzed: {len(report.dispatched)}\n")
    f.write(f"- Served from cache: {len(report.cache_hits)}\n")
    f.write(f"- Manual review required: {len(report.manual_review)}\n")
    f.write(f"- Findings: {len(decision.findings)}\n\n")

    if decision.triggering:
        f.write("## Triggering Findings\n\n")
        for finding in decision.triggering:
            f.write(f"- {finding.describe()}\n")
        f.write("\n")

    if decision.incomplete_reviews:
        f.write("## Incomplete Required Reviews\n\n")
        for item in decision.incomplete_reviews:
            f.write(f"- {item}\n")
        f.write("\n")

    if report.failures:
        f.write("## Failed Analyses\n\n")
        for failure in report.failures:
            f.write(f"- `{failure.path}`: {failure.analysis} ({failure.reason})\n")
        f.write("\n")

    if report.manual_review:
        f.write("## Manual Review\n\n")
        for path in report.manual_review:
            f.write(f"- `{path}`\n")
        f.write("\n")

    if decision.informational:
        f.write("## Informational\n\n")
        for finding in decision.informational:
            f.write(f"- {finding.describe()}\n")
        f.write("\n")

    if report.errors:
        f.write("## Errors\n\n")
        for error in report.errors:
            f.write(f"- {error}\n")
        f.write("\n")

    f.write("## Exit Code\n\n")
    if decision.outcome is Outcome.BLOCK:
        f.write("2 (policy violation - gate blocked)\n")
    else:
        f.write("0 (success - gate passed)\n")


def render_report(report: GateReport, console: Console) -> None:
    """Print a console summary of the decision and the findings behind it."""
    decision = report.decision
    if decision.triggering:
        table = Table(title="Findings", show_lines=False)
        table.add_column("Severity")
        table.add_column("Location")
        table.add_column("Category")
        table.add_column("Analysis")
        table.add_column("Message")
        for finding in decision.triggering:
            table.add_row(
                Text(finding.severity.value, style=SEVERITY_STYLES[finding.severity.value]),
                Text(f"{finding.path}:{finding.line}"),
                Text(finding.category),
                Text(finding.analysis),
                Text(finding.message),
            )
        console.print(table)

    for item in decision.incomplete_reviews:
        console.print(f"[red]  - review incomplete: {escape(item)}[/red]")

    if report.manual_review:
        console.print("[yellow]Manual review required (too large for automatic analysis):[/yellow]")
        for path in report.manual_review:
            console.print(f"[yellow]  - {escape(path)}[/yellow]")

    if report.degraded:
        console.print(Text(f"DEGRADED: {len(report.failures)} analysis task(s) incomplete", style="bold black on yellow"))
        for failure in report.failures:
            console.print(f"[yellow]  - {escape(failure.describe())}[/yellow]")

    for error in report.errors:
        console.print(f"[yellow]Warning: {escape(error)}[/yellow]")

    label = f"{OUTCOME_EMOJI[decision.outcome]} {decision.outcome.value}"
    console.print(Text(label, style=OUTCOME_STYLES[decision.outcome]), Text(decision.reason))
