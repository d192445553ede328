"""
Report - Rich renderings of stability state for the CLI.

Read-only: everything here takes plain dicts/lists from the monitor and
returns rich renderables. Nothing is written back.
"""

from typing import Any, Dict, List, Sequence

from rich import box
from rich.align import Align
from rich.console import Group
from rich.panel import Panel
from rich.table import Table

from agent_stability.entropy import entropy_label

SPARK_CHARS = " ▁▂▃▄▅▆▇█"

LABEL_STYLES = {
    "nominal": "green",
    "active": "yellow",
    "elevated": "red",
    "CRITICAL": "bold red",
}


def styled_label(score: float) -> str:
    label = entropy_label(score)
    return f"[{LABEL_STYLES[label]}]{label}[/]"


def entropy_sparkline(scores: Sequence[float], width: int = 60) -> str:
    """Markup sparkline of entropy scores, scaled to max(2.0, observed max)."""
    if not scores:
        return "[dim]No data[/]"
    values = list(scores)[-width:]
    top = max(max(values), 2.0)
    spark = ""
    for value in values:
        v = max(0.0, value) / top
        char = SPARK_CHARS[int(v * (len(SPARK_CHARS) - 1))]
        if value > 0.8:
            spark += f"[red]{char}[/]"
        elif value > 0.4:
            spark += f"[yellow]{char}[/]"
        else:
            spark += f"[green]{char}[/]"
    return spark


def render_status(state: Dict[str, Any]) -> Panel:
    table = Table.grid(padding=(0, 2))
    table.add_column(style="dim")
    table.add_column()

    score = state.get("entropy", 0.0)
    table.add_row("Agent", str(state.get("agent_id")))
    table.add_row("Entropy", f"{score:.2f} ({styled_label(score)})")
    table.add_row("Sustained", f"{state.get('sustained', 0)} turns ({state.get('sustained_minutes', 0)}min)")
    table.add_row("Principles", ", ".join(state.get("principles") or []) or "[dim]none[/]")

    vectors = state.get("growth_vectors") or {}
    table.add_row(
        "Growth vectors",
        f"{vectors.get('file', 0)} in file, {vectors.get('candidates', 0)} candidates, "
        f"{vectors.get('session_tensions', 0)} active tensions",
    )

    investigation = state.get("investigation") or {}
    rate = investigation.get("rate_limit") or {}
    if rate:
        table.add_row("Investigations", f"hourly {rate.get('hourly')}, daily {rate.get('daily')}")

    history = state.get("recent_history") or []
    return Panel(
        Group(table, Align.center(entropy_sparkline(history))),
        title="[bold]Stability[/]",
        border_style="blue",
    )


def render_observations(records: List[Dict[str, Any]]) -> Panel:
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("Time", style="dim")
    table.add_column("Score", justify="right")
    table.add_column("Label")
    table.add_column("Sustained", justify="right")
    table.add_column("Signals")

    for record in records:
        score = float(record.get("score", 0.0))
        detectors = record.get("detectors") or {}
        signals = []
        if detectors.get("temporal_mismatch"):
            signals.append("temporal")
        if detectors.get("quality_decay"):
            signals.append("decay")
        if detectors.get("recursive_meta_bonus"):
            signals.append(f"meta+{detectors['recursive_meta_bonus']:.2f}")
        table.add_row(
            str(record.get("timestamp", ""))[:19],
            f"{score:.2f}",
            styled_label(score),
            str(record.get("sustained_turns", 0)),
            ", ".join(signals) or "[dim]-[/]",
        )

    scores = [float(r.get("score", 0.0)) for r in records]
    return Panel(
        Group(table, Align.center(entropy_sparkline(scores))),
        title=f"[bold]Observations[/] [dim]({len(records)})[/]",
        border_style="white",
    )


def render_vectors(data: Dict[str, Any]) -> Table:
    table = Table(title=f"Growth vectors ({data.get('total', 0)} total, {data.get('candidates', 0)} candidates)",
                  box=box.SIMPLE_HEAD)
    table.add_column("ID")
    table.add_column("Status")
    table.add_column("Type")
    table.add_column("Weight", justify="right")
    table.add_column("Hypothesis")

    rows = [(v, "") for v in data.get("vectors") or []] + [(c, "dim") for c in data.get("candidate_list") or []]
    for vector, style in rows:
        weight = vector.get("weight")
        table.add_row(
            str(vector.get("id", "?")),
            str(vector.get("validation_status", "?")),
            str(vector.get("type", "unknown")),
            f"{weight:.2f}" if isinstance(weight, (int, float)) else "-",
            str(vector.get("integration_hypothesis") or vector.get("description") or ""),
            style=style,
        )
    return table


def render_feedback(summary: List[Dict[str, Any]]) -> Table:
    table = Table(title="Growth vector feedback", box=box.SIMPLE_HEAD)
    table.add_column("ID")
    table.add_column("Avg delta", justify="right")
    table.add_column("Injections", justify="right")
    table.add_column("Window", justify="right")
    table.add_column("Last used", style="dim")

    for item in summary:
        delta = float(item.get("avg_entropy_delta", 0.0))
        style = "green" if delta < 0 else "red" if delta > 0 else ""
        table.add_row(
            str(item.get("id")),
            f"[{style}]{delta:+.3f}[/]" if style else f"{delta:+.3f}",
            str(item.get("total_injections", 0)),
            str(item.get("entries", 0)),
            str(item.get("last_used") or "-")[:19],
        )
    return table


def render_score(score: float, detectors: Dict[str, Any], shannon: float) -> Panel:
    table = Table.grid(padding=(0, 2))
    table.add_column(style="dim")
    table.add_column()
    table.add_row("Score", f"{score:.2f} ({styled_label(score)})")
    table.add_row("Temporal mismatch", str(detectors.get("temporal_mismatch", False)))
    table.add_row("Quality decay", str(detectors.get("quality_decay", False)))
    table.add_row("Meta bonus", f"{detectors.get('recursive_meta_bonus', 0.0):.2f} "
                                f"({detectors.get('meta_concept_count', 0)} concepts)")
    table.add_row("Shannon (response)", f"{shannon:.3f} bits/word")
    return Panel(table, title="[bold]Entropy score[/]", border_style="magenta")
