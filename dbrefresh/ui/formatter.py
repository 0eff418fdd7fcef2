"""Contains helper functions for formatting refresh data for the console."""

from datetime import timedelta

from rich.text import Text

from dbrefresh.domain.enums import ProgressPhase, RefreshOutcome, RefreshState

# Color mappings for different statuses
OUTCOME_COLORS = {
    RefreshOutcome.SUCCEEDED: "bold green",
    RefreshOutcome.FAILED: "bold red",
    RefreshOutcome.UNSAFE: "bold white on red",
}

PHASE_COLORS = {
    ProgressPhase.CONNECTING: "cyan",
    ProgressPhase.RESOLVING: "cyan",
    ProgressPhase.OFFLINING: "yellow",
    ProgressPhase.OVERWRITING: "bold magenta",
    ProgressPhase.ONLINING: "blue",
    ProgressPhase.COMPLETED: "bold green",
    ProgressPhase.COMPENSATING: "bold yellow",
    ProgressPhase.FAILED: "bold red",
}


def get_outcome_text(outcome: RefreshOutcome) -> Text:
    """Returns a rich Text object for a refresh outcome.

    Args:
        outcome (RefreshOutcome): The terminal outcome.

    Returns:
        Text: A `rich` Text object with appropriate color.
    """
    color = OUTCOME_COLORS.get(outcome, "white")
    return Text(outcome.value.upper(), style=color)


def get_phase_text(phase: ProgressPhase) -> Text:
    """Returns a rich Text object for a progress phase."""
    color = PHASE_COLORS.get(phase, "white")
    return Text(phase.value.upper(), style=color)


def format_state_history(history) -> Text:
    """Formats a state history like 'INIT → ARRAY_CONNECTED → ...'."""
    text = Text()
    for index, state in enumerate(history):
        if index:
            text.append(" → ", style="dim")
        style = "red" if state in (RefreshState.ABORTING, RefreshState.ABORTED) else "white"
        text.append(state.name, style=style)
    return text


def format_elapsed_time(seconds: float) -> str:
    """Formats elapsed seconds like '0:02:05.3'.

    Args:
        seconds (float): The elapsed time in seconds.

    Returns:
        str: A formatted string.
    """
    if seconds is None:
        return "N/A"
    whole = timedelta(seconds=int(seconds))
    tenths = int((seconds - int(seconds)) * 10)
    return f"{whole}.{tenths}"
