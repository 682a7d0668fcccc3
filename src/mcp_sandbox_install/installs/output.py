"""Classification of install output lines into progress events."""

from dataclasses import dataclass
from typing import Callable, List, Optional

from mcp_sandbox_install.types import ProgressEvent, ProgressKind
from mcp_sandbox_install.sandboxes.sandbox import STDERR_MARKER

PEER_DEPENDENCY_MARKER = "PNPM_PEER_DEPENDENCY_ERROR:"
RESOLUTION_CONFLICT_MARKER = "ERESOLVE_ERROR:"
PACKAGE_MANAGER_WARN_MARKERS = ("pnpm WARN", "npm WARN")
WARNING_MARKER = "WARNING:"
STATUS_MARKER = "STATUS:"
ERROR_MARKER = "ERROR:"

PLACEHOLDER = "undefined"


def _after(marker: str) -> Callable[[str], str]:
    def render(line: str) -> str:
        return line.replace(marker, "", 1).strip()
    return render


def _framed(marker: str, framing: str) -> Callable[[str], str]:
    strip = _after(marker)

    def render(line: str) -> str:
        payload = strip(line)
        if not payload or payload == PLACEHOLDER:
            return framing
        return f"{framing}: {payload}"
    return render


def _verbatim(line: str) -> str:
    return line


@dataclass(frozen=True)
class ClassifierRule:
    name: str
    matches: Callable[[str], bool]
    kind: ProgressKind
    render: Callable[[str], str]


# First match wins.
CLASSIFIER_RULES: List[ClassifierRule] = [
    ClassifierRule(
        "stderr",
        lambda line: STDERR_MARKER in line,
        ProgressKind.ERROR,
        _after(STDERR_MARKER),
    ),
    ClassifierRule(
        "peer_dependency",
        lambda line: PEER_DEPENDENCY_MARKER in line,
        ProgressKind.WARNING,
        _framed(PEER_DEPENDENCY_MARKER, "Peer dependency issues detected"),
    ),
    ClassifierRule(
        "resolution_conflict",
        lambda line: RESOLUTION_CONFLICT_MARKER in line,
        ProgressKind.WARNING,
        _framed(RESOLUTION_CONFLICT_MARKER, "Dependency conflict detected"),
    ),
    ClassifierRule(
        "package_manager_warning",
        lambda line: any(m in line for m in PACKAGE_MANAGER_WARN_MARKERS),
        ProgressKind.WARNING,
        _verbatim,
    ),
    ClassifierRule(
        "warning",
        lambda line: WARNING_MARKER in line,
        ProgressKind.WARNING,
        _after(WARNING_MARKER),
    ),
    ClassifierRule(
        "status",
        lambda line: STATUS_MARKER in line,
        ProgressKind.STATUS,
        _after(STATUS_MARKER),
    ),
    ClassifierRule(
        "error",
        lambda line: ERROR_MARKER in line,
        ProgressKind.ERROR,
        _after(ERROR_MARKER),
    ),
    ClassifierRule(
        "output",
        lambda line: line.strip() != PLACEHOLDER,
        ProgressKind.OUTPUT,
        _verbatim,
    ),
]


def classify_line(line: str) -> Optional[ProgressEvent]:
    """Turn one raw output line into an event, or None if it is dropped.

    A line is dropped when it is blank, when the matching rule leaves no
    message, or when it is nothing but the placeholder token. Lines that
    merely mention the token are kept as content.
    """
    if not line.strip():
        return None

    for rule in CLASSIFIER_RULES:
        if not rule.matches(line):
            continue
        message = rule.render(line)
        if not message or message == PLACEHOLDER:
            return None
        return ProgressEvent(kind=rule.kind, message=message)

    return None


def classify_output(text: str) -> List[ProgressEvent]:
    """Classify newline-delimited output, keeping line order."""
    events = []
    for line in text.split("\n"):
        event = classify_line(line)
        if event:
            events.append(event)
    return events
