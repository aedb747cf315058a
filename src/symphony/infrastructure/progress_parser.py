"""Reader and writer for the agents' hand-editable PROGRESS.md reports."""

import re
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from symphony.domain.models import ProgressReport, SubtaskStatus
from symphony.infrastructure.logger import get_logger

logger = get_logger(__name__)

_HEADER_RE = re.compile(r"^(Status|Progress|Current|Last Updated)\s*:\s*(.*?)\s*$")
_SECTION_RE = re.compile(r"^##\s+(.+?)\s*$")
_PROGRESS_RE = re.compile(r"^(\d{1,3})\s*%?$")

_SECTIONS = {
    "completed": "completed",
    "in progress": "in_progress",
    "next steps": "next_steps",
    "blockers": "blockers",
    "notes": "notes",
}


def parse_timestamp(value: str) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_progress(text: str) -> ProgressReport | None:
    """Parse a progress report.

    Returns None (the agent is then observed as UNKNOWN) when any of the
    four required header fields is missing or holds an invalid value.
    """
    headers: dict[str, str] = {}
    sections: dict[str, list[str]] = {key: [] for key in _SECTIONS.values()}
    current_section: str | None = None

    for line in text.splitlines():
        section_match = _SECTION_RE.match(line)
        if section_match:
            current_section = _SECTIONS.get(section_match.group(1).lower())
            continue

        header_match = _HEADER_RE.match(line)
        if header_match and current_section is None:
            headers.setdefault(header_match.group(1), header_match.group(2))
            continue

        if current_section and line.strip().startswith("- "):
            sections[current_section].append(line.strip()[2:].strip())

    missing = {"Status", "Progress", "Current", "Last Updated"} - headers.keys()
    if missing:
        logger.debug("progress_missing_fields", missing=sorted(missing))
        return None

    try:
        status = SubtaskStatus(headers["Status"].upper())
    except ValueError:
        logger.debug("progress_invalid_status", status=headers["Status"])
        return None

    progress_match = _PROGRESS_RE.match(headers["Progress"])
    last_updated = parse_timestamp(headers["Last Updated"])
    if not progress_match or last_updated is None:
        return None

    try:
        return ProgressReport(
            status=status,
            progress=int(progress_match.group(1)),
            current=headers["Current"],
            last_updated=last_updated,
            **sections,
        )
    except ValidationError:
        return None


def read_progress(path: Path) -> ProgressReport | None:
    """Read and parse a report file; a missing file yields None."""
    try:
        return parse_progress(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("progress_read_failed", path=str(path), error=str(e))
        return None


def render_progress(report: ProgressReport) -> str:
    """Render a report in the format agents are instructed to maintain."""
    lines = [
        "# PROGRESS.md",
        f"Status: {report.status.value}",
        f"Progress: {report.progress}%",
        f"Current: {report.current}",
        f"Last Updated: {report.last_updated.isoformat()}",
    ]
    for title, key in _SECTIONS.items():
        lines.append("")
        lines.append(f"## {title.title()}")
        lines.extend(f"- {item}" for item in getattr(report, key))
    return "\n".join(lines) + "\n"
