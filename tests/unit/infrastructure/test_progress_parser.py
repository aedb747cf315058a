"""Unit tests for PROGRESS.md parsing."""

from datetime import datetime, timezone
from pathlib import Path

import pytest
from symphony.domain.models import ProgressReport, SubtaskStatus
from symphony.infrastructure.progress_parser import (
    parse_progress,
    parse_timestamp,
    read_progress,
    render_progress,
)

SAMPLE = """# PROGRESS.md
Status: IN_PROGRESS
Progress: 60%
Current: Implementing login endpoint
Last Updated: 2025-01-01T12:30:00Z

## Completed
- Database schema
- User model

## In Progress
- POST /login

## Next Steps
- Tests

## Blockers

## Notes
- Token lifetime is 1h
"""


class TestParseProgress:
    """Tests for parse_progress."""

    def test_parse_full_report(self) -> None:
        """Test headers and sections are parsed."""
        report = parse_progress(SAMPLE)

        assert report is not None
        assert report.status == SubtaskStatus.IN_PROGRESS
        assert report.progress == 60
        assert report.current == "Implementing login endpoint"
        assert report.last_updated == datetime(2025, 1, 1, 12, 30, tzinfo=timezone.utc)
        assert report.completed == ["Database schema", "User model"]
        assert report.in_progress == ["POST /login"]
        assert report.next_steps == ["Tests"]
        assert report.blockers == []
        assert report.notes == ["Token lifetime is 1h"]

    @pytest.mark.parametrize("missing", ["Status", "Progress", "Current", "Last Updated"])
    def test_missing_required_field(self, missing: str) -> None:
        """Test a report lacking a required header is unreadable."""
        text = "\n".join(line for line in SAMPLE.splitlines() if not line.startswith(missing))

        assert parse_progress(text) is None

    @pytest.mark.parametrize(
        ("header", "value"),
        [
            ("Status", "DONE"),
            ("Progress", "lots"),
            ("Progress", "150%"),
            ("Last Updated", "yesterday"),
        ],
    )
    def test_invalid_values(self, header: str, value: str) -> None:
        """Test invalid header values make the report unreadable."""
        lines = [
            f"{header}: {value}" if line.startswith(f"{header}:") else line
            for line in SAMPLE.splitlines()
        ]

        assert parse_progress("\n".join(lines)) is None

    def test_lenient_formatting(self) -> None:
        """Test lower-case status, missing percent sign and naive timestamp."""
        report = parse_progress(
            "Status: complete\nProgress: 100\nCurrent: Done\nLast Updated: 2025-01-01T08:00:00\n"
        )

        assert report is not None
        assert report.status == SubtaskStatus.COMPLETE
        assert report.progress == 100
        assert report.last_updated.tzinfo is not None

    def test_headers_inside_sections_ignored(self) -> None:
        """Test a header-like line in a section does not override the header."""
        report = parse_progress(SAMPLE + "\nStatus: FAILED\n")

        assert report is not None
        assert report.status == SubtaskStatus.IN_PROGRESS


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_offset_preserved(self) -> None:
        parsed = parse_timestamp("2025-01-01T12:00:00+02:00")
        assert parsed is not None
        assert parsed.utcoffset() is not None
        assert parsed.astimezone(timezone.utc).hour == 10

    def test_invalid(self) -> None:
        assert parse_timestamp("not a date") is None


class TestReadAndRender:
    """Tests for reading and rendering report files."""

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test a missing file reads as None."""
        assert read_progress(tmp_path / "PROGRESS.md") is None

    def test_rendered_report_parses_back(self, tmp_path: Path) -> None:
        """Test the rendered template is what the parser expects."""
        report = ProgressReport(
            status=SubtaskStatus.BLOCKED,
            progress=30,
            current="Waiting on schema",
            last_updated=datetime(2025, 1, 2, tzinfo=timezone.utc),
            blockers=["Schema not agreed"],
        )
        path = tmp_path / "PROGRESS.md"
        path.write_text(render_progress(report))

        parsed = read_progress(path)

        assert parsed == report
