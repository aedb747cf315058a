"""Root-cause analysis pass run before an agent or test-gate retry."""

from collections import deque
from pathlib import Path

from symphony.domain.models import ErrorKind, FailureAnalysis, ProgressReport
from symphony.infrastructure.logger import get_logger

logger = get_logger(__name__)

TRANSIENT_INDICATORS = [
    "timeout",
    "timed out",
    "rate limit",
    "connection",
    "network",
    "temporary",
    "service unavailable",
    "overloaded",
    "503",
    "529",
    "429",
]

PERMANENT_INDICATORS = [
    "permission denied",
    "no such file",
    "command not found",
    "syntaxerror",
    "modulenotfounderror",
    "importerror",
    "authentication",
    "invalid api key",
]


def read_log_tail(path: Path | None, max_lines: int = 40) -> str:
    """Return the last ``max_lines`` lines of a worker log, or ``""``."""
    if path is None:
        return ""
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return "".join(deque(f, maxlen=max_lines))
    except OSError:
        return ""


class FailureAnalyzer:
    """Classifies a failure as transient or permanent and suggests a fix.

    The analysis is recorded in the task's error log and appended to the
    context of the next spawn, so a retried agent knows what went wrong.
    """

    def __init__(self, log_tail_lines: int = 40):
        self.log_tail_lines = log_tail_lines

    def analyze(
        self,
        kind: ErrorKind,
        cause: str,
        report: ProgressReport | None = None,
        log_path: Path | None = None,
        output: str = "",
    ) -> FailureAnalysis:
        """Analyze one failure.

        Args:
            kind: What was observed (stale, failed, exited, ...)
            cause: Short description of the observation
            report: Last progress report of the agent, if any
            log_path: Worker output sink to inspect
            output: Captured output (verification gate)

        Returns:
            The analysis; never raises
        """
        tail = output or read_log_tail(log_path, self.log_tail_lines)
        evidence = "\n".join([cause, tail, *(report.blockers if report else [])]).lower()

        if kind == ErrorKind.STALE:
            analysis = FailureAnalysis(
                category="stale",
                transient=True,
                summary=f"No progress update: {cause}",
                hint="Update PROGRESS.md after every meaningful step",
            )
        elif kind == ErrorKind.TEST_FAILED:
            analysis = FailureAnalysis(
                category="verification",
                transient=self._is_transient_error(evidence),
                summary=self._last_line(tail) or cause,
                hint="Fix the failing checks reported by the verification command",
            )
        elif report is not None and report.blockers:
            analysis = FailureAnalysis(
                category="blocked",
                transient=self._is_transient_error(evidence),
                summary="; ".join(report.blockers),
                hint="Resolve the reported blockers before continuing",
            )
        elif self._is_permanent_error(evidence):
            analysis = FailureAnalysis(
                category="environment",
                transient=False,
                summary=self._last_line(tail) or cause,
                hint="Check the tool installation and credentials of the worker",
            )
        elif self._is_transient_error(evidence):
            analysis = FailureAnalysis(
                category="transient",
                transient=True,
                summary=self._last_line(tail) or cause,
                hint="Retry; the failure looks temporary",
            )
        else:
            analysis = FailureAnalysis(
                category="unknown",
                transient=kind in (ErrorKind.EXITED, ErrorKind.SPAWN_FAILED),
                summary=self._last_line(tail) or cause,
            )

        logger.info(
            "failure_analyzed",
            kind=kind.value,
            category=analysis.category,
            transient=analysis.transient,
        )
        return analysis

    def _is_transient_error(self, text: str) -> bool:
        return any(indicator in text for indicator in TRANSIENT_INDICATORS)

    def _is_permanent_error(self, text: str) -> bool:
        return any(indicator in text for indicator in PERMANENT_INDICATORS)

    @staticmethod
    def _last_line(text: str) -> str:
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        return lines[-1][:200] if lines else ""
