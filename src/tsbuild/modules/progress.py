"""
Progress Display Module

Print one line per build event: a phase starting, a phase finishing, a poll
retry, or a soft failure the build continues past.

Security Requirements:
- No credential exposure in output
"""

import sys
from enum import Enum


class ProgressStage(Enum):
    """Kinds of build progress lines."""

    STEP = "step"
    RETRY = "retry"
    DONE = "done"
    WARNING = "warning"


class ProgressDisplay:
    """Line-per-event progress output for the build workflow.

    Example:
        >>> progress = ProgressDisplay()
        >>> progress.step("Selecting latest ubuntu-24_04-lts-daily image...")
        >>> progress.retry("VM Agent state: NotReady", attempt=2, max_attempts=30)
        >>> progress.done("Selected image: Canonical:...:24.04.202410150")
    """

    SYMBOLS = {
        ProgressStage.STEP: "►",
        ProgressStage.RETRY: "…",
        ProgressStage.DONE: "✓",
        ProgressStage.WARNING: "⚠",
    }

    ASCII_SYMBOLS = {
        ProgressStage.STEP: ">",
        ProgressStage.RETRY: "...",
        ProgressStage.DONE: "OK",
        ProgressStage.WARNING: "WARN",
    }

    def __init__(self, use_unicode: bool = True, output_file=None):
        self.use_unicode = use_unicode
        self.output_file = output_file or sys.stdout

    def step(self, message: str) -> None:
        """A build phase is starting."""
        self._emit(ProgressStage.STEP, message)

    def retry(self, message: str, attempt: int, max_attempts: int) -> None:
        """A poll attempt came back not ready; another attempt follows."""
        self._emit(ProgressStage.RETRY, f"{message} (attempt {attempt}/{max_attempts}), retrying...")

    def done(self, message: str) -> None:
        self._emit(ProgressStage.DONE, message)

    def warn(self, message: str) -> None:
        """A wait timed out or a fallback was taken; the build continues."""
        self._emit(ProgressStage.WARNING, message)

    def _emit(self, stage: ProgressStage, message: str) -> None:
        symbols = self.SYMBOLS if self.use_unicode else self.ASCII_SYMBOLS
        print(f"{symbols[stage]} {message}", file=self.output_file, flush=True)
