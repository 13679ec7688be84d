from __future__ import annotations

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    """Structured classification produced by provider adapters."""
    QUOTA = "quota"
    TIMEOUT = "timeout"
    OTHER = "other"


class AnalysisError(Exception):
    """Base class for analysis engine errors."""


class ConfigurationError(AnalysisError):
    """Raised before any stage runs when a required credential is missing."""


class ProviderError(AnalysisError):
    """One failed attempt against one backend provider."""

    def __init__(self, provider: str, message: str, *, kind: FailureKind = FailureKind.OTHER):
        super().__init__(f"[{provider}] {message}")
        self.provider = provider
        self.kind = kind

    @property
    def is_quota(self) -> bool:
        return self.kind == FailureKind.QUOTA


class ActionTimeoutError(AnalysisError, TimeoutError):
    """A paced action held the lane longer than the configured timeout."""

    def __init__(self, timeout_s: float):
        super().__init__(f"action timed out after {timeout_s}s")
        self.timeout_s = timeout_s


class ProviderExhaustedError(AnalysisError):
    """Every attempt of a task failed, one provider per attempt."""

    def __init__(self, task_name: str, attempts: int, last_error: Optional[BaseException]):
        detail = f"{type(last_error).__name__}: {last_error}" if last_error else "no attempts made"
        super().__init__(f"All {attempts} providers failed for {task_name} ({detail})")
        self.task_name = task_name
        self.attempts = attempts
        self.last_error = last_error


class PipelineError(AnalysisError):
    """Fatal analysis failure, tagged with the stage that was in progress."""

    def __init__(self, stage: str, task_name: str, cause: BaseException):
        super().__init__(f"Analysis failed during {stage} ({task_name}): {cause}")
        self.stage = stage
        self.task_name = task_name
        self.cause = cause
