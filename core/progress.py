# core/progress.py
"""Progress events (tagged variants) and the per-invocation engine monitor."""
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, ClassVar, Optional, Tuple, Union

from core.domain import (
    ConversionCancelled,
    ConversionResult,
    Document,
    ErrorCode,
    VerificationResult,
)


class ProgressKind(str, Enum):
    INITIALIZING = "initializing"
    PROCESSING = "processing"
    VERIFYING = "verifying"
    COMPARING = "comparing"
    COMPLETED = "completed"
    FAILED = "failed"


# ============= Conversion Progress =============

@dataclass(frozen=True)
class Initializing:
    kind: ClassVar[ProgressKind] = ProgressKind.INITIALIZING
    document: Document


@dataclass(frozen=True)
class Processing:
    kind: ClassVar[ProgressKind] = ProgressKind.PROCESSING
    document: Document
    progress: float


@dataclass(frozen=True)
class Verifying:
    kind: ClassVar[ProgressKind] = ProgressKind.VERIFYING
    document: Document
    converted: Document


@dataclass(frozen=True)
class Completed:
    kind: ClassVar[ProgressKind] = ProgressKind.COMPLETED
    result: ConversionResult


@dataclass(frozen=True)
class Failed:
    kind: ClassVar[ProgressKind] = ProgressKind.FAILED
    document: Document
    error: str
    error_code: Optional[ErrorCode] = None


ConversionProgress = Union[Initializing, Processing, Verifying, Completed, Failed]
TERMINAL_KINDS = frozenset({ProgressKind.COMPLETED, ProgressKind.FAILED})


# ============= Verification Progress =============

@dataclass(frozen=True)
class VerificationInitializing:
    kind: ClassVar[ProgressKind] = ProgressKind.INITIALIZING
    source: Document
    converted: Document


@dataclass(frozen=True)
class Comparing:
    kind: ClassVar[ProgressKind] = ProgressKind.COMPARING
    progress: float


@dataclass(frozen=True)
class VerificationCompleted:
    kind: ClassVar[ProgressKind] = ProgressKind.COMPLETED
    result: VerificationResult
    report_ref: Optional[str] = None


@dataclass(frozen=True)
class VerificationFailed:
    kind: ClassVar[ProgressKind] = ProgressKind.FAILED
    error: str


VerificationProgress = Union[VerificationInitializing, Comparing, VerificationCompleted, VerificationFailed]


# ============= Batch Progress =============

@dataclass(frozen=True)
class ConversionFailure:
    document: Document
    reason: str


@dataclass(frozen=True)
class BatchConversionProgress:
    total_documents: int
    processed_documents: int
    current_document_progress: float
    current_document: Optional[Document]
    results: Tuple[ConversionResult, ...] = ()
    failed: Tuple[ConversionFailure, ...] = ()

    @property
    def overall_progress(self) -> float:
        if self.total_documents == 0:
            return 1.0
        done = self.processed_documents + (self.current_document_progress if self.current_document else 0.0)
        return min(1.0, done / self.total_documents)


# ============= Engine Monitor =============

class ConversionMonitor:
    """
    Channel between one orchestrator invocation and the engine doing the work.

    Engines call step()/report() at each sub-step; those calls raise
    ConversionCancelled once cancel() was requested. Reported progress is kept
    below 1.0: reaching 1.0 is the orchestrator's call once the engine returns.
    """
    MAX_ENGINE_PROGRESS = 0.99

    def __init__(
        self,
        on_progress: Optional[Callable[[float], None]] = None,
        granularity: float = 0.01,
    ):
        self._on_progress = on_progress
        self._granularity = granularity
        self._cancelled = threading.Event()
        self._last = 0.0
        self.failure_reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def check(self) -> None:
        if self._cancelled.is_set():
            raise ConversionCancelled("Conversion was cancelled")

    def report(self, fraction: float) -> None:
        self.check()
        fraction = max(0.0, min(fraction, self.MAX_ENGINE_PROGRESS))
        if fraction - self._last < self._granularity:
            return
        self._last = fraction
        if self._on_progress:
            self._on_progress(fraction)

    def step(self, done: int, total: int, start: float = 0.0, end: float = 1.0) -> None:
        ratio = done / total if total > 0 else 1.0
        self.report(start + (end - start) * ratio)

    def span(self, start: float, end: float) -> 'MonitorSpan':
        return MonitorSpan(self, start, end)

    def fail(self, reason: str) -> None:
        if self.failure_reason is None:
            self.failure_reason = reason


class MonitorSpan:
    """A slice [start, end] of a parent monitor, handed to readers/writers."""

    def __init__(self, parent: ConversionMonitor, start: float, end: float):
        self._parent = parent
        self._start = start
        self._end = end

    def check(self) -> None:
        self._parent.check()

    def report(self, fraction: float) -> None:
        self._parent.report(self._start + (self._end - self._start) * fraction)

    def step(self, done: int, total: int) -> None:
        self._parent.step(done, total, self._start, self._end)
