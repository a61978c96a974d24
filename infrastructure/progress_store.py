# infrastructure/progress_store.py
"""Simple in-memory tracking of batch conversion jobs with size limit"""
from datetime import datetime, timezone
from typing import Dict, List, Optional

from core.progress import BatchConversionProgress


class JobStatus:
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ProgressStore:
    """
    In-memory storage for batch job progress (polling endpoint).

    Auto-cleanup above MAX_ENTRIES (keeps the newest half). Lost on server restart.
    Usage: start() -> update() -> complete()/fail(). Client polls get().
    """
    MAX_ENTRIES = 500

    def __init__(self, max_entries: Optional[int] = None):
        self.max_entries = max_entries or self.MAX_ENTRIES
        self._progress: Dict[str, Dict] = {}

    def _cleanup_if_full(self):
        """Remove oldest entries when limit reached"""
        if len(self._progress) < self.max_entries:
            return

        sorted_items = sorted(
            self._progress.items(),
            key=lambda x: x[1].get('_created', datetime.min.replace(tzinfo=timezone.utc))
        )
        to_remove = len(self._progress) - self.max_entries // 2
        for job_id, _ in sorted_items[:to_remove]:
            del self._progress[job_id]

    def start(self, job_id: str, target_format: str, document_ids: List[str]) -> None:
        """Initialize job tracking. Triggers cleanup when full."""
        self._cleanup_if_full()
        self._progress[job_id] = {
            "status": JobStatus.PENDING,
            "target_format": target_format,
            "total_documents": len(document_ids),
            "processed_documents": 0,
            "progress_percent": 0,
            "current_document_id": None,
            "output_document_ids": [],
            "failures": [],
            "error": None,
            "_created": datetime.now(timezone.utc),
        }

    def update(self, job_id: str, snapshot: BatchConversionProgress) -> None:
        """Mirror a batch snapshot into the job entry."""
        if job_id in self._progress:
            self._progress[job_id].update({
                "status": JobStatus.RUNNING,
                "processed_documents": snapshot.processed_documents,
                "progress_percent": int(snapshot.overall_progress * 100),
                "current_document_id": snapshot.current_document.id if snapshot.current_document else None,
                "output_document_ids": [
                    r.output_document.id for r in snapshot.results if r.output_document is not None
                ],
                "failures": [{"document_id": f.document.id, "reason": f.reason} for f in snapshot.failed],
            })

    def fail(self, job_id: str, error: str) -> None:
        if job_id in self._progress:
            self._progress[job_id].update({
                "status": JobStatus.FAILED,
                "error": error,
            })

    def complete(self, job_id: str) -> None:
        if job_id in self._progress:
            self._progress[job_id].update({
                "status": JobStatus.COMPLETED,
                "progress_percent": 100,
                "current_document_id": None,
            })

    def get(self, job_id: str) -> Optional[Dict]:
        entry = self._progress.get(job_id)
        if entry is None:
            return None
        return {k: v for k, v in entry.items() if not k.startswith("_")}

    def remove(self, job_id: str) -> None:
        self._progress.pop(job_id, None)
