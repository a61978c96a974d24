# services/verification_engine.py
"""Scores a converted document against its source across four dimensions"""
import logging
from dataclasses import dataclass
from difflib import SequenceMatcher
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Callable, List, Optional, Union

from config import settings
from core.domain import (
    Document,
    DocumentContent,
    DocumentConversionError,
    DocumentMetadata,
    ExtractionOptions,
    IssueSeverity,
    IssueType,
    VerificationIssue,
    VerificationOptions,
    VerificationResult,
)
from core.interfaces import IBlobStorage, IVerificationEngine
from infrastructure.file_storage import materialize
from infrastructure.text_readers import full_text
from services.async_processor import WorkerPool
from services.engine_registry import EngineRegistry

logger = logging.getLogger(settings.LOGGER_NAME)

METADATA_FIELDS = ("title", "author", "subject", "keywords", "creator")


@dataclass(frozen=True)
class DocumentSnapshot:
    """What one side of a comparison looks like once extracted."""
    content: DocumentContent
    metadata: DocumentMetadata
    extraction_error: Optional[str] = None


def _normalize(value: str) -> str:
    return " ".join(value.split()).lower()


def _similarity(a: List[str], b: List[str]) -> float:
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return SequenceMatcher(None, a, b, autojunk=False).ratio()


def _content_severity(score: float) -> IssueSeverity:
    if score < 0.5:
        return IssueSeverity.CRITICAL
    if score < 0.75:
        return IssueSeverity.HIGH
    if score < 0.9:
        return IssueSeverity.MEDIUM
    return IssueSeverity.LOW


class VerificationEngine(IVerificationEngine):
    """
    Extracts both documents through their engines, then compares the snapshots.

    compare() is pure: the same snapshots and options always give the same result.
    """
    CONTENT_WEIGHT = 0.4
    FORMATTING_WEIGHT = 0.3
    STRUCTURE_WEIGHT = 0.2
    METADATA_WEIGHT = 0.1

    def __init__(
        self,
        engine_registry: EngineRegistry,
        blob_storage: IBlobStorage,
        worker_pool: WorkerPool,
        temp_dir: Union[str, Path],
    ):
        self.engine_registry = engine_registry
        self.blob_storage = blob_storage
        self.worker_pool = worker_pool
        self.temp_dir = Path(temp_dir)
        self.temp_dir.mkdir(parents=True, exist_ok=True)

    async def verify(
        self,
        source: Document,
        converted: Document,
        options: VerificationOptions,
        progress_callback: Optional[Callable[[float], None]] = None,
    ) -> VerificationResult:
        logger.info(f"[VERIFY] Comparing '{source.name}' with '{converted.name}'")
        with TemporaryDirectory(dir=self.temp_dir, prefix="verify_", ignore_cleanup_errors=True) as workdir:
            source_snapshot = await self.snapshot(source, Path(workdir))
            converted_snapshot = await self.snapshot(converted, Path(workdir))
        result = self.compare(source_snapshot, converted_snapshot, options, progress_callback)
        logger.info(
            f"[VERIFY] '{converted.name}': overall {result.overall_score:.2f}, "
            f"{'passed' if result.success else 'below threshold'}, {len(result.issues)} issues"
        )
        return result

    async def snapshot(self, document: Document, workdir: Path) -> DocumentSnapshot:
        """Extract content and metadata; a side that cannot be read becomes an empty snapshot."""
        engine = self.engine_registry.get_engine(document.format.category)
        try:
            path = await materialize(self.blob_storage, document, workdir)
            content = await self.worker_pool.run(engine.extract_content, path, document.format, ExtractionOptions())
            metadata = await self.worker_pool.run(engine.extract_metadata, path, document.format)
            return DocumentSnapshot(content=content, metadata=metadata)
        except (DocumentConversionError, OSError) as e:
            logger.warning(f"[VERIFY] Could not extract '{document.name}': {e}")
            return DocumentSnapshot(DocumentContent(), DocumentMetadata(), extraction_error=str(e))

    def compare(
        self,
        source: DocumentSnapshot,
        converted: DocumentSnapshot,
        options: VerificationOptions,
        progress_callback: Optional[Callable[[float], None]] = None,
    ) -> VerificationResult:
        issues: List[VerificationIssue] = []
        checks = [
            (options.verify_content, self.check_content),
            (options.verify_formatting, self.check_formatting),
            (options.verify_structure, self.check_structure),
            (options.verify_metadata, self.check_metadata),
        ]
        scores = []
        for index, (enabled, check) in enumerate(checks, start=1):
            scores.append(check(source, converted, issues) if enabled else 1.0)
            if progress_callback:
                progress_callback(index / len(checks))

        overall = self.calculate_overall_score(*scores)
        return VerificationResult(
            success=overall >= options.minimum_match_score,
            overall_score=overall,
            content_match_score=scores[0],
            formatting_match_score=scores[1],
            structure_match_score=scores[2],
            metadata_match_score=scores[3],
            issues=tuple(issues),
        )

    @classmethod
    def calculate_overall_score(cls, content: float, formatting: float, structure: float, metadata: float) -> float:
        overall = (
            cls.CONTENT_WEIGHT * content
            + cls.FORMATTING_WEIGHT * formatting
            + cls.STRUCTURE_WEIGHT * structure
            + cls.METADATA_WEIGHT * metadata
        )
        # rounding keeps 1.0 inputs at exactly 1.0
        return max(0.0, min(1.0, round(overall, 6)))

    # ============= Dimension checks =============

    def check_content(self, source: DocumentSnapshot, converted: DocumentSnapshot, issues: List[VerificationIssue]) -> float:
        for side, snapshot in (("source", source), ("converted", converted)):
            if snapshot.extraction_error:
                issues.append(VerificationIssue(
                    type=IssueType.RESOURCE_MISSING,
                    description=f"Content of the {side} document could not be extracted: {snapshot.extraction_error}",
                    severity=IssueSeverity.CRITICAL,
                    location=side,
                ))

        score = _similarity(full_text(source.content).split(), full_text(converted.content).split())
        if score < 1.0:
            issues.append(VerificationIssue(
                type=IssueType.CONTENT_MISMATCH,
                description=f"Text content differs ({score:.0%} similar)",
                severity=_content_severity(score),
                location="text",
            ))

        missing_images = len(source.content.images) - len(converted.content.images)
        if missing_images > 0:
            issues.append(VerificationIssue(
                type=IssueType.RESOURCE_MISSING,
                description=f"{missing_images} of {len(source.content.images)} images are missing",
                severity=IssueSeverity.HIGH,
                location="images",
            ))
        return score

    def check_formatting(self, source: DocumentSnapshot, converted: DocumentSnapshot, issues: List[VerificationIssue]) -> float:
        components: List[float] = []

        source_fonts = {_normalize(f): f for f in source.content.fonts}
        if source_fonts:
            converted_fonts = {_normalize(f) for f in converted.content.fonts}
            missing = sorted(name for key, name in source_fonts.items() if key not in converted_fonts)
            components.append(1.0 - len(missing) / len(source_fonts))
            if missing:
                issues.append(VerificationIssue(
                    type=IssueType.FONT_SUBSTITUTION,
                    description=f"Fonts not carried over: {', '.join(missing)}",
                    severity=IssueSeverity.MEDIUM,
                    location="fonts",
                ))

        if source.content.formatted_text:
            kept = bool(converted.content.formatted_text)
            components.append(1.0 if kept else 0.0)
            if not kept:
                issues.append(VerificationIssue(
                    type=IssueType.FORMATTING_MISMATCH,
                    description="Rich text formatting was not preserved",
                    severity=IssueSeverity.MEDIUM,
                    location="formatting",
                ))

        source_links = {link.url for link in source.content.links}
        if source_links:
            missing_links = source_links - {link.url for link in converted.content.links}
            components.append(1.0 - len(missing_links) / len(source_links))
            if missing_links:
                issues.append(VerificationIssue(
                    type=IssueType.FORMATTING_MISMATCH,
                    description=f"{len(missing_links)} of {len(source_links)} hyperlinks are missing",
                    severity=IssueSeverity.LOW,
                    location="hyperlinks",
                ))

        return sum(components) / len(components) if components else 1.0

    def check_structure(self, source: DocumentSnapshot, converted: DocumentSnapshot, issues: List[VerificationIssue]) -> float:
        components: List[float] = []
        source_structure = source.content.structure
        converted_structure = converted.content.structure

        source_headings = [_normalize(h.text) for h in source_structure.headings]
        converted_headings = [_normalize(h.text) for h in converted_structure.headings]
        if source_headings or converted_headings:
            ratio = _similarity(source_headings, converted_headings)
            components.append(ratio)
            if ratio < 1.0:
                issues.append(VerificationIssue(
                    type=IssueType.STRUCTURE_MISMATCH,
                    description=(
                        f"Heading outline differs ({len(source_headings)} in source, "
                        f"{len(converted_headings)} in output)"
                    ),
                    severity=IssueSeverity.MEDIUM if ratio >= 0.5 else IssueSeverity.HIGH,
                    location="headings",
                ))

        source_tables = len(source.content.tables)
        if source_tables:
            ratio = min(len(converted.content.tables), source_tables) / source_tables
            components.append(ratio)
            if ratio < 1.0:
                issues.append(VerificationIssue(
                    type=IssueType.STRUCTURE_MISMATCH,
                    description=f"{source_tables - len(converted.content.tables)} of {source_tables} tables were lost",
                    severity=IssueSeverity.MEDIUM,
                    location="tables",
                ))

        if source_structure.pages and converted_structure.pages:
            ratio = min(source_structure.pages, converted_structure.pages) / max(source_structure.pages, converted_structure.pages)
            components.append(ratio)
            if ratio < 1.0:
                issues.append(VerificationIssue(
                    type=IssueType.STRUCTURE_MISMATCH,
                    description=f"Page count changed from {source_structure.pages} to {converted_structure.pages}",
                    severity=IssueSeverity.LOW,
                    location="pages",
                ))

        return sum(components) / len(components) if components else 1.0

    def check_metadata(self, source: DocumentSnapshot, converted: DocumentSnapshot, issues: List[VerificationIssue]) -> float:
        present = 0
        matched = 0
        for field_name in METADATA_FIELDS:
            expected = getattr(source.metadata, field_name)
            if not expected:
                continue
            present += 1
            actual = getattr(converted.metadata, field_name)
            if field_name == "keywords":
                same = {_normalize(k) for k in expected} == {_normalize(k) for k in actual}
                shown_expected, shown_actual = ", ".join(sorted(expected)), ", ".join(sorted(actual))
            else:
                same = bool(actual) and _normalize(expected) == _normalize(actual)
                shown_expected, shown_actual = expected, actual or ""
            if same:
                matched += 1
            else:
                issues.append(VerificationIssue(
                    type=IssueType.METADATA_MISMATCH,
                    description=f"{field_name.capitalize()} differs: '{shown_expected}' vs '{shown_actual}'",
                    severity=IssueSeverity.LOW,
                    location=field_name,
                ))
        return matched / present if present else 1.0
