# services/conversion_service.py
"""
Conversion orchestrator.

Every public conversion operation is an async generator of progress events;
a conversion stream ends with exactly one Completed or Failed event.
"""
import asyncio
import logging
import time
import uuid
from contextlib import aclosing
from dataclasses import replace
from datetime import datetime
from functools import partial
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import AsyncIterator, List, Optional, Set, Union

from config import settings
from core.conversion_paths import ConversionPathGraph
from core.domain import (
    ConversionOptions,
    ConversionResult,
    Document,
    DocumentContent,
    DocumentConversionError,
    DocumentMetadata,
    ErrorCode,
    ExtractionOptions,
    MissingEngineError,
    VerificationOptions,
    VerificationResult,
)
from core.formats import DocumentFormat
from core.interfaces import IBlobStorage, IConversionService, IDocumentRepository, IReportGenerator
from core.progress import (
    BatchConversionProgress,
    Comparing,
    Completed,
    ConversionFailure,
    ConversionMonitor,
    ConversionProgress,
    Failed,
    Initializing,
    Processing,
    VerificationCompleted,
    VerificationFailed,
    VerificationInitializing,
    VerificationProgress,
    Verifying,
)
from infrastructure.file_storage import materialize
from services.async_processor import WorkerPool
from services.engine_registry import EngineRegistry
from services.verification_engine import VerificationEngine
from utils.common import replace_extension

logger = logging.getLogger(settings.LOGGER_NAME)


async def _relay_progress(queue: asyncio.Queue, future: asyncio.Future) -> AsyncIterator[float]:
    """Yield strictly increasing engine progress until the engine call finishes."""
    last = 0.0
    getter: Optional[asyncio.Future] = None
    try:
        while True:
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({getter, future}, return_when=asyncio.FIRST_COMPLETED)
            if getter not in done:
                break
            progress = getter.result()
            if progress > last:
                last = progress
                yield progress
        # reports queued before the engine returned
        while not queue.empty():
            progress = queue.get_nowait()
            if progress > last:
                last = progress
                yield progress
    finally:
        if getter is not None and not getter.done():
            getter.cancel()


class ConversionService(IConversionService):
    """Drives engines, storage and verification for single and batch conversions."""

    def __init__(
        self,
        engine_registry: EngineRegistry,
        path_graph: ConversionPathGraph,
        document_repo: IDocumentRepository,
        blob_storage: IBlobStorage,
        verification_engine: VerificationEngine,
        worker_pool: WorkerPool,
        temp_dir: Union[str, Path],
        report_generator: Optional[IReportGenerator] = None,
    ):
        self.engine_registry = engine_registry
        self.path_graph = path_graph
        self.document_repo = document_repo
        self.blob_storage = blob_storage
        self.verification_engine = verification_engine
        self.worker_pool = worker_pool
        self.temp_dir = Path(temp_dir)
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        self.report_generator = report_generator

    # ============= Path queries =============

    def is_conversion_supported(self, source_format: DocumentFormat, target_format: DocumentFormat) -> bool:
        return self.path_graph.is_convertible(source_format, target_format)

    def get_supported_target_formats(self, source_format: DocumentFormat) -> Set[DocumentFormat]:
        return self.path_graph.supported_targets(source_format)

    # ============= Single conversion =============

    async def convert(
        self,
        document: Document,
        target_format: DocumentFormat,
        options: Optional[ConversionOptions] = None,
    ) -> AsyncIterator[ConversionProgress]:
        options = options or ConversionOptions()
        started = time.perf_counter()
        source_format = document.format
        yield Initializing(document)

        if not self.path_graph.is_convertible(source_format, target_format):
            message = f"Conversion from {source_format.name} to {target_format.name} is not supported"
            logger.warning(f"[CONVERT] {document.name}: {message}")
            yield Failed(document, message, ErrorCode.UNSUPPORTED_CONVERSION)
            return

        engine = self.engine_registry.get_engine(source_format.category)
        if not engine.supports_conversion(source_format, target_format):
            message = (
                f"Conversion from {source_format.name} to {target_format.name} "
                f"is not supported by the {source_format.category.value} engine"
            )
            logger.warning(f"[CONVERT] {document.name}: {message}")
            yield Failed(document, message, ErrorCode.UNSUPPORTED_CONVERSION)
            return

        logger.info(f"[CONVERT] {document.name}: {source_format.id} -> {target_format.id}")
        with TemporaryDirectory(dir=self.temp_dir, prefix="convert_", ignore_cleanup_errors=True) as workdir:
            try:
                input_path = await materialize(self.blob_storage, document, Path(workdir))
                output_path = Path(workdir) / f"output.{target_format.extension}"
                yield Processing(document, 0.0)

                loop = asyncio.get_running_loop()
                queue: asyncio.Queue = asyncio.Queue()
                monitor = ConversionMonitor(
                    on_progress=lambda p: loop.call_soon_threadsafe(queue.put_nowait, p),
                    granularity=settings.PROGRESS_GRANULARITY,
                )
                future = loop.run_in_executor(
                    self.worker_pool.executor,
                    partial(engine.convert, input_path, output_path, source_format, target_format, options, monitor),
                )
                try:
                    async with aclosing(_relay_progress(queue, future)) as updates:
                        async for progress in updates:
                            yield Processing(document, progress)
                finally:
                    if not future.done():
                        monitor.cancel()
                        logger.info(f"[CONVERT] {document.name}: cancelled by consumer")
                        # the engine stops at its next step; workdir is removed after that
                        await asyncio.wait({future})

                if not await future:
                    message = "Conversion failed during processing"
                    if monitor.failure_reason:
                        message = f"{message}: {monitor.failure_reason}"
                    logger.error(f"[CONVERT] {document.name}: {message}")
                    yield Failed(document, message, ErrorCode.ENGINE_FAILURE)
                    return
                yield Processing(document, 1.0)

                output = await self._store_output(document, output_path, target_format, options)
                verification = None
                if options.auto_verify:
                    yield Verifying(document, output)
                    verification = await self._auto_verify(document, output)

                elapsed = time.perf_counter() - started
                logger.info(f"[CONVERT] {document.name} -> {output.name} in {elapsed:.2f}s")
                yield Completed(ConversionResult(
                    source_document=document,
                    output_document=output,
                    success=True,
                    verification_result=verification,
                    conversion_time=elapsed,
                ))

            except MissingEngineError:
                raise
            except DocumentConversionError as e:
                logger.exception(f"[CONVERT] {document.name}: {e}")
                yield Failed(document, f"Conversion failed: {e.message}", e.error_code)
            except Exception as e:
                logger.exception(f"[CONVERT] {document.name}: unexpected fault: {e}")
                yield Failed(document, f"Conversion failed: {e}", ErrorCode.UNEXPECTED_FAULT)

    async def _auto_verify(self, source: Document, output: Document) -> Optional[VerificationResult]:
        """The output is already stored, so a verification fault leaves the conversion completed without a result."""
        try:
            return await self.verification_engine.verify(
                source, output,
                VerificationOptions(minimum_match_score=settings.VERIFICATION_MIN_MATCH_SCORE),
            )
        except MissingEngineError:
            raise
        except Exception as e:
            logger.exception(f"[CONVERT] {source.name}: verification of {output.name} failed: {e}")
            return None

    async def _store_output(
        self, source: Document, output_path: Path, target_format: DocumentFormat, options: ConversionOptions
    ) -> Document:
        data = await asyncio.to_thread(output_path.read_bytes)
        name = replace_extension(source.name, target_format.extension)
        storage_ref, size = await self.blob_storage.save(data, name)
        now = datetime.now()
        output = Document(
            id=str(uuid.uuid4()),
            name=name,
            format=target_format,
            size=size,
            storage_ref=storage_ref,
            local_path=self.blob_storage.local_path(storage_ref),
            date_created=now,
            date_modified=now,
            metadata=source.metadata if options.preserve_metadata else DocumentMetadata(),
        )
        return await self.document_repo.save(output)

    # ============= Batch conversion =============

    async def batch_convert(
        self,
        documents: List[Document],
        target_format: DocumentFormat,
        options: Optional[ConversionOptions] = None,
    ) -> AsyncIterator[BatchConversionProgress]:
        """Convert one document at a time, in order; one document's failure never stops the batch."""
        total = len(documents)
        results: List[ConversionResult] = []
        failed: List[ConversionFailure] = []
        logger.info(f"[BATCH] Converting {total} documents to {target_format.id}")

        def snapshot(index: int, progress: float, current: Optional[Document]) -> BatchConversionProgress:
            return BatchConversionProgress(
                total_documents=total,
                processed_documents=index,
                current_document_progress=progress,
                current_document=current,
                results=tuple(results),
                failed=tuple(failed),
            )

        for index, document in enumerate(documents):
            yield snapshot(index, 0.0, document)
            try:
                async with aclosing(self.convert(document, target_format, options)) as events:
                    async for event in events:
                        if isinstance(event, Processing):
                            yield snapshot(index, event.progress, document)
                        elif isinstance(event, Completed):
                            results.append(event.result)
                        elif isinstance(event, Failed):
                            failed.append(ConversionFailure(document, event.error))
            except MissingEngineError:
                raise
            except Exception as e:
                logger.exception(f"[BATCH] {document.name}: {e}")
                failed.append(ConversionFailure(document, f"Error: {e}"))

        logger.info(f"[BATCH] Done: {len(results)} converted, {len(failed)} failed")
        yield snapshot(total, 1.0, None)

    # ============= Verification =============

    async def verify_conversion(
        self,
        source: Document,
        converted: Document,
        options: Optional[VerificationOptions] = None,
    ) -> AsyncIterator[VerificationProgress]:
        options = options or VerificationOptions(minimum_match_score=settings.VERIFICATION_MIN_MATCH_SCORE)
        yield VerificationInitializing(source, converted)
        try:
            steps: List[float] = []
            result = await self.verification_engine.verify(source, converted, options, steps.append)
            for progress in steps:
                yield Comparing(progress)

            report_ref = None
            if options.generate_report and self.report_generator is not None:
                report_ref = await self.report_generator.generate_report(source, converted, result)
            yield VerificationCompleted(result, report_ref)
        except MissingEngineError:
            raise
        except Exception as e:
            logger.exception(f"[VERIFY] {source.name} vs {converted.name}: {e}")
            yield VerificationFailed(f"Verification failed: {e}")

    # ============= Extraction =============

    async def extract_content(self, document: Document, options: Optional[ExtractionOptions] = None) -> DocumentContent:
        engine = self.engine_registry.get_engine(document.format.category)
        with TemporaryDirectory(dir=self.temp_dir, prefix="extract_", ignore_cleanup_errors=True) as workdir:
            path = await materialize(self.blob_storage, document, Path(workdir))
            return await self.worker_pool.run(engine.extract_content, path, document.format, options or ExtractionOptions())

    async def extract_metadata(self, document: Document) -> Document:
        engine = self.engine_registry.get_engine(document.format.category)
        with TemporaryDirectory(dir=self.temp_dir, prefix="extract_", ignore_cleanup_errors=True) as workdir:
            path = await materialize(self.blob_storage, document, Path(workdir))
            metadata = await self.worker_pool.run(engine.extract_metadata, path, document.format)
        return replace(document, metadata=metadata)
