# vobsub_ocr/pipeline.py
# -*- coding: utf-8 -*-
"""
OCR Pipeline - Main Entry Point

Orchestrates the complete OCR workflow:
    1. Parse the .idx index (fatal on error)
    2. Per entry, on a worker pool: demux, decode, composite, segment, recognise
    3. Collect results keyed by entry position, sort, number
    4. Write SRT

A failed entry is skipped with a warning and a failed line crop becomes an
empty line; neither stops the run.

Usage:
    pipeline = OCRPipeline(settings)
    result = pipeline.process(idx_path, output_path)
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from PIL import Image

from .compositor import ImageCompositor, create_compositor
from .config import OCRSettings
from .engine import RecognitionDriver, RecognitionEngine, create_ocr_engine
from .errors import DecodeError
from .output import EntryResult, SubtitleCue, assemble_cues
from .parsers import StreamIndex, VobSubParser
from .preprocessing import LineCrop, LineSegmenter, create_preprocessor
from .writers import write_srt_file

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, float], None]


@dataclass
class PipelineResult:
    """Result of OCR pipeline execution."""
    success: bool = False
    cancelled: bool = False
    output_path: Optional[Path] = None
    cues: list[SubtitleCue] = field(default_factory=list)

    # Counts
    entry_count: int = 0
    decoded_count: int = 0
    failed_entries: list[int] = field(default_factory=list)
    skipped_unforced: int = 0
    blank_count: int = 0
    recognition_failures: int = 0

    duration_seconds: float = 0.0
    error: Optional[str] = None

    @property
    def subtitle_count(self) -> int:
        return len(self.cues)

    @property
    def exit_code(self) -> int:
        """0 when every entry and line went through cleanly, else 1."""
        if not self.success or self.failed_entries or self.recognition_failures:
            return 1
        return 0


class OCRPipeline:
    """
    Main OCR pipeline for converting VobSub subtitles to SRT.

    Components are built lazily from the settings; an engine can be passed
    in to replace Tesseract.
    """

    def __init__(
        self,
        settings: OCRSettings | None = None,
        engine: RecognitionEngine | None = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """
        Initialize OCR pipeline.

        Args:
            settings: Typed OCR settings (defaults if None)
            engine: Recognition engine (Tesseract from settings if None)
            progress_callback: Optional callback for progress updates
                              Signature: callback(message: str, progress: float)
        """
        self.settings = settings or OCRSettings()
        self.progress_callback = progress_callback

        self._engine = engine
        self._compositor: Optional[ImageCompositor] = None
        self._preprocessor: Optional[LineSegmenter] = None
        self._cancel_event = threading.Event()
        self._stats_lock = threading.Lock()
        self._skipped_unforced = 0
        self._debug_dir: Optional[Path] = None

    @property
    def compositor(self) -> ImageCompositor:
        """Lazy initialization of compositor."""
        if self._compositor is None:
            self._compositor = create_compositor(self.settings)
        return self._compositor

    @property
    def preprocessor(self) -> LineSegmenter:
        """Lazy initialization of line segmenter."""
        if self._preprocessor is None:
            self._preprocessor = create_preprocessor(self.settings)
        return self._preprocessor

    @property
    def engine(self) -> RecognitionEngine:
        """Lazy initialization of OCR engine."""
        if self._engine is None:
            self._engine = create_ocr_engine(self.settings)
            logger.info(f"Using OCR engine: {self._engine.name} ({self.settings.language})")
        return self._engine

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self):
        """Stop dispatching entries; in-flight entries are abandoned."""
        if not self._cancel_event.is_set():
            logger.warning("Cancellation requested, stopping dispatch")
        self._cancel_event.set()

    def process(
        self,
        idx_path: Path | str,
        output_path: Path | str | None = None,
        sub_path: Path | str | None = None,
        write_output: bool = True,
    ) -> PipelineResult:
        """
        Convert a VobSub pair to SRT.

        Args:
            idx_path: Path to the .idx file
            output_path: SRT output path; standard output if None
            sub_path: Path to the .sub file (defaults to idx_path with .sub)
            write_output: Set False to only return the cues

        Returns:
            PipelineResult with cues and statistics

        Raises:
            MalformedIndex: if the index cannot be parsed
            FileNotFoundError: if either input file is missing

        A cancel() issued before the call stops it before any entry is
        processed. The flag is cleared when the call returns.
        """
        try:
            return self._execute(idx_path, output_path, sub_path, write_output)
        finally:
            self._cancel_event.clear()

    def _execute(
        self,
        idx_path: Path | str,
        output_path: Path | str | None,
        sub_path: Path | str | None,
        write_output: bool,
    ) -> PipelineResult:
        result = PipelineResult()
        start_time = time.time()
        self._skipped_unforced = 0

        self._log_progress("Starting OCR pipeline", 0.0)

        # Step 1: Parse index and load data
        parser = VobSubParser(idx_path, sub_path, stream_index=self.settings.stream_index)
        index = parser.load()
        result.entry_count = len(index)
        self._log_progress(f"Found {len(index)} subtitles", 0.05)

        workers = max(1, self.settings.max_workers)
        if workers > 1:
            # One OpenMP thread per Tesseract process while the pool is busy
            os.environ.setdefault("OMP_THREAD_LIMIT", "1")

        self._debug_dir = self._prepare_debug_dir(Path(idx_path))
        driver = RecognitionDriver(self.engine)

        # Step 2: Process entries
        results: dict[int, EntryResult] = {}
        try:
            if workers == 1:
                self._run_sequential(parser, index, driver, results, result)
            else:
                self._run_parallel(parser, index, driver, results, result, workers)
        except KeyboardInterrupt:
            self.cancel()

        result.skipped_unforced = self._skipped_unforced
        result.recognition_failures = driver.failures
        result.duration_seconds = time.time() - start_time

        if self.cancelled:
            result.cancelled = True
            result.error = "Cancelled"
            logger.warning("OCR cancelled, no output written")
            return result

        # Step 3: Assemble
        result.blank_count = sum(1 for r in results.values() if not any(r.lines))
        result.cues = assemble_cues(
            results.values(),
            keep_empty=self.settings.keep_empty_cues,
            default_duration_ms=self.settings.default_duration_ms,
        )

        # Step 4: Write
        if write_output:
            self._log_progress("Writing output", 0.97)
            write_srt_file(result.cues, output_path)
            result.output_path = Path(output_path) if output_path is not None else None

        result.success = True
        result.duration_seconds = time.time() - start_time
        logger.info(
            f"OCR complete: {len(result.cues)} cues from {result.entry_count} entries, "
            f"{len(result.failed_entries)} failed, {result.recognition_failures} "
            f"line(s) unreadable, {result.duration_seconds:.1f}s"
        )
        self._log_progress("OCR complete", 1.0)
        return result

    def _run_sequential(
        self,
        parser: VobSubParser,
        index: StreamIndex,
        driver: RecognitionDriver,
        results: dict[int, EntryResult],
        result: PipelineResult,
    ):
        for position in range(len(index)):
            if self.cancelled:
                break
            try:
                entry = self._process_entry(parser, index, driver, position)
            except DecodeError as e:
                self._record_failure(index, position, e, result)
            else:
                self._record_entry(position, entry, results, result)
            self._report_entry_progress(position + 1, len(index))

    def _run_parallel(
        self,
        parser: VobSubParser,
        index: StreamIndex,
        driver: RecognitionDriver,
        results: dict[int, EntryResult],
        result: PipelineResult,
        workers: int,
    ):
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="vobsub-ocr")
        pending: dict[Future, int] = {}
        next_position = 0
        completed = 0
        max_in_flight = 2 * workers

        try:
            while True:
                while (
                    not self.cancelled
                    and next_position < len(index)
                    and len(pending) < max_in_flight
                ):
                    future = executor.submit(
                        self._process_entry, parser, index, driver, next_position
                    )
                    pending[future] = next_position
                    next_position += 1

                if not pending:
                    break

                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    position = pending.pop(future)
                    try:
                        entry = future.result()
                    except DecodeError as e:
                        self._record_failure(index, position, e, result)
                    else:
                        self._record_entry(position, entry, results, result)
                    completed += 1
                    self._report_entry_progress(completed, len(index))
        except KeyboardInterrupt:
            # Set the flag before shutdown waits on running workers
            self.cancel()
            raise
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    def _process_entry(
        self,
        parser: VobSubParser,
        index: StreamIndex,
        driver: RecognitionDriver,
        position: int,
    ) -> Optional[EntryResult]:
        """
        Run one entry through decode, composite, segment and recognise.

        Returns None when the entry is filtered out or the run was cancelled.
        Raises DecodeError if the packet is unusable.
        """
        if self.cancelled:
            return None

        bitmap = parser.decode_entry(position)

        if self.settings.forced_only and not bitmap.forced:
            with self._stats_lock:
                self._skipped_unforced += 1
            return None

        image = self.compositor.composite(bitmap, index.palette)
        crops = self.preprocessor.segment(image)

        if self._debug_dir is not None:
            self._save_debug_crops(crops)

        lines = []
        for crop in crops:
            if self.cancelled:
                return None
            lines.append(driver.recognize(crop))

        return EntryResult(
            position=position,
            start_ms=bitmap.start_ms,
            end_ms=bitmap.end_ms,
            next_start_ms=index.next_timestamp_ms(position),
            lines=lines,
            forced=bitmap.forced,
        )

    def _record_entry(
        self,
        position: int,
        entry: Optional[EntryResult],
        results: dict[int, EntryResult],
        result: PipelineResult,
    ):
        if entry is None:
            return
        results[position] = entry
        result.decoded_count += 1

    def _record_failure(
        self, index: StreamIndex, position: int, error: DecodeError, result: PipelineResult
    ):
        entry = index.entries[position]
        logger.warning(
            f"Skipping entry {position} (filepos 0x{entry.file_position:X}, "
            f"{entry.timestamp_ms}ms): {type(error).__name__}: {error}"
        )
        result.failed_entries.append(position)

    def _prepare_debug_dir(self, idx_path: Path) -> Optional[Path]:
        if not self.settings.save_debug_images:
            return None
        if self.settings.debug_dir:
            debug_dir = Path(self.settings.debug_dir)
        else:
            debug_dir = idx_path.parent / f"{idx_path.stem}_ocr_debug"
        debug_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Saving line images to {debug_dir}")
        return debug_dir

    def _save_debug_crops(self, crops: list[LineCrop]):
        for crop in crops:
            name = f"{crop.entry_index:06d}-{crop.line_index:02d}.png"
            try:
                Image.fromarray(crop.image).save(self._debug_dir / name)
            except OSError as e:
                logger.warning(f"Could not save line image {name}: {e}")

    def _report_entry_progress(self, done: int, total: int):
        # Only log at 10% intervals to reduce log spam
        if total == 0:
            return
        step = max(1, total // 10)
        if done % step == 0 or done == total:
            percent = int(done / total * 100)
            self._log_progress(
                f"Processing subtitles ({percent}%)", 0.05 + 0.90 * done / total
            )

    def _log_progress(self, message: str, progress: float):
        """Log progress and forward to the callback if one is set."""
        logger.debug(message)
        if self.progress_callback:
            self.progress_callback(message, progress)


def run_ocr(
    idx_path: Path | str,
    output_path: Path | str | None = None,
    settings: OCRSettings | dict[str, Any] | None = None,
    sub_path: Path | str | None = None,
    engine: RecognitionEngine | None = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> PipelineResult:
    """
    Convenience function to run OCR on a VobSub pair.

    Args:
        idx_path: Path to the .idx file
        output_path: SRT output path; standard output if None
        settings: OCRSettings, or a flat `ocr_*` settings dict
        sub_path: Path to the .sub file (defaults to idx_path with .sub)
        engine: Recognition engine (Tesseract if None)
        progress_callback: Optional progress callback

    Returns:
        PipelineResult
    """
    if isinstance(settings, dict):
        settings = OCRSettings.from_dict(settings)

    pipeline = OCRPipeline(settings, engine=engine, progress_callback=progress_callback)
    return pipeline.process(idx_path, output_path, sub_path=sub_path)
