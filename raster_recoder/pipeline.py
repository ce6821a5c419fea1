"""Core processing helpers shared between the CLI and integrations."""
from __future__ import annotations

import dataclasses
import glob
import logging
import os
from concurrent.futures import ProcessPoolExecutor, as_completed
from concurrent.futures.process import BrokenProcessPool
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .config import Codec, EncoderConfig
from .decoders import decode_bytes, decode_file
from .encoders import encode
from .errors import RecoderError
from .formats import ImageFormat, is_supported_input
from .image import Image
from .io_utils import write_bytes_atomic
from .preprocessing import (
    OperationRequest,
    PipelineSettings,
    build_pipeline,
    execute,
    pipeline_from_config,
)

try:  # Optional progress bar for batch runs
    from tqdm import tqdm as _tqdm  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    _tqdm = None

LOGGER = logging.getLogger("raster_recoder")
WORKER_LOGGER = LOGGER.getChild("worker")

DEFAULT_STEM = "optimized_image"
_GLOB_CHARACTERS = set("*?[")


def _tqdm_progress(
    iterable: Iterable[object], *, total: Optional[int], description: Optional[str]
) -> Iterable[object]:
    """Wrap *iterable* with :mod:`tqdm` if available."""

    if _tqdm is None:  # pragma: no cover - tqdm unavailable
        return iterable
    return _tqdm(iterable, total=total, desc=description, unit="file")


_PROGRESS_WRAPPER = _tqdm_progress if _tqdm is not None else None


def _wrap_with_progress(
    iterable: Iterable,
    *,
    total: Optional[int],
    description: str,
    enabled: bool,
) -> Iterable:
    """Return an iterable wrapped with a progress helper when available."""

    if not enabled:
        return iterable

    helper = _PROGRESS_WRAPPER
    if helper is None:
        LOGGER.debug("Progress helper not available; install tqdm for progress reporting.")
        return iterable

    try:
        return helper(iterable, total=total, description=description)
    except Exception:  # pragma: no cover - progress helper failure
        LOGGER.exception("Progress helper failed; continuing without progress display.")
        return iterable


# -- input discovery & output naming ----------------------------------------


def collect_files(inputs: Iterable[Union[str, Path]], recursive: bool) -> List[Path]:
    """Expand globs and directories into the list of files to process.

    Directories contribute the decodable files they contain (their whole
    tree when *recursive*). Explicit file arguments are kept regardless of
    extension so an unsupported one is reported rather than silently dropped.
    Anything else is skipped with a warning.
    """

    collected: List[Path] = []
    seen = set()

    def _add(path: Path) -> None:
        key = path.resolve()
        if key not in seen:
            seen.add(key)
            collected.append(path)

    for raw in inputs:
        text = str(raw)
        candidates = (
            [Path(match) for match in sorted(glob.glob(text, recursive=recursive))]
            if _GLOB_CHARACTERS & set(text)
            else [Path(text)]
        )
        if not candidates:
            LOGGER.warning("Pattern %s matched no files", text)
        for candidate in candidates:
            if candidate.is_dir():
                walker = candidate.rglob("*") if recursive else candidate.glob("*")
                for path in sorted(walker):
                    if path.is_file() and is_supported_input(path):
                        _add(path)
            elif candidate.is_file():
                _add(candidate)
            else:
                LOGGER.warning("%s is not a file, skipping", candidate)
    return collected


def common_root(paths: Sequence[Path]) -> Path:
    """Deepest directory containing every path's parent."""

    if not paths:
        return Path(".")
    parents = [str(path.resolve().parent) for path in paths]
    return Path(os.path.commonpath(parents))


def output_path(
    source: Path,
    codec: Codec,
    *,
    out_dir: Optional[Path] = None,
    root: Optional[Path] = None,
    recursive: bool = False,
    suffix: Optional[str] = None,
) -> Path:
    """Compute where the recoded *source* is written.

    ``out_dir`` defaults to the source's own directory. With *recursive*
    the source's directory relative to *root* is mirrored below
    ``out_dir``. The name is the source stem, the optional suffix and the
    codec's canonical extension.
    """

    if out_dir is None:
        directory = source.parent
    elif recursive and root is not None:
        directory = Path(out_dir) / source.resolve().parent.relative_to(root)
    else:
        directory = Path(out_dir)
    stem = source.stem or DEFAULT_STEM
    return directory / f"{stem}{suffix or ''}.{codec.extension}"


# -- single-image processing -------------------------------------------------


@dataclasses.dataclass(frozen=True)
class ProcessingJob:
    """Everything a worker needs to recode one file. Must stay picklable."""

    source: Path
    destination: Path
    config: EncoderConfig
    requests: Tuple[OperationRequest, ...] = ()
    settings: PipelineSettings = PipelineSettings()
    backup: bool = False
    dry_run: bool = False


@dataclasses.dataclass
class BatchSummary:
    processed: int = 0
    skipped: int = 0
    failed: Dict[Path, str] = dataclasses.field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def recode_image(
    image: Image,
    config: EncoderConfig,
    requests: Sequence[OperationRequest] = (),
    settings: Optional[PipelineSettings] = None,
) -> bytes:
    """Run the preprocessing pipeline on *image* in place, then encode it.

    Explicit *requests* (from the command line) take precedence over the
    resize / quantization carried by *config*.
    """

    if requests:
        pipeline = build_pipeline(requests, image.width, image.height, settings)
    else:
        pipeline = pipeline_from_config(config, image.width, image.height)
    execute(pipeline, image)
    return encode(image, config)


def optimize_bytes(
    data: bytes,
    config: EncoderConfig,
    requests: Sequence[OperationRequest] = (),
    settings: Optional[PipelineSettings] = None,
    *,
    input_format: Optional[Union[str, ImageFormat]] = None,
) -> bytes:
    """Decode, preprocess and re-encode an in-memory image."""

    image = decode_bytes(data, input_format)
    return recode_image(image, config, requests, settings)


def _process_image_worker(job: ProcessingJob) -> bool:
    """Core implementation for processing a single image.

    Returns ``True`` when an output file was written. This helper is isolated so it
    can be safely used with :class:`concurrent.futures.ProcessPoolExecutor`.
    """

    source, destination = job.source, job.destination
    WORKER_LOGGER.info("Processing %s -> %s", source, destination)
    if destination.exists() and not job.dry_run and not destination.is_file():
        if destination.is_dir():
            path_type = "directory"
        elif destination.is_symlink():
            path_type = "symlink"
        else:
            path_type = "non-file"
        raise ValueError(f"Destination path exists but is a {path_type}: {destination}")

    image = decode_file(source)
    data = recode_image(image, job.config, job.requests, job.settings)
    if job.dry_run:
        WORKER_LOGGER.info("Dry run enabled, skipping save for %s (%s bytes)", destination, len(data))
        return False
    write_bytes_atomic(destination, data, backup_of=source if job.backup else None)
    WORKER_LOGGER.debug("Wrote %s bytes to %s", len(data), destination)
    return True


def process_single_image(
    source: Path,
    destination: Path,
    config: EncoderConfig,
    *,
    requests: Sequence[OperationRequest] = (),
    settings: Optional[PipelineSettings] = None,
    backup: bool = False,
    dry_run: bool = False,
) -> bool:
    """Public wrapper around :func:`_process_image_worker`; errors propagate."""

    job = ProcessingJob(
        Path(source),
        Path(destination),
        config,
        tuple(requests),
        settings or PipelineSettings(),
        backup=backup,
        dry_run=dry_run,
    )
    return _process_image_worker(job)


# -- batches -----------------------------------------------------------------


def _record_failure(summary: BatchSummary, job: ProcessingJob, exc: Exception) -> None:
    LOGGER.error("Failed to process %s: %s", job.source, exc)
    summary.failed[job.source] = str(exc)


def process_batch(jobs: Sequence[ProcessingJob], *, workers: int = 1, progress: bool = True) -> BatchSummary:
    """Process *jobs*, isolating failures per file.

    Decode, operation, encode and filesystem errors are logged against the
    file and counted; the remaining files still run. A ``KeyboardInterrupt``
    cancels files that have not started yet and is re-raised once running
    files finish.
    """

    summary = BatchSummary()
    if not jobs:
        return summary

    if workers <= 1:
        for job in _wrap_with_progress(jobs, total=len(jobs), description="Processing images", enabled=progress):
            try:
                wrote_output = _process_image_worker(job)
            except (RecoderError, OSError, ValueError) as exc:
                _record_failure(summary, job, exc)
                continue
            if wrote_output:
                summary.processed += 1
        return summary

    progress_range = _wrap_with_progress(
        range(len(jobs)),
        total=len(jobs),
        description="Processing images",
        enabled=progress,
    )
    progress_iterator = iter(progress_range)

    def advance_progress() -> None:
        try:
            next(progress_iterator)
        except StopIteration:
            pass

    executor = ProcessPoolExecutor(max_workers=workers)
    try:
        futures = {executor.submit(_process_image_worker, job): job for job in jobs}
        for future in as_completed(futures):
            job = futures[future]
            try:
                wrote_output = future.result()
            except (RecoderError, OSError, ValueError, BrokenProcessPool) as exc:
                _record_failure(summary, job, exc)
            else:
                if wrote_output:
                    summary.processed += 1
            advance_progress()
    except KeyboardInterrupt:
        LOGGER.warning("Interrupted; cancelling files that have not started")
        executor.shutdown(wait=True, cancel_futures=True)
        raise
    finally:
        executor.shutdown(wait=True)
    return summary


__all__ = [
    "BatchSummary",
    "DEFAULT_STEM",
    "ProcessingJob",
    "_PROGRESS_WRAPPER",
    "_wrap_with_progress",
    "collect_files",
    "common_root",
    "optimize_bytes",
    "output_path",
    "process_batch",
    "process_single_image",
    "recode_image",
]
