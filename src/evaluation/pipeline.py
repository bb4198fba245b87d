"""
Batch passive-liveness evaluation over local image files or base64 strings.

Job state machine: ``IDLE → RUNNING → DONE | FAILED``.

- ``FAILED`` is reached only by job-level errors (no usable input).  A failing
  item never fails the job: its error is recorded on the item and the job
  still reaches ``DONE``.
- Items are attempted in input order, one at a time unless the pipeline is
  built with ``max_concurrency > 1``.  Each item is attempted exactly once.
- The final item list is sorted by title (Unicode collation, ascending), so result
  order is not processing order.
- A ``run`` started while another is in progress preempts it: the older
  job's previews are released and its loop stops before its next item.
  ``clear`` preempts the same way and resets the state to ``IDLE``.

Per-item steps (each reported to observers as an :class:`ItemPhase`):
  VALIDATING - decode the image, create the preview
  CONVERTING - base64 payload
  CALLING    - evaluation API call (skipped when no credential), then any
               SDK endpoint comparisons
  DONE
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Iterable

import structlog
from pyuca import Collator

from src.identity_client.errors import ApiError, NoValidFilesError
from src.identity_client.liveness import LivenessClient, SdkEndpointClient
from src.identity_client.registry import Endpoint
from src.identity_client.session import IdentityClientState

from .config import (
    BASE64_SOURCE_TEMPLATE,
    BASE64_TITLE_TEMPLATE,
    DIAGNOSTIC_BASE64_PROCESSING_ERROR,
    DIAGNOSTIC_ERROR_PREFIX,
    DIAGNOSTIC_MISSING_CREDENTIAL,
    DIAGNOSTIC_NO_RESULT_LOG,
    DIAGNOSTIC_PROCESSING_ERROR,
    MAX_CONCURRENCY,
    NOT_AVAILABLE,
)
from .images import (
    ImageDecodeError,
    PreviewStore,
    clean_base64,
    decode_base64,
    encode_file_base64,
    format_file_size,
    format_resolution,
    image_info_from_bytes,
    is_supported_image,
    read_image_info,
    title_from_name,
)
from .models import (
    BatchJobState,
    EvaluationItem,
    ImageInfo,
    ItemOutcome,
    ItemPhase,
    JobStatus,
    PreviewRef,
)

logger = structlog.get_logger(__name__)

# Errors that degrade a single item instead of stopping the job
_ITEM_ERRORS = (ImageDecodeError, OSError, ValueError)


# ---------------------------------------------------------------------------
# Observers
# ---------------------------------------------------------------------------

class PipelineObserver:
    """
    Receives job progress.  Override only the hooks you need.

    With ``max_concurrency > 1`` the per-item hooks are called from worker
    threads.
    """

    def on_start(self, total: int) -> None:
        pass

    def on_phase(self, index: int, source_ref: str, phase: ItemPhase) -> None:
        pass

    def on_item(self, index: int, item: EvaluationItem) -> None:
        pass

    def on_complete(self, count: int, elapsed_seconds: float) -> None:
        pass

    def on_failed(self, error: Exception) -> None:
        pass


# ---------------------------------------------------------------------------
# Input sources
# ---------------------------------------------------------------------------

class _FileSource:
    """One local image file."""

    degraded_diagnostic = DIAGNOSTIC_PROCESSING_ERROR

    def __init__(self, path: Path) -> None:
        self.path = path
        self.source_ref = path.name
        self.title = title_from_name(path.name)

    def read_info(self) -> ImageInfo:
        return read_image_info(self.path)

    def create_preview(self, previews: PreviewStore) -> PreviewRef:
        return previews.create_from_file(self.path)

    def to_base64(self) -> str:
        return encode_file_base64(self.path)


class _Base64Source:
    """One raw base64 string (``data:`` prefix allowed); ``n`` is 1-based."""

    degraded_diagnostic = DIAGNOSTIC_BASE64_PROCESSING_ERROR

    def __init__(self, value: str, n: int) -> None:
        self.value = value
        self.source_ref = BASE64_SOURCE_TEMPLATE.format(n=n)
        self.title = BASE64_TITLE_TEMPLATE.format(n=n)
        self._data: bytes | None = None

    def read_info(self) -> ImageInfo:
        self._data = decode_base64(self.value)
        return image_info_from_bytes(self._data, self.source_ref)

    def create_preview(self, previews: PreviewStore) -> PreviewRef:
        if self._data is None:
            self._data = decode_base64(self.value)
        return previews.create_from_bytes(self._data, ".jpg")

    def to_base64(self) -> str:
        return clean_base64(self.value)


@dataclass
class _Job:
    generation: int
    state: BatchJobState
    allocated: list[PreviewRef] = field(default_factory=list)


@lru_cache(maxsize=1)
def _collator() -> Collator:
    # Loads the DUCET table once per process
    return Collator()


def sort_by_title(items: Iterable[EvaluationItem]) -> list[EvaluationItem]:
    """
    Sort items by title, ascending, with Unicode collation.

    Accented letters sort next to their base letter and case only breaks
    ties, so ``["f", "é", "b", "Z", "a"]`` orders as ``a b é f Z``.
    """
    collator = _collator()
    return sorted(items, key=lambda item: (collator.sort_key(item.title), item.title))


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class BatchEvaluationPipeline:
    """
    Runs evaluation jobs and owns the current :class:`BatchJobState`.

    Args:
        state: Hydrated client state providing the credential and endpoints.
        client: Evaluation API client.
        sdk_client: Client for SDK endpoint comparisons.
        previews: Allocator for preview references.
        observers: Progress listeners.
        max_concurrency: How many items may be evaluated at once.  ``1``
            (the default) evaluates strictly sequentially.
    """

    def __init__(
        self,
        state: IdentityClientState,
        client: LivenessClient | None = None,
        sdk_client: SdkEndpointClient | None = None,
        previews: PreviewStore | None = None,
        observers: Iterable[PipelineObserver] = (),
        max_concurrency: int = MAX_CONCURRENCY,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.client_state = state
        self.client = client or LivenessClient()
        self.sdk_client = sdk_client or SdkEndpointClient()
        self.previews = previews or PreviewStore()
        self.observers = list(observers)
        self.max_concurrency = max_concurrency
        self._lock = threading.RLock()
        self._job = _Job(generation=0, state=BatchJobState())

    @property
    def state(self) -> BatchJobState:
        return self._job.state

    def add_observer(self, observer: PipelineObserver) -> None:
        self.observers.append(observer)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def run(
        self,
        files: Iterable[str | Path],
        sdk_endpoint_ids: Iterable[str] = (),
    ) -> BatchJobState:
        """
        Evaluate every supported image in ``files``.

        Args:
            files: Paths in the order they should be attempted.  Files whose
                extension is not a supported image type are skipped.
            sdk_endpoint_ids: Registry endpoints to compare against.  Only
                those currently marked active are called.

        Returns:
            The finished job state (``DONE``).

        Raises:
            NoValidFilesError: No file has a supported extension.  The job is
                left in ``FAILED`` and no request is sent.
        """
        paths = [Path(f) for f in files]
        sources = [_FileSource(p) for p in paths if is_supported_image(p)]
        skipped = len(paths) - len(sources)
        if skipped:
            logger.info("unsupported_files_skipped", count=skipped)
        return self._run_job(sources, len(paths), sdk_endpoint_ids)

    def run_base64(
        self,
        values: Iterable[str],
        sdk_endpoint_ids: Iterable[str] = (),
    ) -> BatchJobState:
        """
        Evaluate raw base64 images; titles are ``Base64_1``, ``Base64_2``, ...

        Raises:
            NoValidFilesError: ``values`` has no non-blank entry.
        """
        values = [v for v in values if v and v.strip()]
        sources = [_Base64Source(v, n) for n, v in enumerate(values, start=1)]
        return self._run_job(sources, len(values), sdk_endpoint_ids)

    def clear(self) -> int:
        """
        Release every preview of the current job and reset to ``IDLE``.

        A job still in progress is preempted.  A preview store using its own
        temporary directory also removes it.

        Returns:
            Number of preview references released.
        """
        with self._lock:
            old = self._job
            self._job = _Job(generation=old.generation + 1, state=BatchJobState())
        released = self._release_job(old)
        self.previews.cleanup()
        logger.info("results_cleared", released_previews=released)
        return released

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    def _run_job(self, sources: list, received: int, sdk_endpoint_ids) -> BatchJobState:
        status = JobStatus.RUNNING if sources else JobStatus.FAILED
        with self._lock:
            old = self._job
            job = _Job(
                generation=old.generation + 1,
                state=BatchJobState(status=status, total=len(sources)),
            )
            self._job = job
        if old.state.status is JobStatus.RUNNING:
            logger.info("job_preempted", generation=old.generation)
        self._release_job(old)

        if not sources:
            error = NoValidFilesError(received)
            job.state.error_message = error.message
            logger.warning("batch_failed", **error.to_dict())
            self._notify("on_failed", error)
            raise error

        sdk_targets = self._resolve_sdk_targets(sdk_endpoint_ids)
        logger.info(
            "batch_started",
            total=len(sources),
            sdk_endpoints=[e.tag for e in sdk_targets],
            max_concurrency=self.max_concurrency,
        )
        self._notify("on_start", len(sources))
        start = time.monotonic()

        def process(indexed):
            index, source = indexed
            if self._superseded(job):
                return None
            item = self._process_item(job, index, source, sdk_targets)
            with self._lock:
                job.state.processed += 1
            self._notify("on_item", index, item)
            return item

        indexed_sources = list(enumerate(sources))
        if self.max_concurrency == 1:
            results = []
            for indexed in indexed_sources:
                item = process(indexed)
                if item is None:
                    break
                results.append(item)
        else:
            with ThreadPoolExecutor(max_workers=self.max_concurrency) as pool:
                results = [r for r in pool.map(process, indexed_sources) if r is not None]

        elapsed = round(time.monotonic() - start, 3)

        if self._superseded(job):
            # A newer run or clear() took over; drop anything allocated late
            self._release_job(job)
            job.state.status = JobStatus.FAILED
            job.state.error_message = "Superseded by a newer run"
            job.state.elapsed_seconds = elapsed
            return job.state

        job.state.items = sort_by_title(results)
        job.state.elapsed_seconds = elapsed
        job.state.status = JobStatus.DONE

        failed = sum(1 for item in results if item.failed)
        logger.info(
            "batch_completed",
            count=len(results),
            failed=failed,
            elapsed_seconds=elapsed,
        )
        self._notify("on_complete", len(results), elapsed)
        return job.state

    def _process_item(
        self,
        job: _Job,
        index: int,
        source,
        sdk_targets: list[Endpoint],
    ) -> EvaluationItem:
        self._notify("on_phase", index, source.source_ref, ItemPhase.VALIDATING)
        preview = None
        try:
            info = source.read_info()
            preview = source.create_preview(self.previews)
        except _ITEM_ERRORS as exc:
            return self._degraded(index, source, exc)
        self._track_preview(job, preview)

        self._notify("on_phase", index, source.source_ref, ItemPhase.CONVERTING)
        try:
            payload = source.to_base64()
        except _ITEM_ERRORS as exc:
            self.previews.release(preview)
            return self._degraded(index, source, exc)

        self._notify("on_phase", index, source.source_ref, ItemPhase.CALLING)
        outcome, diagnostic, raw_response, error_message = self._evaluate(payload)

        sdk_diagnostics: dict[str, str] = {}
        sdk_raw_responses: dict[str, dict] = {}
        for endpoint in sdk_targets:
            evaluation = self.sdk_client.evaluate(payload, endpoint)
            sdk_diagnostics[endpoint.tag] = evaluation.diagnostic
            if evaluation.raw_response is not None:
                sdk_raw_responses[endpoint.tag] = evaluation.raw_response

        item = EvaluationItem(
            title=source.title,
            source_ref=source.source_ref,
            outcome=outcome,
            diagnostic=diagnostic,
            resolution=format_resolution(info),
            size_formatted=format_file_size(info.size_bytes),
            preview_ref=preview,
            image_info=info,
            raw_response=raw_response,
            error_message=error_message,
            sdk_diagnostics=sdk_diagnostics,
            sdk_raw_responses=sdk_raw_responses,
        )
        self._notify("on_phase", index, source.source_ref, ItemPhase.DONE)

        log = logger.warning if item.failed else logger.info
        log("item_evaluated", title=item.title, outcome=item.outcome.value)
        return item

    def _evaluate(self, payload: str) -> tuple[ItemOutcome, str, dict | None, str | None]:
        credential = self.client_state.credential.get()
        if not credential:
            return ItemOutcome.CREDENTIAL_MISSING, DIAGNOSTIC_MISSING_CREDENTIAL, None, None

        try:
            response = self.client.evaluate(payload, credential)
        except ApiError as exc:
            return (
                ItemOutcome.API_ERROR,
                f"{DIAGNOSTIC_ERROR_PREFIX}{exc.message}",
                None,
                exc.message,
            )

        diagnostic = response.get("serviceResultLog") or DIAGNOSTIC_NO_RESULT_LOG
        return ItemOutcome.EVALUATED, str(diagnostic), response, None

    def _degraded(self, index: int, source, exc: Exception) -> EvaluationItem:
        logger.warning("item_processing_failed", source=source.source_ref, error=str(exc))
        item = EvaluationItem(
            title=source.title,
            source_ref=source.source_ref,
            outcome=ItemOutcome.PROCESSING_ERROR,
            diagnostic=source.degraded_diagnostic,
            resolution=NOT_AVAILABLE,
            size_formatted=NOT_AVAILABLE,
            error_message=str(exc),
        )
        self._notify("on_phase", index, source.source_ref, ItemPhase.DONE)
        return item

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_sdk_targets(self, endpoint_ids: Iterable[str]) -> list[Endpoint]:
        wanted = set(endpoint_ids)
        if not wanted:
            return []
        return [
            endpoint
            for endpoint in self.client_state.registry.list()
            if endpoint.id in wanted and endpoint.is_active
        ]

    def _superseded(self, job: _Job) -> bool:
        with self._lock:
            return self._job.generation != job.generation

    def _track_preview(self, job: _Job, preview: PreviewRef) -> None:
        with self._lock:
            job.allocated.append(preview)
            superseded = self._job.generation != job.generation
        if superseded:
            self.previews.release(preview)

    def _release_job(self, job: _Job) -> int:
        with self._lock:
            refs = list(job.allocated)
            refs += [item.preview_ref for item in job.state.items if item.preview_ref]
        return sum(1 for ref in refs if self.previews.release(ref))

    def _notify(self, hook: str, *args) -> None:
        for observer in self.observers:
            getattr(observer, hook)(*args)
