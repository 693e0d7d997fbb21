"""Per-asset orchestration of the curation stages."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .annotation import Annotator, MockAnnotator
from .config import CuratorConfig, TokenizerConfig
from .dedup import Deduplicator
from .embedder import FeatureExtractor, FrameStatisticsExtractor
from .embedder.frame_loader import decode_video
from .errors import (
    AnnotationError,
    CancelledError,
    CurationError,
    DuplicateDetectedError,
    ErrorKind,
    InvalidAssetError,
    QualityGateError,
    StageTimeoutError,
    classify,
)
from .jobs import CancellationToken, InlineJobQueue, JobOptions, JobQueue
from .memory import MemoryLedger
from .observability import AuditLog, LoggingAuditLog, LoggingMetricsSink, MetricsSink
from .quality import QualityAssessor
from .retry import compute_delay
from .storage import ObjectStore, StoreOptions
from .tokenizer import TokenizationCodec, create_codec
from .types import (
    AssetStatus,
    ProcessingJob,
    Stage,
    TokenizerMetrics,
    TokenizerVariant,
    VideoAsset,
    VideoResolution,
)

logger = logging.getLogger(__name__)

STAGE_ORDER = (Stage.ENCODE, Stage.QUALITY_GATE, Stage.DEDUPLICATE, Stage.ANNOTATE)

_TRANSITIONS = {
    AssetStatus.PENDING: {AssetStatus.PROCESSING, AssetStatus.CANCELLED},
    AssetStatus.PROCESSING: {AssetStatus.COMPLETED, AssetStatus.FAILED, AssetStatus.CANCELLED},
    AssetStatus.FAILED: {AssetStatus.PROCESSING, AssetStatus.CANCELLED},
    AssetStatus.COMPLETED: set(),
    AssetStatus.CANCELLED: set(),
}


def default_tokenizer_config(device_memory_budget_gb: float = 80.0) -> TokenizerConfig:
    """Continuous tokenizer at ratio 512 accepting frames up to 8K UHD."""
    return TokenizerConfig(
        variant=TokenizerVariant.CONTINUOUS,
        compression_ratio=512,
        resolution=VideoResolution(7680, 4320),
        device_memory_budget_gb=device_memory_budget_gb,
    )


@dataclass(frozen=True)
class BatchOptions:
    """Per-call options for ``process_batch``."""
    max_concurrent: Optional[int] = None  # defaults to config.max_concurrent
    cancellation: Optional[CancellationToken] = None
    show_progress: bool = False


class _SubmissionOrder:
    """Lets the duplicate check of item i run only after items 0..i-1 passed it or finished."""

    def __init__(self, size: int):
        self._passed = [threading.Event() for _ in range(size)]

    def wait_turn(self, index: int) -> None:
        for event in self._passed[:index]:
            event.wait()

    def release(self, index: int) -> None:
        self._passed[index].set()


class CurationOrchestrator:
    """
    Drive assets through encode, quality gate, deduplication and annotation.

    Business failures (quality gate, duplicate, invalid asset) end an asset
    as ``FAILED`` immediately. Infrastructure failures are retried through
    the job queue according to the retry policy registered for their error
    kind; a retry resumes at the stage that failed. The orchestrator is the
    only component that changes ``VideoAsset.status``.
    """

    def __init__(
        self,
        config: Optional[CuratorConfig] = None,
        tokenizer_config: Optional[TokenizerConfig] = None,
        ledger: Optional[MemoryLedger] = None,
        extractor: Optional[FeatureExtractor] = None,
        codec: Optional[TokenizationCodec] = None,
        assessor: Optional[QualityAssessor] = None,
        deduplicator: Optional[Deduplicator] = None,
        annotator: Optional[Annotator] = None,
        object_store: Optional[ObjectStore] = None,
        job_queue: Optional[JobQueue] = None,
        metrics_sink: Optional[MetricsSink] = None,
        audit_log: Optional[AuditLog] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the orchestrator.

        Components not passed in are built from the configuration and share
        one memory ledger and one feature extractor.

        Args:
            config: Curation configuration. Uses defaults if None.
            tokenizer_config: Configuration for the default codec.
            ledger: Shared device-memory ledger.
            extractor: Feature extractor shared by quality and dedup.
            codec: Tokenization codec. Overrides ``tokenizer_config``.
            assessor: Quality assessor.
            deduplicator: Near-duplicate detector.
            annotator: Annotation backend; only used when ``config.annotate``.
            object_store: Store for source videos and persisted tokens.
            job_queue: Queue that schedules retries.
            metrics_sink: Receiver of pipeline metrics.
            audit_log: Receiver of lifecycle events.
            clock: Monotonic time source for stage budgets.
            sleep: Sleep used by the default job queue and dedup retries.
        """
        self.config = config or CuratorConfig()
        self.ledger = ledger or MemoryLedger.from_gb(self.config.device_memory_budget_gb)
        self.extractor = extractor or FrameStatisticsExtractor()

        self.codec = codec or create_codec(
            tokenizer_config or default_tokenizer_config(self.config.device_memory_budget_gb),
            ledger=self.ledger,
        )
        self.codecs: dict[str, TokenizationCodec] = {self.codec.codec_id: self.codec}

        self.assessor = assessor or QualityAssessor(
            self.config.quality_config(), extractor=self.extractor, ledger=self.ledger
        )
        self.deduplicator = deduplicator or Deduplicator(
            self.config.deduplication_config(),
            extractor=self.extractor,
            ledger=self.ledger,
            sleep=sleep,
        )
        self.annotator = annotator or MockAnnotator()

        self.object_store = object_store
        self.job_queue = job_queue or InlineJobQueue(sleep=sleep)
        self.metrics_sink = metrics_sink or LoggingMetricsSink()
        self.audit_log = audit_log or LoggingAuditLog()
        self._clock = clock

        self._jobs: dict[str, ProcessingJob] = {}
        self._jobs_lock = threading.Lock()
        self._stage_handlers = {
            Stage.ENCODE: self._encode,
            Stage.QUALITY_GATE: self._quality_gate,
            Stage.DEDUPLICATE: self._deduplicate,
            Stage.ANNOTATE: self._annotate,
        }

    def __enter__(self) -> "CurationOrchestrator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Close every registered codec, releasing their ledger reservations."""
        for codec in self.codecs.values():
            codec.close()

    def register_codec(self, codec: TokenizationCodec) -> None:
        """Track another codec so its metrics are available from ``get_metrics``."""
        self.codecs[codec.codec_id] = codec

    def get_metrics(self, codec_id: Optional[str] = None) -> TokenizerMetrics:
        """
        Running metrics of a codec.

        Args:
            codec_id: Codec identifier such as ``"continuous-512"``. The
                active codec if None.

        Raises:
            KeyError: If no codec with that id is registered.
        """
        if codec_id is None:
            return self.codec.metrics
        try:
            return self.codecs[codec_id].metrics
        except KeyError:
            raise KeyError(f"Unknown codec: {codec_id}; known: {sorted(self.codecs)}") from None

    @property
    def active_jobs(self) -> int:
        with self._jobs_lock:
            return len(self._jobs)

    # Observability

    def _emit(self, method: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        try:
            method(*args, **kwargs)
        except Exception as e:
            logger.warning(f"Observability call {getattr(method, '__name__', method)} failed: {e}")

    def _audit(self, event: str, asset: VideoAsset, **details: Any) -> None:
        self._emit(self.audit_log.record, event, asset.id, **details)

    # Status

    def _transition(self, asset: VideoAsset, status: AssetStatus) -> None:
        if status not in _TRANSITIONS[asset.status]:
            raise RuntimeError(
                f"Illegal status transition for {asset.id}: {asset.status.value} -> {status.value}"
            )
        previous = asset.status
        asset.status = status
        self._audit("asset.status", asset, previous=previous.value, status=status.value)

    # Public API

    def process_asset(
        self,
        asset: VideoAsset,
        cancellation: Optional[CancellationToken] = None
    ) -> VideoAsset:
        """
        Run an asset through every stage, retrying infrastructure failures.

        Args:
            asset: Asset to process. ``frames`` are loaded from the object
                store when not already present.
            cancellation: Token checked between stages.

        Returns:
            The same asset, ``COMPLETED``, ``FAILED`` (with ``error_kind``
            and ``error_message``) or ``CANCELLED``.
        """
        return self._process(asset, cancellation)

    def process_batch(
        self,
        assets: list[VideoAsset],
        options: Optional[BatchOptions] = None
    ) -> list[VideoAsset]:
        """
        Process assets concurrently and return the completed ones.

        At most ``max_concurrent`` assets are in flight. Duplicate checks run
        in submission order, so of two identical assets the first submitted
        is retained. Failures are logged and excluded; a single asset's
        failure never raises.

        Returns:
            ``COMPLETED`` assets in submission order.
        """
        options = options or BatchOptions()
        if not assets:
            return []

        from tqdm import tqdm

        workers = min(options.max_concurrent or self.config.max_concurrent, len(assets))
        order = _SubmissionOrder(len(assets))
        logger.info(f"Processing batch of {len(assets)} assets with {workers} workers")

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(self._process, asset, options.cancellation, (order, i))
                for i, asset in enumerate(assets)
            ]
            progress = tqdm(total=len(futures), desc="Curating assets", disable=not options.show_progress)
            for future in futures:
                future.add_done_callback(lambda _: progress.update(1))
            completed = []
            for asset, future in zip(assets, futures):
                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"Unexpected error processing {asset.id}: {e}")
                    continue
                if result.status == AssetStatus.COMPLETED:
                    completed.append(result)
                else:
                    logger.info(
                        f"Excluding {asset.id}: {result.status.value} "
                        f"[{result.error_kind.value if result.error_kind else '-'}] {result.error_message or ''}"
                    )
            progress.close()

        logger.info(f"Batch complete: {len(completed)}/{len(assets)} assets curated")
        return completed

    # Job lifecycle

    def _process(
        self,
        asset: VideoAsset,
        cancellation: Optional[CancellationToken],
        sequencer: Optional[tuple[_SubmissionOrder, int]] = None
    ) -> VideoAsset:
        if asset.status in (AssetStatus.COMPLETED, AssetStatus.CANCELLED):
            logger.info(f"Asset {asset.id} is already {asset.status.value}, skipping")
            self._release_turn(sequencer)
            return asset

        with self._jobs_lock:
            if asset.id in self._jobs:
                self._release_turn(sequencer)
                raise InvalidAssetError(f"Asset {asset.id} is already being processed", asset_id=asset.id)
            job = ProcessingJob(asset=asset, sequencer=sequencer)
            self._jobs[asset.id] = job

        self._audit("asset.submitted", asset, source=asset.source)
        if cancellation is not None and cancellation.is_cancelled:
            self._finish(job, AssetStatus.CANCELLED, CancelledError("Processing cancelled", asset.id))
        else:
            self._guarded_attempt(job, cancellation)
        job.done.wait()
        return asset

    def _attempt(self, job: ProcessingJob, cancellation: Optional[CancellationToken]) -> None:
        asset = job.asset
        job.attempt += 1
        asset.attempts += 1
        self._transition(asset, AssetStatus.PROCESSING)
        logger.info(f"Processing {asset.id} (attempt {job.attempt})")

        try:
            self._run_stages(job, cancellation)
        except CancelledError as e:
            self._finish(job, AssetStatus.CANCELLED, e)
            return
        except Exception as e:
            self._handle_failure(job, e, cancellation)
            return

        self._finish(job, AssetStatus.COMPLETED)

    def _guarded_attempt(self, job: ProcessingJob, cancellation: Optional[CancellationToken]) -> None:
        try:
            self._attempt(job, cancellation)
        except Exception as e:
            logger.error(f"Attempt for {job.asset.id} aborted: {e}")
            if not job.done.is_set():
                job.asset.error_kind, _ = classify(e)
                job.asset.error_message = str(e)
                job.asset.status = AssetStatus.FAILED
                self._finish(job, AssetStatus.FAILED, e, transition=False)
            raise

    def _handle_failure(
        self,
        job: ProcessingJob,
        error: Exception,
        cancellation: Optional[CancellationToken]
    ) -> None:
        asset = job.asset
        kind, retryable = classify(error)
        job.error_kind = kind
        job.error = error
        asset.error_kind = kind
        asset.error_message = str(error)
        self._emit(self.metrics_sink.increment, "errors", tags={"kind": kind.value, "stage": self._stage_name(job)})

        policy = self.config.retry_policy_for(kind)
        may_retry = retryable or kind == ErrorKind.UNKNOWN
        cancelled = cancellation is not None and cancellation.is_cancelled

        if may_retry and policy is not None and policy.allows_retry(job.attempt) and not cancelled:
            delay = compute_delay(policy, job.attempt)
            job.retry_policy = policy
            job.scheduled_delay = delay
            job.retry_delays.append(delay)
            self._transition(asset, AssetStatus.FAILED)
            logger.warning(
                f"Asset {asset.id} failed at {self._stage_name(job)} [{kind.value}]: {error}; "
                f"retrying in {delay:.1f}s (attempt {job.attempt + 1}/{policy.max_attempts})"
            )
            self._emit(self.metrics_sink.increment, "assets.retries", tags={"kind": kind.value})
            self._audit("asset.retry_scheduled", asset, kind=kind.value, delay=delay, attempt=job.attempt + 1)
            try:
                self.job_queue.enqueue(
                    lambda: self._guarded_attempt(job, cancellation),
                    JobOptions(job_id=asset.id, delay=delay, attempt=job.attempt + 1),
                )
            except Exception as e:
                logger.error(f"Could not schedule retry for {asset.id}: {e}")
                asset.error_message = f"{error}; retry scheduling failed: {e}"
                self._finish(job, AssetStatus.FAILED, error, transition=False)
            return

        if cancelled:
            self._finish(job, AssetStatus.CANCELLED, error)
        else:
            self._finish(job, AssetStatus.FAILED, error)

    def _finish(
        self,
        job: ProcessingJob,
        status: AssetStatus,
        error: Optional[BaseException] = None,
        transition: bool = True
    ) -> None:
        asset = job.asset
        if transition and asset.status != status:
            self._transition(asset, status)

        if status == AssetStatus.COMPLETED:
            asset.error_kind = None
            asset.error_message = None
            logger.info(f"Asset {asset.id} completed after {job.attempt} attempt(s)")
        elif status == AssetStatus.CANCELLED:
            asset.error_kind = ErrorKind.CANCELLED
            asset.error_message = str(error) if error else "Processing cancelled"
            logger.info(f"Asset {asset.id} cancelled")
        else:
            logger.error(
                f"Asset {asset.id} failed after {job.attempt} attempt(s) "
                f"[{asset.error_kind.value if asset.error_kind else 'unknown'}]: {asset.error_message}"
            )

        self._emit(self.metrics_sink.increment, "assets.processed", tags={"status": status.value})
        self._audit(
            "asset.finished",
            asset,
            status=status.value,
            attempts=job.attempt,
            error_kind=asset.error_kind.value if asset.error_kind else None,
        )
        self._release_turn(job.sequencer)
        with self._jobs_lock:
            self._jobs.pop(asset.id, None)
        job.done.set()

    @staticmethod
    def _release_turn(sequencer: Optional[tuple[_SubmissionOrder, int]]) -> None:
        if sequencer is not None:
            order, index = sequencer
            order.release(index)

    @staticmethod
    def _stage_name(job: ProcessingJob) -> str:
        return job.stage.value if job.stage else "load"

    # Stages

    def _run_stages(self, job: ProcessingJob, cancellation: Optional[CancellationToken]) -> None:
        asset = job.asset
        started = self._clock()
        timeouts = self.config.timeouts
        job.turn_wait_s = 0.0

        if asset.frames is None:
            job.stage = None
            self._load_frames(asset)

        for stage in STAGE_ORDER:
            if stage in job.completed_stages:
                continue
            if stage == Stage.ANNOTATE and not self.config.annotate:
                continue
            if cancellation is not None:
                cancellation.raise_if_cancelled(asset.id)

            job.stage = stage
            stage_start = self._clock()
            waited = job.turn_wait_s
            self._stage_handlers[stage](job)
            # time queued behind earlier submissions is not charged to this asset
            elapsed = self._clock() - stage_start - (job.turn_wait_s - waited)
            self._emit(self.metrics_sink.observe, "stage.duration_s", elapsed, tags={"stage": stage.value})

            budget = self._stage_budget(stage, asset)
            if budget is not None and elapsed > budget:
                raise StageTimeoutError(
                    f"Stage {stage.value} took {elapsed:.2f}s, budget {budget:.2f}s",
                    stage=stage.value,
                    elapsed=elapsed,
                    budget=budget,
                    asset_id=asset.id,
                )
            job.completed_stages.append(stage)

            total = self._clock() - started - job.turn_wait_s
            if timeouts.end_to_end_s is not None and total > timeouts.end_to_end_s:
                raise StageTimeoutError(
                    f"Processing took {total:.2f}s, end-to-end budget {timeouts.end_to_end_s:.2f}s",
                    stage="end_to_end",
                    elapsed=total,
                    budget=timeouts.end_to_end_s,
                    asset_id=asset.id,
                )

    def _stage_budget(self, stage: Stage, asset: VideoAsset) -> Optional[float]:
        timeouts = self.config.timeouts
        if stage == Stage.ENCODE:
            if timeouts.encode_per_frame_s is None:
                return None
            return timeouts.encode_per_frame_s * max(len(asset.frames), 1)
        return {
            Stage.QUALITY_GATE: timeouts.quality_s,
            Stage.DEDUPLICATE: timeouts.deduplicate_s,
            Stage.ANNOTATE: timeouts.annotate_s,
        }[stage]

    def _load_frames(self, asset: VideoAsset) -> None:
        if self.object_store is None:
            raise InvalidAssetError(
                f"Asset {asset.id} has no frames and no object store is configured",
                asset_id=asset.id,
            )
        try:
            data = self.object_store.retrieve(asset.source)
        except (FileNotFoundError, ValueError) as e:
            raise InvalidAssetError(f"Source {asset.source} not found: {e}", asset_id=asset.id) from e
        try:
            frames = decode_video(data)
        except Exception as e:
            raise InvalidAssetError(f"Cannot decode {asset.source}: {e}", asset_id=asset.id) from e
        if len(frames) == 0:
            raise InvalidAssetError(f"Source {asset.source} contains no frames", asset_id=asset.id)
        asset.frames = frames
        asset.frame_count = len(frames)
        asset.resolution = VideoResolution(int(frames.shape[2]), int(frames.shape[1]))
        logger.debug(f"Loaded {len(frames)} frames for {asset.id} from {asset.source}")

    def _encode(self, job: ProcessingJob) -> None:
        asset = job.asset
        result = self.codec.encode(asset.frames)
        if not result.ok:
            raise result.error

        asset.reconstruction = result.reconstruction
        asset.metadata["tokenizer"] = {
            "codec_id": self.codec.codec_id,
            "psnr": result.metrics.psnr,
            "latency_ms": result.metrics.latency_ms,
            "token_bytes": result.tokens.nbytes,
        }
        if self.config.persist_tokens and self.object_store is not None:
            url = self.object_store.store(
                result.tokens.to_bytes(),
                f"tokens/{self.codec.codec_id}/{asset.id}.npz",
                StoreOptions(metadata={"checksum": asset.checksum}),
            )
            asset.metadata["tokens_url"] = url

    def _quality_gate(self, job: ProcessingJob) -> None:
        asset = job.asset
        metrics = self.assessor.assess_quality(asset)
        asset.quality = metrics
        failures = self.assessor.failed_thresholds(metrics)
        if failures:
            raise QualityGateError(
                f"Quality below thresholds: {'; '.join(failures)}", asset_id=asset.id
            )

    def _deduplicate(self, job: ProcessingJob) -> None:
        asset = job.asset
        if job.sequencer is not None:
            order, index = job.sequencer
            wait_start = self._clock()
            order.wait_turn(index)
            job.turn_wait_s += self._clock() - wait_start
        try:
            verdict = self.deduplicator.claim(asset)
        finally:
            self._release_turn(job.sequencer)
        if verdict.is_duplicate:
            raise DuplicateDetectedError(
                f"Duplicate of {verdict.matched_asset_id} "
                f"({verdict.reason}, similarity={verdict.similarity:.3f})",
                asset_id=asset.id,
            )

    def _annotate(self, job: ProcessingJob) -> None:
        asset = job.asset
        try:
            asset.annotations = self.annotator.annotate(asset)
        except CurationError:
            raise
        except Exception as e:
            raise AnnotationError(f"Annotation failed for {asset.id}: {e}", asset_id=asset.id) from e
