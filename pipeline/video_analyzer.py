"""
Video deepfake detection pipeline.

Modular architecture:
  1. FrameSource      - decoding session + size/duration caps (frame_source.py)
  2. FaceDetector     - face crop per frame via OpenCV DNN (face_gate.py)
  3. BlockBatcher     - non-overlapping 4-frame temporal blocks (block_batcher.py)
  4. InferenceEngine  - one batched classifier call per video (inference_engine.py)
  5. aggregate        - block scores -> verdict (aggregator.py)
  6. ResultCache      - fingerprint-keyed results (result_cache.py)
  7. VideoAnalyzer    - orchestrator: worker pools, per-request state,
                        deadline, cleanup on every exit path
"""

import asyncio
import logging
import threading
import time
from concurrent.futures import CancelledError as FutureCancelled
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from enum import Enum

from core_models.temporal_block_model import load_temporal_block_model
from pipeline.aggregator import DetectionResult, aggregate
from pipeline.block_batcher import BlockBatcher
from pipeline.config import BLOCK_LENGTH, AnalysisConfig
from pipeline.errors import (
    AnalysisCancelled,
    AnalysisError,
    AnalysisTimeout,
    MediaNotFound,
    NoFaceDetected,
    UnreadableOrCorruptMedia,
)
from pipeline.executors import CallerRunsExecutor
from pipeline.face_gate import FaceDetector
from pipeline.frame_source import FrameSource
from pipeline.inference_engine import InferenceEngine
from pipeline.result_cache import ResultCache, fingerprint

logger = logging.getLogger(__name__)

WAIT_SLICE_SECONDS = 0.1


# ================================================================
#  Per-request state machine
# ================================================================

class AnalysisState(str, Enum):
    INIT = "INIT"
    CACHE_CHECK = "CACHE_CHECK"
    DECODING = "DECODING"
    DETECTING = "DETECTING"
    BATCHING = "BATCHING"
    INFERRING = "INFERRING"
    AGGREGATING = "AGGREGATING"
    DONE = "DONE"
    FAILED = "FAILED"


_TRANSITIONS = {
    AnalysisState.INIT: {AnalysisState.CACHE_CHECK},
    AnalysisState.CACHE_CHECK: {AnalysisState.DECODING, AnalysisState.DONE},
    AnalysisState.DECODING: {AnalysisState.DETECTING},
    # fewer than BLOCK_LENGTH crops skips straight to the UNKNOWN verdict
    AnalysisState.DETECTING: {AnalysisState.BATCHING, AnalysisState.AGGREGATING},
    AnalysisState.BATCHING: {AnalysisState.INFERRING},
    AnalysisState.INFERRING: {AnalysisState.AGGREGATING},
    AnalysisState.AGGREGATING: {AnalysisState.DONE},
    AnalysisState.DONE: set(),
    AnalysisState.FAILED: set(),
}


class AnalysisRun:
    """Tracks one request through the pipeline stages."""

    def __init__(self, video_path):
        self.video_path = video_path
        self.state = AnalysisState.INIT
        self.error = None
        self._started = time.perf_counter()

    @property
    def elapsed(self):
        return time.perf_counter() - self._started

    @property
    def finished(self):
        return self.state in (AnalysisState.DONE, AnalysisState.FAILED)

    def advance(self, state):
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid transition {self.state.value} -> {state.value}")
        logger.debug("%s: %s -> %s", self.video_path, self.state.value, state.value)
        self.state = state

    def fail(self, error):
        if self.finished:
            return
        self.error = error
        self.state = AnalysisState.FAILED
        if error.is_fault:
            logger.error("Analysis of %s failed [%s]: %s", self.video_path, error.code, error)
        else:
            logger.warning("Analysis of %s rejected [%s]: %s", self.video_path, error.code, error)


# ================================================================
#  VideoAnalyzer (orchestrator)
# ================================================================

class VideoAnalyzer:
    """
    Full video deepfake detection pipeline orchestrator.

    Decoding runs on the calling thread, which owns the DecodingSession.
    Face detection and block filling run on a bounded caller-runs pool;
    classifier calls go through a separate inference pool (one worker by
    default, so calls from concurrent requests are serialized).
    """

    def __init__(self, config, frame_source, face_detector, block_batcher,
                 inference_engine, cache=None):
        self.config = config
        self.frame_source = frame_source
        self.face_detector = face_detector
        self.block_batcher = block_batcher
        self.inference_engine = inference_engine
        self.cache = cache if cache is not None else ResultCache.from_config(config)

        self.detect_executor = CallerRunsExecutor(
            max_workers=config.detect_workers,
            queue_size=config.detect_queue_size,
            thread_name_prefix="detect",
        )
        self.inference_executor = ThreadPoolExecutor(
            max_workers=config.inference_workers,
            thread_name_prefix="inference",
        )
        self._limiter = (
            threading.BoundedSemaphore(config.max_concurrent_analyses)
            if config.max_concurrent_analyses else None
        )
        self._inflight = {}
        self._inflight_lock = threading.Lock()
        self._closed = False

    @classmethod
    def from_config(cls, config=None):
        """Load the face detector and classifier once and wire all stages."""
        config = config or AnalysisConfig()
        device = config.torch_device()
        model = load_temporal_block_model(
            config.model_location, device, aux_feature_width=config.aux_feature_width
        )
        analyzer = cls(
            config,
            FrameSource.from_config(config),
            FaceDetector.from_config(config),
            BlockBatcher(crop_size=config.crop_size),
            InferenceEngine(model, device, aux_feature_width=config.aux_feature_width),
        )
        logger.info(
            "VideoAnalyzer initialized - crop_size: %d, threshold: %.2f, frame_skip: %d, "
            "max_frames: %d, device: %s",
            config.crop_size, config.decision_threshold, config.frame_skip_stride,
            config.max_frames_examined, device,
        )
        return analyzer

    # ── Public API ────────────────────────────────────────────────────────────

    def analyze(self, video_path, progress_callback=None, cancel_event=None):
        """
        Analyse one video file.

        Args:
            video_path: Local path of an already-staged video.
            progress_callback: Optional callable(current, total, message).
            cancel_event: Optional threading.Event; setting it stops the run.

        Returns:
            DetectionResult (UNKNOWN when fewer than 4 faces were found).

        Raises:
            AnalysisError subclass describing why no verdict was produced.
        """
        if self._closed:
            raise RuntimeError("VideoAnalyzer is closed")

        run = AnalysisRun(video_path)
        run.advance(AnalysisState.CACHE_CHECK)
        try:
            key = fingerprint(video_path, self.config)
        except OSError as exc:
            error = MediaNotFound(f"Cannot stat video: {video_path}", path=video_path)
            run.fail(error)
            raise error from exc

        deadline = time.monotonic() + self.config.request_timeout_seconds
        while True:
            with self._inflight_lock:
                # An owner caches its result before leaving _inflight, so
                # looking at both under the lock cannot miss a finished run
                cached = self.cache.get(key)
                pending = None
                if cached is None:
                    pending = self._inflight.get(key)
                    owner = pending is None
                    if owner:
                        pending = self._inflight[key] = Future()

            if cached is not None:
                logger.info("Returning cached result for: %s", video_path)
                run.advance(AnalysisState.DONE)
                return cached
            if owner:
                break

            logger.info("Waiting for in-flight analysis of %s", video_path)
            try:
                result = self._wait(pending, deadline, cancel_event, video_path)
            except FutureCancelled:
                # The owning caller cancelled; look again and possibly take over
                continue
            except AnalysisError as exc:
                run.fail(exc)
                raise
            run.advance(AnalysisState.DONE)
            return result

        try:
            result = self._run(run, video_path, progress_callback, cancel_event)
        except AnalysisCancelled:
            self._release_inflight(key, pending)
            pending.cancel()
            raise
        except BaseException as exc:
            pending.set_exception(exc)
            raise
        else:
            self.cache.put(key, result)
            pending.set_result(result)
            return result
        finally:
            self._release_inflight(key, pending)

    def _release_inflight(self, key, pending):
        with self._inflight_lock:
            if self._inflight.get(key) is pending:
                del self._inflight[key]

    async def analyze_async(self, video_path, progress_callback=None):
        """Async wrapper: runs analyze() in a worker thread; task cancellation stops the run."""
        cancel_event = threading.Event()
        try:
            return await asyncio.to_thread(
                self.analyze, video_path, progress_callback, cancel_event
            )
        except asyncio.CancelledError:
            cancel_event.set()
            raise

    # ── Pipeline ──────────────────────────────────────────────────────────────

    def _run(self, run, video_path, progress_callback, cancel_event):
        deadline = time.monotonic() + self.config.request_timeout_seconds
        acquired = self._acquire_slot(deadline, video_path)
        futures = []
        try:
            run.advance(AnalysisState.DECODING)
            with self.frame_source.open(video_path) as session:
                est_total = self._estimate_frames(session)
                while True:
                    self._check_live(deadline, cancel_event, video_path)
                    frame = session.next_frame()
                    if frame is None:
                        break
                    futures.append(self.detect_executor.submit(self.face_detector.detect, frame))
                    del frame
                    if progress_callback:
                        progress_callback(
                            session.frames_examined, est_total,
                            f"Decoded frame {session.frames_examined}/{est_total}",
                        )
                frames_decoded = session.frames_decoded
                frames_examined = session.frames_examined

            if frames_decoded == 0:
                raise UnreadableOrCorruptMedia("No frames could be decoded", path=video_path)

            run.advance(AnalysisState.DETECTING)
            crops = []
            for future in futures:
                crop = self._wait(future, deadline, cancel_event, video_path)
                if crop is not None:
                    crops.append(crop)
            futures.clear()

            logger.info(
                "Extracted %d faces from %d frames (skip: %d)",
                len(crops), frames_examined, self.config.frame_skip_stride,
            )
            if not crops:
                raise NoFaceDetected(
                    f"No faces detected in {frames_examined} frames", path=video_path
                )

            if len(crops) < BLOCK_LENGTH:
                run.advance(AnalysisState.AGGREGATING)
                result = DetectionResult.unknown(run.elapsed)
                run.advance(AnalysisState.DONE)
                return result

            run.advance(AnalysisState.BATCHING)
            batch = self.block_batcher.batch(crops, executor=self.detect_executor)
            del crops

            run.advance(AnalysisState.INFERRING)
            self._check_live(deadline, cancel_event, video_path)
            futures.append(
                self.inference_executor.submit(self.inference_engine.score_blocks, batch)
            )
            scores = self._wait(futures[-1], deadline, cancel_event, video_path)
            del batch

            run.advance(AnalysisState.AGGREGATING)
            result = aggregate(scores, self.config.decision_threshold, run.elapsed)
            run.advance(AnalysisState.DONE)
            return result

        except AnalysisError as exc:
            run.fail(exc)
            raise
        except Exception as exc:
            logger.exception("Unexpected failure analysing %s", video_path)
            error = AnalysisError(f"Analysis failed: {exc}", path=video_path)
            run.fail(error)
            raise error from exc
        finally:
            for future in futures:
                future.cancel()
            if acquired:
                self._limiter.release()

    def _estimate_frames(self, session):
        if session.frame_count <= 0:
            return self.config.max_frames_examined
        kept = -(-session.frame_count // self.config.frame_skip_stride)
        return max(1, min(kept, self.config.max_frames_examined))

    def _acquire_slot(self, deadline, video_path):
        if self._limiter is None:
            return False
        if not self._limiter.acquire(timeout=max(0.0, deadline - time.monotonic())):
            raise AnalysisTimeout("Timed out waiting for an analysis slot", path=video_path)
        return True

    @staticmethod
    def _check_live(deadline, cancel_event, video_path):
        if cancel_event is not None and cancel_event.is_set():
            raise AnalysisCancelled("Analysis cancelled", path=video_path)
        if time.monotonic() >= deadline:
            raise AnalysisTimeout("Analysis exceeded its time limit", path=video_path)

    def _wait(self, future, deadline, cancel_event, video_path):
        """Wait in short slices so a cancel or the deadline is noticed mid-wait."""
        while True:
            self._check_live(deadline, cancel_event, video_path)
            remaining = max(0.0, deadline - time.monotonic())
            try:
                return future.result(timeout=min(WAIT_SLICE_SECONDS, remaining))
            except FuturesTimeout:
                continue

    # ── Administration ────────────────────────────────────────────────────────

    @property
    def cache_size(self):
        return len(self.cache)

    def clear_cache(self):
        self.cache.clear()

    def is_healthy(self):
        return (
            not self._closed
            and self.detect_executor.running
            and self.inference_engine.model is not None
        )

    def close(self):
        if self._closed:
            return
        self._closed = True
        self.detect_executor.shutdown(wait=True, cancel_futures=True)
        self.inference_executor.shutdown(wait=True, cancel_futures=True)
        self.cache.clear()
        logger.info("VideoAnalyzer resources released")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
