"""
Shared fixtures for the video analysis tests.

No test needs real model weights or the downloaded face detector:
  1. FakeCapture stands in for cv2.VideoCapture and serves synthetic frames.
  2. StubNet mimics the res10 SSD output layout (1, 1, N, 7).
  3. FixedScoreModel returns canned per-block probabilities.
  4. ScriptedDetector returns a face for a chosen set of frame indices.
"""

import threading
import time

import cv2
import numpy as np
import pytest
import torch
import torch.nn as nn

from pipeline.block_batcher import BlockBatcher
from pipeline.config import AnalysisConfig
from pipeline.face_gate import FaceCrop
from pipeline.frame_source import FrameSource
from pipeline.inference_engine import InferenceEngine
from pipeline.video_analyzer import VideoAnalyzer

CROP_SIZE = 16


# ── Decoder ──────────────────────────────────────────────────────────────────

class FakeCapture:
    """In-memory cv2.VideoCapture replacement."""

    def __init__(self, n_frames=8, fps=25.0, frame_count=None, opened=True,
                 shape=(48, 64, 3), read_delay=0.0, fail_at=None):
        self.n_frames = n_frames
        self.fps = fps
        self.frame_count = n_frames if frame_count is None else frame_count
        self.opened = opened
        self.shape = shape
        self.read_delay = read_delay
        self.fail_at = fail_at
        self.reads = 0
        self.released = False

    def isOpened(self):
        return self.opened

    def get(self, prop):
        return {
            cv2.CAP_PROP_FPS: self.fps,
            cv2.CAP_PROP_FRAME_COUNT: float(self.frame_count),
            cv2.CAP_PROP_FRAME_WIDTH: float(self.shape[1]),
            cv2.CAP_PROP_FRAME_HEIGHT: float(self.shape[0]),
        }.get(prop, 0.0)

    def read(self):
        if self.read_delay:
            time.sleep(self.read_delay)
        if self.fail_at is not None and self.reads == self.fail_at:
            raise cv2.error("simulated decoder failure")
        if self.reads >= self.n_frames:
            return False, None
        self.reads += 1
        return True, np.full(self.shape, self.reads % 255, dtype=np.uint8)

    def release(self):
        self.released = True


class CaptureFactory:
    """Records every capture it creates."""

    def __init__(self, **capture_kwargs):
        self.capture_kwargs = capture_kwargs
        self.created = []
        self._lock = threading.Lock()

    def __call__(self, path):
        capture = FakeCapture(**self.capture_kwargs)
        with self._lock:
            self.created.append(capture)
        return capture


# ── Face detection ───────────────────────────────────────────────────────────

def make_detections(*rows):
    """Build an SSD output array from (confidence, x1, y1, x2, y2) rows."""
    out = np.zeros((1, 1, max(1, len(rows)), 7), dtype=np.float32)
    for i, (conf, x1, y1, x2, y2) in enumerate(rows):
        out[0, 0, i] = [0, 1, conf, x1, y1, x2, y2]
    return out


class StubNet:

    def __init__(self, detections):
        self.detections = detections
        self.inputs = []

    def setInput(self, blob):
        self.inputs.append(blob.shape)

    def forward(self):
        if isinstance(self.detections, Exception):
            raise self.detections
        return self.detections


class ScriptedDetector:
    """FaceDetector stand-in: a face on every frame index in face_frames."""

    def __init__(self, face_frames, crop_size=CROP_SIZE, gate=None):
        self.face_frames = set(face_frames)
        self.crop_size = crop_size
        self.gate = gate
        self.entered = threading.Event()
        self.calls = 0

    def detect(self, frame):
        self.calls += 1
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5)
        if frame.index not in self.face_frames:
            return None
        image = np.full((self.crop_size, self.crop_size, 3), frame.index % 255, dtype=np.uint8)
        return FaceCrop(frame_index=frame.index, image=image, confidence=0.9)


# ── Classifier ───────────────────────────────────────────────────────────────

class FixedScoreModel(nn.Module):
    """Returns scores[i] for block i, cycling when there are more blocks."""

    def __init__(self, scores, out_width=1):
        super().__init__()
        self.scores = list(scores)
        self.out_width = out_width
        self.calls = []

    def forward(self, video_block, aux_features=None):
        self.calls.append((tuple(video_block.shape), tuple(aux_features.shape)))
        n = video_block.shape[0]
        values = [self.scores[i % len(self.scores)] for i in range(n)]
        out = torch.tensor(values, dtype=torch.float32).reshape(n, 1)
        return out.repeat(1, self.out_width)


# ── Config and analyzer ──────────────────────────────────────────────────────

def make_config(**overrides):
    values = dict(
        crop_size=CROP_SIZE,
        decision_threshold=0.5,
        detect_workers=2,
        detect_queue_size=16,
        request_timeout_seconds=10,
        max_file_size_bytes=1024 * 1024,
    )
    values.update(overrides)
    return AnalysisConfig(**values)


@pytest.fixture()
def video_file(tmp_path):
    """A small placeholder file; decoding is served by FakeCapture."""
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"\x00" * 2048)
    return str(path)


@pytest.fixture()
def build_analyzer():
    """Factory wiring a VideoAnalyzer out of fakes; closes every analyzer after the test."""
    created = []

    def _build(config=None, factory=None, detector=None, model=None, cache=None):
        config = config or make_config()
        factory = factory or CaptureFactory(n_frames=8)
        detector = detector or ScriptedDetector(range(8))
        model = model or FixedScoreModel([0.9, 0.1])
        frame_source = FrameSource(
            max_file_size_bytes=config.max_file_size_bytes,
            max_duration_seconds=config.max_duration_seconds,
            frame_skip_stride=config.frame_skip_stride,
            max_frames_examined=config.max_frames_examined,
            capture_factory=factory,
        )
        analyzer = VideoAnalyzer(
            config,
            frame_source,
            detector,
            BlockBatcher(crop_size=config.crop_size),
            InferenceEngine(model, torch.device("cpu"),
                            aux_feature_width=config.aux_feature_width),
            cache=cache,
        )
        created.append(analyzer)
        return analyzer

    yield _build

    for analyzer in created:
        analyzer.close()
