"""
Frame decoding for the video analysis pipeline.

FrameSource validates a file against the size and duration caps and opens a
DecodingSession: a single cv2.VideoCapture with a sequential cursor that
hands out every Nth decoded frame up to a hard cap. Sessions are context
managers so the capture is released on every exit path.
"""

import logging
import os
from dataclasses import dataclass

import cv2
import numpy as np

from pipeline.errors import (
    DurationExceeded,
    FileTooLarge,
    MediaNotFound,
    UnreadableOrCorruptMedia,
)

logger = logging.getLogger(__name__)


@dataclass
class RawFrame:
    index: int          # position among decoded frames
    image: np.ndarray   # BGR uint8, as returned by OpenCV


class DecodingSession:
    """Exclusive, sequential access to one opened video file."""

    def __init__(self, path, capture, frame_skip_stride=1, max_frames_examined=500):
        self.path = path
        self._capture = capture
        self.frame_skip_stride = max(1, int(frame_skip_stride))
        self.max_frames_examined = max_frames_examined

        self.fps = capture.get(cv2.CAP_PROP_FPS) or 0.0
        self.frame_count = int(capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        self.width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
        self.height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
        self.duration_seconds = (
            self.frame_count / self.fps if self.fps > 0 and self.frame_count > 0 else 0.0
        )

        self.frames_decoded = 0
        self.frames_examined = 0

    @property
    def closed(self):
        return self._capture is None

    @property
    def info(self):
        return {
            "fps": self.fps,
            "frame_count": self.frame_count,
            "width": self.width,
            "height": self.height,
            "duration_sec": round(self.duration_seconds, 2),
        }

    def next_frame(self):
        """
        Return the next kept frame, or None at end of stream.

        Decoded frame i is kept when i % frame_skip_stride == 0. The stream
        also ends once max_frames_examined frames were handed out. The cap
        counts kept frames, so at most max_frames_examined * frame_skip_stride
        frames are read from the decoder.
        """
        if self._capture is None or self.frames_examined >= self.max_frames_examined:
            return None

        while True:
            try:
                ok, image = self._capture.read()
            except cv2.error as exc:
                raise UnreadableOrCorruptMedia(
                    f"Decoder failed after {self.frames_decoded} frames: {exc}",
                    path=self.path,
                ) from exc
            if not ok or image is None:
                return None

            index = self.frames_decoded
            self.frames_decoded += 1
            if index % self.frame_skip_stride != 0:
                continue

            self.frames_examined += 1
            return RawFrame(index=index, image=image)

    def close(self):
        capture, self._capture = self._capture, None
        if capture is None:
            return
        try:
            capture.release()
        except cv2.error as exc:
            logger.error("Error releasing capture for %s: %s", self.path, exc)
        logger.debug(
            "Closed %s (%d decoded, %d examined)",
            self.path, self.frames_decoded, self.frames_examined,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class FrameSource:
    """Opens DecodingSessions that respect the configured input caps."""

    def __init__(self, max_file_size_bytes, max_duration_seconds,
                 frame_skip_stride=1, max_frames_examined=500,
                 capture_factory=cv2.VideoCapture):
        self.max_file_size_bytes = max_file_size_bytes
        self.max_duration_seconds = max_duration_seconds
        self.frame_skip_stride = frame_skip_stride
        self.max_frames_examined = max_frames_examined
        self._capture_factory = capture_factory

    @classmethod
    def from_config(cls, config):
        return cls(
            max_file_size_bytes=config.max_file_size_bytes,
            max_duration_seconds=config.max_duration_seconds,
            frame_skip_stride=config.frame_skip_stride,
            max_frames_examined=config.max_frames_examined,
        )

    def check_size(self, path):
        """Fail fast on missing or oversized files, before any decoder exists."""
        try:
            size = os.path.getsize(path)
        except OSError as exc:
            raise MediaNotFound(f"Cannot stat video: {path}", path=path) from exc
        if size > self.max_file_size_bytes:
            raise FileTooLarge(size, self.max_file_size_bytes, path=path)
        return size

    def open(self, path):
        """
        Open a decoding session for path.

        Raises:
            MediaNotFound, FileTooLarge: before a decoder is created.
            UnreadableOrCorruptMedia: container could not be opened.
            DurationExceeded: declared duration is over the cap; the
                capture is released before raising.
        """
        self.check_size(path)

        capture = self._capture_factory(path)
        try:
            if not capture.isOpened():
                raise UnreadableOrCorruptMedia(f"Cannot open video: {path}", path=path)

            session = DecodingSession(
                path, capture,
                frame_skip_stride=self.frame_skip_stride,
                max_frames_examined=self.max_frames_examined,
            )
            if session.duration_seconds > self.max_duration_seconds:
                raise DurationExceeded(
                    session.duration_seconds, self.max_duration_seconds, path=path
                )
        except BaseException:
            capture.release()
            raise

        if session.duration_seconds == 0.0:
            logger.warning("Container did not report a duration: %s", path)
        logger.debug("Opened %s %s", path, session.info)
        return session
