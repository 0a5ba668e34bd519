"""
Face detection and cropping via the OpenCV DNN res10 SSD detector.

The detector files are fetched once into the configured directory. A
cv2.dnn.Net must not run forward() from two threads at once, so every worker
thread lazily gets its own net from the same model files.
"""

import logging
import os
import threading
import urllib.request
from dataclasses import dataclass

import cv2
import numpy as np

from pipeline.errors import ModelLoadError

logger = logging.getLogger(__name__)

PROTOTXT_NAME = "deploy.prototxt"
CAFFEMODEL_NAME = "res10_300x300_ssd_iter_140000.caffemodel"

_PROTOTXT_URL = "https://raw.githubusercontent.com/opencv/opencv/master/samples/dnn/face_detector/deploy.prototxt"
_CAFFEMODEL_URL = "https://raw.githubusercontent.com/opencv/opencv_3rdparty/dnn_samples_face_detector_20170830/res10_300x300_ssd_iter_140000.caffemodel"

DETECTOR_INPUT_SIZE = (300, 300)
DETECTOR_MEAN = (104.0, 177.0, 123.0)


def ensure_model_files(model_dir):
    """Download the DNN face detector files into model_dir if not present."""
    os.makedirs(model_dir, exist_ok=True)
    prototxt = os.path.join(model_dir, PROTOTXT_NAME)
    caffemodel = os.path.join(model_dir, CAFFEMODEL_NAME)
    for path, url in ((prototxt, _PROTOTXT_URL), (caffemodel, _CAFFEMODEL_URL)):
        if os.path.exists(path):
            continue
        logger.info("Downloading face detector file %s", os.path.basename(path))
        try:
            urllib.request.urlretrieve(url, path)
        except OSError as exc:
            raise ModelLoadError(f"Could not download {url}: {exc}") from exc
    return prototxt, caffemodel


def face_net_loader(model_dir):
    """Return a zero-argument callable that builds a fresh detector net."""
    prototxt, caffemodel = ensure_model_files(model_dir)

    def load():
        try:
            return cv2.dnn.readNetFromCaffe(prototxt, caffemodel)
        except cv2.error as exc:
            raise ModelLoadError(f"Failed to initialize DNN face detector: {exc}") from exc

    # Fail at startup rather than on the first frame
    load()
    return load


@dataclass
class FaceCrop:
    frame_index: int
    image: np.ndarray   # RGB uint8, crop_size x crop_size x 3
    confidence: float


class FaceDetector:
    """
    Finds the first confident face in a frame and returns it cropped.

    Detections are walked in the network's output order and the first one
    above the confidence floor with a non-empty box wins.
    """

    def __init__(self, net_loader, crop_size=128, confidence_floor=0.6):
        self._net_loader = net_loader
        self._local = threading.local()
        self.crop_size = crop_size
        self.confidence_floor = confidence_floor

    @classmethod
    def from_config(cls, config):
        return cls(
            face_net_loader(config.face_detector_dir),
            crop_size=config.crop_size,
            confidence_floor=config.face_confidence_floor,
        )

    def _net(self):
        net = getattr(self._local, "net", None)
        if net is None:
            net = self._local.net = self._net_loader()
        return net

    def detect(self, frame):
        """
        Detect and crop a face in a RawFrame.

        Returns:
            FaceCrop or None when no region clears the confidence floor.
        """
        image = frame.image
        h, w = image.shape[:2]
        blob = detections = None
        try:
            blob = cv2.dnn.blobFromImage(image, 1.0, DETECTOR_INPUT_SIZE, DETECTOR_MEAN)
            net = self._net()
            net.setInput(blob)
            detections = net.forward()

            for i in range(detections.shape[2]):
                confidence = float(detections[0, 0, i, 2])
                if confidence <= self.confidence_floor:
                    continue

                x1, y1, x2, y2 = (detections[0, 0, i, 3:7] * np.array([w, h, w, h])).astype(int)
                x1, y1 = max(0, x1), max(0, y1)
                x2, y2 = min(w, x2), min(h, y2)
                if x2 <= x1 or y2 <= y1:
                    continue

                face = image[y1:y2, x1:x2]
                rgb = cv2.cvtColor(face, cv2.COLOR_BGR2RGB)
                resized = cv2.resize(rgb, (self.crop_size, self.crop_size))
                return FaceCrop(frame_index=frame.index, image=resized, confidence=confidence)

            return None
        except cv2.error as exc:
            logger.warning("Face detection failed on frame %d: %s", frame.index, exc)
            return None
        finally:
            del blob, detections
