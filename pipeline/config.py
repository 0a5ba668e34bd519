"""
Analysis configuration loaded from environment variables.

Every field can be overridden with a DEEPFAKE_-prefixed variable
(e.g. DEEPFAKE_DECISION_THRESHOLD=0.5) or a .env file. Per-request
variants are derived with config.model_copy(update={...}).
"""

import os

import torch
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
MODELS_DIR = os.path.join(ROOT_DIR, "models")

# Faces per temporal block; fixed by the classifier's input shape
BLOCK_LENGTH = 4


class AnalysisConfig(BaseSettings):
    # ─── Classifier input ──────────────────────────────────────────
    crop_size: int = Field(default=128, gt=0, le=1024)
    decision_threshold: float = Field(default=0.4, ge=0.0, le=1.0)
    aux_feature_width: int = Field(default=140, ge=0)
    model_location: str = os.path.join(MODELS_DIR, "temporal_block_model.pth")
    device: str = "auto"

    # ─── Frame sampling and input caps ─────────────────────────────
    frame_skip_stride: int = Field(default=1, ge=1)
    max_frames_examined: int = Field(default=500, gt=0)
    max_file_size_bytes: int = Field(default=100 * 1024 * 1024, gt=0)
    max_duration_seconds: float = Field(default=60.0, gt=0)

    # ─── Face detector ─────────────────────────────────────────────
    face_detector_dir: str = os.path.join(MODELS_DIR, "face_detector")
    face_confidence_floor: float = Field(default=0.6, ge=0.0, le=1.0)

    # ─── Worker pools ──────────────────────────────────────────────
    detect_workers: int = Field(default_factory=lambda: os.cpu_count() or 1, gt=0)
    detect_queue_size: int = Field(default=1000, ge=0)
    # 1 = classifier calls from all requests go through a single queue
    inference_workers: int = Field(default=1, gt=0)
    # 0 = no global limit
    max_concurrent_analyses: int = Field(default=0, ge=0)
    request_timeout_seconds: float = Field(default=15 * 60, gt=0)

    # ─── Result cache ──────────────────────────────────────────────
    cache_max_entries: int = Field(default=1000, ge=0)
    cache_ttl_seconds: float = Field(default=30 * 60, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="DEEPFAKE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def torch_device(self):
        if self.device == "auto":
            return torch.device("cuda" if torch.cuda.is_available() else "cpu")
        return torch.device(self.device)
