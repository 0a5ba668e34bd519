"""
Tests for pipeline/config.py.
"""

import pytest
import torch
from pydantic import ValidationError

from pipeline.config import BLOCK_LENGTH, AnalysisConfig


class TestAnalysisConfig:

    def test_defaults(self):
        config = AnalysisConfig()
        assert config.crop_size == 128
        assert config.decision_threshold == pytest.approx(0.4)
        assert config.aux_feature_width == 140
        assert config.frame_skip_stride == 1
        assert config.max_frames_examined == 500
        assert config.max_file_size_bytes == 100 * 1024 * 1024
        assert config.max_duration_seconds == 60.0
        assert config.cache_max_entries == 1000
        assert config.cache_ttl_seconds == 1800
        assert config.inference_workers == 1
        assert BLOCK_LENGTH == 4

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("DEEPFAKE_DECISION_THRESHOLD", "0.55")
        monkeypatch.setenv("DEEPFAKE_FRAME_SKIP_STRIDE", "3")
        config = AnalysisConfig()
        assert config.decision_threshold == pytest.approx(0.55)
        assert config.frame_skip_stride == 3

    @pytest.mark.parametrize("field, value", [
        ("decision_threshold", 1.5),
        ("decision_threshold", -0.1),
        ("frame_skip_stride", 0),
        ("crop_size", 0),
    ])
    def test_out_of_range_rejected(self, field, value):
        with pytest.raises(ValidationError):
            AnalysisConfig(**{field: value})

    def test_per_request_copy(self):
        base = AnalysisConfig()
        tuned = base.model_copy(update={"decision_threshold": 0.7})
        assert tuned.decision_threshold == pytest.approx(0.7)
        assert base.decision_threshold == pytest.approx(0.4)

    def test_explicit_cpu_device(self):
        assert AnalysisConfig(device="cpu").torch_device() == torch.device("cpu")
