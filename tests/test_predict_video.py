"""
Tests for the inference/predict_video.py command line.
"""

import json
import sys

import pytest

from conftest import ScriptedDetector
from inference import predict_video


def run_cli(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["predict_video.py", *argv])
    predict_video.main()


class TestCommandLine:

    @pytest.mark.parametrize("flag, value, field", [
        ("--threshold", "1.5", "decision_threshold"),
        ("--stride", "0", "frame_skip_stride"),
    ])
    def test_invalid_option_prints_one_line(self, monkeypatch, capsys, video_file,
                                            flag, value, field):
        """Out-of-range options exit with a short message instead of a traceback."""
        with pytest.raises(SystemExit) as info:
            run_cli(monkeypatch, "-f", video_file, flag, value)
        assert info.value.code == 1
        out = capsys.readouterr().out
        assert out.startswith("Error:")
        assert field in out
        assert "Traceback" not in out

    def test_missing_file(self, monkeypatch, capsys, tmp_path):
        with pytest.raises(SystemExit):
            run_cli(monkeypatch, "-f", str(tmp_path / "gone.mp4"))
        assert "File not found" in capsys.readouterr().out

    def test_json_output(self, monkeypatch, capsys, video_file, build_analyzer):
        monkeypatch.setattr(
            predict_video.VideoAnalyzer, "from_config",
            lambda config: build_analyzer(
                config=config, detector=ScriptedDetector(range(8), crop_size=config.crop_size)
            ),
        )
        run_cli(monkeypatch, "-f", video_file, "--json", "--threshold", "0.5")
        payload = json.loads(capsys.readouterr().out)
        assert payload["result"] == "FAKE"
        assert payload["block_count"] == 2
        assert payload["fake_ratio_percentage"] == "50.00%"
