"""
Standalone video deepfake inference script.

Usage:
    python inference/predict_video.py -f video.mp4
    python inference/predict_video.py -f video.mp4 --json --threshold 0.5
"""

import sys
import os
import argparse
import json
import logging

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from pydantic import ValidationError
from tqdm import tqdm

from pipeline.config import AnalysisConfig
from pipeline.errors import AnalysisError
from pipeline.video_analyzer import VideoAnalyzer
from utils.explainability import describe_error, explain_result


def main():
    parser = argparse.ArgumentParser(description="Video deepfake detection")
    parser.add_argument("-f", "--file", required=True, help="Path to video file")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--threshold", type=float, help="Fake-ratio cutoff for a FAKE verdict")
    parser.add_argument("--stride", type=int, help="Keep 1 of every N decoded frames")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not os.path.exists(args.file):
        print(f"Error: File not found: {args.file}")
        sys.exit(1)

    overrides = {}
    if args.threshold is not None:
        overrides["decision_threshold"] = args.threshold
    if args.stride is not None:
        overrides["frame_skip_stride"] = args.stride
    try:
        config = AnalysisConfig(**overrides)
    except ValidationError as exc:
        fields = ", ".join(str(err["loc"][0]) for err in exc.errors())
        print(f"Error: Invalid option value for {fields}")
        sys.exit(1)

    try:
        with VideoAnalyzer.from_config(config) as analyzer:
            with tqdm(desc="Decoding", unit="frame", disable=args.json) as bar:
                def progress(current, total, message):
                    bar.total = total
                    bar.update(current - bar.n)

                result = analyzer.analyze(os.path.abspath(args.file), progress_callback=progress)
    except AnalysisError as exc:
        if args.json:
            print(json.dumps({"error": exc.code, "message": describe_error(exc)}, indent=2))
        else:
            print(f"\nError: {describe_error(exc)} ({exc.code})")
        sys.exit(1)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
        return

    print("\n=== VIDEO DEEPFAKE DETECTION ===")
    print(f"File               : {args.file}")
    print(f"Blocks Analyzed    : {result.block_count}")
    print()
    print(f"Label              : {result.label.value}")
    print(f"Max Score          : {result.max_score:.4f}")
    print(f"Fake Ratio         : {result.fake_ratio_percentage}")
    print(f"Processing Time    : {result.processing_time_seconds:.2f}s")
    print()
    print(f"Explanation        : {explain_result(result)}")


if __name__ == "__main__":
    main()
