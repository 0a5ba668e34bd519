from pipeline.aggregator import Verdict
from pipeline.errors import AnalysisError

GENERIC_FAILURE = "Video analysis failed. Please try again later."

ERROR_MESSAGES = {
    "VIDEO_FILE_TOO_LARGE": "The video file is too large to analyse.",
    "VIDEO_TOO_LONG": "The video is too long to analyse.",
    "INVALID_OR_CORRUPTED_VIDEO": "The video could not be read; it may be corrupted or in an unsupported format.",
    "VIDEO_NOT_FOUND": "The video file could not be found.",
    "NO_FACE_DETECTED": "No face was detected anywhere in the video.",
    "ANALYSIS_CANCELLED": "The analysis was cancelled.",
}


def explain_result(result):
    """One-line, human-readable verdict for a DetectionResult."""
    if result.label == Verdict.UNKNOWN:
        return "Inconclusive: too few frames with a visible face to judge the video"
    if result.label == Verdict.FAKE:
        return (f"Likely deepfake: {result.fake_ratio_percentage} of face segments "
                f"look manipulated (peak score {result.max_score:.2f})")
    return (f"Likely authentic: {result.fake_ratio_percentage} of face segments "
            f"look manipulated (peak score {result.max_score:.2f})")


def describe_error(error):
    """User-facing message for an analysis failure; faults stay generic."""
    if not isinstance(error, AnalysisError) or error.is_fault:
        return GENERIC_FAILURE
    return ERROR_MESSAGES.get(error.code, GENERIC_FAILURE)
