"""
Typed failures raised by the video analysis pipeline.

Input errors (size, duration, unreadable media) are raised before any heavy
work and are meant to be shown to the caller as-is. Faults (inference,
memory, timeout) are logged with context where they happen and collapse to
a generic "analysis failed" message in utils/explainability.py.
"""


class AnalysisError(Exception):
    """Base class for every failure of a single video analysis."""

    code = "ANALYSIS_FAILED"
    is_fault = True

    def __init__(self, message=None, path=None):
        self.path = path
        super().__init__(message or self.code)


# -------- Input validation --------

class FileTooLarge(AnalysisError):
    code = "VIDEO_FILE_TOO_LARGE"
    is_fault = False

    def __init__(self, size_bytes, limit_bytes, path=None):
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        super().__init__(
            f"Video is {size_bytes} bytes, limit is {limit_bytes} bytes", path=path
        )


class DurationExceeded(AnalysisError):
    code = "VIDEO_TOO_LONG"
    is_fault = False

    def __init__(self, duration_seconds, limit_seconds, path=None):
        self.duration_seconds = duration_seconds
        self.limit_seconds = limit_seconds
        super().__init__(
            f"Video lasts {duration_seconds:.1f}s, limit is {limit_seconds}s", path=path
        )


class UnreadableOrCorruptMedia(AnalysisError):
    code = "INVALID_OR_CORRUPTED_VIDEO"
    is_fault = False


class MediaNotFound(UnreadableOrCorruptMedia):
    code = "VIDEO_NOT_FOUND"


# -------- Expected outcomes --------

class NoFaceDetected(AnalysisError):
    code = "NO_FACE_DETECTED"
    is_fault = False


# -------- Faults of the run --------

class InferenceFailure(AnalysisError):
    code = "FAILED_TO_ANALYZE_VIDEO"


class ResourceExhaustion(AnalysisError):
    code = "INSUFFICIENT_MEMORY"


class AnalysisTimeout(AnalysisError):
    code = "ANALYSIS_TIMEOUT"


class AnalysisCancelled(AnalysisError):
    code = "ANALYSIS_CANCELLED"
    is_fault = False


class ModelLoadError(AnalysisError):
    code = "MODEL_UNAVAILABLE"
