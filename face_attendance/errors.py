"""
Error Types

Exceptions raised inside the face attendance components. Public operations
convert them into explicit success/failure results before returning.
"""


class FaceAttendanceError(Exception):
    """Base class for face attendance errors."""


class InvalidEmbeddingError(FaceAttendanceError, ValueError):
    """Embedding has the wrong shape or contains non-finite values."""


class ProviderNotReadyError(FaceAttendanceError):
    """Embedding provider used before its models finished loading."""


class NoFaceDetectedError(FaceAttendanceError):
    """No face found in an enrollment sample."""

    def __init__(self, sample_index: int, total: int):
        self.sample_index = sample_index
        self.total = total
        super().__init__(
            f"Failed to detect face in sample {sample_index}/{total}. "
            "Please ensure your face is clearly visible."
        )


class StoreReadError(FaceAttendanceError):
    """Descriptor database could not be read."""


class StoreWriteError(FaceAttendanceError):
    """Descriptor database could not be written."""
