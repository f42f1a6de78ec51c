"""
Face Attendance

Face enrollment and live recognition for attendance taking: webcam frames are
turned into face descriptors, matched against enrolled identities, and each
recognized identity is marked present once per session.
"""

__version__ = "1.0.0"
__author__ = "Face Attendance Team"

from .descriptor_store import DescriptorStore, EnrolledDescriptor
from .embedding_provider import Detection, FaceEmbeddingProvider, ModelReadiness
from .enrollment import EnrollmentResult, EnrollmentState, FaceEnroller
from .live_recognition import LiveRecognizer, StartStatus
from .matcher import MATCH_THRESHOLD, Match, find_best_match

__all__ = [
    "DescriptorStore",
    "EnrolledDescriptor",
    "Detection",
    "FaceEmbeddingProvider",
    "ModelReadiness",
    "EnrollmentResult",
    "EnrollmentState",
    "FaceEnroller",
    "LiveRecognizer",
    "StartStatus",
    "MATCH_THRESHOLD",
    "Match",
    "find_best_match"
]
