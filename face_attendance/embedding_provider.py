"""
Embedding Provider Module

Detects faces in video frames and extracts 128-d descriptors with the
face_recognition library (dlib ResNet). Models load asynchronously; callers
check the provider's readiness object, and every detection call made before
the models are ready returns an empty result instead of raising.
"""

import asyncio
import logging
import cv2
import numpy as np
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .embeddings import as_embedding
from .errors import ProviderNotReadyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Detection:
    """A face found in one frame."""
    bounds: Tuple[int, int, int, int]  # x, y, width, height
    landmarks: List[Tuple[int, int]]
    embedding: np.ndarray


class ModelReadiness:
    """Tracks whether the face models have finished loading."""

    def __init__(self):
        self._ready = False
        self._error: Optional[str] = None

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def error(self) -> Optional[str]:
        return self._error

    def mark_ready(self):
        self._ready = True
        self._error = None

    def mark_failed(self, error: str):
        self._ready = False
        self._error = error


class FaceEmbeddingProvider:
    """Face detection and descriptor extraction backed by face_recognition."""

    def __init__(self, config: Dict[str, Any], readiness: Optional[ModelReadiness] = None):
        """
        Initialize embedding provider.

        Args:
            config: Configuration dictionary with embedding settings
            readiness: Readiness object to report model state to
        """
        self.config = config.get('embedding', {})
        self.detection_model = self.config.get('detection_model', 'hog')
        self.upsample_times = self.config.get('upsample_times', 1)
        self.num_jitters = self.config.get('num_jitters', 1)

        self.readiness = readiness or ModelReadiness()
        self._face_recognition = None

        logger.info(f"Embedding provider created with detection model: {self.detection_model}")

    async def load(self) -> bool:
        """
        Load and warm up the face models in a worker thread.

        Returns:
            True if the models are ready
        """
        if self.readiness.is_ready:
            return True

        try:
            await asyncio.to_thread(self._load_models)
        except Exception as e:
            logger.error(f"Failed to load face recognition models: {e}")
            self.readiness.mark_failed(str(e))
            return False

        self.readiness.mark_ready()
        logger.info("Face recognition models loaded successfully")
        return True

    def _load_models(self):
        import face_recognition

        # First inference initializes the dlib networks
        blank = np.zeros((150, 150, 3), dtype=np.uint8)
        face_recognition.face_encodings(blank, known_face_locations=[(0, 150, 150, 0)])

        self._face_recognition = face_recognition

    def _models(self):
        if not self.readiness.is_ready or self._face_recognition is None:
            raise ProviderNotReadyError("Face recognition models not loaded")
        return self._face_recognition

    async def detect_all(self, frame: Optional[np.ndarray]) -> List[Detection]:
        """
        Detect every face in a frame with landmarks and descriptors.

        Args:
            frame: BGR image

        Returns:
            Detections in detector order, empty if none or not ready
        """
        if frame is None or frame.size == 0:
            return []

        try:
            return await asyncio.to_thread(self._detect_all, frame)
        except ProviderNotReadyError as e:
            logger.warning(f"Detection skipped: {e}")
            return []
        except Exception as e:
            logger.error(f"Face detection failed: {e}")
            return []

    async def detect_best(self, frame: Optional[np.ndarray]) -> Optional[np.ndarray]:
        """
        Extract the descriptor of the most prominent face in a frame.

        Args:
            frame: BGR image

        Returns:
            Embedding of the largest face, or None
        """
        if frame is None or frame.size == 0:
            return None

        try:
            return await asyncio.to_thread(self._detect_best, frame)
        except ProviderNotReadyError as e:
            logger.warning(f"Detection skipped: {e}")
            return None
        except Exception as e:
            logger.error(f"Single face detection failed: {e}")
            return None

    def _detect_all(self, frame: np.ndarray) -> List[Detection]:
        face_recognition = self._models()
        rgb_image = self._to_rgb(frame)

        locations = face_recognition.face_locations(
            rgb_image,
            number_of_times_to_upsample=self.upsample_times,
            model=self.detection_model
        )
        if not locations:
            return []

        landmarks = face_recognition.face_landmarks(rgb_image, locations)
        encodings = face_recognition.face_encodings(
            rgb_image, known_face_locations=locations, num_jitters=self.num_jitters
        )

        detections = []
        for (top, right, bottom, left), features, encoding in zip(locations, landmarks, encodings):
            points = [tuple(point) for feature in features.values() for point in feature]
            detections.append(Detection(
                bounds=(left, top, right - left, bottom - top),
                landmarks=points,
                embedding=as_embedding(encoding)
            ))

        return detections

    def _detect_best(self, frame: np.ndarray) -> Optional[np.ndarray]:
        face_recognition = self._models()
        rgb_image = self._to_rgb(frame)

        locations = face_recognition.face_locations(
            rgb_image,
            number_of_times_to_upsample=self.upsample_times,
            model=self.detection_model
        )
        if not locations:
            return None

        largest = max(locations, key=lambda loc: (loc[2] - loc[0]) * (loc[1] - loc[3]))
        encodings = face_recognition.face_encodings(
            rgb_image, known_face_locations=[largest], num_jitters=self.num_jitters
        )

        return as_embedding(encodings[0]) if encodings else None

    @staticmethod
    def _to_rgb(frame: np.ndarray) -> np.ndarray:
        """Convert an OpenCV frame to the contiguous RGB uint8 image dlib expects."""
        if frame.dtype != np.uint8:
            if frame.max() <= 1.0:
                frame = frame * 255
            frame = np.clip(frame, 0, 255).astype(np.uint8)

        if frame.ndim == 2:
            return cv2.cvtColor(frame, cv2.COLOR_GRAY2RGB)

        if frame.shape[2] == 4:
            return cv2.cvtColor(frame, cv2.COLOR_BGRA2RGB)

        return np.ascontiguousarray(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
