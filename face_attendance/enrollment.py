"""
Face Enrollment Module

Captures several face samples for one identity, averages their embeddings and
stores the result as that identity's descriptor.

    idle -> capturing -> success | error

A failed sample aborts the whole attempt without storing anything; the caller
starts a new attempt explicitly.
"""

import asyncio
import logging
import numpy as np
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .descriptor_store import DescriptorStore
from .embedding_provider import ModelReadiness
from .embeddings import average_embeddings
from .errors import NoFaceDetectedError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class EnrollmentState(Enum):
    IDLE = 'idle'
    CAPTURING = 'capturing'
    SUCCESS = 'success'
    ERROR = 'error'


@dataclass(frozen=True)
class EnrollmentResult:
    success: bool
    message: str


class FaceEnroller:
    """Multi-sample enrollment of one identity at a time."""

    def __init__(self, config: Dict[str, Any], provider, store: DescriptorStore,
                 readiness: Optional[ModelReadiness] = None):
        """
        Initialize face enroller.

        Args:
            config: Configuration dictionary with enrollment settings
            provider: Embedding provider used for single-face extraction
            store: Descriptor store the averaged embedding is committed to
            readiness: Model readiness to check before capturing
                (defaults to the provider's)
        """
        self.enrollment_config = config.get('enrollment', {})
        self.samples = self.enrollment_config.get('samples', 5)
        self.sample_delay = self.enrollment_config.get('sample_delay', 0.5)

        self.provider = provider
        self.store = store
        self.readiness = readiness if readiness is not None else provider.readiness

        self.state = EnrollmentState.IDLE
        self.message = ''
        self.captured_samples = 0
        self.identity_id: Optional[str] = None
        self.last_result: Optional[EnrollmentResult] = None
        self._cancelled = False

    @property
    def progress(self) -> float:
        """Capture progress as a percentage of the configured samples."""
        return self.captured_samples / self.samples * 100.0 if self.samples else 0.0

    def cancel(self):
        """Stop capturing at the next sample boundary."""
        if self.state is EnrollmentState.CAPTURING:
            logger.info(f"Cancelling enrollment of {self.identity_id}")
            self._cancelled = True

    def reset(self):
        """Return to idle after a finished attempt."""
        if self.state is not EnrollmentState.CAPTURING:
            self.state = EnrollmentState.IDLE
            self.message = ''
            self.captured_samples = 0

    async def enroll(self, identity_id: str, display_name: str, frame_source,
                     on_progress: Optional[ProgressCallback] = None) -> Optional[EnrollmentResult]:
        """
        Run one enrollment attempt.

        Args:
            identity_id: Identity to enroll
            display_name: Name stored with the descriptor
            frame_source: Object whose get_frame() returns the current frame
            on_progress: Called with (captured samples, total) after each sample

        Returns:
            Enrollment outcome, or None if an attempt is already capturing
        """
        if self.state is EnrollmentState.CAPTURING:
            logger.debug(f"Enrollment of {self.identity_id} already in progress")
            return None

        self.identity_id = identity_id
        self.captured_samples = 0
        self._cancelled = False

        if not self.readiness.is_ready:
            return self._finish(EnrollmentState.ERROR, 'Models not loaded')

        self.state = EnrollmentState.CAPTURING
        self.message = 'Capturing face samples...'
        logger.info(f"Enrolling {display_name} ({identity_id}) with {self.samples} samples")

        try:
            samples = await self._capture_samples(frame_source, on_progress)
            if samples is None or self._cancelled:
                return self._finish(EnrollmentState.IDLE, 'Enrollment cancelled')

            embedding = average_embeddings(samples)

            if not self.store.put(identity_id, display_name, embedding):
                return self._finish(EnrollmentState.ERROR, 'Failed to save face data')

        except NoFaceDetectedError as e:
            return self._finish(EnrollmentState.ERROR, str(e))
        except Exception as e:
            logger.error(f"Enrollment error: {e}")
            return self._finish(EnrollmentState.ERROR, f"Enrollment failed: {e}")

        return self._finish(
            EnrollmentState.SUCCESS,
            f"Successfully enrolled {display_name} with {len(samples)} face samples"
        )

    async def _capture_samples(self, frame_source,
                               on_progress: Optional[ProgressCallback]) -> Optional[List[np.ndarray]]:
        """Collect one embedding per sample; None when cancelled."""
        samples = []

        for index in range(1, self.samples + 1):
            await asyncio.sleep(self.sample_delay)
            if self._cancelled:
                return None

            self.message = f"Capturing sample {index} of {self.samples}..."
            frame = frame_source.get_frame()
            embedding = await self.provider.detect_best(frame)

            if embedding is None:
                raise NoFaceDetectedError(index, self.samples)

            samples.append(embedding)
            self.captured_samples = index
            if on_progress is not None:
                on_progress(index, self.samples)

        return samples

    def _finish(self, state: EnrollmentState, message: str) -> EnrollmentResult:
        self.state = state
        self.message = message
        self.last_result = EnrollmentResult(success=state is EnrollmentState.SUCCESS, message=message)

        if self.last_result.success:
            logger.info(message)
        else:
            logger.warning(f"Enrollment of {self.identity_id} failed: {message}")

        return self.last_result
