"""
Live Recognition Module

Polls a frame source at a fixed rate, matches every detected face against the
enrolled descriptors and confirms each identity once per session.

Ticks are a rate cap: while a frame is still being processed, new ticks are
dropped rather than queued, so at most one frame is in flight. Confirmed
matches are pushed to an asyncio queue as MatchConfirmed events; recording
attendance and notifying happen on the consumer side (see attendance.py).
"""

import asyncio
import logging
import numpy as np
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Set

from .attendance import LoggingNotifier, MatchConfirmed, Notification, Notifier
from .descriptor_store import DescriptorStore
from .embedding_provider import ModelReadiness
from .matcher import MATCH_THRESHOLD, Match, match_detections

logger = logging.getLogger(__name__)


class StartStatus(Enum):
    STARTED = 'started'
    ALREADY_RUNNING = 'already_running'
    PROVIDER_NOT_READY = 'provider_not_ready'
    NO_ENROLLED_DESCRIPTORS = 'no_enrolled_descriptors'


@dataclass
class RecognitionSession:
    """State of one run between start and stop."""
    active: bool = False
    seen_identities: Set[str] = field(default_factory=set)
    recent_matches: Deque[Match] = field(default_factory=lambda: deque(maxlen=5))


@dataclass(frozen=True)
class FrameMatch:
    index: int  # position of the detection in the frame
    match: Match
    is_new: bool  # first time this identity was seen in the session


FrameCallback = Callable[[np.ndarray, list, List[FrameMatch]], None]


class LiveRecognizer:
    """Rate-limited recognition loop with per-session deduplication."""

    def __init__(self, config: Dict[str, Any], provider, store: DescriptorStore, frame_source,
                 readiness: Optional[ModelReadiness] = None,
                 session_id: Optional[str] = None,
                 notifier: Optional[Notifier] = None,
                 on_frame: Optional[FrameCallback] = None):
        """
        Initialize live recognizer.

        Args:
            config: Configuration dictionary with recognition settings
            provider: Embedding provider used for multi-face detection
            store: Descriptor store matched against (read only)
            frame_source: Object whose get_frame() returns the current frame
            readiness: Model readiness checked on start (defaults to the provider's)
            session_id: Attendance session that confirmed matches belong to
            notifier: Channel for start warnings
            on_frame: Overlay callback, called after each processed frame
        """
        self.recognition_config = config.get('recognition', {})
        self.match_threshold = self.recognition_config.get('match_threshold', MATCH_THRESHOLD)
        self.poll_interval = self.recognition_config.get('poll_interval', 0.1)
        self.recent_limit = self.recognition_config.get('recent_matches', 5)

        self.provider = provider
        self.store = store
        self.frame_source = frame_source
        self.readiness = readiness if readiness is not None else provider.readiness
        self.session_id = session_id
        self.notifier = notifier or LoggingNotifier()
        self.on_frame = on_frame

        self.events: 'asyncio.Queue[MatchConfirmed]' = asyncio.Queue()
        self.session = RecognitionSession(recent_matches=deque(maxlen=self.recent_limit))

        self.frames_processed = 0
        self.frames_dropped = 0
        self._processing = False
        self._ticker: Optional[asyncio.Task] = None
        self._in_flight: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self.session.active

    @property
    def is_processing(self) -> bool:
        return self._processing or (self._in_flight is not None and not self._in_flight.done())

    def start(self) -> StartStatus:
        """
        Start a new recognition session. Must be called from the event loop.

        Returns:
            STARTED, or the reason the session could not start
        """
        if self.session.active:
            return StartStatus.ALREADY_RUNNING

        if not self.readiness.is_ready:
            self.notifier.notify(Notification(
                type='error',
                message='AI models not loaded',
                description='Please wait for models to load before starting recognition'
            ))
            return StartStatus.PROVIDER_NOT_READY

        if self.store.count() == 0:
            self.notifier.notify(Notification(
                type='warning',
                message='No enrolled faces',
                description='Please enroll at least one face before starting recognition'
            ))
            return StartStatus.NO_ENROLLED_DESCRIPTORS

        self.session = RecognitionSession(active=True, recent_matches=deque(maxlen=self.recent_limit))
        self.frames_processed = 0
        self.frames_dropped = 0
        self._ticker = asyncio.create_task(self._run())

        logger.info(f"Recognition started (session: {self.session_id})")
        return StartStatus.STARTED

    async def stop(self):
        """
        Stop polling. A frame already being processed finishes; session
        results stay readable until the next start.
        """
        if not self.session.active:
            return

        self.session.active = False

        if self._ticker is not None:
            self._ticker.cancel()
            try:
                await self._ticker
            except asyncio.CancelledError:
                pass
            self._ticker = None

        if self._in_flight is not None and not self._in_flight.done():
            await self._in_flight

        logger.info(
            f"Recognition stopped: {len(self.session.seen_identities)} identities recognized, "
            f"{self.frames_processed} frames processed, {self.frames_dropped} dropped"
        )

    async def _run(self):
        while self.session.active:
            if self.is_processing:
                self.frames_dropped += 1
            else:
                try:
                    frame = await asyncio.to_thread(self.frame_source.get_frame)
                except Exception as e:
                    logger.error(f"Failed to read frame: {e}")
                    frame = None

                if frame is not None and self.session.active:
                    self._in_flight = asyncio.create_task(self.process_frame(frame))

            await asyncio.sleep(self.poll_interval)

    @contextmanager
    def _processing_guard(self):
        self._processing = True
        try:
            yield
        finally:
            self._processing = False

    async def process_frame(self, frame: np.ndarray) -> List[FrameMatch]:
        """
        Detect, match and confirm the faces of one frame.

        Frame-level failures are logged and reported as no matches.

        Args:
            frame: BGR image

        Returns:
            Matches of this frame in detection order
        """
        if self._processing:
            self.frames_dropped += 1
            return []

        with self._processing_guard():
            try:
                detections = await self.provider.detect_all(frame)
                frame_matches = self._match_frame(detections)
            except Exception as e:
                logger.error(f"Recognition error: {e}")
                return []
            finally:
                self.frames_processed += 1

        self._draw(frame, detections, frame_matches)
        return frame_matches

    def _match_frame(self, detections: list) -> List[FrameMatch]:
        if not detections:
            return []

        descriptors = self.store.all()
        frame_matches = []

        for index, match in match_detections(detections, descriptors, self.match_threshold):
            is_new = self._confirm(match)
            frame_matches.append(FrameMatch(index=index, match=match, is_new=is_new))

        return frame_matches

    def _confirm(self, match: Match) -> bool:
        """Record a match in the session; True only the first time its identity appears."""
        if match.identity_id in self.session.seen_identities:
            return False

        self.session.seen_identities.add(match.identity_id)
        self.session.recent_matches.appendleft(match)
        self.events.put_nowait(MatchConfirmed(
            match=match,
            session_id=self.session_id,
            timestamp=datetime.now()
        ))

        logger.info(f"Recognized {match.display_name} ({match.confidence}%)")
        return True

    def _draw(self, frame: np.ndarray, detections: list, frame_matches: List[FrameMatch]):
        if self.on_frame is None:
            return

        try:
            self.on_frame(frame, detections, frame_matches)
        except Exception as e:
            logger.error(f"Overlay callback failed: {e}")
