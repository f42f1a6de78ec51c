"""
Shared fixtures and fakes for the face attendance tests.
"""

import asyncio
import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from face_attendance.descriptor_store import DescriptorStore
from face_attendance.embedding_provider import Detection, ModelReadiness
from face_attendance.embeddings import EMBEDDING_SIZE, as_embedding


def unit_embedding(index: int, scale: float = 1.0) -> np.ndarray:
    """Embedding with a single non-zero component."""
    values = np.zeros(EMBEDDING_SIZE)
    values[index] = scale
    return as_embedding(values)


def make_detection(embedding) -> Detection:
    return Detection(bounds=(10, 10, 50, 50), landmarks=[(20, 20), (40, 20)],
                     embedding=as_embedding(embedding))


class FakeFrameSource:
    """Frame source that always has a small black frame."""

    def __init__(self):
        self.frames_served = 0

    def get_frame(self):
        self.frames_served += 1
        return np.zeros((8, 8, 3), dtype=np.uint8)


class FakeProvider:
    """Embedding provider returning scripted results."""

    def __init__(self, best=None, detections=None, delay: float = 0.0, ready: bool = True):
        self.readiness = ModelReadiness()
        if ready:
            self.readiness.mark_ready()
        self.best_embeddings = list(best or [])
        self.detections = list(detections or [])
        self.delay = delay
        self.error = None
        self.detect_best_calls = 0
        self.detect_all_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def detect_best(self, frame):
        self.detect_best_calls += 1
        if not self.readiness.is_ready:
            return None
        await asyncio.sleep(0)
        return self.best_embeddings.pop(0) if self.best_embeddings else None

    async def detect_all(self, frame):
        self.detect_all_calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return list(self.detections)
        finally:
            self.in_flight -= 1


class RecordingSink:
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.records = []

    def record(self, record) -> bool:
        self.records.append(record)
        return self.succeed


class RecordingNotifier:
    def __init__(self):
        self.notifications = []

    def notify(self, notification):
        self.notifications.append(notification)


@pytest.fixture
def store_config(tmp_path):
    return {'storage': {'database_file': str(tmp_path / 'faces.pkl')}}


@pytest.fixture
def store(store_config):
    return DescriptorStore(store_config)


@pytest.fixture
def frame_source():
    return FakeFrameSource()


@pytest.fixture
def notifier():
    return RecordingNotifier()
