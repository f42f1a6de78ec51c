"""
Face Matching Module

Nearest-neighbour search of a face embedding against enrolled descriptors.

Distances are Euclidean in the dlib/face_recognition descriptor space, where
0.6 is the usual same-person cut-off. A different embedding model needs its
own threshold.

Confidence is a display score derived from distance, ``(1 - distance) * 100``
clamped at 0. It decreases monotonically with distance and is not a
calibrated probability: 100 means the embeddings are identical, not that the
identity is certain.
"""

import numpy as np
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .embeddings import as_embedding
from .errors import InvalidEmbeddingError

MATCH_THRESHOLD = 0.6


@dataclass(frozen=True)
class Match:
    """Best enrolled identity for one detected face."""
    identity_id: str
    display_name: str
    distance: float
    confidence: float


def confidence_from_distance(distance: float) -> float:
    """Convert a match distance to a 0-100 score rounded to one decimal."""
    return round(max(0.0, (1.0 - distance) * 100.0), 1)


def find_best_match(embedding: np.ndarray, descriptors: Sequence,
                    threshold: float = MATCH_THRESHOLD) -> Optional[Match]:
    """
    Find the enrolled descriptor closest to an embedding.
    
    Args:
        embedding: Query face embedding
        descriptors: Enrolled descriptors (objects with identity_id,
            display_name and embedding attributes)
        threshold: Distances at or above this value never match
        
    Returns:
        Closest match strictly below the threshold, or None (also for a
        malformed query embedding)
    """
    if embedding is None or not descriptors:
        return None

    try:
        query = as_embedding(embedding)
    except InvalidEmbeddingError:
        return None

    enrolled = np.stack([descriptor.embedding for descriptor in descriptors])
    distances = np.linalg.norm(enrolled - query, axis=1)
    
    # argmin keeps the first of equal minima
    best_index = int(np.argmin(distances))
    best_distance = float(distances[best_index])
    
    if best_distance >= threshold:
        return None
    
    best = descriptors[best_index]
    return Match(
        identity_id=best.identity_id,
        display_name=best.display_name,
        distance=best_distance,
        confidence=confidence_from_distance(best_distance)
    )


def match_detections(detections: Sequence, descriptors: Sequence,
                     threshold: float = MATCH_THRESHOLD) -> List[Tuple[int, Match]]:
    """
    Match every detection of a frame against the same descriptor set.
    
    Returns:
        (detection index, match) pairs in detection order, unmatched faces omitted
    """
    matches = []
    
    for index, detection in enumerate(detections):
        match = find_best_match(detection.embedding, descriptors, threshold)
        if match is not None:
            matches.append((index, match))
    
    return matches
