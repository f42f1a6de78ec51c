"""
Embedding Utilities

Fixed-length face embedding vectors: validation, distance and averaging.
"""

import numpy as np
from typing import Iterable, Sequence, Union

from .errors import InvalidEmbeddingError

EMBEDDING_SIZE = 128

EmbeddingLike = Union[np.ndarray, Sequence[float]]


def as_embedding(values: EmbeddingLike) -> np.ndarray:
    """
    Convert values to a read-only float64 embedding vector.
    
    Args:
        values: Sequence or array with EMBEDDING_SIZE numbers
        
    Returns:
        Embedding vector of shape (EMBEDDING_SIZE,)
        
    Raises:
        InvalidEmbeddingError: If the vector has the wrong shape or
            contains NaN or infinite values
    """
    if values is None:
        raise InvalidEmbeddingError("None embedding")
    
    try:
        embedding = np.array(values, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidEmbeddingError(f"Embedding is not numeric: {e}") from e
    
    if embedding.ndim != 1 or embedding.shape[0] != EMBEDDING_SIZE:
        raise InvalidEmbeddingError(
            f"Expected embedding of size {EMBEDDING_SIZE}, got shape {embedding.shape}"
        )
    
    if not np.all(np.isfinite(embedding)):
        raise InvalidEmbeddingError("NaN or infinite values")
    
    embedding.setflags(write=False)
    return embedding


def euclidean_distance(embedding1: np.ndarray, embedding2: np.ndarray) -> float:
    """Euclidean distance between two embeddings (0 = identical)."""
    return float(np.linalg.norm(np.asarray(embedding1) - np.asarray(embedding2)))


def average_embeddings(samples: Iterable[EmbeddingLike]) -> np.ndarray:
    """
    Average several embeddings dimension by dimension.
    
    Args:
        samples: Embeddings captured for the same face
        
    Returns:
        Element-wise arithmetic mean of the samples
    """
    vectors = [as_embedding(sample) for sample in samples]
    
    if not vectors:
        raise ValueError("No embeddings to average")
    
    if len(vectors) == 1:
        return vectors[0]
    
    return as_embedding(np.mean(np.stack(vectors), axis=0))
