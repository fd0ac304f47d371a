"""
Embedding validation - numeric checks on vectors attached to memories.
"""

from .types import EmbeddingModelConfig, SimilarityResult
from .embedding_validator import (
    MODEL_CONFIGS,
    EmbeddingValidator,
    cosine_similarity,
    register_embedding_model,
)

__all__ = [
    'EmbeddingModelConfig',
    'SimilarityResult',
    'EmbeddingValidator',
    'MODEL_CONFIGS',
    'cosine_similarity',
    'register_embedding_model'
]
