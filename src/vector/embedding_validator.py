"""
Embedding quality analysis - dimension, range, finiteness, magnitude,
sparsity and normalization checks plus cosine similarity.
"""

from typing import Dict, Iterable, Optional, Sequence

import numpy as np

from src.core.validation import ValidationResult
from .types import EmbeddingModelConfig, SimilarityResult

DEFAULT_MODEL_NAME = "default"
MAX_REASONABLE_MAGNITUDE = 100.0
MAX_SPARSITY_RATIO = 0.95
NORMALIZATION_TOLERANCE = 0.01
SIMILARITY_TOLERANCE_BAND = (-1.1, 1.1)

# Process-wide model registry; extend at startup with register_embedding_model()
MODEL_CONFIGS: Dict[str, EmbeddingModelConfig] = {
    "openai-ada-002": EmbeddingModelConfig(1536, -1.0, 1.0, 1e-6),
    "openai-text-embedding-3-small": EmbeddingModelConfig(1536, -1.0, 1.0, 1e-6),
    "openai-text-embedding-3-large": EmbeddingModelConfig(3072, -1.0, 1.0, 1e-6),
    "cohere-embed-english-v3.0": EmbeddingModelConfig(1024, -1.0, 1.0, 1e-6),
    "sentence-transformers-all-minilm-l6-v2": EmbeddingModelConfig(384, -1.0, 1.0, 1e-6),
    DEFAULT_MODEL_NAME: EmbeddingModelConfig(1536, -2.0, 2.0, 1e-8),
}


def register_embedding_model(model_name: str, config: EmbeddingModelConfig) -> None:
    """Add or replace a model config for every validator in the process."""
    MODEL_CONFIGS[model_name] = config


def cosine_similarity(embedding1: Sequence[float], embedding2: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|); 0.0 when either vector has zero norm."""
    a = np.asarray(embedding1, dtype=np.float64)
    b = np.asarray(embedding2, dtype=np.float64)
    norm1 = float(np.sqrt(np.sum(a * a)))
    norm2 = float(np.sqrt(np.sum(b * b)))
    if norm1 == 0.0 or norm2 == 0.0:
        return 0.0
    return float(np.sum(a * b)) / (norm1 * norm2)


class EmbeddingValidator:
    """Validates embedding vectors against a named model configuration."""

    def __init__(self, default_model_name: str = DEFAULT_MODEL_NAME, enforce_normalization: bool = False,
                 custom_models: Optional[Dict[str, EmbeddingModelConfig]] = None):
        self.default_model_name = default_model_name
        self.enforce_normalization = enforce_normalization
        self.custom_models = dict(custom_models or {})

    @classmethod
    def from_options(cls, options) -> "EmbeddingValidator":
        return cls(
            default_model_name=options.default_embedding_model,
            enforce_normalization=options.enforce_normalization,
            custom_models=options.custom_embedding_models,
        )

    def get_model_config(self, model_name: Optional[str] = None) -> EmbeddingModelConfig:
        """Resolve a model config, falling back to the default entry for unknown names."""
        name = model_name or self.default_model_name
        if name in self.custom_models:
            return self.custom_models[name]
        return MODEL_CONFIGS.get(name, MODEL_CONFIGS[DEFAULT_MODEL_NAME])

    def validate_embedding(self, embedding, model_name: Optional[str] = None) -> ValidationResult:
        """Run dimension, range, finiteness, quality and (optional) normalization checks."""
        result = ValidationResult()

        if embedding is None:
            result.add_error("embedding", "Embedding cannot be null")
            return result

        try:
            vector = np.asarray(embedding, dtype=np.float64)
        except (TypeError, ValueError):
            result.add_error("embedding", "Embedding must contain only numeric values")
            return result

        if vector.ndim != 1:
            result.add_error("embedding", f"Embedding must be one-dimensional (got shape {vector.shape})")
            return result

        if vector.size == 0:
            result.add_error("embedding", "Embedding cannot be empty")
            return result

        config = self.get_model_config(model_name)

        self._validate_dimensions(vector, config, result)
        self._validate_value_ranges(vector, config, result)
        self._validate_finite_values(vector, result)
        self._validate_vector_quality(vector, config, result)

        if self.enforce_normalization:
            self._validate_normalization(vector, result)

        return result

    def validate_consistency(self, embeddings: Iterable, model_name: Optional[str] = None) -> ValidationResult:
        """Check that every embedding shares the first one's length and is individually valid.

        All indices are reported; the scan never stops at the first bad vector.
        """
        result = ValidationResult()
        embedding_list = list(embeddings)

        if not embedding_list:
            return result

        first = embedding_list[0]
        if first is None:
            result.add_error("embeddings", "First embedding in collection is null")
            return result

        expected_dimensions = len(first)

        for index, embedding in enumerate(embedding_list):
            if embedding is None:
                result.add_error("embeddings", f"Embedding at index {index} is null")
                continue

            if len(embedding) != expected_dimensions:
                result.add_error(
                    "embeddings",
                    f"Embedding at index {index} has {len(embedding)} dimensions, expected {expected_dimensions}"
                )

            individual = self.validate_embedding(embedding, model_name)
            for error in individual.get_all_errors():
                result.add_error("embeddings", f"Embedding at index {index}: {error}")

        return result

    def validate_similarity(self, embedding1, embedding2, model_name: Optional[str] = None) -> SimilarityResult:
        """Validate both embeddings and compute their cosine similarity."""
        result = SimilarityResult()

        first = self.validate_embedding(embedding1, model_name)
        second = self.validate_embedding(embedding2, model_name)

        if not first.is_valid:
            result.validation.add_error("embedding1", "First embedding is invalid")
            for error in first.get_all_errors():
                result.validation.add_error("embedding1", error)

        if not second.is_valid:
            result.validation.add_error("embedding2", "Second embedding is invalid")
            for error in second.get_all_errors():
                result.validation.add_error("embedding2", error)

        if not result.is_valid:
            return result

        if len(embedding1) != len(embedding2):
            result.validation.add_error(
                "similarity",
                f"Embeddings have different dimensions: {len(embedding1)} vs {len(embedding2)}"
            )
            return result

        similarity = cosine_similarity(embedding1, embedding2)
        low, high = SIMILARITY_TOLERANCE_BAND
        if not (low <= similarity <= high):
            result.validation.add_error("similarity", f"Cosine similarity out of valid range: {similarity}")
        else:
            result.cosine_similarity = similarity

        return result

    def _validate_dimensions(self, vector: np.ndarray, config: EmbeddingModelConfig, result: ValidationResult):
        if config.expected_dimensions > 0 and vector.size != config.expected_dimensions:
            result.add_error(
                "embedding",
                f"Invalid embedding dimension: expected {config.expected_dimensions}, got {vector.size}"
            )

    def _validate_value_ranges(self, vector: np.ndarray, config: EmbeddingModelConfig, result: ValidationResult):
        # First violation only; NaN compares false and is left to the finiteness check
        out_of_range = np.flatnonzero((vector < config.min_value) | (vector > config.max_value))
        if out_of_range.size:
            index = int(out_of_range[0])
            result.add_error(
                "embedding",
                f"Value at index {index} ({vector[index]}) is outside valid range "
                f"[{config.min_value}, {config.max_value}]"
            )

    def _validate_finite_values(self, vector: np.ndarray, result: ValidationResult):
        non_finite = np.flatnonzero(~np.isfinite(vector))
        if non_finite.size:
            index = int(non_finite[0])
            if np.isnan(vector[index]):
                result.add_error("embedding", f"Value at index {index} is NaN")
            else:
                result.add_error("embedding", f"Value at index {index} is infinity")

    def _validate_vector_quality(self, vector: np.ndarray, config: EmbeddingModelConfig, result: ValidationResult):
        near_zero = np.abs(vector) < config.zero_threshold
        if near_zero.all():
            result.add_error("embedding", "Embedding is effectively a zero vector")
            return

        magnitude = self._magnitude(vector)
        if magnitude < config.zero_threshold:
            result.add_error("embedding", f"Embedding magnitude too small: {magnitude}")
        elif magnitude > MAX_REASONABLE_MAGNITUDE:
            result.add_error("embedding", f"Embedding magnitude unusually large: {magnitude}")

        sparsity_ratio = float(near_zero.sum()) / vector.size
        if sparsity_ratio > MAX_SPARSITY_RATIO:
            result.add_error("embedding", f"Embedding is too sparse: {sparsity_ratio:.1%} zeros")

    def _validate_normalization(self, vector: np.ndarray, result: ValidationResult):
        magnitude = self._magnitude(vector)
        if abs(magnitude - 1.0) > NORMALIZATION_TOLERANCE:
            result.add_error("embedding", f"Embedding is not normalized: magnitude = {magnitude}")

    @staticmethod
    def _magnitude(vector: np.ndarray) -> float:
        with np.errstate(over="ignore", invalid="ignore"):
            return float(np.sqrt(np.sum(vector * vector)))
