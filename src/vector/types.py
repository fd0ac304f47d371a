"""
Embedding model parameters and similarity results.
"""

from dataclasses import dataclass, field
from typing import Dict, List

from src.core.validation import ValidationResult


@dataclass(frozen=True)
class EmbeddingModelConfig:
    """Validation rules for one embedding model."""

    expected_dimensions: int
    """Exact vector length required; 0 disables the dimension check"""

    min_value: float
    """Lowest allowed element value"""

    max_value: float
    """Highest allowed element value"""

    zero_threshold: float
    """Absolute value below which an element counts as zero"""


@dataclass
class SimilarityResult:
    """Cosine similarity of two embeddings plus the checks performed on them."""

    cosine_similarity: float = 0.0
    validation: ValidationResult = field(default_factory=ValidationResult)

    @property
    def is_valid(self) -> bool:
        return self.validation.is_valid

    @property
    def errors(self) -> Dict[str, List[str]]:
        return self.validation.errors
