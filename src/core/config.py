"""
Batch engine configuration - environment driven, read once at import.
Validation limits, embedding model selection and batch bounds live here.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/memory.db")

# Batch bounds
MAX_BATCH_SIZE = int(os.getenv("MAX_BATCH_SIZE", "100"))
DEPRECATION_MAX_COUNT = int(os.getenv("DEPRECATION_MAX_COUNT", "1000"))
DEPRECATION_PROGRESS_INTERVAL = 10

# Validation configuration
VALIDATION_PROFILE = os.getenv("VALIDATION_PROFILE", "default")  # default|development|production
DEFAULT_EMBEDDING_MODEL = os.getenv("DEFAULT_EMBEDDING_MODEL", "default")
ENFORCE_NORMALIZATION = os.getenv("ENFORCE_NORMALIZATION", "false").lower() == "true"
VALIDATE_SUSPICIOUS_CONTENT = os.getenv("VALIDATE_SUSPICIOUS_CONTENT", "true").lower() == "true"
VALIDATE_EMBEDDING_QUALITY = os.getenv("VALIDATE_EMBEDDING_QUALITY", "false").lower() == "true"
MAX_CONTENT_SIZE_KB = int(os.getenv("MAX_CONTENT_SIZE_KB", "10"))
MAX_METADATA_SIZE_KB = int(os.getenv("MAX_METADATA_SIZE_KB", "5"))
MAX_PROJECT_ID_LENGTH = int(os.getenv("MAX_PROJECT_ID_LENGTH", "200"))
MAX_METADATA_ENTRIES = 50
MAX_METADATA_KEY_LENGTH = 100
MAX_METADATA_VALUE_LENGTH = 1000
MAX_EMBEDDING_DIMENSION = 4096

# Advisory thresholds used by dry-run validation warnings
EXPECTED_EMBEDDING_DIMENSION = int(os.getenv("EXPECTED_EMBEDDING_DIMENSION", "1536"))
CONTENT_WARNING_LENGTH = int(os.getenv("CONTENT_WARNING_LENGTH", "8000"))

SUSPICIOUS_PATTERNS = [
    "<script",
    "javascript:",
    "data:text/html",
    "eval(",
    "setTimeout(",
    "setInterval(",
]


@dataclass
class ValidationOptions:
    """Settings shared by the record validator and the embedding analyzer."""

    default_embedding_model: str = DEFAULT_EMBEDDING_MODEL
    enforce_normalization: bool = ENFORCE_NORMALIZATION
    validate_suspicious_content: bool = VALIDATE_SUSPICIOUS_CONTENT
    validate_embedding_quality: bool = VALIDATE_EMBEDDING_QUALITY
    max_content_size_kb: int = MAX_CONTENT_SIZE_KB
    max_metadata_size_kb: int = MAX_METADATA_SIZE_KB
    max_project_id_length: int = MAX_PROJECT_ID_LENGTH
    suspicious_patterns: List[str] = field(default_factory=lambda: list(SUSPICIOUS_PATTERNS))
    custom_embedding_models: Dict[str, object] = field(default_factory=dict)

    @property
    def max_content_chars(self) -> int:
        """Character cap that scales with the byte limit (10KB -> 10000 chars)."""
        return self.max_content_size_kb * 1000

    @property
    def max_content_bytes(self) -> int:
        return self.max_content_size_kb * 1024

    @property
    def max_metadata_bytes(self) -> int:
        return self.max_metadata_size_kb * 1024

    def add_embedding_model(self, model_name: str, dimensions: int, min_value: float = -2.0,
                            max_value: float = 2.0, zero_threshold: float = 1e-8) -> "ValidationOptions":
        """Register a model config visible only to validators built from these options."""
        from src.vector.types import EmbeddingModelConfig

        self.custom_embedding_models[model_name] = EmbeddingModelConfig(
            expected_dimensions=dimensions,
            min_value=min_value,
            max_value=max_value,
            zero_threshold=zero_threshold,
        )
        return self

    def use_openai_embeddings(self, model_version: str = "text-embedding-3-small") -> "ValidationOptions":
        self.default_embedding_model = f"openai-{model_version}"
        self.enforce_normalization = True
        return self

    def use_production_defaults(self) -> "ValidationOptions":
        self.validate_suspicious_content = True
        self.enforce_normalization = True
        self.max_content_size_kb = 10
        self.max_metadata_size_kb = 5
        return self

    def use_development_defaults(self) -> "ValidationOptions":
        self.validate_suspicious_content = False
        self.enforce_normalization = False
        self.max_content_size_kb = 50
        self.max_metadata_size_kb = 10
        return self


def get_validation_options(profile: Optional[str] = None) -> ValidationOptions:
    """Build validation options from the environment and the selected profile."""
    profile = profile or VALIDATION_PROFILE
    options = ValidationOptions()
    if profile == "production":
        options.use_production_defaults()
    elif profile == "development":
        options.use_development_defaults()
    return options


def ensure_db_directory(db_path: Optional[str] = None):
    """Ensure the database directory exists."""
    Path(db_path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def validate_batch_config():
    """Validate batch and validation configuration and return any issues."""
    issues = []

    if MAX_BATCH_SIZE < 1:
        issues.append("MAX_BATCH_SIZE must be >= 1")

    if DEPRECATION_MAX_COUNT < 1:
        issues.append("DEPRECATION_MAX_COUNT must be >= 1")

    if VALIDATION_PROFILE not in ["default", "development", "production"]:
        issues.append(f"Invalid VALIDATION_PROFILE: {VALIDATION_PROFILE}")

    if MAX_CONTENT_SIZE_KB < 1:
        issues.append("MAX_CONTENT_SIZE_KB must be >= 1")

    if MAX_METADATA_SIZE_KB < 1:
        issues.append("MAX_METADATA_SIZE_KB must be >= 1")

    if MAX_PROJECT_ID_LENGTH < 1:
        issues.append("MAX_PROJECT_ID_LENGTH must be >= 1")

    return issues
