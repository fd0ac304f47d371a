"""
Configuration tests - profiles and config sanity checks.
"""

from unittest.mock import patch

from src.core import config
from src.core.config import ValidationOptions, get_validation_options, validate_batch_config


class TestValidationProfiles:
    """Test option construction from profiles."""

    def test_default_profile_uses_environment_values(self):
        options = get_validation_options("default")
        assert options.max_content_size_kb == config.MAX_CONTENT_SIZE_KB
        assert options.validate_suspicious_content == config.VALIDATE_SUSPICIOUS_CONTENT

    def test_development_profile(self):
        options = get_validation_options("development")
        assert options.validate_suspicious_content is False
        assert options.max_content_size_kb == 50

    def test_production_profile(self):
        options = get_validation_options("production")
        assert options.enforce_normalization is True
        assert options.max_metadata_size_kb == 5

    def test_options_do_not_share_pattern_lists(self):
        first = ValidationOptions()
        first.suspicious_patterns.append("vbscript:")
        assert "vbscript:" not in ValidationOptions().suspicious_patterns


class TestConfigValidation:
    """Test config sanity checks."""

    def test_defaults_have_no_issues(self):
        with patch.object(config, "VALIDATION_PROFILE", "default"):
            assert validate_batch_config() == []

    def test_bad_values_reported(self):
        with patch.object(config, "MAX_BATCH_SIZE", 0), \
                patch.object(config, "VALIDATION_PROFILE", "staging"):
            issues = validate_batch_config()
        assert "MAX_BATCH_SIZE must be >= 1" in issues
        assert "Invalid VALIDATION_PROFILE: staging" in issues

    def test_ensure_db_directory(self, tmp_path):
        db_file = tmp_path / "nested" / "dir" / "memory.db"
        config.ensure_db_directory(str(db_file))
        assert db_file.parent.is_dir()
