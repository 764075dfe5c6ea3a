# tests/test_config.py
"""Settings validation, engine config and the shipped migrations."""
import pytest

from ridernotify.config import Settings, validate_or_warn, warn_on_risky_config


def _settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


class TestProductionValidation:
    def test_dev_never_fails(self):
        s = _settings(app_env="dev")
        assert s.validate_required_for_production() == []
        assert isinstance(validate_or_warn(s), list)

    def test_prod_requires_credentials(self):
        s = _settings(app_env="prod", storage_backend="postgres")
        missing = s.validate_required_for_production()
        assert "admin_token" in missing
        assert "twilio_auth_token" in missing
        assert "database_url" in missing
        with pytest.raises(RuntimeError, match="Missing required settings"):
            validate_or_warn(s)

    def test_prod_memory_backend_skips_database_url(self):
        s = _settings(app_env="prod", storage_backend="memory")
        assert "database_url" not in s.validate_required_for_production()


class TestRiskyConfigWarnings:
    def test_dev_gateways_warned(self):
        warnings = warn_on_risky_config(_settings(storage_backend="memory"))
        assert any("dev gateway" in w for w in warnings)
        assert any("admin_token" in w for w in warnings)

    def test_webhook_url_missing_warned(self):
        s = _settings(
            twilio_account_sid="AC1", twilio_auth_token="t", twilio_phone_number="+15550001111",
            require_webhook_validation=True,
        )
        assert s.twilio_enabled is True
        assert any("twilio_webhook_url" in w for w in warn_on_risky_config(s))


class TestEngineConfig:
    def test_from_settings(self):
        from ridernotify.core.engine_config import EngineConfig

        cfg = EngineConfig.from_settings(_settings(
            pacing_block_size=3, pacing_pause_seconds=0.5, public_base_url="https://x.example.com",
        ))
        assert cfg.pacing_block_size == 3
        assert cfg.pacing_pause_seconds == 0.5
        assert cfg.public_base_url == "https://x.example.com"
        assert cfg.batch_error_sample_size == 10


class TestMigrations:
    def test_expected_schema_version_is_latest_migration(self):
        from ridernotify.infra.migrations_async import latest_migration, migration_files

        assert [p.name for p in migration_files()] == ["001_initial.sql", "002_tracking_log.sql"]
        assert latest_migration() == Settings.model_fields["expected_schema_version"].default


class TestTokenStrength:
    def test_strong_token_no_warnings(self):
        from ridernotify.transport.security import validate_token_strength

        assert validate_token_strength("aB3cD5eF7gH9iJ1kL3mN5oP7qR9sT1uX", "ADMIN_TOKEN") == []

    def test_weak_token_warnings(self):
        from ridernotify.transport.security import validate_token_strength

        warnings = validate_token_strength("password", "ADMIN_TOKEN")
        assert any("too short" in w for w in warnings)
        assert any("weak pattern" in w for w in warnings)
