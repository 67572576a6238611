"""
Unit tests for environment-driven settings.
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from knowledge_broker.settings import BrokerConfig, ChannelMode, load_settings


@pytest.mark.unit
class TestSettings:
    def test_defaults(self):
        config = load_settings({}).to_broker_config()

        assert config.cache_max_entries == 1000
        assert config.cache_ttl == timedelta(days=30)
        assert config.library_id_ttl == timedelta(days=7)
        assert config.circuit_breaker.failure_threshold == 5
        assert config.circuit_breaker.recovery_timeout == timedelta(seconds=60)
        assert config.retry.max_retries == 3
        assert config.fallback_enabled is True
        assert config.channel_mode == ChannelMode.PRIMARY_THEN_SECONDARY

    def test_environment_overrides(self):
        settings = load_settings(
            {
                "KNOWLEDGE_BASE_URL": "https://docs.internal/api",
                "KNOWLEDGE_CACHE_TTL_HOURS": "2",
                "KNOWLEDGE_CB_FAILURE_THRESHOLD": "2",
                "KNOWLEDGE_MAX_RETRIES": "0",
                "KNOWLEDGE_FALLBACK_ENABLED": "false",
                "KNOWLEDGE_CHANNEL_MODE": "primary_only",
                "KNOWLEDGE_CACHE_FILE": "",
                "UNRELATED": "ignored",
            }
        )
        config = settings.to_broker_config()

        assert settings.base_url == "https://docs.internal/api"
        assert config.cache_ttl == timedelta(hours=2)
        assert config.circuit_breaker.failure_threshold == 2
        assert config.retry.max_retries == 0
        assert config.fallback_enabled is False
        assert config.channel_mode == ChannelMode.PRIMARY_ONLY
        assert config.cache_file is None

    def test_broker_config_is_frozen(self):
        config = BrokerConfig()

        with pytest.raises(PydanticValidationError):
            config.fallback_enabled = False

    def test_invalid_values_are_rejected(self):
        with pytest.raises(PydanticValidationError):
            load_settings({"KNOWLEDGE_CHANNEL_MODE": "carrier_pigeon"})
        with pytest.raises(PydanticValidationError):
            BrokerConfig(cache_max_entries=0)
