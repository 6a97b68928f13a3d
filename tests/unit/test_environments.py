"""Tests for the environment configuration records."""
from __future__ import annotations

import pytest

from src.config.environments import (
    EXAMPLE_LOCAL_CONFIG,
    NOTIFICATION_LOCAL_CONFIG,
    AppConfig,
    ServiceConfig,
    get_app_config,
    get_service_config,
)
from src.manifest.errors import ConfigurationError


class TestPresets:
    """Test the shipped configuration presets."""

    def test_example_local_config(self) -> None:
        """Test the local app config carries the default sizing."""
        config = EXAMPLE_LOCAL_CONFIG

        assert config.env_name == "local"
        assert config.app_name == "app"
        assert config.open_search_volume_size == 10
        assert config.open_search_data_node_instance_type == "t3.small.search"
        assert config.open_search_master_node_instance_type == "t3.small.search"
        assert config.open_search_data_nodes == 1
        assert config.open_search_master_nodes == 0
        assert config.open_search_multi_az is False
        assert config.vpc_cidr == "10.10.0.0/16"

    def test_notification_local_config(self) -> None:
        """Test the local notification service config."""
        config = NOTIFICATION_LOCAL_CONFIG

        assert config.env_name == "local"
        assert config.app_name == "app"
        assert config.service_name == "notification"

    def test_configs_are_frozen(self) -> None:
        """Test config records cannot be changed after creation."""
        with pytest.raises(AttributeError):
            EXAMPLE_LOCAL_CONFIG.env_name = "prod"  # type: ignore[misc]


class TestStackKind:
    """Test how configs name the slice of the app they describe."""

    def test_app_config_is_general(self) -> None:
        assert AppConfig(env_name="dev", app_name="shop").stack_kind == "general"

    def test_service_config_uses_service_name(self) -> None:
        config = ServiceConfig(env_name="dev", app_name="shop", service_name="billing")

        assert config.stack_kind == "billing"


class TestValidation:
    """Test required-field validation."""

    def test_valid_configs_pass(self) -> None:
        EXAMPLE_LOCAL_CONFIG.validate()
        NOTIFICATION_LOCAL_CONFIG.validate()

    def test_missing_service_name(self) -> None:
        """Test a service config without a service name is rejected."""
        config = ServiceConfig(env_name="local", app_name="app")

        with pytest.raises(ConfigurationError, match="service_name"):
            config.validate()

    def test_all_missing_fields_are_reported(self) -> None:
        """Test every missing field shows up in one error."""
        config = ServiceConfig(env_name="", app_name="", service_name="")

        with pytest.raises(ConfigurationError) as exc_info:
            config.validate()

        message = str(exc_info.value)
        assert "env_name" in message
        assert "app_name" in message
        assert "service_name" in message

    def test_zero_and_false_are_values(self) -> None:
        """Test numeric zero and False count as present."""
        config = AppConfig(
            env_name="local", app_name="app", open_search_master_nodes=0, open_search_multi_az=False)

        config.validate()


class TestLookup:
    """Test resolving configs by environment name."""

    def test_get_app_config(self) -> None:
        assert get_app_config("local") is EXAMPLE_LOCAL_CONFIG
        assert get_app_config("prod").env_name == "prod"

    def test_get_service_config(self) -> None:
        assert get_service_config("notification", "local") is NOTIFICATION_LOCAL_CONFIG
        assert get_service_config("notification", "dev").env_name == "dev"

    def test_unknown_environment(self) -> None:
        with pytest.raises(ConfigurationError, match="staging"):
            get_app_config("staging")

    def test_unknown_service(self) -> None:
        with pytest.raises(ConfigurationError, match="billing"):
            get_service_config("billing", "local")

    def test_environments_are_consistent(self) -> None:
        """Test app and service configs of one environment share naming."""
        for env_name in ("local", "dev", "prod"):
            app_config = get_app_config(env_name)
            service_config = get_service_config("notification", env_name)

            assert app_config.env_name == service_config.env_name == env_name
            assert app_config.app_name == service_config.app_name
