from __future__ import annotations

import os
from collections.abc import Generator
from unittest.mock import patch

import aws_cdk as cdk
import pytest

from src.config.environments import AppConfig, ServiceConfig
from src.manifest.resource_types import StackIdentity


@pytest.fixture(autouse=True)
def mock_environment() -> Generator[None]:
    """Pin the environment so stacks synthesize the same way everywhere."""
    with patch.dict(os.environ, {
        'AWS_DEFAULT_REGION': 'us-east-1',
        'CDK_DEFAULT_REGION': 'us-east-1',
        'CDK_DEFAULT_ACCOUNT': '123456789012',
        'ENV_NAME': 'local',
    }):
        yield


@pytest.fixture
def app() -> cdk.App:
    """Fresh CDK app per test."""
    return cdk.App()


@pytest.fixture
def app_config() -> AppConfig:
    """App-level config for the 'local' environment."""
    return AppConfig(env_name="local", app_name="app")


@pytest.fixture
def service_config() -> ServiceConfig:
    """Notification service config for the 'local' environment."""
    return ServiceConfig(env_name="local", app_name="app", service_name="notification")


@pytest.fixture
def general_identity() -> StackIdentity:
    return StackIdentity(app_name="app", env_name="local", stack_kind="general")


@pytest.fixture
def service_identity() -> StackIdentity:
    return StackIdentity(app_name="app", env_name="local", stack_kind="notification")
