from __future__ import annotations

from dataclasses import dataclass, fields

from src.manifest.errors import ConfigurationError
from src.manifest.resource_types import GENERAL_STACK_KIND


@dataclass(frozen=True)
class EnvConfig:
    """Naming shared by every stack: which environment and which app."""

    env_name: str
    app_name: str

    @property
    def stack_kind(self) -> str:
        return GENERAL_STACK_KIND

    def validate(self) -> None:
        """Check that every field without a usable default has a value."""
        missing = [
            f.name for f in fields(self)
            if getattr(self, f.name) is None or getattr(self, f.name) == ""
        ]
        if missing:
            raise ConfigurationError(
                f"{type(self).__name__} is missing required field(s): {', '.join(missing)}")


@dataclass(frozen=True)
class AppConfig(EnvConfig):
    """App-level ("general") stack: shared network, compute and search sizing."""

    vpc_cidr: str = "10.10.0.0/16"
    open_search_volume_size: int = 10
    open_search_data_node_instance_type: str = "t3.small.search"
    open_search_master_node_instance_type: str = "t3.small.search"
    open_search_data_nodes: int = 1
    open_search_master_nodes: int = 0
    open_search_multi_az: bool = False


@dataclass(frozen=True)
class ServiceConfig(EnvConfig):
    """Per-service stack: naming only."""

    service_name: str = ""

    @property
    def stack_kind(self) -> str:
        return self.service_name


# Local development presets
EXAMPLE_LOCAL_CONFIG = AppConfig(env_name="local", app_name="app")

NOTIFICATION_LOCAL_CONFIG = ServiceConfig(
    env_name="local",
    app_name="app",
    service_name="notification",
)

_APP_CONFIGS: dict[str, AppConfig] = {
    "local": EXAMPLE_LOCAL_CONFIG,
    "dev": AppConfig(env_name="dev", app_name="app"),
    "prod": AppConfig(
        env_name="prod",
        app_name="app",
        open_search_volume_size=50,
        open_search_data_node_instance_type="r6g.large.search",
        open_search_master_node_instance_type="m6g.large.search",
        open_search_data_nodes=2,
        open_search_master_nodes=3,
    ),
}

_SERVICE_CONFIGS: dict[tuple[str, str], ServiceConfig] = {
    ("notification", "local"): NOTIFICATION_LOCAL_CONFIG,
    ("notification", "dev"): ServiceConfig(env_name="dev", app_name="app", service_name="notification"),
    ("notification", "prod"): ServiceConfig(env_name="prod", app_name="app", service_name="notification"),
}


def get_app_config(env_name: str) -> AppConfig:
    try:
        return _APP_CONFIGS[env_name]
    except KeyError:
        raise ConfigurationError(
            f"No app configuration for environment '{env_name}'. "
            f"Known environments: {', '.join(sorted(_APP_CONFIGS))}") from None


def get_service_config(service_name: str, env_name: str) -> ServiceConfig:
    try:
        return _SERVICE_CONFIGS[(service_name, env_name)]
    except KeyError:
        raise ConfigurationError(
            f"No configuration for service '{service_name}' in environment '{env_name}'") from None
