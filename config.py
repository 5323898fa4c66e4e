"""
This module defines the configuration of the n8n deployment.

Two layers are read: the Pulumi stack configuration, which carries the
environment-specific values and the database password, and a YAML settings
file describing the service itself. Both loaders report every missing key at
once and fail before any resource is declared.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pulumi
import yaml

POST_DEPLOY_MODES = ("patch", "deterministic")

REQUIRED_STACK_KEYS = [
    "projectId",
    "region",
    "supabaseHost",
    "supabasePort",
    "supabaseDatabase",
    "supabaseUser",
]

REQUIRED_SETTINGS_SECTIONS = ["apis", "secrets", "service"]


class ConfigurationError(ValueError):
    pass


@dataclass
class StackConfig:
    project_id: str
    region: str
    supabase_host: str
    supabase_port: str
    supabase_database: str
    supabase_user: str
    supabase_password: pulumi.Output = field(repr=False)
    encryption_key_epoch: Optional[str] = None
    settings_file: str = "config.yaml"


@dataclass
class ServiceSettings:
    name: str = "n8n-supabase-service"
    image: str = "n8nio/n8n:latest"
    port: int = 5678
    cpu: str = "1"
    memory: str = "1Gi"
    min_instances: int = 1
    max_instances: int = 5
    timezone: str = "Asia/Tokyo"
    deletion_protection: bool = False


@dataclass
class SecretSettings:
    db_password: str = "supabase-db-password"
    encryption_key: str = "n8n-encryption-key"
    encryption_key_length: int = 32


@dataclass
class PostDeploySettings:
    mode: str = "patch"
    timeout_seconds: int = 300
    env_names: List[str] = field(
        default_factory=lambda: ["WEBHOOK_URL", "N8N_EDITOR_BASE_URL"]
    )


@dataclass
class DeploymentSettings:
    apis: List[str] = field(default_factory=lambda: ["run", "secretmanager"])
    service_account_id: str = "n8n-service-account"
    service_account_display_name: str = "n8n Service Account"
    service: ServiceSettings = field(default_factory=ServiceSettings)
    secrets: SecretSettings = field(default_factory=SecretSettings)
    post_deploy: PostDeploySettings = field(default_factory=PostDeploySettings)
    labels: Dict[str, str] = field(default_factory=dict)


def load_stack_config(config: Optional[pulumi.Config] = None) -> StackConfig:
    """Resolve the stack configuration, raising on any missing required value."""
    config = config or pulumi.Config()

    values = {key: config.get(key) for key in REQUIRED_STACK_KEYS}
    missing = [key for key, value in values.items() if not value]

    password = config.get_secret("supabasePassword")
    if password is None:
        missing.append("supabasePassword")

    if missing:
        raise ConfigurationError(
            f"Missing required configuration keys: {', '.join(missing)}"
        )

    return StackConfig(
        project_id=values["projectId"],
        region=values["region"],
        supabase_host=values["supabaseHost"],
        supabase_port=str(values["supabasePort"]),
        supabase_database=values["supabaseDatabase"],
        supabase_user=values["supabaseUser"],
        supabase_password=password,
        encryption_key_epoch=config.get("encryptionKeyEpoch"),
        settings_file=config.get("settingsFile") or "config.yaml",
    )


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Configuration section '{name}' must be a mapping")
    return value


def parse_settings(config_data: Dict[str, Any]) -> DeploymentSettings:
    """Build and validate DeploymentSettings from already-parsed YAML data."""
    for key in REQUIRED_SETTINGS_SECTIONS:
        if key not in config_data:
            raise ConfigurationError(f"Missing required configuration key: {key}")

    apis = config_data["apis"]
    if not isinstance(apis, list) or not apis:
        raise ConfigurationError("'apis' must be a non-empty list")

    account = _section(config_data, "service_account")
    try:
        settings = DeploymentSettings(
            apis=[str(api) for api in apis],
            service=ServiceSettings(**_section(config_data, "service")),
            secrets=SecretSettings(**_section(config_data, "secrets")),
            post_deploy=PostDeploySettings(**_section(config_data, "post_deploy")),
            labels={str(k): str(v) for k, v in _section(config_data, "labels").items()},
        )
    except TypeError as e:
        # unknown keys in a section surface as dataclass constructor errors
        raise ConfigurationError(f"Invalid settings: {e}") from e
    if "account_id" in account:
        settings.service_account_id = account["account_id"]
    if "display_name" in account:
        settings.service_account_display_name = account["display_name"]

    validate_settings(settings)
    return settings


def _require_int(key: str, value: Any) -> None:
    # bool is an int subclass; YAML "true" must not pass as 1
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{key} must be an integer, got {value!r}")


def validate_settings(settings: DeploymentSettings) -> None:
    service = settings.service
    for key, value in (
        ("service.port", service.port),
        ("service.min_instances", service.min_instances),
        ("service.max_instances", service.max_instances),
        ("post_deploy.timeout_seconds", settings.post_deploy.timeout_seconds),
        ("secrets.encryption_key_length", settings.secrets.encryption_key_length),
    ):
        _require_int(key, value)

    env_names = settings.post_deploy.env_names
    if not isinstance(env_names, list) or not env_names:
        raise ConfigurationError("post_deploy.env_names must be a non-empty list")
    for name in env_names:
        if not isinstance(name, str) or not name or "=" in name or "," in name:
            raise ConfigurationError(
                f"post_deploy.env_names contains an invalid variable name: {name!r}"
            )

    # min >= 1 keeps one warm instance for webhooks
    if service.min_instances < 1:
        raise ConfigurationError("service.min_instances must be at least 1")
    if service.max_instances < service.min_instances:
        raise ConfigurationError(
            "service.max_instances must be greater than or equal to service.min_instances"
        )
    if settings.post_deploy.mode not in POST_DEPLOY_MODES:
        raise ConfigurationError(
            f"post_deploy.mode must be one of {', '.join(POST_DEPLOY_MODES)}, "
            f"got '{settings.post_deploy.mode}'"
        )
    if settings.post_deploy.timeout_seconds <= 0:
        raise ConfigurationError("post_deploy.timeout_seconds must be positive")
    if settings.secrets.encryption_key_length <= 0:
        raise ConfigurationError("secrets.encryption_key_length must be positive")


def load_settings(file_path: str) -> DeploymentSettings:
    """Load and validate YAML settings from the given file path."""
    with open(file_path, "r") as file:
        config_data = yaml.safe_load(file) or {}

    if not isinstance(config_data, dict):
        raise ConfigurationError(f"{file_path} must contain a mapping at the top level")

    return parse_settings(config_data)
