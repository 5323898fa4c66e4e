from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Union

import pulumi_gcp as gcp

from config import DeploymentSettings, StackConfig

LATEST_VERSION = "latest"


@dataclass
class LiteralEnv:
    name: str
    value: Any


@dataclass
class SecretEnv:
    """Env entry resolved by Cloud Run from a Secret Manager secret at start-up."""

    name: str
    secret: Any
    version: str = LATEST_VERSION


EnvEntry = Union[LiteralEnv, SecretEnv]


def build_n8n_env(
    stack: StackConfig,
    settings: DeploymentSettings,
    db_password_secret: Any,
    encryption_key_secret: Any,
    service_url: Optional[Any] = None,
) -> List[EnvEntry]:
    entries: List[EnvEntry] = [
        LiteralEnv("DB_TYPE", "postgresdb"),
        LiteralEnv("DB_POSTGRESDB_HOST", stack.supabase_host),
        LiteralEnv("DB_POSTGRESDB_PORT", stack.supabase_port),
        LiteralEnv("DB_POSTGRESDB_DATABASE", stack.supabase_database),
        LiteralEnv("DB_POSTGRESDB_USER", stack.supabase_user),
        LiteralEnv("DB_POSTGRESDB_SSL", "true"),
        SecretEnv("DB_POSTGRESDB_PASSWORD", db_password_secret),
        LiteralEnv("GENERIC_TIMEZONE", settings.service.timezone),
        SecretEnv("N8N_ENCRYPTION_KEY", encryption_key_secret),
        LiteralEnv("N8N_USER_MANAGEMENT_DISABLED", "true"),
    ]
    # Only known up front when the URL is derived rather than read back
    # from the realized service.
    if service_url is not None:
        entries.extend(
            LiteralEnv(name, service_url) for name in settings.post_deploy.env_names
        )
    return entries


def to_env_args(
    entries: Sequence[EnvEntry],
) -> List[gcp.cloudrunv2.ServiceTemplateContainerEnvArgs]:
    args = []
    for entry in entries:
        if isinstance(entry, SecretEnv):
            args.append(
                gcp.cloudrunv2.ServiceTemplateContainerEnvArgs(
                    name=entry.name,
                    value_source=gcp.cloudrunv2.ServiceTemplateContainerEnvValueSourceArgs(
                        secret_key_ref=gcp.cloudrunv2.ServiceTemplateContainerEnvValueSourceSecretKeyRefArgs(
                            secret=entry.secret,
                            version=entry.version,
                        ),
                    ),
                )
            )
        else:
            args.append(
                gcp.cloudrunv2.ServiceTemplateContainerEnvArgs(
                    name=entry.name,
                    value=entry.value,
                )
            )
    return args
