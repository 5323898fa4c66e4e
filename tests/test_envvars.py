from config import DeploymentSettings, StackConfig
from envvars import LiteralEnv, SecretEnv, build_n8n_env, to_env_args

EXPECTED_NAMES = [
    "DB_TYPE",
    "DB_POSTGRESDB_HOST",
    "DB_POSTGRESDB_PORT",
    "DB_POSTGRESDB_DATABASE",
    "DB_POSTGRESDB_USER",
    "DB_POSTGRESDB_SSL",
    "DB_POSTGRESDB_PASSWORD",
    "GENERIC_TIMEZONE",
    "N8N_ENCRYPTION_KEY",
    "N8N_USER_MANAGEMENT_DISABLED",
]


def _stack() -> StackConfig:
    return StackConfig(
        project_id="test-project",
        region="asia-northeast1",
        supabase_host="db.example.supabase.co",
        supabase_port="5432",
        supabase_database="postgres",
        supabase_user="postgres",
        supabase_password="unused",
    )


def test_env_list_shape() -> None:
    entries = build_n8n_env(_stack(), DeploymentSettings(), "supabase-db-password", "n8n-encryption-key")

    assert [e.name for e in entries] == EXPECTED_NAMES
    values = {e.name: e.value for e in entries if isinstance(e, LiteralEnv)}
    assert values["DB_TYPE"] == "postgresdb"
    assert values["DB_POSTGRESDB_HOST"] == "db.example.supabase.co"
    assert values["DB_POSTGRESDB_SSL"] == "true"
    assert values["GENERIC_TIMEZONE"] == "Asia/Tokyo"
    assert values["N8N_USER_MANAGEMENT_DISABLED"] == "true"


def test_secrets_are_referenced_not_inlined() -> None:
    entries = build_n8n_env(_stack(), DeploymentSettings(), "supabase-db-password", "n8n-encryption-key")
    secrets = {e.name: e for e in entries if isinstance(e, SecretEnv)}

    assert set(secrets) == {"DB_POSTGRESDB_PASSWORD", "N8N_ENCRYPTION_KEY"}
    assert secrets["DB_POSTGRESDB_PASSWORD"].secret == "supabase-db-password"
    assert secrets["N8N_ENCRYPTION_KEY"].secret == "n8n-encryption-key"
    assert all(e.version == "latest" for e in secrets.values())


def test_service_url_entries_are_appended_when_known() -> None:
    url = "https://n8n-supabase-service-123456789012.asia-northeast1.run.app"
    entries = build_n8n_env(_stack(), DeploymentSettings(), "db", "key", service_url=url)

    assert [e.name for e in entries[-2:]] == ["WEBHOOK_URL", "N8N_EDITOR_BASE_URL"]
    assert all(e.value == url for e in entries[-2:])


def test_to_env_args_maps_both_kinds() -> None:
    args = to_env_args([LiteralEnv("DB_TYPE", "postgresdb"), SecretEnv("N8N_ENCRYPTION_KEY", "n8n-encryption-key")])

    assert args[0].name == "DB_TYPE"
    assert args[0].value == "postgresdb"
    assert args[0].value_source is None
    assert args[1].name == "N8N_ENCRYPTION_KEY"
    assert args[1].value is None
    assert args[1].value_source.secret_key_ref.secret == "n8n-encryption-key"
    assert args[1].value_source.secret_key_ref.version == "latest"
