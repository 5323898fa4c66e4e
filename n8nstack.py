import pulumi
import pulumi_gcp as gcp
import pulumi_random as random
from typing import Any, Callable, Dict, Iterable, List, Optional

from config import DeploymentSettings, StackConfig, load_settings, load_stack_config
from envvars import build_n8n_env, to_env_args
from graph import DependencyGraph
from postdeploy import create_env_patch, resolve_deterministic_url

INVOKER_ROLE = "roles/run.invoker"
SECRET_ACCESSOR_ROLE = "roles/secretmanager.secretAccessor"
PUBLIC_MEMBER = "allUsers"

DB_PASSWORD_SECRET = "db-password-secret"
DB_PASSWORD_VERSION = "db-password-secret-version"
ENCRYPTION_KEY_SECRET = "n8n-encryption-key-secret"
ENCRYPTION_KEY_VERSION = "n8n-encryption-key-secret-version"
ENCRYPTION_KEY_RANDOM = "n8n-encryption-key-random"
SERVICE = "n8n-service"
ENV_PATCH = "update-n8n-env-vars"
PROJECT_LOOKUP = "project-lookup"
INVOKER_BINDING = "n8n-invoker"
DB_PASSWORD_ACCESSOR = "db-password-accessor"
ENCRYPTION_KEY_ACCESSOR = "encryption-key-accessor"


def service_account_member(email: pulumi.Input[str]) -> pulumi.Output:
    return pulumi.Output.from_input(email).apply(lambda e: f"serviceAccount:{e}")


class N8nStackBuilder:
    def __init__(self, stack: StackConfig, settings: DeploymentSettings):
        self.stack = stack
        self.settings = settings
        self.resources: Dict[str, pulumi.Resource] = {}
        self.graph = DependencyGraph()
        self.api_names: List[str] = []
        self.service_url: Optional[pulumi.Output] = None

    @property
    def service_account_name(self) -> str:
        return self.settings.service_account_id

    def _register(
        self,
        name: str,
        factory: Callable[[pulumi.ResourceOptions], pulumi.Resource],
        depends_on: Iterable[str] = (),
        **options: Any,
    ) -> pulumi.Resource:
        """Record the node and its edges, then create the resource with matching depends_on."""
        self.graph.add(name, depends_on)
        opts = pulumi.ResourceOptions(
            # lookups are graph nodes but not resources
            depends_on=[
                self.resources[dep]
                for dep in self.graph.dependencies_of(name)
                if dep in self.resources
            ],
            **options,
        )
        resource = factory(opts)
        self.resources[name] = resource
        pulumi.log.info(f"Created resource: {name} ({type(resource).__name__})")
        return resource

    def enable_apis(self):
        for api in self.settings.apis:
            name = f"enable-{api}"
            self._register(
                name,
                lambda opts, api=api, name=name: gcp.projects.Service(
                    name,
                    project=self.stack.project_id,
                    service=f"{api}.googleapis.com",
                    disable_dependent_services=True,
                    opts=opts,
                ),
            )
            self.api_names.append(name)

    def create_service_account(self):
        account_id = self.settings.service_account_id
        self._register(
            account_id,
            lambda opts: gcp.serviceaccount.Account(
                account_id,
                account_id=account_id,
                display_name=self.settings.service_account_display_name,
                project=self.stack.project_id,
                opts=opts,
            ),
        )

    def generate_encryption_key(self):
        keepers = None
        if self.stack.encryption_key_epoch:
            keepers = {"epoch": self.stack.encryption_key_epoch}
        self._register(
            ENCRYPTION_KEY_RANDOM,
            lambda opts: random.RandomString(
                ENCRYPTION_KEY_RANDOM,
                length=self.settings.secrets.encryption_key_length,
                special=False,
                keepers=keepers,
                opts=opts,
            ),
        )

    def _create_secret(self, name: str, secret_id: str):
        self._register(
            name,
            lambda opts: gcp.secretmanager.Secret(
                name,
                secret_id=secret_id,
                project=self.stack.project_id,
                replication=gcp.secretmanager.SecretReplicationArgs(
                    auto=gcp.secretmanager.SecretReplicationAutoArgs(),
                ),
                labels=self.settings.labels or None,
                opts=opts,
            ),
            depends_on=self.api_names,
        )

    def _create_secret_version(self, name: str, secret_name: str, data: pulumi.Input[str], depends_on: Iterable[str]):
        secret = self.resources[secret_name]
        # Replaced versions stay in Secret Manager; "latest" moves to the new one.
        self._register(
            name,
            lambda opts: gcp.secretmanager.SecretVersion(
                name,
                secret=secret.id,
                secret_data=data,
                opts=opts,
            ),
            depends_on=[secret_name, *depends_on],
            retain_on_delete=True,
        )

    def create_secrets(self):
        secrets = self.settings.secrets
        self._create_secret(DB_PASSWORD_SECRET, secrets.db_password)
        self._create_secret_version(
            DB_PASSWORD_VERSION, DB_PASSWORD_SECRET, self.stack.supabase_password, []
        )

        self._create_secret(ENCRYPTION_KEY_SECRET, secrets.encryption_key)
        key = self.resources[ENCRYPTION_KEY_RANDOM]
        self._create_secret_version(
            ENCRYPTION_KEY_VERSION,
            ENCRYPTION_KEY_SECRET,
            pulumi.Output.secret(key.result),
            [ENCRYPTION_KEY_RANDOM],
        )

    def deploy_service(self):
        service = self.settings.service
        account = self.resources[self.service_account_name]
        db_secret = self.resources[DB_PASSWORD_SECRET]
        key_secret = self.resources[ENCRYPTION_KEY_SECRET]

        depends_on = [
            self.service_account_name,
            DB_PASSWORD_SECRET,
            DB_PASSWORD_VERSION,
            ENCRYPTION_KEY_SECRET,
            ENCRYPTION_KEY_VERSION,
        ]
        if self.settings.post_deploy.mode == "deterministic":
            self.graph.add(PROJECT_LOOKUP)
            depends_on.append(PROJECT_LOOKUP)
            self.service_url = resolve_deterministic_url(
                service.name, self.stack.project_id, self.stack.region
            )

        envs = to_env_args(
            build_n8n_env(
                self.stack,
                self.settings,
                db_secret.secret_id,
                key_secret.secret_id,
                service_url=self.service_url,
            )
        )

        self._register(
            SERVICE,
            lambda opts: gcp.cloudrunv2.Service(
                SERVICE,
                name=service.name,
                project=self.stack.project_id,
                location=self.stack.region,
                deletion_protection=service.deletion_protection,
                labels=self.settings.labels or None,
                template=gcp.cloudrunv2.ServiceTemplateArgs(
                    service_account=account.email,
                    scaling=gcp.cloudrunv2.ServiceTemplateScalingArgs(
                        min_instance_count=service.min_instances,
                        max_instance_count=service.max_instances,
                    ),
                    containers=[
                        gcp.cloudrunv2.ServiceTemplateContainerArgs(
                            image=service.image,
                            ports=gcp.cloudrunv2.ServiceTemplateContainerPortsArgs(
                                container_port=service.port,
                            ),
                            resources=gcp.cloudrunv2.ServiceTemplateContainerResourcesArgs(
                                limits={"cpu": service.cpu, "memory": service.memory},
                            ),
                            envs=envs,
                        )
                    ],
                ),
                opts=opts,
            ),
            depends_on=depends_on,
        )

    def patch_environment(self):
        if self.settings.post_deploy.mode != "patch":
            pulumi.log.info(
                f"Service URL is declared up front; skipping '{ENV_PATCH}'"
            )
            return

        post_deploy = self.settings.post_deploy
        timeout = f"{post_deploy.timeout_seconds}s"
        self._register(
            ENV_PATCH,
            lambda opts: create_env_patch(
                ENV_PATCH,
                self.resources[SERVICE],
                self.stack.project_id,
                self.stack.region,
                post_deploy.env_names,
                opts=opts,
            ),
            depends_on=[SERVICE],
            custom_timeouts=pulumi.CustomTimeouts(create=timeout, update=timeout),
        )

    def bind_access(self):
        service = self.resources[SERVICE]
        self._register(
            INVOKER_BINDING,
            lambda opts: gcp.cloudrunv2.ServiceIamMember(
                INVOKER_BINDING,
                project=service.project,
                location=service.location,
                name=service.name,
                role=INVOKER_ROLE,
                member=PUBLIC_MEMBER,
                opts=opts,
            ),
            depends_on=[SERVICE],
        )

        member = service_account_member(self.resources[self.service_account_name].email)
        for name, secret_name in (
            (DB_PASSWORD_ACCESSOR, DB_PASSWORD_SECRET),
            (ENCRYPTION_KEY_ACCESSOR, ENCRYPTION_KEY_SECRET),
        ):
            secret = self.resources[secret_name]
            self._register(
                name,
                lambda opts, name=name, secret=secret: gcp.secretmanager.SecretIamMember(
                    name,
                    project=secret.project,
                    secret_id=secret.secret_id,
                    role=SECRET_ACCESSOR_ROLE,
                    member=member,
                    opts=opts,
                ),
                depends_on=[secret_name, self.service_account_name],
            )

    def build(self):
        self.enable_apis()
        self.create_service_account()
        self.generate_encryption_key()
        self.create_secrets()
        self.deploy_service()
        self.patch_environment()
        self.bind_access()

        pulumi.log.info(f"Creation order: {', '.join(self.graph.topological_order())}")
        for index, stage in enumerate(self.graph.stages(), start=1):
            pulumi.log.info(f"Stage {index}: {', '.join(stage)}")

    @property
    def outputs(self) -> Dict[str, Any]:
        service = self.resources[SERVICE]
        return {
            "n8nServiceUrl": service.uri,
            "n8nServiceAccountEmail": self.resources[self.service_account_name].email,
            "deploymentStages": self.graph.stages(),
        }


def provision(config: Optional[pulumi.Config] = None) -> N8nStackBuilder:
    """Resolve every configuration value, then declare the whole stack."""
    stack = load_stack_config(config)
    settings = load_settings(stack.settings_file)
    builder = N8nStackBuilder(stack, settings)
    builder.build()
    return builder
