"""
Post-deployment step: point n8n at its own public address.

The Cloud Run URL only exists once the service is realized, so it cannot be
part of the service declaration. Two strategies are supported:

* ``patch`` runs ``gcloud run services update`` through a local command once
  the URL output resolves. The URL is a trigger, so the command runs again
  only when the address changes.
* ``deterministic`` derives the URL from the project number and region and
  lets it be declared alongside the other env entries, avoiding drift.
"""

import shlex
from typing import Sequence

import pulumi
import pulumi_command as command
import pulumi_gcp as gcp


def build_env_patch_command(
    service_name: str,
    project_id: str,
    region: str,
    url: str,
    env_names: Sequence[str],
) -> str:
    if not env_names:
        raise ValueError("At least one environment variable name is required.")
    env_vars = ",".join(f"{name}={url}" for name in env_names)
    args = [
        "gcloud",
        "run",
        "services",
        "update",
        service_name,
        f"--project={project_id}",
        f"--region={region}",
        # merges into the existing env; --set-env-vars would replace it
        f"--update-env-vars={env_vars}",
        "--format=none",
    ]
    return " ".join(shlex.quote(arg) for arg in args)


def create_env_patch(
    name: str,
    service: gcp.cloudrunv2.Service,
    project_id: str,
    region: str,
    env_names: Sequence[str],
    opts: pulumi.ResourceOptions = None,
) -> command.local.Command:
    create_cmd = pulumi.Output.all(service.name, service.uri).apply(
        lambda args: build_env_patch_command(
            args[0], project_id, region, args[1], env_names
        )
    )
    pulumi.log.info(f"Scheduling '{name}' to set {', '.join(env_names)} once the service URL is known")
    return command.local.Command(
        name,
        create=create_cmd,
        interpreter=["bash", "-c"],
        triggers=[service.uri],
        opts=opts,
    )


def deterministic_service_url(service_name: str, project_number: str, region: str) -> str:
    return f"https://{service_name}-{project_number}.{region}.run.app"


def resolve_deterministic_url(service_name: str, project_id: str, region: str) -> pulumi.Output:
    project = gcp.organizations.get_project_output(project_id=project_id)
    return project.number.apply(
        lambda number: deterministic_service_url(service_name, number, region)
    )
