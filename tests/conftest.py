"""
pytest setup.

The Pulumi program lives as flat modules at the repo root (Pulumi runs
``__main__.py`` from there), so the root is pinned to the front of sys.path.
Resource tests run against ``pulumi.runtime`` mocks that record every
registration.
"""

import os
import sys

import pulumi
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

SERVICE_URI = "https://n8n-supabase-service-abc123-an.a.run.app"
PROJECT_NUMBER = "123456789012"


class RecordingMocks(pulumi.runtime.Mocks):
    def __init__(self):
        self.resources = []
        self.calls = []

    def new_resource(self, args: pulumi.runtime.MockResourceArgs):
        outputs = dict(args.inputs)
        if args.typ == "gcp:serviceaccount/account:Account":
            outputs["email"] = f"{args.inputs['accountId']}@{args.inputs['project']}.iam.gserviceaccount.com"
        elif args.typ == "gcp:cloudrunv2/service:Service":
            outputs["uri"] = SERVICE_URI
        elif args.typ == "random:index/randomString:RandomString":
            outputs["result"] = "k" * int(args.inputs["length"])
        self.resources.append(args)
        return [f"{args.name}_id", outputs]

    def call(self, args: pulumi.runtime.MockCallArgs):
        self.calls.append(args)
        if args.token == "gcp:organizations/getProject:getProject":
            return {"number": PROJECT_NUMBER, "projectId": args.args.get("projectId")}
        return {}

    def by_name(self, name):
        matches = [r for r in self.resources if r.name == name]
        assert len(matches) == 1, f"expected one resource named {name}, got {len(matches)}"
        return matches[0]

    def of_type(self, typ):
        return [r for r in self.resources if r.typ == typ]


class FakeConfig:
    """Stands in for pulumi.Config with a plain dict of stack values."""

    def __init__(self, values, wrap_secrets=True):
        self.values = dict(values)
        self.wrap_secrets = wrap_secrets

    def get(self, key):
        return self.values.get(key)

    def get_secret(self, key):
        if key not in self.values:
            return None
        value = self.values[key]
        return pulumi.Output.secret(value) if self.wrap_secrets else value


def stack_values(**overrides):
    values = {
        "projectId": "test-project",
        "region": "asia-northeast1",
        "supabasePassword": "s3cret",
        "supabaseHost": "db.example.supabase.co",
        "supabasePort": "5432",
        "supabaseDatabase": "postgres",
        "supabaseUser": "postgres",
        "settingsFile": os.path.join(REPO_ROOT, "config.yaml"),
    }
    values.update(overrides)
    return {k: v for k, v in values.items() if v is not None}


@pytest.fixture
def mocks():
    recorder = RecordingMocks()
    pulumi.runtime.set_mocks(recorder, project="n8n-cloudrun", stack="test", preview=False)
    return recorder


@pytest.fixture
def fake_config():
    return FakeConfig(stack_values())
