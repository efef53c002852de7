"""Pytest configuration: Pulumi runtime mocks recording every resource."""

from typing import Callable

import pulumi
import pulumi.resource as pulumi_resource
import pytest
from pulumi_azure_native import resources

from modules.network import EnvironmentSpecs


class AzureMocks(pulumi.runtime.Mocks):
    """Echoes inputs as outputs and fills the few computed outputs we read."""

    def __init__(self) -> None:
        self.resources: dict[str, pulumi.runtime.MockResourceArgs] = {}
        self.firewall_private_ip = "10.0.0.4"

    def new_resource(self, args: pulumi.runtime.MockResourceArgs):
        self.resources[args.name] = args
        outputs = dict(args.inputs)
        outputs.setdefault("name", args.name)

        if args.typ == "random:index/randomString:RandomString":
            outputs["result"] = "x7k2m9p4"[: int(args.inputs.get("length", 8))]
        elif args.typ == "azuread:index/application:Application":
            outputs["clientId"] = f"{args.name}-client-id"
        elif args.typ == "azuread:index/servicePrincipal:ServicePrincipal":
            outputs["objectId"] = f"{args.name}-object-id"
        elif args.typ == (
            "azuread:index/servicePrincipalPassword:ServicePrincipalPassword"
        ):
            outputs["value"] = "generated-password"
        elif args.typ == "azure-native:network:AzureFirewall":
            outputs["ipConfigurations"] = [
                {**config, "privateIPAddress": self.firewall_private_ip}
                for config in args.inputs.get("ipConfigurations", [])
            ]

        return [f"{args.name}_id", outputs]

    def call(self, args: pulumi.runtime.MockCallArgs):
        if args.token == "azuread:index/getClientConfig:getClientConfig":
            return {
                "clientId": "deployer-client-id",
                "objectId": "deployer-object-id",
                "tenantId": "tenant-id",
            }
        if args.token == "azuread:index/getGroup:getGroup":
            return {
                "displayName": args.args.get("displayName"),
                "objectId": "admin-group-object-id",
            }
        if args.token == "azure-native:storage:listStorageAccountKeys":
            return {
                "keys": [
                    {"keyName": "key1", "value": "primary", "permissions": "FULL"},
                    {"keyName": "key2", "value": "secondary", "permissions": "FULL"},
                ]
            }
        return {}


MOCKS = AzureMocks()
pulumi.runtime.set_mocks(MOCKS, preview=False)


@pytest.fixture
def mocks() -> AzureMocks:
    return MOCKS


@pytest.fixture
def make_env() -> Callable[[str], EnvironmentSpecs]:
    """Builds an EnvironmentSpecs; call it inside a `@pulumi.runtime.test`."""

    def factory(name: str) -> EnvironmentSpecs:
        resource_group = resources.ResourceGroup(
            f"{name}-rg",
            resource_group_name=f"{name}-rg",
            location="westeurope",
        )
        return EnvironmentSpecs(
            resource_group=resource_group,
            location="westeurope",
            tags={"environment": "test"},
        )

    return factory


@pytest.fixture
def registrations(monkeypatch) -> dict[str, pulumi.ResourceOptions]:
    """Resource options by resource name, as handed to the engine."""
    recorded: dict[str, pulumi.ResourceOptions] = {}
    register = pulumi_resource.register_resource

    def spy(res, ty, name, custom, remote, new_dependency, props, opts, *args):
        recorded[name] = opts
        return register(
            res, ty, name, custom, remote, new_dependency, props, opts, *args
        )

    monkeypatch.setattr(pulumi_resource, "register_resource", spy)
    return recorded
