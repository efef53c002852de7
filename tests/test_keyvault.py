"""Tests for the Key Vault component and its access policies."""

import pulumi
import pytest

from modules.keyvault import (
    AccessPolicySpecs,
    KeyVault,
    KeyVaultArgs,
    define_akv_permissions,
    validate_vault_retention_days,
)
from utils.module_dataclasses import SecretsObject


def vault_args(resource_group_name, **overrides) -> KeyVaultArgs:
    values = dict(
        vault_name="hub-kv-x7k2m9p4",
        location="westeurope",
        resource_group_name=resource_group_name,
        tenant_id="tenant-id",
        access_policies=[
            AccessPolicySpecs(object_id="deployer-object-id", level="admin"),
            AccessPolicySpecs(object_id="sp-object-id"),
        ],
    )
    values.update(overrides)
    return KeyVaultArgs(**values)


class TestPermissions:
    def test_reader_can_only_read_secrets(self) -> None:
        reader = define_akv_permissions()["reader"]
        assert reader.secrets == ["get", "list"]
        assert reader.keys == []

    def test_admin_can_purge(self) -> None:
        assert "purge" in define_akv_permissions()["admin"].secrets

    def test_unknown_level(self) -> None:
        with pytest.raises(ValueError, match="'admin' or 'reader'"):
            AccessPolicySpecs(object_id="someone", level="owner")

    @pytest.mark.parametrize("days", [0, 6, 91])
    def test_retention_out_of_range(self, days: int) -> None:
        with pytest.raises(ValueError, match="outside 7-90"):
            KeyVault("kv-retention", vault_args("rg", soft_delete_retention_days=days))

    @pytest.mark.parametrize("days", [7, 90])
    def test_retention_bounds(self, days: int) -> None:
        assert validate_vault_retention_days(days) == days


class TestKeyVault:
    @pulumi.runtime.test
    def test_vault_with_policies_and_secrets(self, mocks, make_env):
        env = make_env("keyvault-test")
        vault = KeyVault("kv-test", vault_args(env.resource_group.name))
        vault.add_secrets(
            SecretsObject(
                secrets={"ARM-TENANT-ID": "tenant-id", "ARM-CLIENT-ID": "client"},
                origin="automation",
                purpose="state-backend",
                custom_tags={"team": "platform"},
            )
        )

        assert set(vault.secret_uris) == {"ARM-TENANT-ID", "ARM-CLIENT-ID"}

        def check(_):
            properties = mocks.resources["kv-test-keyvault"].inputs["properties"]
            assert properties["tenantId"] == "tenant-id"
            assert properties["enablePurgeProtection"] is True
            assert properties["softDeleteRetentionInDays"] == 90
            policies = properties["accessPolicies"]
            assert [p["objectId"] for p in policies] == [
                "deployer-object-id",
                "sp-object-id",
            ]
            assert policies[1]["permissions"]["secrets"] == ["get", "list"]

            secret = mocks.resources["ARM-TENANT-ID"].inputs
            assert secret["secretName"] == "ARM-TENANT-ID"
            assert secret["tags"] == {
                "origin": "automation",
                "purpose": "state-backend",
                "team": "platform",
            }

        return pulumi.Output.all(
            *[secret.id for secret in vault.secrets.values()]
        ).apply(check)
