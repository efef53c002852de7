from typing import Literal, Optional

from attr import dataclass, field
from pulumi import ComponentResource, Input, Output, ResourceOptions
from pulumi_azure_native import keyvault

from utils.module_dataclasses import SecretsObject

PermissionLevel = Literal["admin", "reader"]


def define_akv_permissions() -> dict[str, keyvault.PermissionsArgs]:
    return {
        "admin": keyvault.PermissionsArgs(
            secrets=[
                "get",
                "list",
                "set",
                "delete",
                "backup",
                "restore",
                "recover",
                "purge",
            ],
            keys=[
                "get",
                "list",
                "create",
                "update",
                "import",
                "delete",
                "backup",
                "restore",
                "recover",
                "purge",
            ],
            certificates=[
                "get",
                "list",
                "delete",
                "create",
                "import",
                "update",
                "recover",
                "purge",
            ],
        ),
        "reader": keyvault.PermissionsArgs(
            secrets=["get", "list"],
            keys=[],
            certificates=[],
        ),
    }


def validate_vault_retention_days(retention_days: int) -> int:
    if not 7 <= retention_days <= 90:
        raise ValueError(
            f"soft delete retention of {retention_days} days is outside 7-90."
        )
    return retention_days


@dataclass
class AccessPolicySpecs:
    object_id: Input[str]
    level: PermissionLevel = "reader"

    def __attrs_post_init__(self):
        if self.level not in ("admin", "reader"):
            raise ValueError(
                f"access policy level must be 'admin' or 'reader', got '{self.level}'."  # noqa: E501
            )


@dataclass
class KeyVaultArgs:
    vault_name: Input[str]
    location: str
    resource_group_name: Output[str]
    tenant_id: Input[str]
    access_policies: list[AccessPolicySpecs] = field(factory=list)
    soft_delete_retention_days: int = 90
    tags: dict = field(factory=dict)


class KeyVault(ComponentResource):
    """
    Create a Key Vault using access policies, and its secrets.
    """

    def __init__(
        self,
        name: str,
        args: KeyVaultArgs,
        opts: Optional[ResourceOptions] = None,
    ):
        validate_vault_retention_days(args.soft_delete_retention_days)

        super().__init__("hubnet:keyvault:KeyVault", name, None, opts)

        self.opts = ResourceOptions.merge(opts, ResourceOptions(parent=self))
        self.resource_group_name = args.resource_group_name
        self.secrets: dict[str, keyvault.Secret] = {}
        self.secret_uris: dict[str, Output[str]] = {}

        permissions = define_akv_permissions()
        access_policies: list[keyvault.AccessPolicyEntryArgs] = [
            keyvault.AccessPolicyEntryArgs(
                object_id=policy.object_id,
                permissions=permissions[policy.level],
                tenant_id=args.tenant_id,
            )
            for policy in args.access_policies
        ]

        self.vault = keyvault.Vault(
            resource_name=f"{name}-keyvault",
            vault_name=args.vault_name,
            location=args.location,
            properties=keyvault.VaultPropertiesArgs(
                access_policies=access_policies,
                enable_rbac_authorization=False,
                enabled_for_deployment=False,
                enabled_for_disk_encryption=False,
                enabled_for_template_deployment=False,
                enable_purge_protection=True,
                enable_soft_delete=True,
                soft_delete_retention_in_days=args.soft_delete_retention_days,
                sku=keyvault.SkuArgs(
                    name=keyvault.SkuName.STANDARD, family="A"
                ),
                tenant_id=args.tenant_id,
            ),
            resource_group_name=self.resource_group_name,
            tags=args.tags,
            opts=self.opts,
        )

        self.vault_uri: Output[str] = self.vault.properties.apply(
            lambda p: p.vault_uri
        )

        self.register_outputs({"vault_uri": self.vault_uri})

    def add_secret(
        self,
        secret_name: str,
        secret_value: Input[str],
        tags: Optional[dict[str, str]] = None,
    ) -> keyvault.Secret:
        secret = keyvault.Secret(
            resource_name=secret_name,
            properties=keyvault.SecretPropertiesArgs(
                value=secret_value,
            ),
            resource_group_name=self.resource_group_name,
            secret_name=secret_name,
            vault_name=self.vault.name,
            tags=tags,
            opts=ResourceOptions(parent=self.vault),
        )

        self.secrets[secret_name] = secret
        self.secret_uris[secret_name] = secret.properties.apply(
            lambda p: p.secret_uri_with_version
        )
        return secret

    def add_secrets(
        self, secrets_object: SecretsObject
    ) -> dict[str, keyvault.Secret]:
        """
        Store every secret of a `SecretsObject`, tagged with its origin and
        purpose.
        """
        tags = {
            "origin": secrets_object.origin,
            "purpose": secrets_object.purpose,
            **(secrets_object.custom_tags or {}),
        }
        return {
            secret_name: self.add_secret(secret_name, secret_value, tags)
            for secret_name, secret_value in secrets_object.secrets.items()
        }
