# __main__.py
"""
Pulumi program bootstrapping the remote state backend of the other stacks.

The steps run strictly in order; the first failing step is logged and
aborts the program. Nothing already registered is rolled back.
"""

import modulepath_fixer  # noqa: F401

from pulumi import export, ResourceOptions
import pulumi_azuread as azuread
from pulumi_azure_native import resources, storage
from pulumi_random import RandomString

from pulumi_configs import (
    admin_display_name,
    container_name,
    key_vault_retention_days,
    location,
    name_prefix,
    resource_group_name,
    service_principal_name,
    service_principal_password_version,
    soft_delete_retention_days,
    storage_sku,
    subscription_id,
    tags,
)

from modules.identity import ServicePrincipal, ServicePrincipalSpecs
from modules.keyvault import AccessPolicySpecs, KeyVault, KeyVaultArgs
from modules.storage import (
    StorageArgs,
    StorageChain,
    StorageComponentArgs,
    backend_url,
    blob_properties_args,
    build_backend_secrets,
    get_defaults,
)
from utils.utils import (
    key_vault_name,
    merge_tags,
    provisioning_step,
    storage_account_name,
)

default_tags = merge_tags(
    {
        "environment": "shared",
        "created_by": "pulumi",
        "purpose": "state-backend",
    },
    tags,
)
client_config = azuread.get_client_config()

with provisioning_step("resource group"):
    resource_group = resources.ResourceGroup(
        resource_name=resource_group_name,
        resource_group_name=resource_group_name,
        location=location,
        tags=default_tags,
    )
    default_opts = ResourceOptions(parent=resource_group)

with provisioning_step("unique name suffix"):
    name_suffix = RandomString(
        f"{name_prefix}-name-suffix",
        length=8,
        lower=True,
        upper=False,
        numeric=True,
        special=False,
        opts=default_opts,
    )
    state_storage_account_name = name_suffix.result.apply(
        lambda suffix: storage_account_name(name_prefix, suffix)
    )
    state_key_vault_name = name_suffix.result.apply(
        lambda suffix: key_vault_name(name_prefix, suffix)
    )

with provisioning_step("service principal"):
    service_principal = ServicePrincipal(
        name=service_principal_name,
        sp_spec=ServicePrincipalSpecs(
            display_name=service_principal_name,
            subscription_id=subscription_id,
            role_assignments={
                "Contributor": f"/subscriptions/{subscription_id}",
            },
            password_version=service_principal_password_version,
        ),
        opts=default_opts,
    )

with provisioning_step("storage account"):
    storage_chain = StorageChain(
        name=f"{name_prefix}-state",
        args=StorageArgs(
            resource_group_name=resource_group.name,
            storage_account_args=StorageComponentArgs(
                name=f"{name_prefix}-state-storage",
                args={
                    **get_defaults(),
                    "account_name": state_storage_account_name,
                    "location": location,
                    "sku": storage.SkuArgs(name=storage_sku),
                },
            ),
            storage_blob_properties_args=blob_properties_args(
                name=f"{name_prefix}-state-blob-props",
                resource_group_name=resource_group.name,
                retention_days=soft_delete_retention_days,
            ),
            storage_blob_container_args=[
                StorageComponentArgs(
                    name=container_name,
                    args={
                        "container_name": container_name,
                        "public_access": storage.PublicAccess.NONE,
                        "resource_group_name": resource_group.name,
                    },
                )
            ],
            tags=default_tags,
        ),
        opts=default_opts,
    )
    service_principal.assign_role(
        role_name="Storage Blob Data Contributor",
        scope=storage_chain.storage_account.id,
        subscription_id=subscription_id,
    )

with provisioning_step("key vault"):
    admin_group = azuread.get_group(
        display_name=admin_display_name, security_enabled=True
    )
    access_policies = [
        AccessPolicySpecs(object_id=admin_group.object_id, level="admin"),
        AccessPolicySpecs(object_id=client_config.object_id, level="admin"),
        AccessPolicySpecs(object_id=service_principal.object_id),
    ]

    key_vault = KeyVault(
        name=f"{name_prefix}-state",
        args=KeyVaultArgs(
            vault_name=state_key_vault_name,
            location=location,
            resource_group_name=resource_group.name,
            tenant_id=client_config.tenant_id,
            access_policies=access_policies,
            soft_delete_retention_days=key_vault_retention_days,
            tags=default_tags,
        ),
        opts=default_opts,
    )

with provisioning_step("secrets"):
    key_vault.add_secrets(
        build_backend_secrets(
            client_id=service_principal.client_id,
            client_secret=service_principal.client_secret,
            tenant_id=client_config.tenant_id,
            subscription_id=subscription_id,
            access_key=storage_chain.primary_key,
            storage_account_name=storage_chain.storage_account.name,
            container_name=container_name,
            resource_group_name=resource_group.name,
        )
    )

export(
    "backend_url",
    backend_url(container_name, storage_chain.storage_account.name),
)
export("storage_account_name", storage_chain.storage_account.name)
export("container_name", container_name)
export("key_vault_uri", key_vault.vault_uri)
export("secret_uris", key_vault.secret_uris)
export("service_principal_client_id", service_principal.client_id)
