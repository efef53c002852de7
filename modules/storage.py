import re
from typing import Optional, Type

from attr import dataclass, field
from pulumi import ComponentResource, Input, Output, ResourceOptions
from pulumi_azure_native import storage

from utils.module_dataclasses import SecretsObject

STORAGE_SKUS = tuple(sku.value for sku in storage.SkuName)
CONTAINER_NAME_PATTERN = r"^(?!.*--)[a-z0-9][a-z0-9-]{1,61}[a-z0-9]$"


@dataclass
class StorageComponentArgs:
    name: str
    args: dict


@dataclass
class StorageArgs:
    resource_group_name: Output[str]
    storage_account_args: StorageComponentArgs
    tags: dict = field(factory=dict)
    storage_blob_container_args: Optional[list[StorageComponentArgs]] = None
    storage_blob_properties_args: Optional[StorageComponentArgs] = None


class StorageAccountDefaults:
    """
    Storage Account properties for holding deployment state. Applied by
    `get_defaults` to the `StorageArgs.storage_account_args` before any
    caller-provided values.
    """

    access_tier: storage.AccessTier = storage.AccessTier.HOT
    allow_blob_public_access: bool = False
    # the state backend authenticates with the account key
    allow_shared_key_access: bool = True
    enable_https_traffic_only: bool = True
    kind: storage.Kind = storage.Kind.STORAGE_V2
    minimum_tls_version: storage.MinimumTlsVersion = (
        storage.MinimumTlsVersion.TLS1_2
    )
    public_network_access: storage.PublicNetworkAccess = (
        storage.PublicNetworkAccess.ENABLED
    )
    sku: storage.SkuArgs = storage.SkuArgs(name=storage.SkuName.STANDARD_LRS)


def get_defaults(
    storage_defaults_class: Type[StorageAccountDefaults] = StorageAccountDefaults,
) -> dict:
    return {
        k: v
        for k, v in vars(storage_defaults_class).items()
        if not k.startswith("__") and not callable(v)
    }


def validate_storage_sku(sku: str) -> str:
    if sku not in STORAGE_SKUS:
        raise ValueError(
            f"storage sku '{sku}' is invalid. Expected one of {STORAGE_SKUS}."
        )
    return sku


def validate_blob_retention_days(retention_days: int) -> int:
    if not 1 <= retention_days <= 365:
        raise ValueError(
            f"soft delete retention of {retention_days} days is outside 1-365."
        )
    return retention_days


def blob_properties_args(
    name: str,
    resource_group_name: Output[str],
    retention_days: int,
) -> StorageComponentArgs:
    """
    Blob service settings protecting state blobs: versioning plus soft
    delete of blobs and containers.
    """
    validate_blob_retention_days(retention_days)
    return StorageComponentArgs(
        name=name,
        args={
            "blob_services_name": "default",
            "is_versioning_enabled": True,
            "delete_retention_policy": storage.DeleteRetentionPolicyArgs(
                enabled=True,
                days=retention_days,
            ),
            "container_delete_retention_policy": (
                storage.DeleteRetentionPolicyArgs(
                    enabled=True,
                    days=retention_days,
                )
            ),
            "resource_group_name": resource_group_name,
        },
    )


class StorageChain(ComponentResource):
    """
    Create a Storage Account with its blob service settings and containers.
    """

    def __init__(
        self,
        name: str,
        args: StorageArgs,
        opts: Optional[ResourceOptions] = None,
    ):
        super().__init__("hubnet:storage:StorageChain", name, None, opts)

        self.opts = ResourceOptions.merge(opts, ResourceOptions(parent=self))
        self.storage_blob_svc_props = None
        self.storage_blob_containers: dict[str, storage.BlobContainer] = {}
        self.storage_secrets: SecretsObject

        self.storage_account = storage.StorageAccount(
            resource_name=args.storage_account_args.name,
            **{
                **args.storage_account_args.args,
                "resource_group_name": args.resource_group_name,
                "tags": args.tags,
            },
            opts=self.opts,
        )

        if args.storage_blob_properties_args:
            self.storage_blob_svc_props = storage.BlobServiceProperties(
                resource_name=args.storage_blob_properties_args.name,
                **{
                    **args.storage_blob_properties_args.args,
                    "account_name": self.storage_account.name,
                },
                opts=ResourceOptions(parent=self.storage_account),
            )

        if args.storage_blob_container_args:
            for container in args.storage_blob_container_args:
                self.storage_blob_containers[container.name] = (
                    storage.BlobContainer(
                        resource_name=container.name,
                        **{
                            **container.args,
                            "account_name": self.storage_account.name,
                        },
                        opts=ResourceOptions(
                            parent=self.storage_blob_svc_props
                            if self.storage_blob_svc_props
                            else self.storage_account
                        ),
                    )
                )

        self.__get_and_set_secrets(
            account_name=self.storage_account.name,
            resource_group_name=args.resource_group_name,
        )

        self.register_outputs({})

    def __get_and_set_secrets(
        self,
        account_name: Output[str],
        resource_group_name: Output[str],
    ) -> None:
        self.storage_account_keys: Output[
            storage.ListStorageAccountKeysResult
        ] = Output.secret(
            storage.list_storage_account_keys_output(
                account_name=account_name,
                resource_group_name=resource_group_name,
            )
        )
        self.primary_key: Output[str] = Output.secret(
            self.storage_account_keys.apply(lambda sak: sak.keys[0].value)
        )
        self.storage_connection_string: Output[str] = Output.concat(
            "DefaultEndpointsProtocol=https;AccountName=",
            self.storage_account.name,
            ";AccountKey=",
            self.primary_key,
        )

        self.storage_secrets = SecretsObject(
            secrets={
                "PrimaryStorageAccountKey": self.primary_key,
                "StorageConnectionString": self.storage_connection_string,
            },
            origin="automation",
            purpose="storage_account_secrets",
        )


def validate_container_name(container_name: str) -> str:
    if not re.match(CONTAINER_NAME_PATTERN, container_name):
        raise ValueError(
            f"container name '{container_name}' must be 3-63 lowercase letters, digits or single hyphens."  # noqa: E501
        )
    return container_name


def backend_url(
    container_name: Input[str], storage_account_name: Input[str]
) -> Output[str]:
    """
    Pulumi `azblob://` backend URL for a state container.
    """
    return Output.concat(
        "azblob://",
        container_name,
        "?storage_account=",
        storage_account_name,
    )


def build_backend_secrets(
    client_id: Input[str],
    client_secret: Input[str],
    tenant_id: Input[str],
    subscription_id: Input[str],
    access_key: Input[str],
    storage_account_name: Input[str],
    container_name: Input[str],
    resource_group_name: Input[str],
) -> SecretsObject:
    """
    The credentials and coordinates a pipeline needs to use the state
    backend, under the `ARM_*` names the Azure providers read.
    """
    return SecretsObject(
        secrets={
            "ARM-CLIENT-ID": client_id,
            "ARM-CLIENT-SECRET": client_secret,
            "ARM-TENANT-ID": tenant_id,
            "ARM-SUBSCRIPTION-ID": subscription_id,
            "ARM-ACCESS-KEY": access_key,
            "STATE-STORAGE-ACCOUNT-NAME": storage_account_name,
            "STATE-CONTAINER-NAME": container_name,
            "STATE-RESOURCE-GROUP-NAME": resource_group_name,
        },
        origin="automation",
        purpose="state-backend",
    )
