from pulumi import Config

from modules.keyvault import validate_vault_retention_days
from modules.storage import (
    validate_blob_retention_days,
    validate_container_name,
    validate_storage_sku,
)
from utils.utils import validate_name_prefix


az_native_config = Config("azure-native")
location: str = az_native_config.require("location")
subscription_id: str = az_native_config.require("subscriptionId")

backend_configs = Config()
# Identities
admin_display_name: str = backend_configs.require("admin_display_name")
service_principal_name: str = backend_configs.require("service_principal_name")
service_principal_password_version: str = backend_configs.get(
    "service_principal_password_version", "1"
)
# Resource names and settings
resource_group_name: str = backend_configs.require("resource_group_name")
storage_sku: str = validate_storage_sku(
    backend_configs.get("storage_sku", "Standard_LRS")
)
container_name: str = validate_container_name(
    backend_configs.get("container_name", "pulumi-state")
)
name_prefix: str = validate_name_prefix(backend_configs.require("name_prefix"))
soft_delete_retention_days: int = validate_blob_retention_days(
    backend_configs.get_int("soft_delete_retention_days", 30)
)
key_vault_retention_days: int = validate_vault_retention_days(
    backend_configs.get_int("key_vault_retention_days", 90)
)
tags: dict | None = backend_configs.get_object("tags")
