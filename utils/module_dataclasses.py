from dataclasses import dataclass, field
import re
from typing import Optional
from pulumi import Input, Output

import configs.generated.firewall_pkl as pfw

SECRET_NAME_PATTERN = r"^[0-9A-Za-z-]{1,127}$"


@dataclass
class SecretsObject:
    """
    Dataclass to hold the secrets for the Azure Keyvault.
    Args:
        secrets (dict[str, Input[str]]): The secrets to store in the Azure
            Keyvault.
        origin (str): The origin of the secrets.
        purpose (str): The purpose of the secrets.
        custom_tags (dict[str, str], optional): Custom tags to add to the
            secrets. Defaults to {}.
    """

    secrets: dict[str, Input[str]]
    origin: str
    purpose: str
    custom_tags: Optional[dict[str, str]] = field(default_factory=dict)

    def __post_init__(self):
        for key, value in self.secrets.items():
            if not re.match(SECRET_NAME_PATTERN, key):
                raise ValueError(
                    f"secret name '{key}' is invalid. Only letters, numbers, and hyphens are allowed (max 127)."  # noqa: E501
                )
            if not isinstance(value, Output):
                self.secrets[key] = Output.secret(value)


@dataclass
class FirewallArgs:
    """
    Dataclass to hold the arguments for creating a new Azure Firewall.

    Args:
        location (str): The location of the firewall and its policy.
        pkl_config (pfw.firewall): The evaluated Pkl firewall configuration.
        resource_group_name (Output[str]): The name of the resource group the
            firewall is in.
        subnet_id (Input[str]): Id of the `AzureFirewallSubnet` the firewall
            is attached to.
        ip_group_ids (dict[str, Input[str]]): IP group ids by group name,
            used to resolve rule references.
        tags (dict): Tags to add to the firewall resources.
        zones (list[str], optional): Availability zones for the firewall and
            its public IP.
    """

    location: str
    pkl_config: pfw.firewall
    resource_group_name: Output[str]
    subnet_id: Input[str]
    ip_group_ids: dict[str, Input[str]]
    tags: dict[str, str]
    zones: Optional[list[str]] = field(default_factory=list)
