import os

from pulumi import Config

import configs.generated.firewall_pkl as pfw
from modules.firewall import validate_hub_specs
from modules.network import PeeringSpecs, VNetSpecs
from modules.routing import RouteTableSpecs
from utils.utils import load_pkl_config


az_native_config = Config("azure-native")
location: str = az_native_config.require("location")
subscription_id: str = az_native_config.require("subscriptionId")

hub_configs = Config()
# Environment configuration
resource_group_prefix: str = hub_configs.require("resource-group-prefix")
tags: dict | None = hub_configs.get_object("tags")
add_my_public_ip: bool = hub_configs.get_bool("add_my_public_ip", False)
management_ports: list[str] = hub_configs.get_object(
    "management_ports", ["22", "3389"]
)
# Firewall settings, no firewall without a Pkl config file
firewall_config_file: str | None = hub_configs.get("firewall_config_file")
firewall_zones: list[str] = hub_configs.get_object("firewall_zones", [])

# Network specifications
vnet_specs = [VNetSpecs(**spec) for spec in hub_configs.require_object("vnets")]
route_table_specs = [
    RouteTableSpecs(**spec)
    for spec in hub_configs.get_object("route_tables", [])
]
peering_specs = [
    PeeringSpecs(**spec) for spec in hub_configs.get_object("peerings", [])
]

firewall_config: pfw.firewall | None = None
if firewall_config_file:
    firewall_config = load_pkl_config(
        resource_type="firewall",
        pkl_config_file=os.path.join(
            os.path.dirname(__file__), firewall_config_file
        ),
    )

# Every cross reference is checked before the program registers anything.
firewall_vnet: str | None = validate_hub_specs(
    vnet_specs=vnet_specs,
    route_table_specs=route_table_specs,
    peering_specs=peering_specs,
    firewall_config=firewall_config,
    firewall_vnet=hub_configs.get("firewall_vnet"),
)
