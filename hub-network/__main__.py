# __main__.py
"""
Pulumi program for a hub and spoke network: virtual networks with their
subnets and NSGs, route tables, IP groups and an Azure Firewall in the hub.
"""

import modulepath_fixer  # noqa: F401

import os

from pulumi import export, get_stack, log, ResourceOptions
from pulumi_azure_native import resources

from pulumi_configs import (
    add_my_public_ip,
    firewall_config,
    firewall_vnet,
    firewall_zones,
    location,
    management_ports,
    peering_specs,
    resource_group_prefix,
    route_table_specs,
    tags,
    vnet_specs,
)

from modules.firewall import (
    FIREWALL_NEXT_HOP,
    FIREWALL_SUBNET_NAME,
    Firewall,
    IPGroups,
)
from modules.network import (
    EnvironmentSpecs,
    VirtualNetwork,
    add_management_rules,
    peer_networks,
)
from modules.routing import RouteTable
from utils.module_dataclasses import FirewallArgs
from utils.utils import (
    get_my_public_ip,
    merge_tags,
    provisioning_step,
)

DEBUG = os.getenv("DEBUG")
default_tags = merge_tags(
    {
        "environment": get_stack(),
        "created_by": "pulumi",
        "purpose": "hub-network",
    },
    tags,
)
resource_group_name = f"{resource_group_prefix}-{location}"

with provisioning_step("resource group"):
    resource_group = resources.ResourceGroup(
        resource_name=resource_group_name,
        resource_group_name=resource_group_name,
        location=location,
        tags=default_tags,
    )
    default_opts = ResourceOptions(parent=resource_group)
    env_spec = EnvironmentSpecs(
        resource_group=resource_group,
        location=location,
        tags=default_tags,
    )

ip_groups: IPGroups | None = None
if firewall_config:
    with provisioning_step("ip groups"):
        ip_groups = IPGroups(
            name="ip-groups",
            ip_groups=firewall_config.ipGroups,
            env_spec=env_spec,
            opts=default_opts,
        )
        export("ip_group_ids", ip_groups.ids)

with provisioning_step("route tables"):
    route_tables = {
        spec.name: RouteTable(
            name=spec.name,
            route_table_spec=spec,
            env_spec=env_spec,
            opts=default_opts,
        )
        for spec in route_table_specs
    }

with provisioning_step("virtual networks"):
    if add_my_public_ip:
        my_ip = get_my_public_ip()
        if DEBUG:
            log.info(f"Allowing management access from {my_ip}")
        add_management_rules(vnet_specs, my_ip, management_ports)

    networks: dict[str, VirtualNetwork] = {}
    for vnet_spec in vnet_specs:
        networks[vnet_spec.name] = VirtualNetwork(
            name=vnet_spec.name,
            vnet_spec=vnet_spec,
            env_spec=env_spec,
            route_table_ids={
                name: route_table.route_table.id
                for name, route_table in route_tables.items()
            },
            opts=default_opts,
        )

    for peering_spec in peering_specs:
        peer_networks(spec=peering_spec, networks=networks, env_spec=env_spec)

    export(
        "vnet_ids", {name: vnet.vnet.id for name, vnet in networks.items()}
    )
    export(
        "subnet_ids",
        {name: vnet.subnet_ids for name, vnet in networks.items()},
    )

next_hops = {}
if firewall_config and ip_groups:
    with provisioning_step("firewall"):
        hub = networks[firewall_vnet]
        firewall = Firewall(
            name=f"{resource_group_prefix}-fw",
            args=FirewallArgs(
                location=location,
                pkl_config=firewall_config,
                resource_group_name=resource_group.name,
                subnet_id=hub.subnet_ids[FIREWALL_SUBNET_NAME],
                ip_group_ids=ip_groups.ids,
                tags=default_tags,
                zones=firewall_zones,
            ),
            opts=ResourceOptions(parent=hub),
        )
        next_hops[FIREWALL_NEXT_HOP] = firewall.private_ip_address

        export("firewall_private_ip", firewall.private_ip_address)
        export("firewall_public_ip", firewall.public_ip.ip_address)
        export("firewall_policy_id", firewall.policy.id)

with provisioning_step("routes"):
    for route_table in route_tables.values():
        route_table.add_routes(next_hops=next_hops)

    export(
        "route_table_ids",
        {
            name: route_table.route_table.id
            for name, route_table in route_tables.items()
        },
    )
