import ipaddress
import os
from typing import Optional

from pulumi import ComponentResource, Input, Output, ResourceOptions, log
from pulumi_azure_native import network as az_network

import configs.generated.firewall_pkl as pfw
from modules.network import EnvironmentSpecs, PeeringSpecs, VNetSpecs
from modules.routing import RouteTableSpecs
from utils.module_dataclasses import FirewallArgs

DEBUG = os.getenv("DEBUG")
PRIORITY_RANGE = (100, 65000)
FIREWALL_SUBNET_NAME = "AzureFirewallSubnet"
# symbolic route next hop resolved to the firewall private IP
FIREWALL_NEXT_HOP = "firewall"


def validate_ip_group_entry(entry: str) -> None:
    """
    Accepts an IP address, a CIDR block, or a range `a.b.c.d-e.f.g.h`.
    """
    try:
        if "-" in entry:
            start, end = (ipaddress.ip_address(p) for p in entry.split("-", 1))
            if start.version != end.version or start > end:
                raise ValueError("invalid range bounds")
        elif "/" in entry:
            ipaddress.ip_network(entry, strict=True)
        else:
            ipaddress.ip_address(entry)
    except ValueError as e:
        raise ValueError(f"'{entry}' is not a valid IP group entry: {e}") from e


def validate_ip_groups(ip_groups: list[pfw.IpGroup]) -> None:
    names = [group.name for group in ip_groups]
    if len(names) != len(set(names)):
        raise ValueError("IP group names must be unique.")
    for group in ip_groups:
        for entry in group.ipAddresses:
            validate_ip_group_entry(entry)


def validate_firewall_config(config: pfw.firewall) -> None:
    """
    Checks what the Pkl type constraints cannot: IP group entries, unique
    names and priorities per parent, and DNS proxy for FQDN network rules.
    """
    validate_ip_groups(config.ipGroups)

    low, high = PRIORITY_RANGE
    rcg_names = set()
    rcg_priorities = set()
    for rcg in config.ruleCollectionGroups:
        if not low <= rcg.priority <= high:
            raise ValueError(
                f"rule collection group '{rcg.name}' priority {rcg.priority} is outside {low}-{high}."  # noqa: E501
            )
        if rcg.name in rcg_names or rcg.priority in rcg_priorities:
            raise ValueError(
                f"rule collection group '{rcg.name}' repeats a name or priority."  # noqa: E501
            )
        rcg_names.add(rcg.name)
        rcg_priorities.add(rcg.priority)

        rc_names = set()
        rc_priorities = set()
        for collection in rcg.ruleCollections:
            if not low <= collection.priority <= high:
                raise ValueError(
                    f"rule collection '{collection.name}' priority {collection.priority} is outside {low}-{high}."  # noqa: E501
                )
            if (
                collection.name in rc_names
                or collection.priority in rc_priorities
            ):
                raise ValueError(
                    f"rule collection '{collection.name}' in group '{rcg.name}' repeats a name or priority."  # noqa: E501
                )
            rc_names.add(collection.name)
            rc_priorities.add(collection.priority)

            if not config.policy.dnsProxyEnabled and any(
                rule.destinationFqdns for rule in collection.networkRules
            ):
                raise ValueError(
                    f"rule collection '{collection.name}' uses FQDNs in network rules, which needs dnsProxyEnabled."  # noqa: E501
                )


def _resolve_ip_groups(
    names: list[str], ip_group_ids: dict[str, Input[str]], rule_name: str
) -> list[Input[str]]:
    unknown = [name for name in names if name not in ip_group_ids]
    if unknown:
        raise ValueError(
            f"rule '{rule_name}' references unknown IP groups: {unknown}"
        )
    return [ip_group_ids[name] for name in names]


def build_network_rule(
    rule: pfw.NetworkRule, ip_group_ids: dict[str, Input[str]]
) -> az_network.NetworkRuleArgs:
    return az_network.NetworkRuleArgs(
        rule_type="NetworkRule",
        name=rule.name,
        description=rule.description,
        ip_protocols=list(rule.ipProtocols),
        source_addresses=list(rule.sourceAddresses),
        source_ip_groups=_resolve_ip_groups(
            rule.sourceIpGroups, ip_group_ids, rule.name
        ),
        destination_addresses=list(rule.destinationAddresses),
        destination_ip_groups=_resolve_ip_groups(
            rule.destinationIpGroups, ip_group_ids, rule.name
        ),
        destination_fqdns=list(rule.destinationFqdns),
        destination_ports=list(rule.destinationPorts),
    )


def build_application_rule(
    rule: pfw.ApplicationRule, ip_group_ids: dict[str, Input[str]]
) -> az_network.ApplicationRuleArgs:
    if not rule.targetFqdns and not rule.fqdnTags:
        raise ValueError(
            f"application rule '{rule.name}' needs targetFqdns or fqdnTags."
        )
    return az_network.ApplicationRuleArgs(
        rule_type="ApplicationRule",
        name=rule.name,
        description=rule.description,
        protocols=[
            az_network.FirewallPolicyRuleApplicationProtocolArgs(
                protocol_type=protocol.protocolType,
                port=protocol.port,
            )
            for protocol in rule.protocols
        ],
        source_addresses=list(rule.sourceAddresses),
        source_ip_groups=_resolve_ip_groups(
            rule.sourceIpGroups, ip_group_ids, rule.name
        ),
        target_fqdns=list(rule.targetFqdns),
        fqdn_tags=list(rule.fqdnTags),
    )


def build_rule_collection(
    collection: pfw.RuleCollection, ip_group_ids: dict[str, Input[str]]
) -> az_network.FirewallPolicyFilterRuleCollectionArgs:
    """
    Translate a Pkl rule collection into a firewall policy filter rule
    collection. A collection holds either network or application rules.

    Args:
        collection (pfw.RuleCollection): The Pkl rule collection.
        ip_group_ids (dict[str, Input[str]]): IP group ids by name.

    Returns:
        FirewallPolicyFilterRuleCollectionArgs: The provider arguments.
    """
    if collection.networkRules and collection.applicationRules:
        raise ValueError(
            f"rule collection '{collection.name}' mixes network and application rules."  # noqa: E501
        )
    if not collection.networkRules and not collection.applicationRules:
        raise ValueError(f"rule collection '{collection.name}' has no rules.")

    rules = [
        build_network_rule(rule, ip_group_ids)
        for rule in collection.networkRules
    ] + [
        build_application_rule(rule, ip_group_ids)
        for rule in collection.applicationRules
    ]

    return az_network.FirewallPolicyFilterRuleCollectionArgs(
        rule_collection_type="FirewallPolicyFilterRuleCollection",
        name=collection.name,
        priority=collection.priority,
        action=az_network.FirewallPolicyFilterRuleCollectionActionArgs(
            type=collection.action,
        ),
        rules=rules,
    )


class IPGroups(ComponentResource):
    """
    Create one IP Group per Pkl `IpGroup`.
    """

    def __init__(
        self,
        name: str,
        ip_groups: list[pfw.IpGroup],
        env_spec: EnvironmentSpecs,
        opts: Optional[ResourceOptions] = None,
    ):
        validate_ip_groups(ip_groups)

        super().__init__("hubnet:firewall:IPGroups", name, None, opts)

        self.opts = ResourceOptions.merge(opts, ResourceOptions(parent=self))
        self.ip_groups: dict[str, az_network.IpGroup] = {}
        self.ids: dict[str, Output[str]] = {}

        for group in ip_groups:
            ip_group = az_network.IpGroup(
                f"{group.name}-ipgroup",
                ip_groups_name=group.name,
                ip_addresses=list(group.ipAddresses),
                location=env_spec.location,
                resource_group_name=env_spec.resource_group.name,
                tags=env_spec.tags,
                opts=self.opts,
            )
            self.ip_groups[group.name] = ip_group
            self.ids[group.name] = ip_group.id

        self.register_outputs({"ip_group_ids": self.ids})


class Firewall(ComponentResource):
    def __init__(
        self,
        name: str,
        args: FirewallArgs,
        opts: Optional[ResourceOptions] = None,
    ) -> None:
        """
        Init creates an Azure Firewall, its public IP and a firewall policy
        based on the Pkl configuration file.

        Args:
            name (str): The name of the Pulumi component.
            args (FirewallArgs): The configuration for the firewall.
            opts (Optional[ResourceOptions], optional): The resource options
                for the component. Defaults to None.

        Returns:
            None
        """
        validate_firewall_config(args.pkl_config)
        # fail before registering anything if a collection is invalid
        rule_collections = {
            rcg.name: [
                build_rule_collection(collection, args.ip_group_ids)
                for collection in rcg.ruleCollections
            ]
            for rcg in args.pkl_config.ruleCollectionGroups
        }

        super().__init__("hubnet:firewall:Firewall", name, None, opts)

        self.opts = ResourceOptions.merge(opts, ResourceOptions(parent=self))
        self.resource_group_name = args.resource_group_name
        self.rule_collection_groups: dict[
            str, az_network.FirewallPolicyRuleCollectionGroup
        ] = {}
        policy_options = args.pkl_config.policy

        self.public_ip = az_network.PublicIPAddress(
            f"{name}-pip",
            public_ip_address_name=f"{name}-pip",
            location=args.location,
            public_ip_allocation_method=az_network.IPAllocationMethod.STATIC,
            sku=az_network.PublicIPAddressSkuArgs(
                name="Standard",
                tier="Regional",
            ),
            resource_group_name=self.resource_group_name,
            zones=args.zones or None,
            tags=args.tags,
            opts=self.opts,
        )

        self.policy = az_network.FirewallPolicy(
            f"{name}-policy",
            firewall_policy_name=f"{name}-policy",
            location=args.location,
            resource_group_name=self.resource_group_name,
            sku=az_network.FirewallPolicySkuArgs(
                tier=policy_options.skuTier,
            ),
            threat_intel_mode=policy_options.threatIntelMode,
            dns_settings=az_network.DnsSettingsArgs(
                enable_proxy=policy_options.dnsProxyEnabled,
            ),
            tags=args.tags,
            opts=self.opts,
        )

        # Azure serializes writes to one policy; chain the groups.
        previous_rcg = None
        for rcg in args.pkl_config.ruleCollectionGroups:
            if DEBUG:
                log.info(
                    f"Rule collection group {rcg.name} ({rcg.priority}) with {len(rcg.ruleCollections)} collections"  # noqa: E501
                )
            self.rule_collection_groups[rcg.name] = (
                az_network.FirewallPolicyRuleCollectionGroup(
                    f"{name}-{rcg.name}-rcg",
                    firewall_policy_name=self.policy.name,
                    rule_collection_group_name=rcg.name,
                    priority=rcg.priority,
                    resource_group_name=self.resource_group_name,
                    rule_collections=rule_collections[rcg.name],
                    opts=ResourceOptions(
                        parent=self.policy,
                        depends_on=[previous_rcg] if previous_rcg else None,
                    ),
                )
            )
            previous_rcg = self.rule_collection_groups[rcg.name]

        self.azure_firewall = az_network.AzureFirewall(
            f"{name}-fw",
            azure_firewall_name=name,
            location=args.location,
            resource_group_name=self.resource_group_name,
            sku=az_network.AzureFirewallSkuArgs(
                name="AZFW_VNet",
                tier=policy_options.skuTier,
            ),
            firewall_policy=az_network.SubResourceArgs(id=self.policy.id),
            ip_configurations=[
                az_network.AzureFirewallIPConfigurationArgs(
                    name=f"{name}-ipconfig",
                    subnet=az_network.SubResourceArgs(id=args.subnet_id),
                    public_ip_address=az_network.SubResourceArgs(
                        id=self.public_ip.id,
                    ),
                )
            ],
            zones=args.zones or None,
            tags=args.tags,
            opts=ResourceOptions.merge(
                self.opts,
                ResourceOptions(
                    depends_on=list(self.rule_collection_groups.values())
                ),
            ),
        )

        self.private_ip_address: Output[str] = (
            self.azure_firewall.ip_configurations.apply(
                lambda configs: configs[0].private_ip_address
                if configs
                else None
            )
        )

        self.register_outputs(
            {
                "public_ip_address": self.public_ip.ip_address,
                "private_ip_address": self.private_ip_address,
            }
        )


def find_firewall_vnet(
    vnet_specs: list[VNetSpecs], preferred: Optional[str] = None
) -> str:
    """
    Name of the vnet holding the `AzureFirewallSubnet`; `preferred` picks one
    when several vnets have it.
    """
    candidates = [
        vnet.name
        for vnet in vnet_specs
        if any(subnet.name == FIREWALL_SUBNET_NAME for subnet in vnet.subnets)
    ]
    if preferred:
        if preferred not in candidates:
            raise ValueError(
                f"vnet '{preferred}' has no {FIREWALL_SUBNET_NAME}."
            )
        return preferred
    if len(candidates) != 1:
        raise ValueError(
            f"expected exactly one vnet with a {FIREWALL_SUBNET_NAME}, found {candidates}."  # noqa: E501
        )
    return candidates[0]


def validate_hub_specs(
    vnet_specs: list[VNetSpecs],
    route_table_specs: list[RouteTableSpecs],
    peering_specs: list[PeeringSpecs],
    firewall_config: Optional[pfw.firewall] = None,
    firewall_vnet: Optional[str] = None,
) -> Optional[str]:
    """
    Cross-checks the hub network settings so that a bad reference fails
    before the first resource registers.

    Args:
        vnet_specs (list[VNetSpecs]): The virtual networks.
        route_table_specs (list[RouteTableSpecs]): The route tables.
        peering_specs (list[PeeringSpecs]): The peerings.
        firewall_config (pfw.firewall, optional): The evaluated Pkl
            firewall configuration, if a firewall is deployed.
        firewall_vnet (str, optional): Preferred vnet for the firewall.

    Returns:
        Optional[str]: Name of the vnet hosting the firewall, or None
            without a firewall configuration.
    """
    vnet_names = [vnet.name for vnet in vnet_specs]
    if len(vnet_names) != len(set(vnet_names)):
        raise ValueError("vnet names must be unique.")
    route_table_names = [table.name for table in route_table_specs]
    if len(route_table_names) != len(set(route_table_names)):
        raise ValueError("route table names must be unique.")

    for vnet in vnet_specs:
        missing = vnet.route_table_names() - set(route_table_names)
        if missing:
            raise ValueError(
                f"vnet '{vnet.name}' references unknown route tables: {sorted(missing)}"  # noqa: E501
            )

    next_hops = {FIREWALL_NEXT_HOP} if firewall_config else set()
    for table in route_table_specs:
        missing = table.next_hop_names() - next_hops
        if missing:
            raise ValueError(
                f"route table '{table.name}' references unknown next hops: {sorted(missing)}"  # noqa: E501
            )

    for peering in peering_specs:
        missing = [
            name
            for name in (peering.local, peering.remote)
            if name not in vnet_names
        ]
        if missing:
            raise ValueError(f"peering references unknown vnets: {missing}")

    if not firewall_config:
        return None

    validate_firewall_config(firewall_config)
    # group names stand in for the ids, which only exist after deployment
    ip_group_names = {
        group.name: group.name for group in firewall_config.ipGroups
    }
    for rcg in firewall_config.ruleCollectionGroups:
        for collection in rcg.ruleCollections:
            build_rule_collection(collection, ip_group_names)
    return find_firewall_vnet(vnet_specs, firewall_vnet)
