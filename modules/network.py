import ipaddress
import os
from typing import Optional

from attr import dataclass, field
from pulumi import ComponentResource, Input, Output, ResourceOptions, log
from pulumi_azure_native import (
    network as az_network,
    resources as az_resources,
)

from utils.utils import spec_list_converter

DEBUG = os.getenv("DEBUG")

NSG_PRIORITY_RANGE = (100, 4096)
NSG_DIRECTIONS = ("Inbound", "Outbound")
NSG_ACCESS = ("Allow", "Deny")
NSG_PROTOCOLS = ("Tcp", "Udp", "Icmp", "Esp", "Ah", "*")

# Azure rejects NSGs on these subnets.
NSG_FORBIDDEN_SUBNETS = (
    "AzureFirewallSubnet",
    "AzureFirewallManagementSubnet",
    "GatewaySubnet",
)
ROUTE_TABLE_FORBIDDEN_SUBNETS = (
    "AzureFirewallSubnet",
    "AzureFirewallManagementSubnet",
)


def _parse_network(prefix: str, owner: str):
    try:
        return ipaddress.ip_network(prefix, strict=True)
    except ValueError as e:
        raise ValueError(
            f"'{prefix}' of {owner} is not a valid CIDR block: {e}"
        ) from e


@dataclass
class EnvironmentSpecs:
    resource_group: az_resources.ResourceGroup
    location: str
    tags: Optional[dict] = None


@dataclass
class SecurityRuleSpecs:
    name: str
    priority: int
    direction: str
    access: str
    protocol: str
    source_port_range: str = "*"
    destination_port_range: str = "*"
    source_address_prefix: str = "*"
    destination_address_prefix: str = "*"
    description: Optional[str] = None

    def __attrs_post_init__(self):
        low, high = NSG_PRIORITY_RANGE
        if not low <= self.priority <= high:
            raise ValueError(
                f"security rule '{self.name}' priority {self.priority} is outside {low}-{high}."  # noqa: E501
            )
        if self.direction not in NSG_DIRECTIONS:
            raise ValueError(
                f"security rule '{self.name}' direction must be one of {NSG_DIRECTIONS}, got '{self.direction}'."  # noqa: E501
            )
        if self.access not in NSG_ACCESS:
            raise ValueError(
                f"security rule '{self.name}' access must be one of {NSG_ACCESS}, got '{self.access}'."  # noqa: E501
            )
        if self.protocol not in NSG_PROTOCOLS:
            raise ValueError(
                f"security rule '{self.name}' protocol must be one of {NSG_PROTOCOLS}, got '{self.protocol}'."  # noqa: E501
            )

    def to_args(self) -> az_network.SecurityRuleArgs:
        return az_network.SecurityRuleArgs(
            name=self.name,
            description=self.description,
            priority=self.priority,
            direction=self.direction,
            access=self.access,
            protocol=self.protocol,
            source_port_range=self.source_port_range,
            destination_port_range=self.destination_port_range,
            source_address_prefix=self.source_address_prefix,
            destination_address_prefix=self.destination_address_prefix,
        )


@dataclass
class SubnetSpecs:
    name: str
    address_prefix: str
    security_rules: list[SecurityRuleSpecs] = field(
        factory=list, converter=spec_list_converter(SecurityRuleSpecs)
    )
    service_endpoints: list[str] = field(factory=list)
    route_table: Optional[str] = None

    def __attrs_post_init__(self):
        _parse_network(self.address_prefix, f"subnet '{self.name}'")

        if self.security_rules and self.name in NSG_FORBIDDEN_SUBNETS:
            raise ValueError(
                f"subnet '{self.name}' cannot have a network security group."
            )
        if self.route_table and self.name in ROUTE_TABLE_FORBIDDEN_SUBNETS:
            raise ValueError(
                f"subnet '{self.name}' cannot be associated with a route table."  # noqa: E501
            )

        rule_names = [rule.name for rule in self.security_rules]
        if len(rule_names) != len(set(rule_names)):
            raise ValueError(
                f"subnet '{self.name}' has duplicate security rule names."
            )
        slots = [(rule.direction, rule.priority) for rule in self.security_rules]
        if len(slots) != len(set(slots)):
            raise ValueError(
                f"subnet '{self.name}' has security rules sharing a direction and priority."  # noqa: E501
            )


@dataclass
class VNetSpecs:
    name: str
    address_prefixes: list[str]
    subnets: list[SubnetSpecs] = field(
        factory=list, converter=spec_list_converter(SubnetSpecs)
    )
    dns_servers: list[str] = field(factory=list)

    def __attrs_post_init__(self):
        if not self.address_prefixes:
            raise ValueError(f"vnet '{self.name}' needs an address prefix.")
        address_space = [
            _parse_network(prefix, f"vnet '{self.name}'")
            for prefix in self.address_prefixes
        ]

        names = [subnet.name for subnet in self.subnets]
        if len(names) != len(set(names)):
            raise ValueError(f"vnet '{self.name}' has duplicate subnet names.")

        subnet_networks = []
        for subnet in self.subnets:
            subnet_network = ipaddress.ip_network(subnet.address_prefix)
            if not any(
                subnet_network.version == space.version
                and subnet_network.subnet_of(space)
                for space in address_space
            ):
                raise ValueError(
                    f"subnet '{subnet.name}' ({subnet.address_prefix}) is outside the address space of vnet '{self.name}'."  # noqa: E501
                )
            for other_name, other in subnet_networks:
                if subnet_network.overlaps(other):
                    raise ValueError(
                        f"subnet '{subnet.name}' overlaps subnet '{other_name}' in vnet '{self.name}'."  # noqa: E501
                    )
            subnet_networks.append((subnet.name, subnet_network))

    def route_table_names(self) -> set[str]:
        return {
            subnet.route_table for subnet in self.subnets if subnet.route_table
        }


@dataclass
class PeeringSpecs:
    local: str
    remote: str
    allow_forwarded_traffic: bool = True
    allow_gateway_transit: bool = False
    use_remote_gateways: bool = False

    def __attrs_post_init__(self):
        if self.local == self.remote:
            raise ValueError(f"vnet '{self.local}' cannot peer with itself.")


class VirtualNetwork(ComponentResource):
    """
    Create a Virtual Network, its subnets and one Network Security Group per
    subnet that declares security rules.

    Subnets are created one after another; Azure rejects concurrent subnet
    operations on the same virtual network.
    """

    def __init__(
        self,
        name: str,
        vnet_spec: VNetSpecs,
        env_spec: EnvironmentSpecs,
        route_table_ids: Optional[dict[str, Input[str]]] = None,
        opts: Optional[ResourceOptions] = None,
    ):
        route_table_ids = route_table_ids or {}
        missing = vnet_spec.route_table_names() - set(route_table_ids)
        if missing:
            raise ValueError(
                f"vnet '{vnet_spec.name}' references unknown route tables: {sorted(missing)}"  # noqa: E501
            )

        super().__init__("hubnet:network:VirtualNetwork", name, None, opts)

        self.opts = ResourceOptions.merge(opts, ResourceOptions(parent=self))
        self.subnets: dict[str, az_network.Subnet] = {}
        self.subnet_ids: dict[str, Output[str]] = {}
        self.network_security_groups: dict[
            str, az_network.NetworkSecurityGroup
        ] = {}

        self.vnet = az_network.VirtualNetwork(
            f"{vnet_spec.name}-vnet",
            virtual_network_name=vnet_spec.name,
            resource_group_name=env_spec.resource_group.name,
            location=env_spec.location,
            address_space=az_network.AddressSpaceArgs(
                address_prefixes=vnet_spec.address_prefixes,
            ),
            dhcp_options=az_network.DhcpOptionsArgs(
                dns_servers=vnet_spec.dns_servers,
            )
            if vnet_spec.dns_servers
            else None,
            tags=env_spec.tags,
            # subnets are managed as separate resources below
            opts=ResourceOptions.merge(
                self.opts, ResourceOptions(ignore_changes=["subnets"])
            ),
        )

        previous_subnet: Optional[az_network.Subnet] = None
        for subnet_spec in vnet_spec.subnets:
            nsg = None
            if subnet_spec.security_rules:
                nsg = self.__create_nsg(
                    vnet_name=vnet_spec.name,
                    subnet_spec=subnet_spec,
                    env_spec=env_spec,
                )
                self.network_security_groups[subnet_spec.name] = nsg

            route_table = None
            if subnet_spec.route_table:
                route_table = az_network.RouteTableArgs(
                    id=route_table_ids[subnet_spec.route_table],
                )

            if DEBUG:
                log.info(
                    f"Subnet {subnet_spec.name} ({subnet_spec.address_prefix}) in {vnet_spec.name}"  # noqa: E501
                )
            subnet = az_network.Subnet(
                f"{vnet_spec.name}-{subnet_spec.name}",
                subnet_name=subnet_spec.name,
                address_prefix=subnet_spec.address_prefix,
                network_security_group=az_network.NetworkSecurityGroupArgs(
                    id=nsg.id,
                )
                if nsg
                else None,
                route_table=route_table,
                service_endpoints=[
                    az_network.ServiceEndpointPropertiesFormatArgs(
                        service=service,
                    )
                    for service in subnet_spec.service_endpoints
                ]
                or None,
                resource_group_name=env_spec.resource_group.name,
                virtual_network_name=self.vnet.name,
                opts=ResourceOptions(
                    parent=self.vnet,
                    depends_on=[previous_subnet] if previous_subnet else None,
                ),
            )
            self.subnets[subnet_spec.name] = subnet
            self.subnet_ids[subnet_spec.name] = subnet.id
            previous_subnet = subnet

        self.register_outputs(
            {
                "vnet_id": self.vnet.id,
                "subnet_ids": self.subnet_ids,
            }
        )

    def __create_nsg(
        self,
        vnet_name: str,
        subnet_spec: SubnetSpecs,
        env_spec: EnvironmentSpecs,
    ) -> az_network.NetworkSecurityGroup:
        nsg_name = f"{vnet_name}-{subnet_spec.name}-nsg"
        return az_network.NetworkSecurityGroup(
            nsg_name,
            az_network.NetworkSecurityGroupInitArgs(
                network_security_group_name=nsg_name,
                location=env_spec.location,
                resource_group_name=env_spec.resource_group.name,
                security_rules=[
                    rule.to_args() for rule in subnet_spec.security_rules
                ],
                tags=env_spec.tags,
            ),
            opts=self.opts,
        )


def peer_networks(
    spec: PeeringSpecs,
    networks: dict[str, VirtualNetwork],
    env_spec: EnvironmentSpecs,
    opts: Optional[ResourceOptions] = None,
) -> tuple[az_network.VirtualNetworkPeering, az_network.VirtualNetworkPeering]:
    """
    Create both directions of a virtual network peering.

    The `local -> remote` side offers gateway transit, the `remote -> local`
    side consumes the remote gateways. Each peering is parented to its
    source vnet; other options in `opts` apply to both.
    """
    missing = [
        vnet_name
        for vnet_name in (spec.local, spec.remote)
        if vnet_name not in networks
    ]
    if missing:
        raise ValueError(f"peering references unknown vnets: {missing}")

    local = networks[spec.local]
    remote = networks[spec.remote]

    def create(
        source: VirtualNetwork,
        target: VirtualNetwork,
        peering_name: str,
        allow_gateway_transit: bool,
        use_remote_gateways: bool,
    ) -> az_network.VirtualNetworkPeering:
        return az_network.VirtualNetworkPeering(
            peering_name,
            virtual_network_peering_name=peering_name,
            virtual_network_name=source.vnet.name,
            resource_group_name=env_spec.resource_group.name,
            remote_virtual_network=az_network.SubResourceArgs(
                id=target.vnet.id,
            ),
            allow_virtual_network_access=True,
            allow_forwarded_traffic=spec.allow_forwarded_traffic,
            allow_gateway_transit=allow_gateway_transit,
            use_remote_gateways=use_remote_gateways,
            opts=ResourceOptions.merge(
                opts,
                ResourceOptions(
                    parent=source.vnet,
                    depends_on=list(source.subnets.values()),
                ),
            ),
        )

    return (
        create(
            local,
            remote,
            f"{spec.local}-to-{spec.remote}",
            allow_gateway_transit=spec.allow_gateway_transit,
            use_remote_gateways=False,
        ),
        create(
            remote,
            local,
            f"{spec.remote}-to-{spec.local}",
            allow_gateway_transit=False,
            use_remote_gateways=spec.use_remote_gateways,
        ),
    )


def add_management_rules(
    vnet_specs: list[VNetSpecs],
    source_address_prefix: str,
    ports: list[str],
) -> list[VNetSpecs]:
    """
    Allow inbound management traffic from `source_address_prefix` on every
    subnet that already carries a network security group. Each port gets
    the lowest free inbound priority of its subnet.
    """
    for vnet_spec in vnet_specs:
        for subnet in vnet_spec.subnets:
            if not subnet.security_rules:
                continue
            used = {
                rule.priority
                for rule in subnet.security_rules
                if rule.direction == "Inbound"
            }
            names = {rule.name for rule in subnet.security_rules}
            priority = NSG_PRIORITY_RANGE[0]
            for port in ports:
                rule_name = f"AllowManagement{port}"
                if rule_name in names:
                    continue
                while priority in used:
                    priority += 1
                subnet.security_rules.append(
                    SecurityRuleSpecs(
                        name=rule_name,
                        priority=priority,
                        direction="Inbound",
                        access="Allow",
                        protocol="Tcp",
                        destination_port_range=port,
                        source_address_prefix=source_address_prefix,
                        description="Management access from the deployer",
                    )
                )
                used.add(priority)
    return vnet_specs
