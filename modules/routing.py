import ipaddress
import re
from typing import Optional

from attr import dataclass, field
from pulumi import ComponentResource, Input, ResourceOptions
from pulumi_azure_native import network as az_network

from modules.network import EnvironmentSpecs
from utils.utils import spec_list_converter

NEXT_HOP_TYPES = (
    "VirtualNetworkGateway",
    "VnetLocal",
    "Internet",
    "VirtualAppliance",
    "None",
)
SERVICE_TAG_PATTERN = r"^[A-Za-z][A-Za-z0-9.]*$"


@dataclass
class RouteSpecs:
    name: str
    address_prefix: str
    next_hop_type: str
    next_hop_ip_address: Optional[str] = None
    next_hop: Optional[str] = None

    def __attrs_post_init__(self):
        if self.next_hop_type not in NEXT_HOP_TYPES:
            raise ValueError(
                f"route '{self.name}' next_hop_type must be one of {NEXT_HOP_TYPES}, got '{self.next_hop_type}'."  # noqa: E501
            )

        try:
            ipaddress.ip_network(self.address_prefix, strict=True)
        except ValueError:
            if not re.match(SERVICE_TAG_PATTERN, self.address_prefix):
                raise ValueError(
                    f"route '{self.name}' address_prefix '{self.address_prefix}' is neither a CIDR block nor a service tag."  # noqa: E501
                )

        has_ip = self.next_hop_ip_address is not None
        has_ref = self.next_hop is not None
        if self.next_hop_type == "VirtualAppliance":
            if has_ip == has_ref:
                raise ValueError(
                    f"route '{self.name}' needs exactly one of next_hop_ip_address or next_hop."  # noqa: E501
                )
            if has_ip:
                ipaddress.ip_address(self.next_hop_ip_address)
        elif has_ip or has_ref:
            raise ValueError(
                f"route '{self.name}' of type {self.next_hop_type} cannot have a next hop address."  # noqa: E501
            )


@dataclass
class RouteTableSpecs:
    name: str
    routes: list[RouteSpecs] = field(
        factory=list, converter=spec_list_converter(RouteSpecs)
    )
    disable_bgp_route_propagation: bool = False

    def __attrs_post_init__(self):
        names = [route.name for route in self.routes]
        if len(names) != len(set(names)):
            raise ValueError(
                f"route table '{self.name}' has duplicate route names."
            )

    def next_hop_names(self) -> set[str]:
        return {route.next_hop for route in self.routes if route.next_hop}


class RouteTable(ComponentResource):
    """
    Create a Route Table. Routes are child resources added by `add_routes`
    once the addresses of symbolic next hops (e.g. the firewall) are known.
    """

    def __init__(
        self,
        name: str,
        route_table_spec: RouteTableSpecs,
        env_spec: EnvironmentSpecs,
        opts: Optional[ResourceOptions] = None,
    ):
        super().__init__("hubnet:routing:RouteTable", name, None, opts)

        self.opts = ResourceOptions.merge(opts, ResourceOptions(parent=self))
        self.spec = route_table_spec
        self.env_spec = env_spec
        self.routes: dict[str, az_network.Route] = {}

        self.route_table = az_network.RouteTable(
            f"{route_table_spec.name}-rt",
            route_table_name=route_table_spec.name,
            disable_bgp_route_propagation=route_table_spec.disable_bgp_route_propagation,  # noqa: E501
            location=env_spec.location,
            resource_group_name=env_spec.resource_group.name,
            tags=env_spec.tags,
            # routes are managed as separate resources in add_routes
            opts=ResourceOptions.merge(
                self.opts, ResourceOptions(ignore_changes=["routes"])
            ),
        )

        self.register_outputs({"route_table_id": self.route_table.id})

    def add_routes(
        self, next_hops: Optional[dict[str, Input[str]]] = None
    ) -> dict[str, az_network.Route]:
        """
        Create the routes of this table.

        Args:
            next_hops (dict[str, Input[str]], optional): Addresses of
                symbolic next hops by name.

        Returns:
            dict[str, Route]: The routes by name.
        """
        next_hops = next_hops or {}
        missing = self.spec.next_hop_names() - set(next_hops)
        if missing:
            raise ValueError(
                f"route table '{self.spec.name}' references unknown next hops: {sorted(missing)}"  # noqa: E501
            )

        for route in self.spec.routes:
            next_hop_ip_address = route.next_hop_ip_address
            if route.next_hop:
                next_hop_ip_address = next_hops[route.next_hop]

            self.routes[route.name] = az_network.Route(
                f"{self.spec.name}-{route.name}",
                route_name=route.name,
                route_table_name=self.route_table.name,
                resource_group_name=self.env_spec.resource_group.name,
                address_prefix=route.address_prefix,
                next_hop_type=route.next_hop_type,
                next_hop_ip_address=next_hop_ip_address,
                opts=ResourceOptions(parent=self.route_table),
            )

        return self.routes
