"""Tests for virtual network, subnet, NSG and peering components."""

import pulumi
import pytest

from modules.network import (
    PeeringSpecs,
    SecurityRuleSpecs,
    SubnetSpecs,
    VNetSpecs,
    VirtualNetwork,
    add_management_rules,
    peer_networks,
)


def https_rule(**overrides) -> dict:
    rule = {
        "name": "AllowHttpsInbound",
        "priority": 100,
        "direction": "Inbound",
        "access": "Allow",
        "protocol": "Tcp",
        "destination_port_range": "443",
    }
    rule.update(overrides)
    return rule


def spoke_spec(name: str = "spoke") -> VNetSpecs:
    return VNetSpecs(
        name=name,
        address_prefixes=["10.1.0.0/16"],
        subnets=[
            {
                "name": "app",
                "address_prefix": "10.1.1.0/24",
                "security_rules": [https_rule()],
                "route_table": "spoke-default",
            },
            {
                "name": "data",
                "address_prefix": "10.1.2.0/24",
                "service_endpoints": ["Microsoft.Storage"],
            },
        ],
    )


class TestSecurityRuleSpecs:
    """Tests for NSG rule validation."""

    def test_valid_rule_defaults(self) -> None:
        rule = SecurityRuleSpecs(**https_rule())
        assert rule.source_port_range == "*"
        assert rule.source_address_prefix == "*"
        assert rule.description is None

    @pytest.mark.parametrize("priority", [99, 4097])
    def test_priority_out_of_range(self, priority: int) -> None:
        with pytest.raises(ValueError, match="priority"):
            SecurityRuleSpecs(**https_rule(priority=priority))

    def test_invalid_direction(self) -> None:
        with pytest.raises(ValueError, match="direction"):
            SecurityRuleSpecs(**https_rule(direction="Sideways"))

    def test_invalid_access(self) -> None:
        with pytest.raises(ValueError, match="access"):
            SecurityRuleSpecs(**https_rule(access="Permit"))

    def test_invalid_protocol(self) -> None:
        with pytest.raises(ValueError, match="protocol"):
            SecurityRuleSpecs(**https_rule(protocol="tcp"))


class TestSubnetSpecs:
    """Tests for subnet validation."""

    def test_rules_converted_from_dicts(self) -> None:
        subnet = SubnetSpecs(
            name="app", address_prefix="10.1.1.0/24", security_rules=[https_rule()]
        )
        assert isinstance(subnet.security_rules[0], SecurityRuleSpecs)

    def test_host_bits_rejected(self) -> None:
        with pytest.raises(ValueError, match="not a valid CIDR"):
            SubnetSpecs(name="app", address_prefix="10.1.1.5/24")

    def test_firewall_subnet_cannot_have_nsg(self) -> None:
        with pytest.raises(ValueError, match="network security group"):
            SubnetSpecs(
                name="AzureFirewallSubnet",
                address_prefix="10.0.0.0/26",
                security_rules=[https_rule()],
            )

    def test_firewall_subnet_cannot_have_route_table(self) -> None:
        with pytest.raises(ValueError, match="route table"):
            SubnetSpecs(
                name="AzureFirewallSubnet",
                address_prefix="10.0.0.0/26",
                route_table="spoke-default",
            )

    def test_bastion_subnet_may_have_nsg(self) -> None:
        subnet = SubnetSpecs(
            name="AzureBastionSubnet",
            address_prefix="10.0.2.0/26",
            security_rules=[https_rule()],
        )
        assert len(subnet.security_rules) == 1

    def test_duplicate_rule_names(self) -> None:
        with pytest.raises(ValueError, match="duplicate security rule names"):
            SubnetSpecs(
                name="app",
                address_prefix="10.1.1.0/24",
                security_rules=[https_rule(), https_rule(priority=110)],
            )

    def test_duplicate_direction_and_priority(self) -> None:
        with pytest.raises(ValueError, match="direction and priority"):
            SubnetSpecs(
                name="app",
                address_prefix="10.1.1.0/24",
                security_rules=[https_rule(), https_rule(name="Other")],
            )

    def test_same_priority_in_other_direction_is_allowed(self) -> None:
        subnet = SubnetSpecs(
            name="app",
            address_prefix="10.1.1.0/24",
            security_rules=[
                https_rule(),
                https_rule(name="AllowHttpsOutbound", direction="Outbound"),
            ],
        )
        assert len(subnet.security_rules) == 2


class TestVNetSpecs:
    """Tests for virtual network validation."""

    def test_valid_spec(self) -> None:
        spec = spoke_spec()
        assert [subnet.name for subnet in spec.subnets] == ["app", "data"]
        assert spec.route_table_names() == {"spoke-default"}

    def test_requires_address_prefix(self) -> None:
        with pytest.raises(ValueError, match="needs an address prefix"):
            VNetSpecs(name="empty", address_prefixes=[])

    def test_subnet_outside_address_space(self) -> None:
        with pytest.raises(ValueError, match="outside the address space"):
            VNetSpecs(
                name="spoke",
                address_prefixes=["10.1.0.0/16"],
                subnets=[{"name": "app", "address_prefix": "10.2.1.0/24"}],
            )

    def test_subnet_in_second_address_prefix(self) -> None:
        spec = VNetSpecs(
            name="spoke",
            address_prefixes=["10.1.0.0/16", "172.16.0.0/24"],
            subnets=[{"name": "app", "address_prefix": "172.16.0.0/26"}],
        )
        assert spec.subnets[0].address_prefix == "172.16.0.0/26"

    def test_overlapping_subnets(self) -> None:
        with pytest.raises(ValueError, match="overlaps subnet 'app'"):
            VNetSpecs(
                name="spoke",
                address_prefixes=["10.1.0.0/16"],
                subnets=[
                    {"name": "app", "address_prefix": "10.1.0.0/23"},
                    {"name": "data", "address_prefix": "10.1.1.0/24"},
                ],
            )

    def test_duplicate_subnet_names(self) -> None:
        with pytest.raises(ValueError, match="duplicate subnet names"):
            VNetSpecs(
                name="spoke",
                address_prefixes=["10.1.0.0/16"],
                subnets=[
                    {"name": "app", "address_prefix": "10.1.1.0/24"},
                    {"name": "app", "address_prefix": "10.1.2.0/24"},
                ],
            )


class TestPeeringSpecs:
    def test_cannot_peer_with_itself(self) -> None:
        with pytest.raises(ValueError, match="itself"):
            PeeringSpecs(local="hub", remote="hub")


class TestAddManagementRules:
    """Tests for the deployer management access rules."""

    def test_rules_use_free_priorities(self) -> None:
        specs = add_management_rules([spoke_spec()], "203.0.113.7/32", ["22", "3389"])

        app_rules = {rule.name: rule for rule in specs[0].subnets[0].security_rules}
        assert app_rules["AllowManagement22"].priority == 101
        assert app_rules["AllowManagement3389"].priority == 102
        assert app_rules["AllowManagement22"].source_address_prefix == "203.0.113.7/32"
        assert app_rules["AllowManagement22"].destination_port_range == "22"

    def test_subnets_without_nsg_are_untouched(self) -> None:
        specs = add_management_rules([spoke_spec()], "203.0.113.7/32", ["22"])
        assert specs[0].subnets[1].security_rules == []

    def test_idempotent(self) -> None:
        specs = [spoke_spec()]
        add_management_rules(specs, "203.0.113.7/32", ["22"])
        add_management_rules(specs, "203.0.113.7/32", ["22"])
        names = [rule.name for rule in specs[0].subnets[0].security_rules]
        assert names.count("AllowManagement22") == 1


class TestVirtualNetwork:
    """Tests for the VirtualNetwork component under Pulumi mocks."""

    def test_unknown_route_table(self) -> None:
        with pytest.raises(ValueError, match="unknown route tables"):
            VirtualNetwork(
                name="spoke-missing-rt",
                vnet_spec=spoke_spec(),
                env_spec=None,
                route_table_ids={},
            )

    @pulumi.runtime.test
    def test_creates_vnet_subnets_and_nsg(self, mocks, make_env):
        env = make_env("vnet-test")
        vnet = VirtualNetwork(
            name="spoke-a",
            vnet_spec=spoke_spec("spoke-a"),
            env_spec=env,
            route_table_ids={"spoke-default": "route-table-id"},
        )

        assert set(vnet.subnets) == {"app", "data"}
        assert set(vnet.network_security_groups) == {"app"}

        def check(_):
            vnet_inputs = mocks.resources["spoke-a-vnet"].inputs
            assert vnet_inputs["virtualNetworkName"] == "spoke-a"
            assert vnet_inputs["addressSpace"]["addressPrefixes"] == ["10.1.0.0/16"]

            nsg_inputs = mocks.resources["spoke-a-app-nsg"].inputs
            assert [rule["name"] for rule in nsg_inputs["securityRules"]] == [
                "AllowHttpsInbound"
            ]
            assert nsg_inputs["securityRules"][0]["destinationPortRange"] == "443"

            app = mocks.resources["spoke-a-app"].inputs
            assert app["subnetName"] == "app"
            assert app["addressPrefix"] == "10.1.1.0/24"
            assert app["networkSecurityGroup"]["id"] == "spoke-a-app-nsg_id"
            assert app["routeTable"]["id"] == "route-table-id"

            data = mocks.resources["spoke-a-data"].inputs
            assert "networkSecurityGroup" not in data
            assert "routeTable" not in data
            assert data["serviceEndpoints"] == [{"service": "Microsoft.Storage"}]

        return pulumi.Output.all(
            vnet.vnet.id, *vnet.subnet_ids.values()
        ).apply(check)

    @pulumi.runtime.test
    def test_peering_both_directions(self, mocks, make_env):
        env = make_env("peering-test")
        hub = VirtualNetwork(
            name="hub-p",
            vnet_spec=VNetSpecs(
                name="hub-p",
                address_prefixes=["10.0.0.0/16"],
                subnets=[{"name": "GatewaySubnet", "address_prefix": "10.0.1.0/27"}],
            ),
            env_spec=env,
        )
        spoke = VirtualNetwork(
            name="spoke-p",
            vnet_spec=VNetSpecs(name="spoke-p", address_prefixes=["10.1.0.0/16"]),
            env_spec=env,
        )

        outbound, inbound = peer_networks(
            spec=PeeringSpecs(
                local="hub-p",
                remote="spoke-p",
                allow_gateway_transit=True,
                use_remote_gateways=True,
            ),
            networks={"hub-p": hub, "spoke-p": spoke},
            env_spec=env,
        )

        def check(_):
            hub_to_spoke = mocks.resources["hub-p-to-spoke-p"].inputs
            assert hub_to_spoke["remoteVirtualNetwork"]["id"] == "spoke-p-vnet_id"
            assert hub_to_spoke["allowGatewayTransit"] is True
            assert hub_to_spoke["useRemoteGateways"] is False

            spoke_to_hub = mocks.resources["spoke-p-to-hub-p"].inputs
            assert spoke_to_hub["remoteVirtualNetwork"]["id"] == "hub-p-vnet_id"
            assert spoke_to_hub["allowGatewayTransit"] is False
            assert spoke_to_hub["useRemoteGateways"] is True
            assert spoke_to_hub["allowForwardedTraffic"] is True

        return pulumi.Output.all(outbound.id, inbound.id).apply(check)

    def test_peering_unknown_vnet(self) -> None:
        with pytest.raises(ValueError, match=r"unknown vnets: \['spoke'\]"):
            peer_networks(
                spec=PeeringSpecs(local="hub", remote="spoke"),
                networks={"hub": None},
                env_spec=None,
            )

    def test_peering_reports_every_unknown_vnet(self) -> None:
        with pytest.raises(ValueError, match=r"unknown vnets: \['hub', 'spoke'\]"):
            peer_networks(
                spec=PeeringSpecs(local="hub", remote="spoke"),
                networks={},
                env_spec=None,
            )


class TestRegistrationOptions:
    """Ordering and drift options the engine receives."""

    @pulumi.runtime.test
    def test_subnets_are_created_in_sequence(self, registrations, make_env):
        env = make_env("subnet-order-test")
        vnet = VirtualNetwork(
            name="order",
            vnet_spec=VNetSpecs(
                name="order",
                address_prefixes=["10.5.0.0/16"],
                subnets=[
                    {"name": "first", "address_prefix": "10.5.1.0/24"},
                    {"name": "second", "address_prefix": "10.5.2.0/24"},
                    {"name": "third", "address_prefix": "10.5.3.0/24"},
                ],
            ),
            env_spec=env,
        )

        assert not registrations["order-first"].depends_on
        assert list(registrations["order-second"].depends_on) == [
            vnet.subnets["first"]
        ]
        assert list(registrations["order-third"].depends_on) == [
            vnet.subnets["second"]
        ]
        assert registrations["order-first"].parent is vnet.vnet

        return pulumi.Output.all(*vnet.subnet_ids.values())

    @pulumi.runtime.test
    def test_vnet_ignores_inline_subnets(self, registrations, make_env):
        env = make_env("vnet-drift-test")
        vnet = VirtualNetwork(
            name="drift",
            vnet_spec=VNetSpecs(name="drift", address_prefixes=["10.6.0.0/16"]),
            env_spec=env,
        )

        assert "subnets" in registrations["drift-vnet"].ignore_changes

        return vnet.vnet.id

    @pulumi.runtime.test
    def test_peering_options_apply_to_both_sides(self, registrations, make_env):
        env = make_env("peering-opts-test")
        networks = {
            name: VirtualNetwork(
                name=name,
                vnet_spec=VNetSpecs(name=name, address_prefixes=[prefix]),
                env_spec=env,
            )
            for name, prefix in (("opts-a", "10.7.0.0/16"), ("opts-b", "10.8.0.0/16"))
        }

        outbound, inbound = peer_networks(
            spec=PeeringSpecs(local="opts-a", remote="opts-b"),
            networks=networks,
            env_spec=env,
            opts=pulumi.ResourceOptions(protect=True),
        )

        a_to_b = registrations["opts-a-to-opts-b"]
        assert a_to_b.protect is True
        assert a_to_b.parent is networks["opts-a"].vnet
        assert registrations["opts-b-to-opts-a"].protect is True
        assert registrations["opts-b-to-opts-a"].parent is networks["opts-b"].vnet

        return pulumi.Output.all(outbound.id, inbound.id)
