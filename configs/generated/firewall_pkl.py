# Code generated from Pkl module `firewall`. DO NOT EDIT.
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Set, Union

import pkl


SkuTier = Literal["Standard", "Premium"]
ThreatIntelMode = Literal["Alert", "Deny", "Off"]
Action = Literal["Allow", "Deny"]
NetworkProtocol = Literal["TCP", "UDP", "ICMP", "Any"]
ApplicationProtocolType = Literal["Http", "Https", "Mssql"]

Priority = int

Port = int


@dataclass
class PolicyOptions:
    skuTier: SkuTier

    threatIntelMode: ThreatIntelMode

    dnsProxyEnabled: bool

    _registered_identifier = "firewall#PolicyOptions"


@dataclass
class IpGroup:
    name: str

    ipAddresses: List[str]

    _registered_identifier = "firewall#IpGroup"


@dataclass
class NetworkRule:
    name: str

    description: Optional[str]

    ipProtocols: List[NetworkProtocol]

    sourceAddresses: List[str]

    sourceIpGroups: List[str]

    destinationAddresses: List[str]

    destinationIpGroups: List[str]

    destinationFqdns: List[str]

    destinationPorts: List[str]

    _registered_identifier = "firewall#NetworkRule"


@dataclass
class ApplicationProtocol:
    protocolType: ApplicationProtocolType

    port: Port

    _registered_identifier = "firewall#ApplicationProtocol"


@dataclass
class ApplicationRule:
    name: str

    description: Optional[str]

    protocols: List[ApplicationProtocol]

    sourceAddresses: List[str]

    sourceIpGroups: List[str]

    targetFqdns: List[str]

    fqdnTags: List[str]

    _registered_identifier = "firewall#ApplicationRule"


@dataclass
class RuleCollection:
    name: str

    priority: Priority

    action: Action

    networkRules: List[NetworkRule]

    applicationRules: List[ApplicationRule]

    _registered_identifier = "firewall#RuleCollection"


@dataclass
class RuleCollectionGroup:
    name: str

    priority: Priority

    ruleCollections: List[RuleCollection]

    _registered_identifier = "firewall#RuleCollectionGroup"


@dataclass
class firewall:
    policy: PolicyOptions

    ipGroups: List[IpGroup]

    ruleCollectionGroups: List[RuleCollectionGroup]

    _registered_identifier = "firewall"

    @classmethod
    def load_pkl(cls, source):
        # Load the Pkl module at the given source and evaluate it into `firewall.Module`.
        # - Parameter source: The source of the Pkl module.
        config = pkl.load(source, parser=pkl.Parser(namespace=globals()))
        return config
