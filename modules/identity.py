from typing import Optional

from attr import dataclass, field
from pulumi import ComponentResource, Input, Output, ResourceOptions
import pulumi_azuread as azuread
from pulumi_azure_native import authorization

# Built-in role definition ids
ROLE_IDS = {
    "Contributor": "b24988ac-6180-42a0-ab88-20f7382dd24c",
    "Reader": "acdd72a7-3385-48ef-bd42-f606fba81ae7",
    "Storage Blob Data Contributor": "ba92f5b4-2d11-453d-a403-e96b0029c9fe",
    "Storage Blob Data Owner": "b7e6dc6d-f1e8-4753-8033-0f276bb0955b",
}


def role_definition_id(subscription_id: str, role_name: str) -> str:
    if role_name not in ROLE_IDS:
        raise ValueError(f"Unsupported role: {role_name}")
    return (
        f"/subscriptions/{subscription_id}/providers/Microsoft.Authorization/"
        f"roleDefinitions/{ROLE_IDS[role_name]}"
    )


@dataclass
class ServicePrincipalSpecs:
    display_name: str
    subscription_id: str
    # role name -> scope
    role_assignments: dict[str, Input[str]] = field(factory=dict)
    password_version: str = "1"

    def __attrs_post_init__(self):
        if not self.display_name.strip():
            raise ValueError("service principal display_name is empty.")
        for role_name in self.role_assignments:
            if role_name not in ROLE_IDS:
                raise ValueError(f"Unsupported role: {role_name}")


class ServicePrincipal(ComponentResource):
    """
    Create an Entra ID application, its service principal and a client
    secret, and grant the principal its role assignments.
    """

    def __init__(
        self,
        name: str,
        sp_spec: ServicePrincipalSpecs,
        opts: Optional[ResourceOptions] = None,
    ):
        super().__init__("hubnet:identity:ServicePrincipal", name, None, opts)

        self.opts = ResourceOptions.merge(opts, ResourceOptions(parent=self))
        self.sp_name = name
        self.role_assignments: dict[str, authorization.RoleAssignment] = {}

        self.application = azuread.Application(
            f"{name}-app",
            display_name=sp_spec.display_name,
            opts=self.opts,
        )

        self.service_principal = azuread.ServicePrincipal(
            f"{name}-sp",
            client_id=self.application.client_id,
            opts=ResourceOptions(parent=self.application),
        )

        self.password = azuread.ServicePrincipalPassword(
            f"{name}-sp-password",
            service_principal_id=self.service_principal.id,
            display_name=f"{sp_spec.display_name}-secret",
            rotate_when_changed={"version": sp_spec.password_version},
            opts=ResourceOptions(parent=self.service_principal),
        )

        self.client_id: Output[str] = self.application.client_id
        self.object_id: Output[str] = self.service_principal.object_id
        self.client_secret: Output[str] = Output.secret(self.password.value)

        for role_name, scope in sp_spec.role_assignments.items():
            self.assign_role(
                role_name=role_name,
                scope=scope,
                subscription_id=sp_spec.subscription_id,
            )

        self.register_outputs(
            {"client_id": self.client_id, "object_id": self.object_id}
        )

    def assign_role(
        self,
        role_name: str,
        scope: Input[str],
        subscription_id: str,
    ) -> authorization.RoleAssignment:
        resource_name = f"{role_name.replace(' ', '')}-{self.sp_name}"
        if resource_name in self.role_assignments:
            resource_name = f"{resource_name}-{len(self.role_assignments)}"
        assignment = authorization.RoleAssignment(
            resource_name=resource_name,
            principal_id=self.object_id,
            principal_type=authorization.PrincipalType.SERVICE_PRINCIPAL,
            role_definition_id=role_definition_id(subscription_id, role_name),
            scope=scope,
            opts=ResourceOptions(parent=self.service_principal),
        )
        self.role_assignments[resource_name] = assignment
        return assignment
