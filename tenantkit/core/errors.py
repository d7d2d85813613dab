"""Exception hierarchy for tenant provisioning."""


class TenantkitError(Exception):
    """Base class for all provisioning errors."""


class TenantValidationError(TenantkitError, ValueError):
    """Tenant input rejected before any resource was touched."""


class TenantAlreadyProvisionedError(TenantValidationError):
    """A component already tracks resources for this tenant id."""

    def __init__(self, tenant_id: str, components: list[str]) -> None:
        self.tenant_id = tenant_id
        self.components = components
        super().__init__(
            f"Tenant '{tenant_id}' is already provisioned ({', '.join(components)})"
        )


class UnknownStrategyError(TenantkitError, ValueError):
    """Database isolation strategy is not one of separate / schema / prefix."""


class InvalidIdentifierError(TenantkitError, ValueError):
    """A database identifier failed the allow-list check."""


class ProvisioningError(TenantkitError):
    """A provisioning step failed for a specific tenant."""

    def __init__(self, tenant_id: str, message: str, component: str | None = None) -> None:
        self.tenant_id = tenant_id
        self.component = component
        label = f"{component.capitalize()} provisioning" if component else "Provisioning"
        self.cause = message
        super().__init__(f"{label} failed for tenant {tenant_id}: {message}")
