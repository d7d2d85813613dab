"""FastAPI dependencies for operator authentication and the shared provisioner."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tenantkit.core.config import Settings, get_settings
from tenantkit.core.security import verify_admin_token
from tenantkit.provisioning import TenantProvisioner

bearer_scheme = HTTPBearer(auto_error=False)


async def require_admin(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> None:
    """Accept only the configured admin bearer token.

    With no ``ADMIN_TOKEN`` configured the provisioning API is disabled.
    """
    if not settings.admin_token:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Provisioning API is disabled (ADMIN_TOKEN not set)",
        )
    if credentials is None or not verify_admin_token(credentials.credentials, settings.admin_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_provisioner(request: Request) -> TenantProvisioner:
    """The provisioner built at start-up and kept on ``app.state``."""
    return request.app.state.provisioner


# Typed shorthand for use in route signatures
Provisioner = Annotated[TenantProvisioner, Depends(get_provisioner)]
