"""Request tenant context.

Authentication and tenant enforcement happen upstream (API gateway). The
gateway forwards the resolved tenant in the ``X-Tenant-ID`` header and,
optionally, the acting user in ``X-User-ID``.
"""

import uuid
from dataclasses import dataclass
from typing import Annotated

from fastapi import Header

from aumos_compliance_learning.errors import ValidationError


@dataclass(frozen=True)
class TenantContext:
    """Tenant and actor resolved for the current request.

    Attributes:
        tenant_id: Owning tenant UUID.
        user_id: Acting user UUID, when known.
    """

    tenant_id: uuid.UUID
    user_id: uuid.UUID | None = None


def _parse_uuid(value: str, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as exc:
        raise ValidationError(message=f"Invalid UUID in {field} header", field=field) from exc


def get_current_tenant(
    x_tenant_id: Annotated[str, Header()],
    x_user_id: Annotated[str | None, Header()] = None,
) -> TenantContext:
    """FastAPI dependency that builds the TenantContext from request headers.

    Args:
        x_tenant_id: Value of the X-Tenant-ID header.
        x_user_id: Value of the optional X-User-ID header.

    Returns:
        TenantContext for the request.

    Raises:
        ValidationError: If a header is not a valid UUID.
    """
    return TenantContext(
        tenant_id=_parse_uuid(x_tenant_id, "X-Tenant-ID"),
        user_id=_parse_uuid(x_user_id, "X-User-ID") if x_user_id else None,
    )
