from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import NewType

from .errors import CrossTenantAccessDenied, Unauthorized

logger = logging.getLogger(__name__)

TenantId = NewType("TenantId", int)


@dataclass(frozen=True)
class CallerIdentity:
    """Authenticated caller as resolved by the identity provider."""

    user_id: int
    tenant_ids: frozenset[int] = field(default_factory=frozenset)


class TenantGuard:
    """Bridges a caller identity to a tenant scope; fails closed."""

    def authorize(self, caller: CallerIdentity | None, requested_tenant_id: object) -> TenantId:
        if caller is None:
            raise Unauthorized()
        # bool is an int subclass; a loosely typed id never widens scope.
        if type(requested_tenant_id) is not int:
            logger.warning("rejected non-integer tenant scope for user %s", caller.user_id)
            raise CrossTenantAccessDenied()
        if requested_tenant_id not in caller.tenant_ids:
            logger.warning(
                "user %s denied access to tenant %s", caller.user_id, requested_tenant_id
            )
            raise CrossTenantAccessDenied()
        return TenantId(requested_tenant_id)

    def authorize_customer(self, caller: CallerIdentity | None, requested_tenant_id: object) -> TenantId:
        """Scope for a caller acting on their own bookings.

        Membership is not required; every read and write made under this scope
        must also be filtered by ``caller.user_id``.
        """
        if caller is None:
            raise Unauthorized()
        if type(requested_tenant_id) is not int or requested_tenant_id < 1:
            logger.warning("rejected customer scope %r for user %s", requested_tenant_id, caller.user_id)
            raise CrossTenantAccessDenied()
        return TenantId(requested_tenant_id)
