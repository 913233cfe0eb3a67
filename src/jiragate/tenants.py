"""Pick the Jira tenant a request runs against.

Precedence, first rule that applies wins:

1. an explicit instance override (must exist);
2. a ``projects`` mapping for the project key;
3. a tenant whose ``projects`` allow-list contains the key, in config order;
4. the registry's default tenant;
5. the only tenant, when exactly one is configured.

Anything else is ambiguous and the caller has to name an instance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from jiragate.config import ProjectMapping, RegistryState, TenantConfig
from jiragate.errors import TenantAmbiguous, TenantNotFound

logger = logging.getLogger(__name__)


SelectionRule = Literal["explicit", "project-mapping", "allow-list", "default", "sole-tenant"]


@dataclass(frozen=True)
class TenantSelection:
    tenant: TenantConfig
    project_defaults: ProjectMapping | None
    rule: SelectionRule


def resolve_tenant(
    registry: RegistryState,
    project_key: str | None = None,
    explicit_tenant_id: str | None = None,
) -> TenantSelection:
    """Apply the precedence chain. Raises TenantNotFound or TenantAmbiguous."""
    mapping = registry.projects.get(project_key) if project_key else None

    if explicit_tenant_id:
        tenant = registry.tenants.get(explicit_tenant_id)
        if tenant is None:
            raise TenantNotFound(explicit_tenant_id, registry.tenant_ids())
        logger.debug("Using explicit instance %s for project %s", explicit_tenant_id, project_key)
        # The project's entry still applies when the override names another instance.
        return TenantSelection(tenant, mapping, "explicit")

    if mapping is not None:
        logger.debug("Project %s mapped to instance %s", project_key, mapping.tenant_id)
        return TenantSelection(registry.tenants[mapping.tenant_id], mapping, "project-mapping")

    if project_key:
        # Several allow-lists may claim the key; config order decides.
        for tenant in registry.tenants.values():
            if project_key in tenant.projects:
                logger.debug("Auto-discovered project %s in instance %s", project_key, tenant.id)
                return TenantSelection(tenant, None, "allow-list")

    if registry.default_tenant_id:
        logger.debug("Using default instance %s for project %s", registry.default_tenant_id, project_key)
        return TenantSelection(registry.tenants[registry.default_tenant_id], None, "default")

    if len(registry.tenants) == 1:
        (tenant,) = registry.tenants.values()
        logger.debug("Only one instance available, using %s for project %s", tenant.id, project_key)
        return TenantSelection(tenant, None, "sole-tenant")

    raise TenantAmbiguous(project_key, registry.tenant_ids())
