VALID_ROLES = ("admin", "manager", "closer", "sdr")

_LEAD_WORK = {
    "crm.leads.read",
    "crm.leads.create",
    "crm.leads.update",
    "crm.leads.qualify",
    "crm.activities.read",
    "crm.activities.create",
    "crm.tasks.read",
    "crm.tasks.write",
    "crm.appointments.read",
    "crm.appointments.create",
    "crm.webhooks.send",
}

_MANAGEMENT = _LEAD_WORK | {
    "crm.leads.read_all",
    "crm.leads.assign",
    "crm.leads.dedupe",
    "crm.appointments.update",
    "crm.sales.create",
    "crm.slots.manage",
    "crm.sync.run",
    "crm.sync.manage",
    "crm.reports.read",
    "users.read",
}

ROLE_PERMISSIONS: dict[str, set[str]] = {
    "admin": _MANAGEMENT | {"users.manage", "system.metrics.read"},
    "manager": set(_MANAGEMENT),
    "sdr": set(_LEAD_WORK),
    "closer": {
        "crm.leads.read",
        "crm.appointments.read",
        "crm.appointments.update",
        "crm.sales.create",
        "crm.reports.read",
    },
}


def permissions_for_roles(roles: list[str]) -> set[str]:
    permissions: set[str] = set()
    for role in roles:
        permissions |= ROLE_PERMISSIONS.get(role.lower(), set())
    return permissions


def primary_role(roles: list[str]) -> str | None:
    normalized = [role.lower() for role in roles]
    for role in VALID_ROLES:
        if role in normalized:
            return role
    return None
