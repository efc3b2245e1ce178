"""Plan catalogue and the mapping from permission modules to plan modules."""

from __future__ import annotations

from typing import Any, Optional

from backend.common.constants import PermissionModule

# Plan module ids (what a plan sells) are not the same as permission modules
# (what a role may touch): "directory" unlocks departments, and a few
# permission modules are always available.
PLAN_MODULES: dict[str, list[str]] = {
    "Free": ["employees", "directory"],
    "Basic": ["employees", "directory", "leave", "time_tracking"],
    "Pro": [
        "employees", "directory", "leave", "time_tracking",
        "documents", "recruitment", "performance",
    ],
    "Enterprise": [
        "employees", "directory", "leave", "time_tracking",
        "documents", "recruitment", "performance",
        "payroll", "compliance", "audit", "integrations", "expenses",
    ],
}

# None → always available regardless of plan.
MODULE_PLAN_REQUIREMENT: dict[PermissionModule, Optional[str]] = {
    PermissionModule.dashboard: None,
    PermissionModule.employees: "employees",
    PermissionModule.departments: "directory",
    PermissionModule.leave: "leave",
    PermissionModule.time_tracking: "time_tracking",
    PermissionModule.shifts: "time_tracking",
    PermissionModule.attendance: "time_tracking",
    PermissionModule.documents: "documents",
    PermissionModule.recruitment: "recruitment",
    PermissionModule.performance: "performance",
    PermissionModule.payroll: "payroll",
    PermissionModule.expenses: "expenses",
    PermissionModule.compliance: "compliance",
    PermissionModule.audit: "audit",
    PermissionModule.integrations: "integrations",
    PermissionModule.settings: None,
    PermissionModule.users: None,
    PermissionModule.my_team: None,
}

DEFAULT_PLANS: list[dict[str, Any]] = [
    {
        "name": "Free",
        "modules": PLAN_MODULES["Free"],
        "max_employees": 10,
        "price_monthly": 0,
        "features": {"documents": {"max_storage_mb": 100, "max_per_employee": 5}},
    },
    {
        "name": "Basic",
        "modules": PLAN_MODULES["Basic"],
        "max_employees": 50,
        "price_monthly": 49,
        "features": {"documents": {"max_storage_mb": 1024, "max_per_employee": 20}},
    },
    {
        "name": "Pro",
        "modules": PLAN_MODULES["Pro"],
        "max_employees": 250,
        "price_monthly": 199,
        "features": {"documents": {"max_storage_mb": 10240, "max_per_employee": 100}},
    },
    {
        "name": "Enterprise",
        "modules": "all",
        "max_employees": -1,
        "price_monthly": 499,
        "features": {"documents": {"max_storage_mb": -1, "max_per_employee": -1}},
    },
]


def plan_has_module(plan_modules: Any, module: PermissionModule) -> bool:
    """True when a plan whose module list is *plan_modules* unlocks *module*."""
    required = MODULE_PLAN_REQUIREMENT.get(module)
    if required is None:
        return True
    if plan_modules == "all":
        return True
    return required in (plan_modules or [])
