"""Default role → (module, action) grants seeded for every new company."""

from __future__ import annotations

from backend.common.constants import AppRole, PermissionAction as A, PermissionModule as M

Grant = tuple[M, A]


def _grid(modules: list[M], actions: list[A]) -> set[Grant]:
    return {(m, a) for m in modules for a in actions}


_COMPANY_ADMIN: set[Grant] = _grid(list(M), list(A)) - {(M.compliance, A.manage)}

_HR_MANAGER: set[Grant] = (
    _grid(
        [
            M.dashboard, M.employees, M.departments, M.leave, M.time_tracking,
            M.documents, M.recruitment, M.performance, M.expenses, M.payroll,
        ],
        [A.read, A.create, A.update, A.approve, A.verify],
    )
    | _grid([M.shifts], [A.read, A.create, A.update, A.delete])
    | {(M.payroll, A.process), (M.my_team, A.read)}
)

_MANAGER: set[Grant] = (
    _grid([M.dashboard, M.employees, M.departments, M.my_team, M.shifts], [A.read])
    | _grid([M.leave, M.time_tracking, M.expenses], [A.read, A.approve])
    | _grid([M.performance], [A.read, A.create, A.update])
)

_EMPLOYEE: set[Grant] = (
    _grid([M.dashboard, M.employees, M.departments, M.shifts], [A.read])
    | _grid([M.leave], [A.read, A.create, A.update, A.delete])
    | _grid([M.time_tracking], [A.read, A.create])
)

# super_admin is never stored: it is granted everything implicitly.
DEFAULT_ROLE_PERMISSIONS: dict[AppRole, set[Grant]] = {
    AppRole.company_admin: _COMPANY_ADMIN,
    AppRole.hr_manager: _HR_MANAGER,
    AppRole.manager: _MANAGER,
    AppRole.employee: _EMPLOYEE,
}
