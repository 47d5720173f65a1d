"""
Clinical qualification ladder used to decide who may work or bid on a slot.
"""

from eventmed.models import Role

ROLE_HIERARCHY: dict[Role, int] = {
    Role.FIRST_AIDER: 1,
    Role.FREC3: 2,
    Role.FREC4_ECA: 3,
    Role.FREC5_EMT_AAP: 4,
    Role.PARAMEDIC: 5,
    Role.NURSE: 6,
    Role.DOCTOR: 7,
}

# satisfy any requirement
OVERRIDE_ROLES = frozenset({Role.ADMIN, Role.MANAGER})

ALL_ROLES: tuple[Role, ...] = tuple(Role)


def _as_role(value: Role | str | None) -> Role | None:
    if value is None or isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return None


def is_role_or_higher(
    user_role: Role | str | None, required_role: Role | str | None
) -> bool:
    """
    Return True if ``user_role`` is qualified to fill ``required_role``.

    Admin and Manager pass every check. Welfare is its own track and only
    matches Welfare. Pending, absent or unrecognised roles never pass, and
    nobody qualifies for a Pending requirement.
    """
    user = _as_role(user_role)
    required = _as_role(required_role)
    if user is None or required is None or required == Role.PENDING:
        return False

    if user in OVERRIDE_ROLES:
        return True

    if required == Role.WELFARE:
        return user == Role.WELFARE
    if user == Role.WELFARE:
        return False

    user_level = ROLE_HIERARCHY.get(user)
    required_level = ROLE_HIERARCHY.get(required)
    if user_level is None or required_level is None:
        return False

    return user_level >= required_level


def is_manager(role: Role | str | None) -> bool:
    return _as_role(role) in OVERRIDE_ROLES
