"""Role hierarchy used for every authorization comparison."""
from enum import Enum


class Role(str, Enum):
    """User roles, declared lowest privilege first."""

    USER = "user"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


_RANKS = {role: index for index, role in enumerate(Role)}


def rank(role: Role) -> int:
    """Position of a role in the hierarchy; higher means more privilege."""
    return _RANKS[Role(role)]


def at_least(actual: Role, required: Role) -> bool:
    """True when ``actual`` meets or exceeds ``required``."""
    return rank(actual) >= rank(required)


def exactly(actual: Role, required: Role) -> bool:
    """Strict equality, for checks that must not be satisfied by a higher rank."""
    return Role(actual) is Role(required)


def parse_role(value) -> Role | None:
    """Coerce a claim value into a Role, or None if it is not one."""
    try:
        return Role(value)
    except (TypeError, ValueError):
        return None
