"""
Roles and permission bitmask shared by the Users and Products services.
"""
from enum import IntEnum, IntFlag
from typing import List


class Role(IntEnum):
    USER = 0
    ADMIN = 1


class Permission(IntFlag):
    NONE = 0
    VIEW_USERS = 1
    EDIT_USERS = 2
    DELETE_USERS = 4
    VIEW_PRODUCTS = 8
    EDIT_PRODUCTS = 16
    DELETE_PRODUCTS = 32
    ALL = 63


PERMISSION_LABELS = {
    Permission.VIEW_USERS: "View Users",
    Permission.EDIT_USERS: "Edit Users",
    Permission.DELETE_USERS: "Delete Users",
    Permission.VIEW_PRODUCTS: "View Products",
    Permission.EDIT_PRODUCTS: "Edit Products",
    Permission.DELETE_PRODUCTS: "Delete Products",
}


def is_valid_mask(value: int) -> bool:
    return isinstance(value, int) and 0 <= value <= int(Permission.ALL)


def is_admin(user: dict) -> bool:
    return user.get("role", Role.USER) == Role.ADMIN


def has_permission(user: dict, permission: Permission) -> bool:
    """Admins pass every check; everyone else needs all bits of `permission`."""
    if is_admin(user):
        return True
    granted = user.get("permissions", 0)
    return (granted & permission) == permission


def permission_names(mask: int) -> List[str]:
    """Human-readable names for the bits set in `mask`, in bit order."""
    return [label for flag, label in PERMISSION_LABELS.items() if mask & flag]
