"""
Database migrations package
"""
from .admin_role import migrate_admin_role

__all__ = [
    "migrate_admin_role",
]
