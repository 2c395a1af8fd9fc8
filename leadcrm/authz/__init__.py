from leadcrm.authz.models import Permission, Role, RolePermission, UserPermission, UserRole

__all__ = [
    "Role",
    "Permission",
    "RolePermission",
    "UserRole",
    "UserPermission",
]
