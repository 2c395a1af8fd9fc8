from leadcrm.security.context import AuthContext
from leadcrm.security.errors import AuthorizationError, HierarchyViolationError
from leadcrm.security.policies import (
    DbPolicyBackend,
    InMemoryPolicyBackend,
    PolicyBackend,
    get_policy_backend,
    has_permission,
    set_policy_backend,
)

__all__ = [
    "AuthContext",
    "AuthorizationError",
    "HierarchyViolationError",
    "PolicyBackend",
    "DbPolicyBackend",
    "InMemoryPolicyBackend",
    "get_policy_backend",
    "set_policy_backend",
    "has_permission",
]
