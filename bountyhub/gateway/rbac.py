"""
BountyHub - Role-Based Access Control (RBAC)

Permission control based on user roles.
Policies are defined in policies.yaml and enforced at the route level.

Security:
- Deny-by-default: All actions require explicit permission
- Role hierarchy is NOT inherited (explicit grants only)
"""

from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Set

import yaml


class Permission(str, Enum):
    """Granular permissions for auth-core actions."""
    READ_OWN_SESSIONS = "read:own_sessions"
    TERMINATE_OWN_SESSIONS = "terminate:own_sessions"
    TERMINATE_ANY_SESSION = "terminate:any_session"
    READ_AUDIT = "read:audit"


DEFAULT_POLICY_PATH = Path(__file__).parent / "policies.yaml"


class RBACPolicy:
    """
    Manages role-to-permission mappings loaded from policies.yaml.

    Singleton; call RBACPolicy.reload() after changing the file.
    """

    _instance: Optional["RBACPolicy"] = None
    _policies: Dict[str, Set[str]] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_policies(DEFAULT_POLICY_PATH)
        return cls._instance

    @classmethod
    def reload(cls, policy_path: Path = DEFAULT_POLICY_PATH) -> "RBACPolicy":
        instance = cls()
        instance._load_policies(policy_path)
        return instance

    def _load_policies(self, policy_path: Path):
        """Load policies from YAML configuration file."""
        if not policy_path.exists():
            # Default deny-all if no policy file
            self._policies = {}
            return

        with open(policy_path, "r") as f:
            config = yaml.safe_load(f) or {}

        self._policies = {
            str(role).upper(): set(perms or [])
            for role, perms in config.get("roles", {}).items()
        }

    def has_permission(self, role: str, permission: Permission) -> bool:
        """
        Check if a role has a specific permission.

        Args:
            role: User's role
            permission: Required permission

        Returns:
            True if permitted, False otherwise
        """
        role_perms = self._policies.get(str(role).upper(), set())
        return permission.value in role_perms

    def get_role_permissions(self, role: str) -> Set[str]:
        """Get all permissions for a role."""
        return set(self._policies.get(str(role).upper(), set()))
