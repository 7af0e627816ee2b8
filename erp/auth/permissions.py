# erp/auth/permissions.py

from typing import List, Dict, Any, Optional
from fastapi import HTTPException, status
import logging

logger = logging.getLogger(__name__)


class PermissionChecker:
    """
    Check user permissions from JWT token
    """

    def __init__(self, user_permissions: List[Dict[str, Any]]):
        self.permissions = user_permissions or []
        self._permission_map = set()

        for perm in self.permissions:
            resource = perm.get("resource")
            action = perm.get("action")
            if resource and action:
                self._permission_map.add(f"{resource}:{action}")

    def can(self, resource: str, action: str) -> bool:
        """
        Check if user can perform action on resource

        Examples:
            can("inventory", "create")  # Check if can record stock movements
        """
        if f"{resource}:{action}" in self._permission_map:
            return True

        # Admin on the resource, or system admin (full access)
        if f"{resource}:admin" in self._permission_map or "system:admin" in self._permission_map:
            return True

        logger.debug(f"Permission denied: {resource}:{action}")
        return False

    def cannot(self, resource: str, action: str) -> bool:
        return not self.can(resource, action)

    def require(self, resource: str, action: str, custom_message: Optional[str] = None):
        """
        Require permission or raise HTTPException
        """
        if self.cannot(resource, action):
            message = custom_message or f"Insufficient permissions to {action} {resource}"
            logger.warning(f"Permission check failed: {message}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=message
            )


def format_permission(resource: str, action: str) -> Dict[str, str]:
    """Permission entry as carried in the token"""
    return {"name": f"{resource}:{action}", "resource": resource, "action": action}
