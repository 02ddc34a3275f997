import logging
import os
from typing import Annotated, Dict, List

from fastapi import Depends, HTTPException, status
from pydantic import BaseModel
from yaml import safe_load

from portal.api.deps import get_membership_session
from portal.core.config import settings
from portal.services.session_registry import MembershipSession

logger = logging.getLogger(__name__)


# Load policies from YAML file
def load_policies() -> Dict:
    try:
        # Try multiple possible paths for policies.yaml
        possible_paths = [
            settings.POLICIES_PATH,
            "/app/policies.yaml",  # Docker app directory
            os.path.join(os.path.dirname(__file__), "../../../policies.yaml"),  # Relative to this file
        ]

        for path in possible_paths:
            if os.path.exists(path):
                logger.debug(f"Loading policies from: {path}")
                with open(path, "r") as f:
                    return safe_load(f) or {}

        logger.error(f"policies.yaml not found in any of these paths: {possible_paths}")
        return {}
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load policies: {e}")
        return {}


class Policy(BaseModel):
    roles: List[str]
    actions: List[str]
    resources: List[str]


def check_policy(roles: List[str], action: str, resource: str) -> bool:
    """Check if any of ``roles`` may perform ``action`` on ``resource``."""
    policies = load_policies()

    for policy in policies.get("policies", []):
        policy_obj = Policy(**policy)

        if not any(role in roles for role in policy_obj.roles):
            continue

        if action not in policy_obj.actions:
            continue

        if "*" not in policy_obj.resources and resource not in policy_obj.resources:
            continue

        return True

    logger.warning(f"No matching policy found for roles {roles}, action: {action}, resource: {resource}")
    return False


def require_permission(action: str, resource: str):
    """Dependency requiring a role that grants ``action`` on ``resource``."""
    async def permission_dependency(
        session: Annotated[MembershipSession, Depends(get_membership_session)],
    ) -> MembershipSession:
        if not check_policy(session.roles, action, resource):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Permission denied"
            )
        return session

    return permission_dependency
