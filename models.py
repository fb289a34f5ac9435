"""
Data models for LDAP to Alfresco sync
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Tuple

from diffsync import DiffSyncModel


# Directory entry attributes, decoded to text: {"cn": ["alice"], ...}
AttributeBag = Dict[str, List[str]]

# JSON profile fields as sent to Alfresco
ProfileFields = Dict[str, Any]


class GroupCategory(Enum):
    """
    Kinds of directory group. The category decides the naming prefix (or the
    exact name, for the role groups) used to find the group in LDAP.
    """
    SITE = "site"
    OPEN_MARKING = "open"
    CLOSED_MARKING = "closed"
    ORG_MARKING = "org"
    ADMIN_ROLE = "admins"
    DELETERS_ROLE = "deleters"

    @property
    def is_role(self) -> bool:
        return self in (GroupCategory.ADMIN_ROLE, GroupCategory.DELETERS_ROLE)


MARKING_CATEGORIES: Tuple[GroupCategory, ...] = (
    GroupCategory.OPEN_MARKING,
    GroupCategory.CLOSED_MARKING,
    GroupCategory.ORG_MARKING,
)


class SiteRole(Enum):
    """Alfresco site roles handed out by the sync."""
    MANAGER = "SiteManager"
    COLLABORATOR = "SiteCollaborator"


class RunOutcome(Enum):
    COMPLETED = "completed"
    LOCKED = "locked"
    FAILED = "failed"


class GroupMembership(DiffSyncModel):
    """
    DiffSync model representing a group membership.
    A membership is a relationship between a user (identified by username) and a group.
    """
    _modelname = "membership"
    _identifiers = ("user_username", "group_name")
    _attributes = ()

    user_username: str
    group_name: str


@dataclass(frozen=True)
class MembershipDelta:
    """Edit script for one group: who to add and who to remove."""
    additions: FrozenSet[str]
    removals: FrozenSet[str]

    def __post_init__(self):
        overlap = self.additions & self.removals
        if overlap:
            raise ValueError(f"Users both added and removed: {sorted(overlap)}")

    @property
    def is_empty(self) -> bool:
        return not self.additions and not self.removals


@dataclass(frozen=True)
class GroupDetails:
    """Descriptive attributes of a security marking group."""
    name: str
    display_name: str
    description: str
    category: str
    deprecated: bool
    permission_authorities: Tuple[str, ...]
