"""
Membership differencing between the directory and the repository.

Both sides of a group are loaded into diffsync adapters and diffed, with the
directory as the source of truth.
"""

import logging
from typing import Dict, Iterable

from diffsync import Adapter
from diffsync.enum import DiffSyncActions

from models import GroupMembership, MembershipDelta, SiteRole


logger = logging.getLogger(__name__)


class MembershipSnapshot(Adapter):
    """
    DiffSync adapter holding the members of one group as seen by one side.
    """

    membership = GroupMembership
    top_level = ["membership"]

    def __init__(self, group_name: str, members: Iterable[str], *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.group_name = group_name
        self.members = set(members)

    def load(self):
        for username in sorted(self.members):
            self.add(GroupMembership(user_username=username, group_name=self.group_name))
            logger.debug(f"Loaded membership: {username} -> {self.group_name} ({self.name})")


def diff_memberships(directory_members: Iterable[str],
                     repository_members: Iterable[str],
                     extra_users: Iterable[str] = (),
                     force: bool = False,
                     group_name: str = "group") -> MembershipDelta:
    """
    Work out who to add to and who to remove from a group in the repository.

    Extra users count as directory members. Removals are everything the
    repository has that the directory does not. Additions are the directory
    members the repository is missing, or every directory member when forced
    (re-adding an existing member refreshes its role).
    """
    wanted = set(directory_members) | set(extra_users)

    source = MembershipSnapshot(group_name, wanted, name="directory")
    source.load()
    target = MembershipSnapshot(group_name, repository_members, name="repository")
    target.load()

    diff = target.diff_from(source)

    additions = set()
    removals = set()
    for element in diff.get_children():
        username = element.keys["user_username"]
        if element.action == DiffSyncActions.CREATE:
            additions.add(username)
        elif element.action == DiffSyncActions.DELETE:
            removals.add(username)

    if force:
        additions = wanted

    return MembershipDelta(additions=frozenset(additions), removals=frozenset(removals))


def assign_site_roles(additions: Iterable[str], admins: Iterable[str]) -> Dict[str, SiteRole]:
    """Admins join sites as managers, everyone else as collaborators."""
    admins = set(admins)
    return {
        username: SiteRole.MANAGER if username in admins else SiteRole.COLLABORATOR
        for username in additions
    }
