"""
Shared fixtures: in-memory stand-ins for the LDAP directory and Alfresco.
"""

from datetime import datetime, timezone

import pytest

from config import Settings, SyncOptions
from coordinator import RunCoordinator
from errors import ConflictError, ConnectivityError, DataIntegrityError
from models import GroupCategory, GroupDetails
from profile_fields import TelephoneFieldConverter, TextFieldConverter
from profile_updater import ProfileUpdater


BASE_ENV = {
    "LDAP_SERVER": "ldap://ldap.test",
    "LDAP_BIND_DN": "cn=admin,dc=example,dc=com",
    "LDAP_BIND_PASSWORD": "secret",
    "LDAP_ROOT_DN": "dc=example,dc=com",
    "LDAP_GROUP_BASE_DN": "ou=groups,dc=example,dc=com",
    "LDAP_USER_BASE_DN": "ou=people,dc=example,dc=com",
    "ALFRESCO_URL": "https://alfresco.test/alfresco/",
    "ALFRESCO_USERNAME": "admin",
    "ALFRESCO_PASSWORD": "secret",
    "ALFRESCO_MARKINGS_OPEN": "openMarkings",
    "ALFRESCO_MARKINGS_CLOSED": "closedMarkings",
    "ALFRESCO_MARKINGS_ORG": "orgMarkings",
    "ALFRESCO_DELETERS_ROLE": "DELETERS",
}


class FakeDirectory:
    """
    Directory service kept in memory. Every change bumps a counter that acts
    as modifyTimestamp, so incremental selection behaves like LDAP's.
    """

    def __init__(self):
        self._clock = 0
        self.groups = {}
        self.group_stamps = {}
        self.users = {}
        self.user_stamps = {}
        self.details = {}
        self.lock = False
        self.run_timestamp = None
        self.groups_changed = True
        self.fail_marking = False
        self.calls = []

    def _stamp(self) -> str:
        self._clock += 1
        return f"{self._clock:010d}"

    @staticmethod
    def _key(category, name):
        return (category, None if category.is_role else name)

    # test helpers

    def set_group(self, category, name=None, members=()):
        key = self._key(category, name)
        self.groups[key] = set(members)
        self.group_stamps[key] = self._stamp()

    def set_user(self, username, **attributes):
        bag = {"cn": [username]}
        bag.update({name: list(values) for name, values in attributes.items()})
        self.users[username] = bag
        self.user_stamps[username] = self._stamp()

    # directory service

    def lock_exists(self):
        return self.lock

    def acquire_lock(self):
        self.calls.append(("acquire_lock",))
        self.lock = True

    def release_lock(self):
        self.calls.append(("release_lock",))
        self.lock = False

    def swap_run_timestamp(self, now):
        self.calls.append(("swap_run_timestamp",))
        previous = self.run_timestamp
        self.run_timestamp = self._stamp()
        return previous

    def admin_group_modified_since(self, timestamp):
        if timestamp is None:
            return True
        return self.group_stamps.get((GroupCategory.ADMIN_ROLE, None), "") >= timestamp

    def groups_modified_since(self, when):
        return self.groups_changed

    def list_records(self, category, since=None):
        return {
            name for (cat, name), stamp in self.group_stamps.items()
            if cat is category and (since is None or stamp >= since)
        }

    def get_members(self, category, name=None):
        key = self._key(category, name)
        if key not in self.groups:
            raise DataIntegrityError(f"No such group {key}")
        return set(self.groups[key])

    def list_site_memberships(self, username):
        if username not in self.users:
            raise DataIntegrityError(f"Could not find the user {username}")
        return {
            name for (cat, name), members in self.groups.items()
            if cat is GroupCategory.SITE and username in members
        }

    def mark_modified(self, category, name=None):
        self.calls.append(("mark_modified", category, name))
        if self.fail_marking:
            raise ConnectivityError("directory went away")
        self.group_stamps[self._key(category, name)] = self._stamp()

    def get_user_attributes(self, since=None):
        return [
            {k: list(v) for k, v in self.users[username].items()}
            for username in sorted(self.users)
            if since is None or self.user_stamps[username] >= since
        ]

    def mark_user_modified(self, username):
        self.calls.append(("mark_user_modified", username))
        if self.fail_marking:
            raise ConnectivityError("directory went away")
        self.user_stamps[username] = self._stamp()

    def update_user(self, username, attributes):
        self.calls.append(("update_user", username))
        self.users[username].update(attributes)
        self.user_stamps[username] = self._stamp()

    def get_group_details(self, category, name):
        return self.details.get((category, name)) or GroupDetails(
            name=name,
            display_name=name.title(),
            description=f"{name} group",
            category=category.value,
            deprecated=False,
            permission_authorities=(),
        )


class FakeRepository:
    """
    Repository service kept in memory. `failures` holds (operation, target)
    or (operation, target, user) tuples that make the matching call fail.
    """

    def __init__(self):
        self.sites = {}
        self.markings = {}
        self.roles = {}
        self.profiles = {}
        self.failures = set()
        self.calls = []

    def _check(self, operation, target, user=None):
        if (operation, target) in self.failures or (operation, target, user) in self.failures:
            raise ConflictError(f"{operation} rejected for {target} {user or ''}")

    def list_group_members(self, site):
        self._check("list_group_members", site)
        return set(self.sites.get(site, {}))

    def add_member(self, site, username, role):
        self.calls.append(("add_member", site, username, role))
        self._check("add_member", site, username)
        self.sites.setdefault(site, {})[username] = role

    def remove_member(self, site, username, missing_ok=False):
        self.calls.append(("remove_member", site, username))
        self._check("remove_member", site, username)
        members = self.sites.get(site, {})
        if username not in members:
            if missing_ok:
                return
            raise DataIntegrityError(f"{username} is not in {site}")
        del members[username]

    def set_marking_group(self, constraint, group, members):
        self.calls.append(("set_marking_group", constraint, group))
        self._check("set_marking_group", group)
        self.markings[(constraint, group)] = set(members)

    def update_user_profile(self, username, fields):
        self.calls.append(("update_user_profile", username))
        self._check("update_user_profile", username)
        self.profiles[username] = fields

    def list_role_members(self, role):
        self._check("list_role_members", role)
        return set(self.roles.get(role, set()))

    def add_role_member(self, role, username):
        self.calls.append(("add_role_member", role, username))
        self._check("add_role_member", role, username)
        self.roles.setdefault(role, set()).add(username)

    def remove_role_member(self, role, username, missing_ok=False):
        self.calls.append(("remove_role_member", role, username))
        self._check("remove_role_member", role, username)
        members = self.roles.get(role, set())
        if username not in members:
            if missing_ok:
                return
            raise DataIntegrityError(f"{username} is not in {role}")
        members.discard(username)


@pytest.fixture
def settings():
    return Settings.from_env(BASE_ENV)


@pytest.fixture
def directory():
    directory = FakeDirectory()
    directory.set_group(GroupCategory.ADMIN_ROLE, members=[])
    directory.set_group(GroupCategory.DELETERS_ROLE, members=[])
    return directory


@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def options():
    return SyncOptions(
        extra_users=frozenset(),
        marking_constraints={
            GroupCategory.OPEN_MARKING: "openMarkings",
            GroupCategory.CLOSED_MARKING: "closedMarkings",
            GroupCategory.ORG_MARKING: "orgMarkings",
        },
        deleters_role="DELETERS",
        deleted_items_postfix="-deleted",
    )


@pytest.fixture
def profile_updater():
    return ProfileUpdater([
        TextFieldConverter("description", "biography"),
        TelephoneFieldConverter("telephoneNumber", "telephones", multiple=True),
    ])


@pytest.fixture
def make_coordinator(directory, repository, profile_updater, options):
    def make(**overrides):
        kwargs = dict(
            directory=directory,
            repository=repository,
            profile_updater=profile_updater,
            options=options,
            clock=lambda: datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        kwargs.update(overrides)
        return RunCoordinator(**kwargs)
    return make
