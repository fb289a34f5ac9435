"""
LDAP directory service.

Reads groups, members and user profiles from LDAP and keeps the run state
(lock entry and run timestamp) in the directory itself.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Set, Tuple

import ldap
import ldap.dn
import ldap.filter
from ldap.controls.readentry import PreReadControl

from config import Settings
from errors import ConflictError, ConnectivityError, DataIntegrityError, SyncError
from ldap_connection import ConnectionPolicy
from models import AttributeBag, GroupCategory, GroupDetails


logger = logging.getLogger(__name__)


LDAP_TIME_FORMAT = "%Y%m%d%H%M%SZ"


def format_generalized_time(when: datetime) -> str:
    """Render a datetime the way LDAP stores modifyTimestamp (UTC)."""
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc).strftime(LDAP_TIME_FORMAT)


@contextmanager
def ldap_errors(message: str) -> Iterator[None]:
    """Translate python-ldap exceptions into the sync's error taxonomy."""
    try:
        yield
    except (ldap.SERVER_DOWN, ldap.CONNECT_ERROR, ldap.TIMEOUT) as e:
        raise ConnectivityError(f"{message}: {e}") from e
    except (ldap.NO_SUCH_OBJECT, ldap.INVALID_DN_SYNTAX, ldap.DECODING_ERROR) as e:
        raise DataIntegrityError(f"{message}: {e}") from e
    except (ldap.ALREADY_EXISTS, ldap.CONSTRAINT_VIOLATION, ldap.INSUFFICIENT_ACCESS) as e:
        raise ConflictError(f"{message}: {e}") from e
    except ldap.LDAPError as e:
        raise SyncError(f"{message}: {e}") from e


def _decode(value) -> str:
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return value


def _decode_attrs(attrs: Dict[str, list]) -> AttributeBag:
    return {name: [_decode(v) for v in values] for name, values in attrs.items()}


def _first(attrs: Dict[str, list], name: str) -> Optional[str]:
    """First value of an attribute, matching the name case-insensitively."""
    for key, values in attrs.items():
        if key.lower() == name.lower() and values:
            return _decode(values[0])
    return None


class LDAPDirectory:
    """
    Directory service backed by LDAP.
    All groups live below LDAP_GROUP_BASE_DN and are told apart by a cn prefix
    per category; the admins and deleters groups are single entries found by
    their exact cn directly below the group base.
    """

    def __init__(self, settings: Settings, connections: ConnectionPolicy):
        self.connections = connections
        self.group_base_dn = settings.ldap_group_base_dn
        self.user_base_dn = settings.ldap_user_base_dn
        self.group_names = dict(settings.group_names)
        self.lock_dn = settings.lock_dn
        self.lock_cn = settings.ldap_lock_cn
        self.timestamp_dn = settings.timestamp_dn
        self.timestamp_cn = settings.ldap_timestamp_cn
        self.profile_object_class = settings.ldap_profile_object_class

    def close(self):
        self.connections.close()

    # -- naming ---------------------------------------------------------

    def _group_cn(self, category: GroupCategory, name: Optional[str] = None) -> str:
        if category.is_role:
            return self.group_names[category]
        return f"{self.group_names[category]}{name}"

    def _group_scope(self, category: GroupCategory) -> int:
        # the role groups sit at the top of the group tree, everything else
        # may be nested further down
        return ldap.SCOPE_ONELEVEL if category.is_role else ldap.SCOPE_SUBTREE

    def _search(self, conn, base: str, scope: int, filterstr: str,
                attrlist: Optional[List[str]] = None) -> List[Tuple[str, Dict[str, list]]]:
        results = conn.search_s(base, scope, filterstr, attrlist)
        # referrals come back without a dn
        return [(dn, attrs) for dn, attrs in results if dn]

    # -- run state --------------------------------------------------------

    def lock_exists(self) -> bool:
        with ldap_errors("Cannot read lock entry"), self.connections.connection() as conn:
            try:
                conn.search_s(self.lock_dn, ldap.SCOPE_BASE, "(objectClass=*)", ["cn"])
            except ldap.NO_SUCH_OBJECT:
                return False
            return True

    def acquire_lock(self):
        """Create the lock entry. Creating it when it already exists is fine."""
        entry = [
            ("objectClass", [b"top", b"applicationProcess"]),
            ("cn", [self.lock_cn.encode('utf-8')]),
        ]
        with ldap_errors("Cannot create lock entry"), self.connections.connection() as conn:
            try:
                conn.add_s(self.lock_dn, entry)
                logger.info(f"Created lock entry {self.lock_dn}")
            except ldap.ALREADY_EXISTS:
                logger.warning(f"Lock entry {self.lock_dn} already exists, taking it over")

    def release_lock(self):
        with ldap_errors("Cannot delete lock entry"), self.connections.connection() as conn:
            conn.delete_s(self.lock_dn)
            logger.info(f"Deleted lock entry {self.lock_dn}")

    def swap_run_timestamp(self, now: datetime) -> Optional[str]:
        """
        Overwrite the run timestamp entry and return its previous modifyTimestamp.

        The old value is read with the pre-read control as part of the same
        modify, so nothing can touch the entry between the read and the write.
        Returns None if the entry did not exist yet (first ever run).
        """
        stamp = format_generalized_time(now).encode('utf-8')
        pre_read = PreReadControl(criticality=True, attrList=["modifyTimestamp"])

        with ldap_errors("Cannot update run timestamp"), self.connections.connection() as conn:
            try:
                _, _, _, ctrls = conn.modify_ext_s(
                    self.timestamp_dn,
                    [(ldap.MOD_REPLACE, "description", [stamp])],
                    serverctrls=[pre_read],
                )
            except ldap.NO_SUCH_OBJECT:
                conn.add_s(self.timestamp_dn, [
                    ("objectClass", [b"top", b"applicationProcess"]),
                    ("cn", [self.timestamp_cn.encode('utf-8')]),
                    ("description", [stamp]),
                ])
                logger.info(f"Created run timestamp entry {self.timestamp_dn}")
                return None

        for ctrl in ctrls or []:
            if ctrl.controlType == PreReadControl.controlType and ctrl.entry:
                previous = _first(ctrl.entry, "modifyTimestamp")
                if previous:
                    logger.info(f"Previous run timestamp: {previous}")
                    return previous

        raise DataIntegrityError(
            f"Directory did not return the previous modifyTimestamp of {self.timestamp_dn}"
        )

    def admin_group_modified_since(self, timestamp: Optional[str]) -> bool:
        if timestamp is None:
            return True
        cn = ldap.filter.escape_filter_chars(self.group_names[GroupCategory.ADMIN_ROLE])
        stamp = ldap.filter.escape_filter_chars(timestamp)
        filterstr = f"(&(cn={cn})(modifyTimestamp>={stamp}))"
        with ldap_errors("Cannot read LDAP admins group"), self.connections.connection() as conn:
            return bool(self._search(conn, self.group_base_dn, ldap.SCOPE_ONELEVEL, filterstr, ["1.1"]))

    def groups_modified_since(self, when: datetime) -> bool:
        """Has any group directly below the group base changed since `when`?"""
        filterstr = f"(modifyTimestamp>={format_generalized_time(when)})"
        with ldap_errors("Cannot read LDAP groups"), self.connections.connection() as conn:
            return bool(self._search(conn, self.group_base_dn, ldap.SCOPE_ONELEVEL, filterstr, ["1.1"]))

    # -- groups ---------------------------------------------------------------

    def list_records(self, category: GroupCategory, since: Optional[str] = None) -> Set[str]:
        """
        Names (prefix stripped) of all groups in a category, or only those
        modified at or after `since`.
        """
        prefix = self.group_names[category]
        filterstr = f"(cn={ldap.filter.escape_filter_chars(prefix)}*)"
        if since is not None:
            stamp = ldap.filter.escape_filter_chars(since)
            filterstr = f"(&(modifyTimestamp>={stamp}){filterstr})"

        names = set()
        with ldap_errors("Failed to retrieve group list from LDAP"), self.connections.connection() as conn:
            for dn, attrs in self._search(conn, self.group_base_dn, ldap.SCOPE_SUBTREE, filterstr, ["cn"]):
                cn = _first(attrs, "cn")
                if cn is None:
                    logger.warning(f"Group {dn} has no cn attribute, skipping")
                    continue
                names.add(cn[len(prefix):])

        logger.debug(f"Found {len(names)} {category.value} groups")
        return names

    def get_members(self, category: GroupCategory, name: Optional[str] = None) -> Set[str]:
        """Usernames of the members of a group. `name` is ignored for role groups."""
        cn = self._group_cn(category, name)
        filterstr = f"(cn={ldap.filter.escape_filter_chars(cn)})"
        members = set()

        with ldap_errors(f"Failed to retrieve members of {cn} from LDAP"), self.connections.connection() as conn:
            results = self._search(conn, self.group_base_dn, self._group_scope(category), filterstr, ["member"])

        for _, attrs in results:
            for member_dn in attrs.get("member", []):
                username = self._username_from_dn(_decode(member_dn))
                if username:
                    members.add(username)
                else:
                    logger.warning(f"Could not extract username from member DN: {member_dn!r}")

        return members

    @staticmethod
    def _username_from_dn(dn: str) -> Optional[str]:
        try:
            rdns = ldap.dn.str2dn(dn)
        except ldap.DECODING_ERROR:
            return None
        for rdn in rdns:
            for attr, value, _ in rdn:
                if attr.lower() == "cn":
                    return value
        return None

    def list_site_memberships(self, username: str) -> Set[str]:
        """Names of every site group the user is a member of."""
        prefix = self.group_names[GroupCategory.SITE]
        with ldap_errors(f"Cannot retrieve groups for {username} from LDAP"), self.connections.connection() as conn:
            user_dn, _ = self._find_user(conn, username)
            filterstr = (
                f"(&(cn={ldap.filter.escape_filter_chars(prefix)}*)"
                f"(member={ldap.filter.escape_filter_chars(user_dn)}))"
            )
            results = self._search(conn, self.group_base_dn, ldap.SCOPE_SUBTREE, filterstr, ["cn"])

        return {cn[len(prefix):] for cn in (_first(attrs, "cn") for _, attrs in results) if cn}

    def mark_modified(self, category: GroupCategory, name: Optional[str] = None):
        """
        Rewrite the group's cn with its current value. The directory bumps
        modifyTimestamp, so the next incremental run selects the group again.
        """
        cn = self._group_cn(category, name)
        filterstr = f"(cn={ldap.filter.escape_filter_chars(cn)})"
        with ldap_errors(f"Cannot change LDAP modification date on {cn}"), self.connections.connection() as conn:
            results = self._search(conn, self.group_base_dn, self._group_scope(category), filterstr, ["1.1"])
            if not results:
                raise DataIntegrityError(f"Group {cn} not found in LDAP")
            dn = results[0][0]
            conn.modify_s(dn, [(ldap.MOD_REPLACE, "cn", [cn.encode('utf-8')])])
        logger.info(f"Marked group {cn} as modified")

    def get_group_details(self, category: GroupCategory, name: str) -> GroupDetails:
        """Descriptive attributes of a marking group."""
        # marking groups are stored with upper-case names
        cn = self._group_cn(category, name.upper())
        filterstr = f"(&(objectClass=groupOfNames)(cn={ldap.filter.escape_filter_chars(cn)}))"
        wanted = ["displayName", "description", "category", "deprecated", "permissionAuthority"]

        with ldap_errors(f"Failed to retrieve details from LDAP for the group {name}"), \
                self.connections.connection() as conn:
            results = self._search(conn, self.group_base_dn, ldap.SCOPE_SUBTREE, filterstr, wanted)

        if not results:
            raise DataIntegrityError(f"Group {cn} not found in LDAP")
        attrs = results[0][1]

        values = {}
        for attribute in wanted:
            value = _first(attrs, attribute)
            if value is None:
                raise DataIntegrityError(f"Group {cn} has no {attribute} attribute")
            values[attribute] = value

        return GroupDetails(
            name=name,
            display_name=values["displayName"],
            description=values["description"],
            category=values["category"],
            deprecated=values["deprecated"].strip().lower() == "true",
            permission_authorities=tuple(
                a.strip() for a in values["permissionAuthority"].split(',') if a.strip()
            ),
        )

    # -- users ------------------------------------------------------------------

    def _find_user(self, conn, username: str) -> Tuple[str, Dict[str, list]]:
        filterstr = f"(cn={ldap.filter.escape_filter_chars(username)})"
        results = self._search(conn, self.user_base_dn, ldap.SCOPE_SUBTREE, filterstr, ["cn", "objectClass"])
        if not results:
            raise DataIntegrityError(f"Could not find the user {username}")
        if len(results) > 1:
            raise DataIntegrityError(f"Found multiple users named {username}")
        return results[0]

    def get_user_attributes(self, since: Optional[str] = None) -> List[AttributeBag]:
        """Attributes of every profile-carrying user, or those modified since `since`."""
        oc = ldap.filter.escape_filter_chars(self.profile_object_class)
        filterstr = f"(objectClass={oc})"
        if since is not None:
            filterstr = f"(&(modifyTimestamp>={ldap.filter.escape_filter_chars(since)}){filterstr})"

        with ldap_errors("Failed to retrieve user list from LDAP"), self.connections.connection() as conn:
            results = self._search(conn, self.user_base_dn, ldap.SCOPE_SUBTREE, filterstr)

        return [_decode_attrs(attrs) for _, attrs in results]

    def mark_user_modified(self, username: str):
        """Rewrite the user's cn with its current value to bump modifyTimestamp."""
        with ldap_errors(f"Cannot change LDAP modification date on {username}"), \
                self.connections.connection() as conn:
            dn, _ = self._find_user(conn, username)
            conn.modify_s(dn, [(ldap.MOD_REPLACE, "cn", [username.encode('utf-8')])])
        logger.info(f"Marked user {username} as modified")

    def update_user(self, username: str, attributes: AttributeBag):
        """
        Replace profile attributes on a user entry, adding the profile object
        class first if the user does not carry it yet. An empty value list
        removes the attribute.
        """
        with ldap_errors(f"Cannot update LDAP attributes on user: {username}"), \
                self.connections.connection() as conn:
            dn, attrs = self._find_user(conn, username)

            classes = {_decode(v).lower() for k, vs in attrs.items() if k.lower() == "objectclass" for v in vs}
            if self.profile_object_class.lower() not in classes:
                conn.modify_s(dn, [(ldap.MOD_ADD, "objectClass", [self.profile_object_class.encode('utf-8')])])
                logger.info(f"Added {self.profile_object_class} object class to {username}")

            modlist = [
                (ldap.MOD_REPLACE, name, [v.encode('utf-8') for v in values] or None)
                for name, values in attributes.items()
            ]
            if modlist:
                conn.modify_s(dn, modlist)
        logger.info(f"Updated {len(attributes)} attributes on {username}")
