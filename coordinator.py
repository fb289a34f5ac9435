"""
Run coordination for LDAP to Alfresco sync.

One run takes the lock, swaps the run timestamp, runs every pass in order and
releases the lock. If anything goes wrong that cannot be retried per record,
the lock stays behind: incremental runs then refuse to start until an
operator forces a full run.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional, Set

from change_detector import ChangeDetector
from config import SyncOptions
from differ import assign_site_roles, diff_memberships
from errors import ConfigurationError, SyncError
from models import GroupCategory, MARKING_CATEGORIES, RunOutcome, SiteRole
from profile_updater import ProfileUpdater
from retry import RetryMarker
from security_model import SecurityModelState, utc_now


logger = logging.getLogger(__name__)


# Categories synchronised group by group, in the order they are processed.
# Sites come first so new managers are in place before anything is removed.
SYNCED_CATEGORIES = (GroupCategory.SITE,) + MARKING_CATEGORIES


@dataclass
class RunContext:
    """State of a single run, handed to every pass."""
    force: bool
    force_groups: bool
    last_run: Optional[str]
    retry_marker: RetryMarker
    admins: Set[str] = field(default_factory=set)
    markings_changed: bool = False


class SiteHandler:
    """Reconciles the members of one site and their roles."""

    def __init__(self, directory, repository, options: SyncOptions):
        self.directory = directory
        self.repository = repository
        self.options = options

    def apply(self, name: str, ctx: RunContext) -> bool:
        """Returns False if any member could not be added or removed."""
        directory_members = self.directory.get_members(GroupCategory.SITE, name)
        repository_members = self.repository.list_group_members(name)

        delta = diff_memberships(
            directory_members,
            repository_members,
            self.options.extra_users,
            force=ctx.force_groups,
            group_name=name,
        )
        roles = assign_site_roles(delta.additions, ctx.admins)
        complete = True

        # additions first, in case the removals take out the last manager
        for username in sorted(delta.additions):
            role = roles[username]
            logger.info(f"Adding {username} to {name} as {role.value}")
            try:
                self.repository.add_member(name, username, role)
            except SyncError as e:
                logger.error(f"Failed to add {username} to {name}: {e}", exc_info=True)
                complete = False

        for username in sorted(delta.removals):
            logger.info(f"Deleting {username} from {name}")
            try:
                self.repository.remove_member(name, username)
            except SyncError as e:
                logger.error(f"Failed to remove {username} from {name}: {e}", exc_info=True)
                complete = False

        return complete


class MarkingHandler:
    """Replaces the member list of one security marking group."""

    def __init__(self, directory, repository, options: SyncOptions, category: GroupCategory):
        self.directory = directory
        self.repository = repository
        self.options = options
        self.category = category
        self.constraint = options.marking_constraints[category]

    def apply(self, name: str, ctx: RunContext) -> bool:
        members = self.directory.get_members(self.category, name) | set(self.options.extra_users)
        logger.info(f"Setting security group: {name} to: {sorted(members)}")
        self.repository.set_marking_group(self.constraint, name, members)
        ctx.markings_changed = True
        return True


class RunCoordinator:

    def __init__(self, directory, repository, profile_updater: ProfileUpdater, options: SyncOptions,
                 clock: Callable[[], datetime] = utc_now,
                 security_model: Optional[SecurityModelState] = None):
        self.directory = directory
        self.repository = repository
        self.profile_updater = profile_updater
        self.options = options
        self.clock = clock
        self.security_model = security_model or SecurityModelState(clock=clock)
        self.detector = ChangeDetector(directory)

        missing = [c.value for c in MARKING_CATEGORIES if c not in options.marking_constraints]
        if missing:
            raise ConfigurationError(f"No marking constraint configured for: {', '.join(missing)}")

        self.handlers: Dict[GroupCategory, object] = {
            GroupCategory.SITE: SiteHandler(directory, repository, options),
        }
        for category in MARKING_CATEGORIES:
            self.handlers[category] = MarkingHandler(directory, repository, options, category)

    def run(self, force: bool = False) -> RunOutcome:
        """
        Synchronise Alfresco from LDAP.
        With force every record is processed, not just those changed since
        the last run, and an existing lock entry is ignored.
        """
        logger.info(f"Starting LDAP to Alfresco sync{' (forced)' if force else ''}")

        try:
            if not force and self.directory.lock_exists():
                logger.critical(
                    "LDAP contains a lock entry - previous run did not complete successfully. "
                    "Re-run with 'force' argument to force a full update"
                )
                return RunOutcome.LOCKED

            self.directory.acquire_lock()
            last_run = self.directory.swap_run_timestamp(self.clock())

            ctx = RunContext(
                force=force,
                force_groups=force,
                last_run=last_run,
                retry_marker=RetryMarker(self.directory),
            )

            if last_run is None:
                logger.info("No previous run timestamp found, forcing a full update")
                ctx.force = ctx.force_groups = True
            elif not force and self.directory.admin_group_modified_since(last_run):
                # a change of admin status can change anyone's role in any site
                logger.info("Admin group has been modified, forcing a full update of groups")
                ctx.force_groups = True

            self._run_passes(ctx)

            self.directory.release_lock()

        except SyncError as e:
            logger.critical(f"Sync aborted, lock entry left in place: {e}", exc_info=True)
            return RunOutcome.FAILED

        logger.info("Sync completed successfully")
        return RunOutcome.COMPLETED

    def _run_passes(self, ctx: RunContext):
        ctx.admins = self.directory.get_members(GroupCategory.ADMIN_ROLE)

        for category in SYNCED_CATEGORIES:
            self._sync_category(category, ctx)

        if ctx.markings_changed:
            self.security_model.invalidate()

        self._sync_deleters(ctx)

        # profiles follow the caller's force flag, admin changes don't affect them
        self.profile_updater.update_repository(
            self.detector, self.repository, ctx.retry_marker, ctx.force, ctx.last_run
        )

    def _sync_category(self, category: GroupCategory, ctx: RunContext):
        handler = self.handlers[category]

        for name in sorted(self.detector.select(category, ctx.force_groups, ctx.last_run)):
            try:
                complete = handler.apply(name, ctx)
            except SyncError as e:
                logger.error(f"Failed to synchronise {category.value} group {name}: {e}", exc_info=True)
                complete = False

            if not complete:
                ctx.retry_marker.mark_for_retry(category, name)

    def _sync_deleters(self, ctx: RunContext):
        """
        Recompute the deleters role in full. Deleters manage the companion
        "deleted items" site of every site they belong to. The role change
        is written last, so a deleter that fails part way shows up in the
        same delta on the next run. A removed deleter whose sites cannot be
        read from the directory keeps the role until they can, so no
        companion site grant is left behind.
        """
        role = self.options.deleters_role
        postfix = self.options.deleted_items_postfix

        delta = diff_memberships(
            self.directory.get_members(GroupCategory.DELETERS_ROLE),
            self.repository.list_role_members(role),
            force=ctx.force_groups,
            group_name=role,
        )

        for username in sorted(delta.additions):
            logger.info(f"Adding {username} to {role}")
            try:
                for site in sorted(self.directory.list_site_memberships(username)):
                    self.repository.add_member(f"{site}{postfix}", username, SiteRole.MANAGER)
                self.repository.add_role_member(role, username)
            except SyncError as e:
                logger.error(f"Failed to add {username} to {role}, will retry on the next run: {e}", exc_info=True)

        for username in sorted(delta.removals):
            logger.info(f"Removing {username} from {role}")
            try:
                for site in sorted(self.directory.list_site_memberships(username)):
                    self.repository.remove_member(f"{site}{postfix}", username, missing_ok=True)
                self.repository.remove_role_member(role, username, missing_ok=True)
            except SyncError as e:
                logger.error(f"Failed to remove {username} from {role}, will retry on the next run: {e}", exc_info=True)
