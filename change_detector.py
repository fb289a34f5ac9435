"""
Change detection: which directory records a run has to look at.
"""

import logging
from typing import List, Optional, Set

from models import AttributeBag, GroupCategory


logger = logging.getLogger(__name__)


class ChangeDetector:
    """Selects every record, or only those modified since the last run."""

    def __init__(self, directory):
        self.directory = directory

    def select(self, category: GroupCategory, force: bool, last_run: Optional[str]) -> Set[str]:
        """
        Names of the groups in `category` to synchronise.

        Incremental selection includes groups whose modification marker is
        equal to `last_run`, so nothing changed in the same second as the
        previous run start is missed.
        """
        if category.is_role:
            raise ValueError(f"{category.value} is a single group, not a category to select from")

        if force or last_run is None:
            names = self.directory.list_records(category, None)
            logger.info(f"Selected all {len(names)} {category.value} groups")
        else:
            names = self.directory.list_records(category, last_run)
            logger.info(f"Selected {len(names)} {category.value} groups modified since {last_run}")
        return set(names)

    def select_users(self, force: bool, last_run: Optional[str]) -> List[AttributeBag]:
        """Attributes of the users whose profiles need synchronising."""
        if force or last_run is None:
            users = self.directory.get_user_attributes(None)
        else:
            users = self.directory.get_user_attributes(last_run)
        logger.info(f"Found {len(users)} users to synchronise")
        return users
