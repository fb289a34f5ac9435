"""
Retry marking for records that failed to synchronise.
"""

import logging
from typing import Optional, Set, Tuple

from errors import RetryMarkingError, SyncError
from models import GroupCategory


logger = logging.getLogger(__name__)


class RetryMarker:
    """
    Makes sure a record that failed during this run is picked up by the next
    incremental run, by touching its modification marker in the directory.

    Each record is marked at most once per run. If the directory refuses the
    touch, RetryMarkingError is raised and the run must be abandoned.
    """

    def __init__(self, directory):
        self.directory = directory
        self.marked: Set[Tuple[Optional[GroupCategory], str]] = set()

    def mark_for_retry(self, category: GroupCategory, name: str):
        key = (category, name)
        if key in self.marked:
            return

        logger.warning(f"Marking {category.value} group {name} for retry on the next run")
        try:
            self.directory.mark_modified(category, name)
        except SyncError as e:
            raise RetryMarkingError(f"Cannot mark {category.value} group {name} for retry: {e}") from e
        self.marked.add(key)

    def mark_user_for_retry(self, username: str):
        key = (None, username)
        if key in self.marked:
            return

        logger.warning(f"Marking user {username} for retry on the next run")
        try:
            self.directory.mark_user_modified(username)
        except SyncError as e:
            raise RetryMarkingError(f"Cannot mark user {username} for retry: {e}") from e
        self.marked.add(key)
