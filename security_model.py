"""
Security model reader.

Serves the marking groups and their descriptive attributes, and can answer
"not modified" when no group has changed since the model was last served.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from models import GroupCategory, GroupDetails, MARKING_CATEGORIES


logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SecurityModelState:
    """
    When the security model was last handed out. Owned by whoever serves the
    model and passed to the sync, which invalidates it after writing markings.
    """
    clock: Callable[[], datetime] = utc_now
    not_modified_enabled: bool = True
    last_served: Optional[datetime] = None

    def mark_served(self):
        self.last_served = self.clock()

    def invalidate(self):
        self.last_served = None

    def is_modified(self, directory) -> bool:
        if self.last_served is None or not self.not_modified_enabled:
            return True
        return directory.groups_modified_since(self.last_served)


class SecurityModelReader:

    def __init__(self, directory, state: SecurityModelState):
        self.directory = directory
        self.state = state

    def read(self) -> Optional[Dict[GroupCategory, List[GroupDetails]]]:
        """The marking groups per category, or None if unchanged since the last read."""
        if not self.state.is_modified(self.directory):
            logger.debug("Security model not modified since last read")
            return None

        model = {}
        for category in MARKING_CATEGORIES:
            names = sorted(self.directory.list_records(category, None))
            model[category] = [self.directory.get_group_details(category, name) for name in names]
            logger.debug(f"Read {len(names)} {category.value} marking groups")

        self.state.mark_served()
        return model
