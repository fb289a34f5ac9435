"""
Profile synchronisation between LDAP user entries and Alfresco profiles.
"""

import logging
from typing import List, Optional

from change_detector import ChangeDetector
from errors import SyncError
from models import AttributeBag, ProfileFields
from profile_fields import FieldConverter
from retry import RetryMarker


logger = logging.getLogger(__name__)


class ProfileUpdater:
    """Runs every configured field converter over a user."""

    def __init__(self, converters: List[FieldConverter]):
        self.converters = list(converters)

    def encode(self, attributes: AttributeBag) -> ProfileFields:
        fields: ProfileFields = {}
        for converter in self.converters:
            converter.encode(fields, attributes)
        return fields

    def decode(self, fields: ProfileFields) -> AttributeBag:
        attributes: AttributeBag = {}
        for converter in self.converters:
            converter.decode(attributes, fields)
        return attributes

    @staticmethod
    def username_of(attributes: AttributeBag) -> Optional[str]:
        for name, values in attributes.items():
            if name.lower() == "cn" and values:
                return values[0]
        return None

    def update_repository(self, detector: ChangeDetector, repository, retry_marker: RetryMarker,
                          force: bool, last_run: Optional[str]):
        """
        Push profile fields of changed users (or every user, when forced) to
        the repository. A user that fails is marked for retry and skipped.
        """
        for attributes in detector.select_users(force, last_run):
            username = self.username_of(attributes)
            if not username:
                logger.warning("Skipping directory user without a cn")
                continue

            logger.info(f"Synchronising {username}")
            fields = self.encode(attributes)

            try:
                repository.update_user_profile(username, fields)
            except SyncError as e:
                logger.error(f"Failed to update profile of {username}: {e}", exc_info=True)
                retry_marker.mark_user_for_retry(username)

    def push_to_directory(self, directory, username: str, fields: ProfileFields):
        """Write profile fields edited in the repository back to the user's LDAP entry."""
        attributes = self.decode(fields)
        directory.update_user(username, attributes)
