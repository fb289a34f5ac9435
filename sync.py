#!/usr/bin/env python3
"""
LDAP to Alfresco Sync

This script reconciles Alfresco sites, security markings, the deleters role
and user profiles with LDAP. LDAP is authoritative; Alfresco follows.

Usage: python sync.py [force]

Without 'force' only records changed since the last run are synchronised,
and the run refuses to start if the previous one left its lock entry behind.
"""

import os
import sys
import logging
from typing import List, Optional

from dotenv import load_dotenv

from alfresco_adapter import AlfrescoRepository
from config import Settings
from coordinator import RunCoordinator
from errors import ConfigurationError
from ldap_adapter import LDAPDirectory
from ldap_connection import connection_policy_for
from models import RunOutcome
from profile_fields import build_converters
from profile_updater import ProfileUpdater
from security_model import SecurityModelState


# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_force(argv: List[str]) -> bool:
    return bool(argv) and argv[0].lower() in ("force", "--force")


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main sync function.
    Returns the process exit code: 0 when the run completed, 1 otherwise.
    """
    if argv is None:
        argv = sys.argv[1:]
    force = parse_force(argv)

    try:
        settings = Settings.from_env()
        profile_updater = ProfileUpdater(build_converters(settings.profile_fields))
    except ConfigurationError as e:
        logger.critical(f"Invalid configuration: {e}")
        return 1

    if settings.dry_run:
        logger.info("Running in DRY RUN mode - no changes will be made to Alfresco")

    directory = LDAPDirectory(settings, connection_policy_for(settings))
    repository = AlfrescoRepository.from_settings(settings)

    try:
        security_model = SecurityModelState(not_modified_enabled=settings.security_model_304)
        coordinator = RunCoordinator(directory, repository, profile_updater, settings.sync_options(),
                                     security_model=security_model)
        outcome = coordinator.run(force)

    except Exception as e:
        logger.critical(f"Sync failed: {e}", exc_info=True)
        return 1

    finally:
        # Cleanup
        directory.close()
        repository.close()

    return 0 if outcome is RunOutcome.COMPLETED else 1


if __name__ == "__main__":
    sys.exit(main())
