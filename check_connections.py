#!/usr/bin/env python3
"""
Script to verify LDAP and Alfresco connections independently
"""

import sys
import logging

from dotenv import load_dotenv

from alfresco_adapter import AlfrescoRepository
from config import Settings
from errors import ConfigurationError, SyncError
from ldap_adapter import LDAPDirectory
from ldap_connection import connection_policy_for
from models import GroupCategory

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

load_dotenv()


def check_ldap_connection(settings: Settings) -> bool:
    """Check LDAP connection and run state"""
    print("\n🔍 Checking LDAP Connection...")

    directory = LDAPDirectory(settings, connection_policy_for(settings))
    try:
        sites = directory.list_records(GroupCategory.SITE)
        print(f"✅ Connected to LDAP server: {settings.ldap_server}")
        print(f"✅ Found {len(sites)} site groups in LDAP")

        if sites:
            print("\n   Sample sites:")
            for site in sorted(sites)[:5]:
                print(f"   - {site}")

        admins = directory.get_members(GroupCategory.ADMIN_ROLE)
        print(f"✅ Found {len(admins)} admins")

        if directory.lock_exists():
            print("⚠️  Lock entry present - the last run did not complete, run 'python sync.py force'")
        return True

    except SyncError as e:
        print(f"❌ LDAP check failed: {e}")
        return False
    finally:
        directory.close()


def check_alfresco_connection(settings: Settings) -> bool:
    """Check Alfresco connection"""
    print("\n🔍 Checking Alfresco Connection...")

    repository = AlfrescoRepository.from_settings(settings)
    try:
        deleters = repository.list_role_members(settings.deleters_role)
        print(f"✅ Connected to Alfresco: {settings.alfresco_url}")
        print(f"✅ Found {len(deleters)} members of {settings.deleters_role}")
        return True

    except SyncError as e:
        print(f"❌ Alfresco check failed: {e}")
        return False
    finally:
        repository.close()


def main():
    """Run all checks"""
    print("🧪 Connection Check Script")
    print("=" * 60)

    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        print(f"❌ {e}")
        return 1

    ldap_ok = check_ldap_connection(settings)
    alfresco_ok = check_alfresco_connection(settings)

    print("\n" + "=" * 60)
    print("📊 Check Summary:")
    print(f"   LDAP: {'✅ PASS' if ldap_ok else '❌ FAIL'}")
    print(f"   Alfresco: {'✅ PASS' if alfresco_ok else '❌ FAIL'}")

    if ldap_ok and alfresco_ok:
        print("\n✅ All checks passed! Ready to run sync.py")
        return 0
    else:
        print("\n❌ Some checks failed. Please check your configuration.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
