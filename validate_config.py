#!/usr/bin/env python3
"""
Check the LDAP to Alfresco sync configuration before the first run
"""

import sys

from dotenv import load_dotenv

from config import Settings
from errors import ConfigurationError
from models import GroupCategory
from profile_fields import build_converters

# Load environment variables
load_dotenv()


def validate_config():
    """Validate that all required configuration is set"""
    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        print(f"❌ {e}")
        return None

    print("✅ All required configuration variables are set")
    return settings


def display_config(settings: Settings):
    """Display current configuration (masking sensitive values)"""
    print("\n📋 Current Configuration:")
    print(f"   LDAP Server: {settings.ldap_server}")
    print(f"   LDAP Bind DN: {settings.ldap_bind_dn}")
    print(f"   LDAP Group Base DN: {settings.ldap_group_base_dn}")
    print(f"   LDAP User Base DN: {settings.ldap_user_base_dn}")
    print(f"   LDAP Connection Mode: {settings.ldap_connection_mode}")
    print(f"   Lock entry: {settings.lock_dn}")
    print(f"   Timestamp entry: {settings.timestamp_dn}")
    for category in GroupCategory:
        label = "Group" if category.is_role else "Group Prefix"
        print(f"   {category.value.title()} {label}: {settings.group_names[category]}")
    print(f"   Alfresco URL: {settings.alfresco_url}")
    print(f"   Alfresco User: {settings.alfresco_username}")
    for category, constraint in settings.marking_constraints.items():
        print(f"   {category.value.title()} Marking Constraint: {constraint}")
    print(f"   Deleters Role: {settings.deleters_role} (companion sites end in '{settings.deleted_items_postfix}')")
    print(f"   Extra Users: {', '.join(sorted(settings.extra_users)) or '(none)'}")
    print(f"   Profile Fields: {len(build_converters(settings.profile_fields))} of {len(settings.profile_fields)} usable")
    print(f"   Dry Run Mode: {settings.dry_run}")
    print()


if __name__ == "__main__":
    print("🔍 LDAP to Alfresco Sync - Configuration Validator\n")

    settings = validate_config()
    if settings:
        display_config(settings)
        print("✅ Configuration is valid. You can now run:")
        print("   python sync.py")
    else:
        print("\n❌ Please update your .env file with the missing configuration")
        print("   See .env.example for reference")
        sys.exit(1)
