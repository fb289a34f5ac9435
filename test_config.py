"""
Tests for configuration loading
"""

import pytest

from config import ProfileFieldSpec, Settings, parse_bool, parse_list, parse_profile_fields
from conftest import BASE_ENV
from errors import ConfigurationError
from models import GroupCategory


def env_with(**overrides):
    env = dict(BASE_ENV)
    env.update(overrides)
    return {k: v for k, v in env.items() if v is not None}


def test_defaults(settings):
    assert settings.alfresco_url == "https://alfresco.test/alfresco"
    assert settings.ldap_connection_mode == "batch"
    assert settings.group_names[GroupCategory.SITE] == "site-"
    assert settings.group_names[GroupCategory.ADMIN_ROLE] == "admins"
    assert settings.lock_dn == "cn=ldap2alfresco-lock,dc=example,dc=com"
    assert settings.timestamp_dn == "cn=ldap2alfresco-timestamp,dc=example,dc=com"
    assert settings.extra_users == frozenset()
    assert not settings.dry_run
    assert settings.security_model_304


def test_missing_variables_are_listed():
    with pytest.raises(ConfigurationError) as excinfo:
        Settings.from_env(env_with(LDAP_SERVER=None, ALFRESCO_MARKINGS_ORG=""))

    assert "LDAP_SERVER" in str(excinfo.value)
    assert "ALFRESCO_MARKINGS_ORG" in str(excinfo.value)


def test_invalid_connection_mode():
    with pytest.raises(ConfigurationError):
        Settings.from_env(env_with(LDAP_CONNECTION_MODE="pooled"))


def test_invalid_timeout():
    with pytest.raises(ConfigurationError):
        Settings.from_env(env_with(LDAP_TIMEOUT="soon"))


def test_sync_options():
    settings = Settings.from_env(env_with(
        EXTRA_USERS="svc, audit,,",
        ALFRESCO_DELETED_ITEMS_POSTFIX="-bin",
        LDAP_CONNECTION_MODE="Long-Lived",
    ))
    options = settings.sync_options()

    assert settings.ldap_connection_mode == "long-lived"
    assert options.extra_users == {"svc", "audit"}
    assert options.deleted_items_postfix == "-bin"
    assert options.deleters_role == "DELETERS"
    assert options.marking_constraints[GroupCategory.CLOSED_MARKING] == "closedMarkings"


def test_parse_helpers():
    assert parse_list(None) == frozenset()
    assert parse_list(" a ,b") == {"a", "b"}
    assert parse_bool("Yes")
    assert not parse_bool("off")
    assert parse_bool("", default=True)


def test_parse_profile_fields():
    specs = parse_profile_fields("description:biography:text, telephoneNumber:telephones:Telephone:multiple")

    assert specs == [
        ProfileFieldSpec("description", "biography", "text"),
        ProfileFieldSpec("telephoneNumber", "telephones", "telephone", True),
    ]


@pytest.mark.parametrize("value", ["description:biography", "description::text", "a:b:c:d:e"])
def test_malformed_profile_fields(value):
    with pytest.raises(ConfigurationError):
        parse_profile_fields(value)
