"""
Configuration loading for LDAP to Alfresco sync.

Everything is read from environment variables (optionally populated from a
.env file by python-dotenv in the entry point).
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional

from errors import ConfigurationError
from models import GroupCategory


logger = logging.getLogger(__name__)


REQUIRED_VARS = [
    'LDAP_SERVER',
    'LDAP_BIND_DN',
    'LDAP_BIND_PASSWORD',
    'LDAP_ROOT_DN',
    'LDAP_GROUP_BASE_DN',
    'LDAP_USER_BASE_DN',
    'ALFRESCO_URL',
    'ALFRESCO_USERNAME',
    'ALFRESCO_PASSWORD',
    'ALFRESCO_MARKINGS_OPEN',
    'ALFRESCO_MARKINGS_CLOSED',
    'ALFRESCO_MARKINGS_ORG',
    'ALFRESCO_DELETERS_ROLE',
]

CONNECTION_MODES = ("batch", "long-lived")


def parse_list(value: Optional[str]) -> FrozenSet[str]:
    """Parse a comma-separated list, dropping blanks and surrounding whitespace."""
    if not value:
        return frozenset()
    return frozenset(item.strip() for item in value.split(',') if item.strip())


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("true", "yes", "1")


def _parse_number(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class ProfileFieldSpec:
    """One profile field to synchronise, e.g. telephoneNumber -> telephones."""
    ldap_name: str
    alfresco_name: str
    field_type: str
    multiple: bool = False


def parse_profile_fields(value: Optional[str]) -> List[ProfileFieldSpec]:
    """
    Parse PROFILE_FIELDS entries of the form ldapName:alfrescoName:type[:multiple].
    """
    specs = []
    if not value:
        return specs

    for entry in value.split(','):
        entry = entry.strip()
        if not entry:
            continue
        parts = [part.strip() for part in entry.split(':')]
        if len(parts) not in (3, 4) or not all(parts[:3]):
            raise ConfigurationError(
                f"Invalid PROFILE_FIELDS entry {entry!r}, expected ldapName:alfrescoName:type[:multiple]"
            )
        multiple = len(parts) == 4 and parts[3].lower() in ("multiple", "yes", "true")
        specs.append(ProfileFieldSpec(parts[0], parts[1], parts[2].lower(), multiple))

    return specs


@dataclass(frozen=True)
class SyncOptions:
    """The parts of the configuration the reconciliation passes need."""
    extra_users: FrozenSet[str] = frozenset()
    marking_constraints: Dict[GroupCategory, str] = field(default_factory=dict)
    deleters_role: str = "DELETERS"
    deleted_items_postfix: str = "-deleted"


@dataclass(frozen=True)
class Settings:
    ldap_server: str
    ldap_bind_dn: str
    ldap_bind_password: str
    ldap_root_dn: str
    ldap_group_base_dn: str
    ldap_user_base_dn: str
    alfresco_url: str
    alfresco_username: str
    alfresco_password: str
    marking_constraints: Dict[GroupCategory, str]
    deleters_role: str
    ldap_use_tls: bool = False
    ldap_ca_cert_file: Optional[str] = None
    ldap_timeout: float = 30.0
    ldap_connection_mode: str = "batch"
    group_names: Dict[GroupCategory, str] = field(default_factory=dict)
    ldap_lock_cn: str = "ldap2alfresco-lock"
    ldap_timestamp_cn: str = "ldap2alfresco-timestamp"
    ldap_profile_object_class: str = "richProfile"
    deleted_items_postfix: str = "-deleted"
    alfresco_timeout: float = 60.0
    alfresco_profile_path: str = "/service/api/people/{username}"
    security_model_304: bool = True
    extra_users: FrozenSet[str] = frozenset()
    dry_run: bool = False
    profile_fields: List[ProfileFieldSpec] = field(default_factory=list)

    @property
    def lock_dn(self) -> str:
        return f"cn={self.ldap_lock_cn},{self.ldap_root_dn}"

    @property
    def timestamp_dn(self) -> str:
        return f"cn={self.ldap_timestamp_cn},{self.ldap_root_dn}"

    def sync_options(self) -> SyncOptions:
        return SyncOptions(
            extra_users=self.extra_users,
            marking_constraints=dict(self.marking_constraints),
            deleters_role=self.deleters_role,
            deleted_items_postfix=self.deleted_items_postfix,
        )

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from the environment, failing on anything missing."""
        if env is None:
            env = os.environ

        missing = [var for var in REQUIRED_VARS if not env.get(var)]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration variables: {', '.join(missing)}"
            )

        mode = env.get("LDAP_CONNECTION_MODE", "batch").strip().lower()
        if mode not in CONNECTION_MODES:
            raise ConfigurationError(
                f"LDAP_CONNECTION_MODE must be one of {', '.join(CONNECTION_MODES)}, got {mode!r}"
            )

        group_names = {
            GroupCategory.SITE: env.get("LDAP_GROUP_PREFIX_SITE", "site-"),
            GroupCategory.OPEN_MARKING: env.get("LDAP_GROUP_PREFIX_OPEN", "open-"),
            GroupCategory.CLOSED_MARKING: env.get("LDAP_GROUP_PREFIX_CLOSED", "closed-"),
            GroupCategory.ORG_MARKING: env.get("LDAP_GROUP_PREFIX_ORG", "org-"),
            GroupCategory.ADMIN_ROLE: env.get("LDAP_GROUP_ADMINS", "admins"),
            GroupCategory.DELETERS_ROLE: env.get("LDAP_GROUP_DELETERS", "deleters"),
        }

        marking_constraints = {
            GroupCategory.OPEN_MARKING: env["ALFRESCO_MARKINGS_OPEN"],
            GroupCategory.CLOSED_MARKING: env["ALFRESCO_MARKINGS_CLOSED"],
            GroupCategory.ORG_MARKING: env["ALFRESCO_MARKINGS_ORG"],
        }

        extra_users = parse_list(env.get("EXTRA_USERS"))
        if extra_users:
            logger.info(f"Loaded {len(extra_users)} extra users from config: {', '.join(sorted(extra_users))}")

        return cls(
            ldap_server=env["LDAP_SERVER"],
            ldap_bind_dn=env["LDAP_BIND_DN"],
            ldap_bind_password=env["LDAP_BIND_PASSWORD"],
            ldap_root_dn=env["LDAP_ROOT_DN"],
            ldap_group_base_dn=env["LDAP_GROUP_BASE_DN"],
            ldap_user_base_dn=env["LDAP_USER_BASE_DN"],
            alfresco_url=env["ALFRESCO_URL"].rstrip("/"),
            alfresco_username=env["ALFRESCO_USERNAME"],
            alfresco_password=env["ALFRESCO_PASSWORD"],
            marking_constraints=marking_constraints,
            deleters_role=env["ALFRESCO_DELETERS_ROLE"],
            ldap_use_tls=parse_bool(env.get("LDAP_USE_TLS")),
            ldap_ca_cert_file=env.get("LDAP_CA_CERT_FILE") or None,
            ldap_timeout=_parse_number(env, "LDAP_TIMEOUT", 30.0),
            ldap_connection_mode=mode,
            group_names=group_names,
            ldap_lock_cn=env.get("LDAP_LOCK_CN", "ldap2alfresco-lock"),
            ldap_timestamp_cn=env.get("LDAP_TIMESTAMP_CN", "ldap2alfresco-timestamp"),
            ldap_profile_object_class=env.get("LDAP_PROFILE_OBJECT_CLASS", "richProfile"),
            deleted_items_postfix=env.get("ALFRESCO_DELETED_ITEMS_POSTFIX", "-deleted"),
            alfresco_timeout=_parse_number(env, "ALFRESCO_TIMEOUT", 60.0),
            alfresco_profile_path=env.get("ALFRESCO_PROFILE_PATH", "/service/api/people/{username}"),
            security_model_304=parse_bool(env.get("ALFRESCO_SECURITY_MODEL_304"), default=True),
            extra_users=extra_users,
            dry_run=parse_bool(env.get("SYNC_DRY_RUN")),
            profile_fields=parse_profile_fields(env.get("PROFILE_FIELDS")),
        )
