"""Configuration for the RBAC graph and the directory connection.

Both structures are built from a flat mapping of string keys (the process
environment, optionally primed from a ``.env`` file, or any dict) and are
validated once at construction.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv

from .dn import DistinguishedName, compose, count_markers
from .errors import ConfigurationError

PROJECT_ROOT = Path(__file__).resolve().parents[1]
DOTENV_PATH = PROJECT_ROOT / ".env"

# Configuration key -> GraphSchema field
SCHEMA_KEYS: Dict[str, str] = {
    "LDAP_USERS_CONTEXT": "users_context",
    "LDAP_GROUPS_CONTEXT": "groups_context",
    "LDAP_SYSTEMS_CONTEXT": "systems_context",
    "LDAP_SYSTEM_DN_TEMPLATE": "system_dn_template",
    "LDAP_ROLES_DN_TEMPLATE": "roles_dn_template",
    "LDAP_ROLE_DN_TEMPLATE": "role_dn_template",
    "LDAP_USER_DN_TEMPLATE": "user_dn_template",
    "LDAP_USER_IN_ROLE_DN_TEMPLATE": "user_in_role_dn_template",
    "LDAP_GROUP_IN_ROLE_DN_TEMPLATE": "group_in_role_dn_template",
    "LDAP_USER_IN_GROUP_DN_TEMPLATE": "user_in_group_dn_template",
    "LDAP_GROUP_DN_TEMPLATE": "group_dn_template",
    "LDAP_USER_OBJECT_CLASS": "user_object_class",
    "LDAP_MEMBERSHIP_OBJECTCLASS": "membership_object_class",
    "LDAP_USER_ID": "user_id_attribute",
    "LDAP_USER_PASSWORD": "password_attribute",
    "LDAP_USER_FIRST_NAME": "first_name_attribute",
    "LDAP_USER_LAST_NAME": "last_name_attribute",
    "LDAP_USER_MAIL": "mail_attribute",
    "LDAP_GROUP_ID": "group_id_attribute",
    "LDAP_GROUP_DESCRIPTION": "group_description_attribute",
    "LDAP_MEMBERSHIP_ATTRIBUTE": "membership_attribute",
    "LDAP_SYSTEM_NAME_ATTRIBUTE": "system_name_attribute",
    "LDAP_USER_SEARCH_FILTER": "user_search_filter",
    "LDAP_GROUP_SEARCH_FILTER": "group_search_filter",
    "LDAP_ROLE_SEARCH_FILTER": "role_search_filter",
    "LDAP_SYSTEM_SEARCH_FILTER": "system_search_filter",
}

# Number of components each template is composed with
TEMPLATE_ARITY: Dict[str, int] = {
    "system_dn_template": 1,
    "roles_dn_template": 1,
    "role_dn_template": 2,
    "user_dn_template": 1,
    "group_dn_template": 1,
    "user_in_role_dn_template": 3,
    "group_in_role_dn_template": 3,
    "user_in_group_dn_template": 2,
}

CONTEXT_FIELDS = ("users_context", "groups_context", "systems_context")


@dataclass(frozen=True)
class GraphSchema:
    """How users, groups, systems, roles and their edges map onto directory entries.

    Attributes
    ----------
    users_context, groups_context, systems_context:
        DNs of the three top-level containers.
    *_dn_template:
        DN templates, one ``%s`` per component. ``group_in_role_dn_template``
        falls back to ``user_in_role_dn_template`` when left empty.
    user_object_class, membership_object_class:
        Object classes of user entries and of membership/participation edges.
    *_attribute:
        Attribute names used on user, group, system and edge entries.
    *_search_filter:
        Filters used when enumerating the respective containers.
    """

    users_context: str = "ou=Users,dc=test"
    groups_context: str = "ou=Groups,dc=test"
    systems_context: str = "ou=Systems,dc=test"

    system_dn_template: str = "ou=%s,ou=Systems,dc=test"
    roles_dn_template: str = "ou=Roles,ou=%s,ou=Systems,dc=test"
    role_dn_template: str = "ou=%s,ou=Roles,ou=%s,ou=Systems,dc=test"
    user_dn_template: str = "cn=%s,ou=Users,dc=test"
    user_in_role_dn_template: str = "cn=%s,ou=%s,ou=Roles,ou=%s,ou=Systems,dc=test"
    group_in_role_dn_template: str = ""
    user_in_group_dn_template: str = "cn=%s,ou=%s,ou=Groups,dc=test"
    group_dn_template: str = "ou=%s,ou=Groups,dc=test"

    user_object_class: str = "inetOrgPerson"
    membership_object_class: str = "groupOfNames"

    user_id_attribute: str = "uid"
    password_attribute: str = "userPassword"
    first_name_attribute: str = "givenName"
    last_name_attribute: str = "sn"
    mail_attribute: str = "mail"
    group_id_attribute: str = "ou"
    group_description_attribute: str = "description"
    membership_attribute: str = "member"
    system_name_attribute: str = "ou"

    user_search_filter: str = "(cn=*)"
    group_search_filter: str = "(ou=*)"
    role_search_filter: str = "(ou=*)"
    system_search_filter: str = "(ou=*)"

    def __post_init__(self) -> None:
        if not self.group_in_role_dn_template:
            object.__setattr__(self, "group_in_role_dn_template", self.user_in_role_dn_template)
        self._validate()

    def _validate(self) -> None:
        for field in fields(self):
            if not getattr(self, field.name):
                raise ConfigurationError(f"No value was provided for {field.name}")

        for name in CONTEXT_FIELDS:
            DistinguishedName.parse(getattr(self, name))

        for name, arity in TEMPLATE_ARITY.items():
            template = getattr(self, name)
            markers = count_markers(template)
            if markers != arity:
                raise ConfigurationError(
                    f'Template {name} "{template}" has {markers} %s markers, expected {arity}'
                )
            DistinguishedName.parse(compose(template, *(["x"] * arity)))

    @classmethod
    def from_mapping(cls, config: Mapping[str, str]) -> "GraphSchema":
        """Build a schema from configuration keys; unset keys keep their defaults."""
        values = {}
        for key, field_name in SCHEMA_KEYS.items():
            value = config.get(key)
            if value is not None and value.strip():
                values[field_name] = value.strip()
        return cls(**values)


@dataclass(frozen=True)
class DirectorySettings:
    """Where the directory lives and how to bind to it."""

    reader_dn: str
    reader_credentials: str
    host: str = "localhost"
    port: int = 389
    use_ssl: bool = False
    pool_size: int = 8
    receive_timeout: float = 15.0

    @classmethod
    def from_mapping(cls, config: Mapping[str, str]) -> "DirectorySettings":
        host = (config.get("LDAP_HOST") or "localhost").strip()
        if not host:
            raise ConfigurationError("No LDAP server host was provided")

        port = _require_int(config.get("LDAP_PORT"), 389, "LDAP port")
        pool_size = _require_int(config.get("LDAP_POOL_SIZE"), 8, "LDAP pool size")
        if pool_size < 1:
            raise ConfigurationError(f"Illegal LDAP pool size {pool_size}: must be at least 1")

        reader_dn = config.get("LDAP_READER_DN")
        if not reader_dn:
            raise ConfigurationError("No reader DN was provided")
        credentials = config.get("LDAP_READER_CREDENTIALS")
        if not credentials:
            raise ConfigurationError("No reader credentials were provided")

        receive_timeout = _require_float(config.get("LDAP_RECEIVE_TIMEOUT"), 15.0, "LDAP receive timeout")
        if receive_timeout <= 0:
            raise ConfigurationError(f"Illegal LDAP receive timeout {receive_timeout}: must be positive")

        return cls(
            reader_dn=reader_dn,
            reader_credentials=credentials,
            host=host,
            port=port,
            use_ssl=_require_bool(config.get("LDAP_USE_SSL"), False, "LDAP SSL flag"),
            pool_size=pool_size,
            receive_timeout=receive_timeout,
        )


def _require_int(value: Optional[str], default: int, label: str) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(f'Illegal {label} "{value}": {exc}') from exc


def _require_float(value: Optional[str], default: float, label: str) -> float:
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f'Illegal {label} "{value}": {exc}') from exc


def _require_bool(value: Optional[str], default: bool, label: str) -> bool:
    if value is None or not value.strip():
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigurationError(f'Illegal {label} "{value}": expected true or false')


def _environment() -> Mapping[str, str]:
    if DOTENV_PATH.exists():
        load_dotenv(DOTENV_PATH)
    return os.environ


def load_graph_schema() -> GraphSchema:
    return GraphSchema.from_mapping(_environment())


def load_directory_settings() -> DirectorySettings:
    return DirectorySettings.from_mapping(_environment())
