"""Users, groups, systems and roles kept as a graph of directory entries.

Directory layout::

    <base>
     +- ou=Users    -> cn=<userId>
     +- ou=Groups   -> ou=<groupId> -> cn=<principalId>   (member=<principal DN>)
     +- ou=Systems  -> ou=<systemName> -> ou=Roles -> ou=<roleId> -> cn=<principalId>

Every edge (group membership or role participation) is an entry of the
membership object class named after the principal (``cn``) and pointing at
the principal's own DN through the membership attribute. Containers are
``organizationalUnit`` entries created on demand. Nothing is ever modified
or deleted.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

from ldap3.utils.conv import escape_filter_chars

from adapters.base import DirectoryAdapter, DirectoryEntry

from .analysis import AccessAnalysis, EffectiveAccessAnalyzer
from .config import GraphSchema
from .dn import DistinguishedName, compose
from .errors import EntryAlreadyExistsError, InvalidParameterError

LOGGER = logging.getLogger("rbac.domain")

ADMINISTRATOR_ROLE = "Administrator"
USER_ROLE = "User"
ADMINISTRATORS_GROUP = "Administrators"

CONTAINER_CLASS = "organizationalUnit"
ANY_OBJECT = "(objectClass=*)"


class ApplicationDomain:
    """Builds and queries the authorization graph through a directory adapter."""

    def __init__(self, schema: GraphSchema, adapter: DirectoryAdapter) -> None:
        self.schema = schema
        self.adapter = adapter
        self._analyzer = EffectiveAccessAnalyzer(schema, adapter)

    @classmethod
    def from_mapping(cls, config: Mapping[str, str], adapter: DirectoryAdapter) -> "ApplicationDomain":
        return cls(GraphSchema.from_mapping(config), adapter)

    def close(self) -> None:
        self.adapter.close()

    # ------------------------------------------------------------------
    # Existence
    # ------------------------------------------------------------------
    def find_object_by_dn(self, dn: str) -> Optional[str]:
        """DN of the entry at ``dn`` regardless of its object class, or ``None``."""
        DistinguishedName.parse(dn)
        entry = self.adapter.search_one(dn, ANY_OBJECT, ("objectClass",))
        return entry.dn if entry is not None else None

    def find_user_dn(self, user_id: str) -> Optional[str]:
        search_filter = compose(
            "(&(objectClass=%s)(%s=%s))",
            self.schema.user_object_class,
            self.schema.user_id_attribute,
            escape_filter_chars(user_id),
        )
        entries = self.adapter.search_children(
            self.schema.users_context, search_filter, (self.schema.user_id_attribute,)
        )
        return entries[0].dn if entries else None

    def global_group_exists(self, group_name: str) -> bool:
        return self.find_object_by_dn(compose(self.schema.group_dn_template, group_name)) is not None

    def system_exists(self, system_name: str) -> bool:
        return self.find_object_by_dn(compose(self.schema.system_dn_template, system_name)) is not None

    def is_member_of_global_group(self, user_id: str, group: str) -> bool:
        """Accepts either a bare group name or the group's full DN."""
        if group.lower().startswith("ou="):
            dn = compose("cn=%s,%s", user_id, group)
        else:
            dn = compose(self.schema.user_in_group_dn_template, user_id, group)
        return self.find_object_by_dn(dn) is not None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create_system(self, system_name: str) -> str:
        """Create a system entry.

        The caller checks ``system_exists`` first; a duplicate surfaces as
        ``EntryAlreadyExistsError``.
        """
        system_dn = compose(self.schema.system_dn_template, system_name)
        attributes = self._naming_attributes(system_dn)
        attributes[self.schema.system_name_attribute] = system_name
        self._create_entry(system_dn, [CONTAINER_CLASS], attributes, "system")
        return system_dn

    def create_user(
        self,
        user_id: str,
        first_name: str,
        last_name: str,
        password: Optional[str] = None,
        mail: Optional[str] = None,
    ) -> str:
        schema = self.schema
        user_dn = compose(schema.user_dn_template, user_id)
        attributes = self._naming_attributes(user_dn)
        attributes["cn"] = user_id
        attributes[schema.user_id_attribute] = user_id
        attributes[schema.last_name_attribute] = last_name
        if first_name:
            attributes[schema.first_name_attribute] = first_name
        if password:
            attributes[schema.password_attribute] = password
        if mail:
            attributes[schema.mail_attribute] = mail

        object_classes = list(dict.fromkeys(["top", "person", "organizationalPerson", schema.user_object_class]))
        self._create_entry(user_dn, object_classes, attributes, "user")
        return user_dn

    def create_global_group(self, group_id: str, description: Optional[str] = None) -> str:
        group_dn = compose(self.schema.group_dn_template, group_id)
        attributes = self._naming_attributes(group_dn)
        attributes[self.schema.group_id_attribute] = group_id
        if description:
            attributes[self.schema.group_description_attribute] = description
        self._create_entry(group_dn, [CONTAINER_CLASS], attributes, "global group")
        return group_dn

    def ensure_contexts(self) -> None:
        """Create the Users, Groups and Systems containers if they are missing."""
        for context in (self.schema.users_context, self.schema.groups_context, self.schema.systems_context):
            self._ensure_entry(context, [CONTAINER_CLASS], self._naming_attributes(context), "context")

    def assign_user_to_role(self, user_id: str, role_id: str, system_name: str) -> str:
        """Let a user participate directly in a role, creating the role if needed.

        Returns the participation DN. Calling again with the same arguments
        leaves the directory untouched.
        """
        user_dn = compose(self.schema.user_dn_template, user_id)
        if self.find_object_by_dn(user_dn) is None:
            raise InvalidParameterError(
                f'The specified user is unknown to the system: "{user_id}" ({user_dn})'
            )

        self._ensure_role(role_id, system_name)

        # cn=<userId>,ou=<roleId>,ou=Roles,ou=<systemName>,ou=Systems,dc=test
        participation_dn = compose(self.schema.user_in_role_dn_template, user_id, role_id, system_name)
        self._ensure_entry(
            participation_dn,
            [self.schema.membership_object_class],
            {"cn": user_id, self.schema.membership_attribute: user_dn},
            "role participation",
        )
        return participation_dn

    def assign_group_to_role(self, group_id: str, role_id: str, system_name: str) -> str:
        """Let every member of a global group participate in a role.

        An edge is only created when the role has no membership child with
        ``cn=<groupId>`` already pointing at the group.
        """
        group_dn = compose(self.schema.group_dn_template, group_id)
        if self.find_object_by_dn(group_dn) is None:
            raise InvalidParameterError(
                f'The specified global group is unknown to the system: "{group_id}" ({group_dn})'
            )

        role_dn = self._ensure_role(role_id, system_name)

        participation_dn = compose(self.schema.group_in_role_dn_template, group_id, role_id, system_name)
        if self._participation_exists_under(role_dn, group_id, group_dn):
            LOGGER.debug("Group %s already participates in %s", group_id, role_dn)
        else:
            self._ensure_entry(
                participation_dn,
                [self.schema.membership_object_class],
                {"cn": group_id, self.schema.membership_attribute: group_dn},
                "role participation",
            )
        return participation_dn

    def assign_user_to_global_group(self, user_id: str, group_id: str) -> str:
        user_dn = compose(self.schema.user_dn_template, user_id)
        if self.find_object_by_dn(user_dn) is None:
            raise InvalidParameterError(
                f'The specified user is unknown to the system: "{user_id}" ({user_dn})'
            )
        group_dn = compose(self.schema.group_dn_template, group_id)
        if self.find_object_by_dn(group_dn) is None:
            raise InvalidParameterError(
                f'The specified global group is unknown to the system: "{group_id}" ({group_dn})'
            )

        membership_dn = compose(self.schema.user_in_group_dn_template, user_id, group_id)
        self._ensure_entry(
            membership_dn,
            [self.schema.membership_object_class],
            {"cn": user_id, self.schema.membership_attribute: user_dn},
            "group membership",
        )
        return membership_dn

    def _ensure_role(self, role_id: str, system_name: str) -> str:
        # ou=Roles,ou=<systemName>,ou=Systems,dc=test
        roles_dn = compose(self.schema.roles_dn_template, system_name)
        self._ensure_entry(roles_dn, [CONTAINER_CLASS], self._naming_attributes(roles_dn), "roles container")

        # ou=<roleId>,ou=Roles,ou=<systemName>,ou=Systems,dc=test
        role_dn = compose(self.schema.role_dn_template, role_id, system_name)
        self._ensure_entry(role_dn, [CONTAINER_CLASS], self._naming_attributes(role_dn), "role")
        return role_dn

    def _participation_exists_under(self, role_dn: str, principal_id: str, principal_dn: str) -> bool:
        search_filter = compose(
            "(&(objectClass=%s)(cn=%s)(%s=%s))",
            self.schema.membership_object_class,
            escape_filter_chars(principal_id),
            self.schema.membership_attribute,
            escape_filter_chars(principal_dn),
        )
        matches = self.adapter.search_children(
            role_dn, search_filter, ("cn", self.schema.membership_attribute)
        )
        return bool(matches)

    def _ensure_entry(
        self,
        dn: str,
        object_classes: Sequence[str],
        attributes: Dict[str, Any],
        what: str,
    ) -> bool:
        """Create the entry unless something already lives at ``dn``. True if created."""
        if self.find_object_by_dn(dn) is not None:
            return False
        try:
            self._create_entry(dn, object_classes, attributes, what)
        except EntryAlreadyExistsError:
            # Lost a race against a concurrent caller creating the same entry
            LOGGER.debug("The %s %s was created concurrently", what, dn, extra={"dn": dn})
            return False
        return True

    def _create_entry(
        self,
        dn: str,
        object_classes: Sequence[str],
        attributes: Dict[str, Any],
        what: str,
    ) -> None:
        self.adapter.create_entry(dn, object_classes, attributes)
        LOGGER.info("Created %s %s", what, dn, extra={"dn": dn})

    @staticmethod
    def _naming_attributes(dn: str) -> Dict[str, Any]:
        rdn = DistinguishedName.parse(dn)[0]
        return {rdn.attribute: rdn.value}

    # ------------------------------------------------------------------
    # Enumeration
    # ------------------------------------------------------------------
    def get_users(self) -> Set[str]:
        entries = self.adapter.search_children(
            self.schema.users_context, self.schema.user_search_filter, (self.schema.user_id_attribute,)
        )
        return {self._identifier(entry, self.schema.user_id_attribute) for entry in entries}

    def get_users_in_global_group(self, group_name: str) -> Set[str]:
        return self._principals_under(compose(self.schema.group_dn_template, group_name))

    def get_users_in_role(self, role_name: str, system_name: str) -> Set[str]:
        # Both user and group participations live directly under the role
        return self._principals_under(compose(self.schema.role_dn_template, role_name, system_name))

    def get_global_groups(self) -> Set[str]:
        entries = self.adapter.search_children(
            self.schema.groups_context, self.schema.group_search_filter, (self.schema.group_id_attribute,)
        )
        return {self._identifier(entry, self.schema.group_id_attribute) for entry in entries}

    def get_systems(self) -> Set[str]:
        entries = self.adapter.search_children(
            self.schema.systems_context, self.schema.system_search_filter, (self.schema.system_name_attribute,)
        )
        return {self._identifier(entry, self.schema.system_name_attribute) for entry in entries}

    def get_roles_in_system(self, system_name: str) -> Set[str]:
        roles_dn = compose(self.schema.roles_dn_template, system_name)
        entries = self.adapter.search_children(roles_dn, self.schema.role_search_filter, ("ou",))
        return {DistinguishedName.parse(entry.dn).simple_name for entry in entries}

    def _principals_under(self, container_dn: str) -> Set[str]:
        search_filter = compose("(objectClass=%s)", self.schema.membership_object_class)
        entries: List[DirectoryEntry] = self.adapter.search_children(
            container_dn, search_filter, ("cn", self.schema.membership_attribute)
        )
        return {entry.get("cn") for entry in entries if entry.get("cn")}

    @staticmethod
    def _identifier(entry: DirectoryEntry, attribute: str) -> str:
        return entry.get(attribute) or DistinguishedName.parse(entry.dn).simple_name

    # ------------------------------------------------------------------
    # Effective access
    # ------------------------------------------------------------------
    def analyse_user(self, user_id: str) -> AccessAnalysis:
        user_dn = self.find_user_dn(user_id)
        if user_dn is None:
            raise InvalidParameterError(f'The specified user is unknown to the system: "{user_id}"')
        return self._analyzer.analyse(user_id, user_dn)

    def groups_and_roles_analysis(self, user_id: str) -> Dict[str, Set[str]]:
        """Roles per system held by the user, directly or through a global group."""
        return self.analyse_user(user_id).roles
