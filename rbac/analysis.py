"""Effective access: the roles a user holds directly and through global groups."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Set, Tuple

from ldap3.utils.conv import escape_filter_chars

from adapters.base import DirectoryAdapter

from .config import GraphSchema
from .dn import DistinguishedName, compose
from .errors import DirectoryReadError

LOGGER = logging.getLogger("rbac.analysis")


@dataclass
class AccessAnalysis:
    user_id: str
    user_dn: str
    global_groups: Set[str] = field(default_factory=set)
    # system name -> role names; systems without roles are absent
    roles: Dict[str, Set[str]] = field(default_factory=dict)

    def grant(self, system_name: str, role_name: str) -> None:
        self.roles.setdefault(system_name, set()).add(role_name)


class EffectiveAccessAnalyzer:
    """Searches the Groups and Systems contexts for edges pointing at a user.

    Participation edges are expected at a fixed depth below the Systems
    context (``cn=<principal>,ou=<role>,ou=Roles,ou=<system>,<systems>``) and
    membership edges directly below a group
    (``cn=<principal>,ou=<group>,<groups>``). An edge found anywhere else is
    reported as a DirectoryReadError rather than guessed at.
    """

    def __init__(self, schema: GraphSchema, adapter: DirectoryAdapter) -> None:
        self._schema = schema
        self._adapter = adapter
        self._groups_context = DistinguishedName.parse(schema.groups_context)
        self._systems_context = DistinguishedName.parse(schema.systems_context)
        self._roles_container = DistinguishedName.parse(compose(schema.roles_dn_template, "x"))[0]

    def analyse(self, user_id: str, user_dn: str) -> AccessAnalysis:
        schema = self._schema
        analysis = AccessAnalysis(user_id=user_id, user_dn=user_dn)

        # Global group memberships: membership entries under the Groups context
        # pointing at the user. Only simple group names are kept.
        LOGGER.debug("Analyzing global group memberships of user \"%s\" (%s)", user_id, user_dn)
        user_filter = self._membership_filter([user_dn])
        for membership in self._adapter.search_subtree(schema.groups_context, user_filter, ("cn",)):
            group_name = self.group_of_membership(membership.dn)
            analysis.global_groups.add(group_name)
            LOGGER.debug("User \"%s\" (%s) is a member of the global group \"%s\"", user_id, user_dn, group_name)

        # Direct participation: the same filter, under the Systems context
        LOGGER.debug("Analyzing direct role participation of user \"%s\" (%s)", user_id, user_dn)
        for participation in self._adapter.search_subtree(schema.systems_context, user_filter, ("cn",)):
            role_name, system_name = self.role_of_participation(participation.dn)
            analysis.grant(system_name, role_name)
            LOGGER.debug(
                "User \"%s\" (%s) participates directly in role \"%s\" in system \"%s\"",
                user_id, user_dn, role_name, system_name,
            )

        # Indirect participation: edges pointing at any of the user's groups.
        # Group DNs are recomposed from the template since only names were kept.
        LOGGER.debug("Analyzing indirect role participation of user \"%s\" (%s)", user_id, user_dn)
        if analysis.global_groups:
            group_dns = [compose(schema.group_dn_template, group) for group in sorted(analysis.global_groups)]
            group_filter = self._membership_filter(group_dns)
            LOGGER.debug("Searching from \"%s\" using filter %s", schema.systems_context, group_filter)

            for participation in self._adapter.search_subtree(schema.systems_context, group_filter, ("cn",)):
                role_name, system_name = self.role_of_participation(participation.dn)
                analysis.grant(system_name, role_name)
                LOGGER.debug(
                    "User \"%s\" (%s) participates indirectly in role \"%s\" in system \"%s\" "
                    "through a group membership",
                    user_id, user_dn, role_name, system_name,
                )

        LOGGER.debug("Analysis of \"%s\" ready", user_id)
        return analysis

    def _membership_filter(self, principal_dns: Iterable[str]) -> str:
        schema = self._schema
        assertions = [
            compose("(%s=%s)", schema.membership_attribute, escape_filter_chars(principal_dn))
            for principal_dn in principal_dns
        ]
        members = assertions[0] if len(assertions) == 1 else "(|" + "".join(assertions) + ")"
        return compose("(&(objectClass=%s)%s)", schema.membership_object_class, members)

    def group_of_membership(self, dn: str) -> str:
        below = DistinguishedName.parse(dn).relative_to(self._groups_context)
        if below is None or len(below) != 2:
            raise DirectoryReadError(
                f"Membership entry {dn} is not laid out as cn=<principal>,<group>,{self._groups_context}"
            )
        return below[1].value

    def role_of_participation(self, dn: str) -> Tuple[str, str]:
        """(role name, system name) for a participation entry's DN."""
        below = DistinguishedName.parse(dn).relative_to(self._systems_context)
        if below is None or len(below) != 4 or not below[2].matches(self._roles_container):
            raise DirectoryReadError(
                f"Participation entry {dn} is not laid out as "
                f"cn=<principal>,<role>,{self._roles_container},<system>,{self._systems_context}"
            )
        return below[1].value, below[3].value
