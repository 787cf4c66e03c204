"""Distinguished name templates and a small structured DN model.

Templates are plain strings carrying one ``%s`` marker per name component,
for instance ``"cn=%s,ou=%s,ou=Roles,ou=%s,ou=Systems,dc=test"``.
Components are substituted verbatim, left to right. Nothing is escaped, so
role, group and system names are expected to be safe RDN values (no commas,
plus signs or quotes).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from ldap3.core.exceptions import LDAPInvalidDnError
from ldap3.utils.dn import parse_dn

from .errors import ConfigurationError

LOGGER = logging.getLogger("rbac.dn")

MARKER = "%s"


def compose(template: str, *components: str) -> str:
    """Substitute ``components`` for the ``%s`` markers of ``template``.

    Supplying more components than there are markers is a configuration
    error. Supplying fewer leaves the trailing markers in place.
    """

    if not template:
        raise ConfigurationError("No distinguished name template was provided")

    composed = template
    position = 0
    for component in components:
        index = composed.find(MARKER, position)
        if index < 0:
            info = (
                f'Mismatch between template "{template}" and the number of provided components: '
                f"there are more components ({len(components)}) than {MARKER} markers in the template"
            )
            LOGGER.error(info, stack_info=True)
            raise ConfigurationError(info)
        composed = composed[:index] + component + composed[index + len(MARKER):]
        position = index + len(component)
    return composed


def count_markers(template: str) -> int:
    return template.count(MARKER) if template else 0


@dataclass(frozen=True)
class RelativeName:
    """One ``attribute=value`` component of a DN."""

    attribute: str
    value: str

    def matches(self, other: "RelativeName") -> bool:
        return (
            self.attribute.lower() == other.attribute.lower()
            and self.value.lower() == other.value.lower()
        )

    def __str__(self) -> str:
        return f"{self.attribute}={self.value}"


@dataclass(frozen=True)
class DistinguishedName:
    """An ordered sequence of relative names, leaf first."""

    rdns: Tuple[RelativeName, ...]

    @classmethod
    def parse(cls, dn: str) -> "DistinguishedName":
        if not dn or not dn.strip():
            raise ConfigurationError("Invalid DN: an empty distinguished name was provided")
        try:
            components = parse_dn(dn, escape=False, strip=True)
        except LDAPInvalidDnError as exc:
            raise ConfigurationError(f"Invalid DN: {dn}: {exc}") from exc
        return cls(tuple(RelativeName(attribute, value) for attribute, value, _ in components))

    def __len__(self) -> int:
        return len(self.rdns)

    def __getitem__(self, index: int) -> RelativeName:
        return self.rdns[index]

    def __str__(self) -> str:
        return ",".join(str(rdn) for rdn in self.rdns)

    @property
    def simple_name(self) -> str:
        """The value of the leading RDN: ``a`` for ``ou=a,ou=b,dc=c``."""
        return self.rdns[0].value

    def parent(self) -> "DistinguishedName":
        return DistinguishedName(self.rdns[1:])

    def is_descendant_of(self, ancestor: "DistinguishedName") -> bool:
        depth = len(ancestor)
        if len(self) <= depth:
            return False
        tail = self.rdns[len(self) - depth:]
        return all(mine.matches(theirs) for mine, theirs in zip(tail, ancestor.rdns))

    def same_as(self, other: "DistinguishedName") -> bool:
        return len(self) == len(other) and all(
            mine.matches(theirs) for mine, theirs in zip(self.rdns, other.rdns)
        )

    def relative_to(self, ancestor: "DistinguishedName") -> Optional[Tuple[RelativeName, ...]]:
        """RDNs of this DN below ``ancestor``, leaf first, or ``None`` if not beneath it."""
        if not self.is_descendant_of(ancestor):
            return None
        return self.rdns[: len(self) - len(ancestor)]
