"""Create the base contexts and a small sample graph in the configured directory."""
from __future__ import annotations

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from adapters.ldap_adapter import LdapAdapter  # noqa: E402
from rbac.config import load_directory_settings, load_graph_schema  # noqa: E402
from rbac.domain import ADMINISTRATOR_ROLE, ADMINISTRATORS_GROUP, USER_ROLE, ApplicationDomain  # noqa: E402
from rbac.dn import compose  # noqa: E402
from rbac.errors import RbacError  # noqa: E402
from rbac.logging import configure_logging  # noqa: E402

SAMPLE_SYSTEM = "Datastore"
SAMPLE_USER = ("tester", "Test", "Person", "tester@test.local")


def seed(domain: ApplicationDomain) -> None:
    domain.ensure_contexts()

    user_id, first_name, last_name, mail = SAMPLE_USER
    if domain.find_object_by_dn(compose(domain.schema.user_dn_template, user_id)) is None:
        domain.create_user(user_id, first_name, last_name, mail=mail)

    if not domain.global_group_exists(ADMINISTRATORS_GROUP):
        domain.create_global_group(ADMINISTRATORS_GROUP, "Global administrators")
    domain.assign_user_to_global_group(user_id, ADMINISTRATORS_GROUP)

    if not domain.system_exists(SAMPLE_SYSTEM):
        domain.create_system(SAMPLE_SYSTEM)
    domain.assign_group_to_role(ADMINISTRATORS_GROUP, ADMINISTRATOR_ROLE, SAMPLE_SYSTEM)
    domain.assign_user_to_role(user_id, USER_ROLE, SAMPLE_SYSTEM)


def main() -> None:
    configure_logging()
    try:
        domain = ApplicationDomain(load_graph_schema(), LdapAdapter(load_directory_settings()))
    except RbacError as exc:
        raise SystemExit(f"Configuration problem: {exc}")

    try:
        seed(domain)
    except RbacError as exc:
        raise SystemExit(f"Seeding failed: {exc}")
    finally:
        domain.close()
    print("Directory seeding complete.")


if __name__ == "__main__":
    main()
