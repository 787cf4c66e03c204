import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from adapters.ldap_adapter import LdapAdapter
from rbac.config import load_directory_settings, load_graph_schema
from rbac.domain import ApplicationDomain
from rbac.errors import RbacError


def main() -> None:
    parser = argparse.ArgumentParser(description="Show the roles a user holds in each system.")
    parser.add_argument("user", help="User id to analyse.")
    args = parser.parse_args()

    try:
        domain = ApplicationDomain(load_graph_schema(), LdapAdapter(load_directory_settings()))
    except RbacError as exc:
        raise SystemExit(f"Configuration problem: {exc}")

    try:
        analysis = domain.analyse_user(args.user)
    except RbacError as exc:
        raise SystemExit(str(exc))
    finally:
        domain.close()

    print(f"User: {analysis.user_id} ({analysis.user_dn})")
    print(f"Global groups: {', '.join(sorted(analysis.global_groups)) or '-'}")
    print("Roles:")
    if not analysis.roles:
        print("  (none)")
    for system, roles in sorted(analysis.roles.items()):
        print(f"  {system}: {', '.join(sorted(roles))}")


if __name__ == "__main__":
    main()
