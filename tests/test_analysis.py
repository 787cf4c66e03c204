import pytest

from rbac.analysis import EffectiveAccessAnalyzer
from rbac.domain import ADMINISTRATOR_ROLE, ADMINISTRATORS_GROUP, USER_ROLE
from rbac.errors import DirectoryReadError, InvalidParameterError


def test_group_grant_reaches_member(datastore, domain):
    domain.assign_user_to_global_group("tester", ADMINISTRATORS_GROUP)
    domain.assign_group_to_role(ADMINISTRATORS_GROUP, "Auditor", "Datastore")

    assert domain.groups_and_roles_analysis("tester") == {"Datastore": {"Auditor"}}


def test_direct_and_indirect_grants_are_merged(datastore, domain):
    domain.create_system("Billing")
    domain.assign_user_to_global_group("tester", ADMINISTRATORS_GROUP)
    domain.assign_user_to_global_group("tester", "Guests")
    domain.assign_user_to_role("tester", USER_ROLE, "Datastore")
    domain.assign_group_to_role(ADMINISTRATORS_GROUP, ADMINISTRATOR_ROLE, "Datastore")
    domain.assign_group_to_role("Guests", "Viewer", "Billing")

    analysis = domain.analyse_user("tester")

    assert analysis.global_groups == {"Administrators", "Guests"}
    assert analysis.roles == {
        "Datastore": {USER_ROLE, ADMINISTRATOR_ROLE},
        "Billing": {"Viewer"},
    }
    assert analysis.user_dn.lower() == "cn=tester,ou=users,dc=test"


def test_same_role_granted_twice_is_reported_once(datastore, domain):
    domain.assign_user_to_global_group("tester", ADMINISTRATORS_GROUP)
    domain.assign_user_to_role("tester", ADMINISTRATOR_ROLE, "Datastore")
    domain.assign_group_to_role(ADMINISTRATORS_GROUP, ADMINISTRATOR_ROLE, "Datastore")

    assert domain.groups_and_roles_analysis("tester") == {"Datastore": {ADMINISTRATOR_ROLE}}


def test_group_member_without_grants_has_no_roles(domain):
    domain.assign_user_to_global_group("tester", "Guests")

    analysis = domain.analyse_user("tester")

    assert analysis.global_groups == {"Guests"}
    assert analysis.roles == {}


def test_other_users_grants_are_not_counted(datastore, domain):
    domain.create_user("auditor", "Audrey", "Tor")
    domain.assign_user_to_role("auditor", "Auditor", "Datastore")

    assert domain.groups_and_roles_analysis("tester") == {}
    assert domain.groups_and_roles_analysis("auditor") == {"Datastore": {"Auditor"}}


def test_unknown_user_cannot_be_analysed(domain):
    with pytest.raises(InvalidParameterError, match="ghost"):
        domain.analyse_user("ghost")


def test_misplaced_participation_entry_is_a_read_error(datastore, domain, adapter):
    # An edge directly under the system, skipping the Roles container
    adapter.create_entry(
        "cn=tester,ou=Datastore,ou=Systems,dc=test",
        ["groupOfNames"],
        {"cn": "tester", "member": "cn=tester,ou=Users,dc=test"},
    )

    with pytest.raises(DirectoryReadError):
        domain.analyse_user("tester")


@pytest.fixture
def analyzer(schema, adapter):
    return EffectiveAccessAnalyzer(schema, adapter)


def test_group_of_membership(analyzer):
    assert analyzer.group_of_membership("cn=tester,ou=Guests,ou=Groups,dc=test") == "Guests"
    assert analyzer.group_of_membership("CN=tester, OU=Guests, OU=groups, DC=TEST") == "Guests"


@pytest.mark.parametrize(
    "dn",
    [
        "ou=Guests,ou=Groups,dc=test",
        "cn=tester,ou=Nested,ou=Guests,ou=Groups,dc=test",
        "cn=tester,ou=Guests,ou=Teams,dc=test",
    ],
)
def test_group_of_membership_rejects_unexpected_layout(analyzer, dn):
    with pytest.raises(DirectoryReadError):
        analyzer.group_of_membership(dn)


def test_role_of_participation(analyzer):
    dn = "cn=tester,ou=Auditor,ou=Roles,ou=Datastore,ou=Systems,dc=test"
    assert analyzer.role_of_participation(dn) == ("Auditor", "Datastore")


@pytest.mark.parametrize(
    "dn",
    [
        "cn=tester,ou=Auditor,ou=Grants,ou=Datastore,ou=Systems,dc=test",
        "cn=tester,ou=Datastore,ou=Systems,dc=test",
        "cn=tester,ou=Auditor,ou=Roles,ou=Datastore,ou=Apps,dc=test",
    ],
)
def test_role_of_participation_rejects_unexpected_layout(analyzer, dn):
    with pytest.raises(DirectoryReadError):
        analyzer.role_of_participation(dn)
