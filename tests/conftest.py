"""Shared fixtures: an in-memory ldap3 directory seeded like the reference test server."""

import pytest
from ldap3 import MOCK_SYNC, NONE, Connection, Server

from adapters.ldap_adapter import LdapAdapter, LdapConnectionPool
from rbac.config import GraphSchema
from rbac.domain import ApplicationDomain

READER_DN = "uid=searcher,dc=test"
READER_PASSWORD = "notsosecret"
TESTER_DN = "cn=tester,ou=Users,dc=test"

PERSON_CLASSES = ["top", "person", "organizationalPerson", "inetOrgPerson"]


@pytest.fixture
def mock_server():
    # Connections on the same Server object share one in-memory DIT
    return Server("rbac-test-directory", get_info=NONE)


@pytest.fixture
def connection_factory(mock_server):
    def _connect():
        return Connection(
            mock_server,
            user=READER_DN,
            password=READER_PASSWORD,
            client_strategy=MOCK_SYNC,
        )

    return _connect


@pytest.fixture
def directory(mock_server, connection_factory):
    seeder = connection_factory()
    entries = [
        ("dc=test", {"objectClass": ["top", "domain", "extensibleObject"], "dc": "test"}),
        (
            READER_DN,
            {
                "objectClass": PERSON_CLASSES,
                "uid": "searcher",
                "cn": "Searcher",
                "sn": "Searcher",
                "userPassword": READER_PASSWORD,
            },
        ),
        ("ou=Groups,dc=test", {"objectClass": ["organizationalUnit"], "ou": "Groups"}),
        ("ou=Administrators,ou=Groups,dc=test", {"objectClass": ["organizationalUnit"], "ou": "Administrators"}),
        ("ou=Guests,ou=Groups,dc=test", {"objectClass": ["organizationalUnit"], "ou": "Guests"}),
        ("ou=Users,dc=test", {"objectClass": ["organizationalUnit"], "ou": "Users"}),
        (
            TESTER_DN,
            {
                "objectClass": PERSON_CLASSES,
                "uid": "tester",
                "cn": "tester",
                "givenName": "Test",
                "sn": "Person",
                "mail": "tester@test.local",
            },
        ),
        ("ou=Systems,dc=test", {"objectClass": ["organizationalUnit"], "ou": "Systems"}),
    ]
    for dn, attributes in entries:
        seeder.strategy.add_entry(dn, attributes)
    return mock_server


@pytest.fixture
def adapter(directory, connection_factory):
    ldap_adapter = LdapAdapter(pool=LdapConnectionPool(connection_factory, max_size=2))
    yield ldap_adapter
    ldap_adapter.close()


@pytest.fixture
def schema():
    return GraphSchema()


@pytest.fixture
def domain(schema, adapter):
    return ApplicationDomain(schema, adapter)


@pytest.fixture
def datastore(domain):
    """The Datastore system, without any roles yet."""
    return domain.create_system("Datastore")


@pytest.fixture
def directory_dns(adapter):
    """Callable listing every DN currently in the test directory."""

    def _snapshot():
        entries = adapter.search_subtree("dc=test", "(objectClass=*)", ("objectClass",))
        return {entry.dn.lower() for entry in entries}

    return _snapshot
