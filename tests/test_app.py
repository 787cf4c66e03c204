import pytest

import app as app_module
from rbac import config as config_module
from rbac.domain import ApplicationDomain
from rbac.errors import DirectoryReadError


@pytest.fixture
def access_log(monkeypatch, tmp_path):
    path = tmp_path / "log.txt"
    monkeypatch.setattr(app_module, "LOG_FILE", str(path))
    return path


@pytest.fixture
def client(monkeypatch, domain, access_log):
    monkeypatch.setattr(app_module, "_domain", domain)
    app_module.app.config["TESTING"] = True
    with app_module.app.test_client() as test_client:
        yield test_client


class UnreachableAdapter:
    def create_entry(self, dn, object_classes, attributes):
        raise DirectoryReadError("directory went away")

    def search_one(self, base_dn, search_filter, attributes=("*",)):
        raise DirectoryReadError("directory went away")

    def search_children(self, base_dn, search_filter, attributes=("*",)):
        raise DirectoryReadError("directory went away")

    def search_subtree(self, base_dn, search_filter, attributes=("*",)):
        raise DirectoryReadError("directory went away")

    def close(self):
        pass


def test_users(client):
    response = client.get("/api/users")
    assert response.status_code == 200
    assert response.get_json() == ["tester"]


def test_groups(client):
    assert client.get("/api/groups").get_json() == ["Administrators", "Guests"]


def test_create_system(client, access_log):
    response = client.post("/api/systems", json={"name": "Datastore"})

    assert response.status_code == 201
    assert response.get_json() == {"dn": "ou=Datastore,ou=Systems,dc=test"}
    assert client.get("/api/systems").get_json() == ["Datastore"]
    assert "SUCCESS" in access_log.read_text(encoding="utf-8")


def test_create_existing_system_conflicts(client):
    client.post("/api/systems", json={"name": "Datastore"})

    response = client.post("/api/systems", json={"name": "Datastore"})

    assert response.status_code == 409


def test_create_system_requires_name(client):
    assert client.post("/api/systems", json={}).status_code == 400


def test_user_access_through_group(client):
    client.post("/api/systems", json={"name": "Datastore"})
    client.post("/api/groups/Administrators/members", json={"user": "tester"})
    client.post("/api/systems/Datastore/roles/Auditor/members", json={"group": "Administrators"})
    client.post("/api/systems/Datastore/roles/User/members", json={"user": "tester"})

    response = client.get("/api/users/tester/access")

    assert response.status_code == 200
    body = response.get_json()
    assert body["user"] == "tester"
    assert body["groups"] == ["Administrators"]
    assert body["roles"] == {"Datastore": ["Auditor", "User"]}


def test_unknown_user_access_is_not_found(client):
    response = client.get("/api/users/ghost/access")
    assert response.status_code == 404
    assert "ghost" in response.get_json()["error"]


def test_role_members(client):
    client.post("/api/systems", json={"name": "Datastore"})
    response = client.post("/api/systems/Datastore/roles/Administrator/members", json={"user": "tester"})

    assert response.status_code == 200
    assert response.get_json()["dn"] == "cn=tester,ou=Administrator,ou=Roles,ou=Datastore,ou=Systems,dc=test"
    assert client.get("/api/systems/Datastore/roles").get_json() == ["Administrator"]
    assert client.get("/api/systems/Datastore/roles/Administrator/members").get_json() == ["tester"]


@pytest.mark.parametrize("body", [{}, {"user": "tester", "group": "Guests"}, {"user": "  "}])
def test_role_assignment_needs_exactly_one_principal(client, body):
    client.post("/api/systems", json={"name": "Datastore"})
    response = client.post("/api/systems/Datastore/roles/Administrator/members", json=body)
    assert response.status_code == 400


def test_role_assignment_in_unknown_system(client):
    response = client.post("/api/systems/Billing/roles/Administrator/members", json={"user": "tester"})
    assert response.status_code == 404
    assert client.get("/api/systems/Billing/roles").status_code == 404


def test_unknown_user_in_role_is_logged_as_error(client, access_log):
    client.post("/api/systems", json={"name": "Datastore"})

    response = client.post("/api/systems/Datastore/roles/Administrator/members", json={"user": "ghost"})

    assert response.status_code == 404
    assert "ERROR" in access_log.read_text(encoding="utf-8")


def test_group_members(client):
    assert client.get("/api/groups/Guests/members").get_json() == []

    client.post("/api/groups/Guests/members", json={"user": "tester"})

    assert client.get("/api/groups/Guests/members").get_json() == ["tester"]
    assert client.get("/api/groups/Auditors/members").status_code == 404
    assert client.post("/api/groups/Guests/members", json={}).status_code == 400


def test_logs_endpoint_returns_access_log(client):
    assert client.get("/api/logs").data == b""

    client.post("/api/systems", json={"name": "Datastore"})

    assert b"POST /api/systems" in client.get("/api/logs").data


def test_directory_failure_maps_to_bad_gateway(monkeypatch, schema, access_log):
    monkeypatch.setattr(app_module, "_domain", ApplicationDomain(schema, UnreachableAdapter()))

    with app_module.app.test_client() as test_client:
        response = test_client.get("/api/users")

    assert response.status_code == 502
    assert response.get_json() == {"error": "directory went away"}


@pytest.mark.parametrize("user_id", ["*", "te*", "a)(b", "(uid=*)"])
def test_filter_characters_in_user_id_match_nothing(client, user_id):
    client.post("/api/systems", json={"name": "Datastore"})
    client.post("/api/systems/Datastore/roles/Auditor/members", json={"user": "tester"})

    response = client.get(f"/api/users/{user_id}/access")

    assert response.status_code == 404
    assert "dn" not in response.get_json()


@pytest.mark.parametrize(
    "method,path,body",
    [
        ("get", "/api/groups/Guests/members", None),
        ("post", "/api/systems", {"name": "Datastore"}),
        ("get", "/api/systems/Datastore/roles", None),
        ("post", "/api/systems/Datastore/roles/User/members", {"user": "tester"}),
    ],
)
def test_missing_directory_settings_are_reported_as_json(monkeypatch, tmp_path, access_log, method, path, body):
    monkeypatch.setattr(app_module, "_domain", None)
    monkeypatch.setattr(config_module, "DOTENV_PATH", tmp_path / "missing.env")
    monkeypatch.delenv("LDAP_READER_DN", raising=False)

    with app_module.app.test_client() as test_client:
        response = getattr(test_client, method)(path, json=body)

    assert response.status_code == 500
    assert "reader DN" in response.get_json()["error"]
