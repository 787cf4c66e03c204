from flask import Flask, jsonify, request
import os
import datetime
from typing import Dict, Optional, Set

from dotenv import load_dotenv

from adapters.ldap_adapter import LdapAdapter
from rbac.config import load_directory_settings, load_graph_schema
from rbac.domain import ApplicationDomain
from rbac.errors import (
    ConfigurationError,
    DirectoryConnectionError,
    DirectoryError,
    EntryAlreadyExistsError,
    InvalidParameterError,
    RbacError,
)
from rbac.logging import configure_logging

#python app.py
#curl http://127.0.0.1:5000/api/users/tester/access

load_dotenv(os.path.join(os.path.dirname(__file__), ".env"))

configure_logging()

app = Flask(__name__)

# Absolute path to the access log file
LOG_FILE = os.getenv("RBAC_ACCESS_LOG", os.path.join(os.path.dirname(__file__), "log.txt"))

_domain: Optional[ApplicationDomain] = None


def get_application_domain() -> ApplicationDomain:
    global _domain
    if _domain is not None:
        return _domain

    adapter = LdapAdapter(load_directory_settings())
    _domain = ApplicationDomain(load_graph_schema(), adapter)
    return _domain


def append_to_log(entry):
    try:
        with open(LOG_FILE, "a", encoding="utf-8") as f:
            f.write(entry + "\n")
    except OSError as e:
        app.logger.warning("Failed to write to %s: %s", LOG_FILE, e)


def _log_write(path: str, status: int, outcome: str, detail: str) -> None:
    timestamp = datetime.datetime.now().strftime("%d/%b/%Y %H:%M:%S")
    remote = request.remote_addr or "-"
    append_to_log(
        f'{remote} - - [{timestamp}] "{request.method} {path} HTTP/1.1" {status} - {outcome}\n'
        f'  → {detail}'
    )


def _error_response(exc: RbacError):
    if isinstance(exc, InvalidParameterError):
        status = 404
    elif isinstance(exc, EntryAlreadyExistsError):
        status = 409
    elif isinstance(exc, ConfigurationError):
        status = 500
    elif isinstance(exc, DirectoryConnectionError):
        status = 503
    elif isinstance(exc, DirectoryError):
        status = 502
    else:
        status = 500
    return jsonify({"error": str(exc)}), status


def _sorted(values: Set[str]):
    return sorted(values, key=str.lower)


@app.route('/api/logs')
def get_log_file():
    if not os.path.exists(LOG_FILE):
        return "", 200
    with open(LOG_FILE, "r", encoding="utf-8") as f:
        return f.read(), 200


@app.route('/api/users')
def api_users():
    try:
        users = get_application_domain().get_users()
    except RbacError as exc:
        return _error_response(exc)
    return jsonify(_sorted(users))


@app.route('/api/users/<user_id>/access')
def api_user_access(user_id):
    try:
        analysis = get_application_domain().analyse_user(user_id)
    except RbacError as exc:
        return _error_response(exc)
    roles: Dict[str, list] = {system: _sorted(names) for system, names in sorted(analysis.roles.items())}
    return jsonify({
        "user": analysis.user_id,
        "dn": analysis.user_dn,
        "groups": _sorted(analysis.global_groups),
        "roles": roles,
    })


@app.route('/api/groups')
def api_groups():
    try:
        groups = get_application_domain().get_global_groups()
    except RbacError as exc:
        return _error_response(exc)
    return jsonify(_sorted(groups))


@app.route('/api/groups/<group_id>/members')
def api_group_members(group_id):
    try:
        domain = get_application_domain()
        if not domain.global_group_exists(group_id):
            return jsonify({"error": f'Unknown global group "{group_id}".'}), 404
        members = domain.get_users_in_global_group(group_id)
    except RbacError as exc:
        return _error_response(exc)
    return jsonify(_sorted(members))


@app.route('/api/groups/<group_id>/members', methods=['POST'])
def api_add_group_member(group_id):
    body = request.get_json(force=True, silent=True) or {}
    user_id = (body.get("user") or "").strip()
    if not user_id:
        return jsonify({"error": "user is required."}), 400
    try:
        dn = get_application_domain().assign_user_to_global_group(user_id, group_id)
    except RbacError as exc:
        response, status = _error_response(exc)
        _log_write(request.path, status, "ERROR", f"Exception: {exc}")
        return response, status
    _log_write(request.path, 200, "SUCCESS", f"Member: {user_id} → {dn}")
    return jsonify({"dn": dn})


@app.route('/api/systems')
def api_systems():
    try:
        systems = get_application_domain().get_systems()
    except RbacError as exc:
        return _error_response(exc)
    return jsonify(_sorted(systems))


@app.route('/api/systems', methods=['POST'])
def api_create_system():
    body = request.get_json(force=True, silent=True) or {}
    name = (body.get("name") or "").strip()
    if not name:
        return jsonify({"error": "name is required."}), 400

    try:
        domain = get_application_domain()
        if domain.system_exists(name):
            return jsonify({"error": f'System "{name}" already exists.'}), 409
        dn = domain.create_system(name)
    except RbacError as exc:
        response, status = _error_response(exc)
        _log_write(request.path, status, "ERROR", f"Exception: {exc}")
        return response, status
    _log_write(request.path, 201, "SUCCESS", f"System: {name} → {dn}")
    return jsonify({"dn": dn}), 201


@app.route('/api/systems/<system_name>/roles')
def api_roles(system_name):
    try:
        domain = get_application_domain()
        if not domain.system_exists(system_name):
            return jsonify({"error": f'Unknown system "{system_name}".'}), 404
        roles = domain.get_roles_in_system(system_name)
    except RbacError as exc:
        return _error_response(exc)
    return jsonify(_sorted(roles))


@app.route('/api/systems/<system_name>/roles/<role_id>/members')
def api_role_members(system_name, role_id):
    try:
        members = get_application_domain().get_users_in_role(role_id, system_name)
    except RbacError as exc:
        return _error_response(exc)
    return jsonify(_sorted(members))


@app.route('/api/systems/<system_name>/roles/<role_id>/members', methods=['POST'])
def api_assign_role(system_name, role_id):
    body = request.get_json(force=True, silent=True) or {}
    user_id = (body.get("user") or "").strip()
    group_id = (body.get("group") or "").strip()
    if bool(user_id) == bool(group_id):
        return jsonify({"error": "Exactly one of user or group is required."}), 400

    try:
        domain = get_application_domain()
        if not domain.system_exists(system_name):
            return jsonify({"error": f'Unknown system "{system_name}".'}), 404
        if user_id:
            dn = domain.assign_user_to_role(user_id, role_id, system_name)
        else:
            dn = domain.assign_group_to_role(group_id, role_id, system_name)
    except RbacError as exc:
        response, status = _error_response(exc)
        _log_write(request.path, status, "ERROR", f"Exception: {exc}")
        return response, status

    principal = f"user {user_id}" if user_id else f"group {group_id}"
    _log_write(request.path, 200, "SUCCESS", f"Participant: {principal} → {dn}")
    return jsonify({"dn": dn})


if __name__ == '__main__':
    app.run(debug=True)
