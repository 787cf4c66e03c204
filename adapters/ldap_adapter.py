from __future__ import annotations

import logging
from contextlib import contextmanager
from queue import Empty, Full, LifoQueue
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

import ldap3
from ldap3.core.exceptions import (
    LDAPException,
    LDAPInvalidDnError,
    LDAPInvalidFilterError,
    LDAPOperationResult,
)
from ldap3.core.results import (
    RESULT_ENTRY_ALREADY_EXISTS,
    RESULT_INVALID_DN_SYNTAX,
    RESULT_NO_SUCH_OBJECT,
    RESULT_SUCCESS,
)

from rbac.config import DirectorySettings
from rbac.dn import DistinguishedName
from rbac.errors import (
    ConfigurationError,
    DirectoryConnectionError,
    DirectoryReadError,
    DirectoryWriteError,
    EntryAlreadyExistsError,
)

from .base import DirectoryAdapter, DirectoryEntry

LOGGER = logging.getLogger("adapters.ldap")

ConnectionFactory = Callable[[], ldap3.Connection]


def connection_factory_for(settings: DirectorySettings) -> ConnectionFactory:
    server = ldap3.Server(
        settings.host,
        port=settings.port,
        use_ssl=settings.use_ssl,
        get_info=ldap3.NONE,
    )

    def _connect() -> ldap3.Connection:
        return ldap3.Connection(
            server,
            user=settings.reader_dn,
            password=settings.reader_credentials,
            authentication=ldap3.SIMPLE,
            receive_timeout=settings.receive_timeout,
            raise_exceptions=False,
        )

    return _connect


class LdapConnectionPool:
    """A bounded LIFO pool of bound ldap3 connections."""

    def __init__(self, factory: ConnectionFactory, max_size: int = 8) -> None:
        self._factory = factory
        self._idle: LifoQueue = LifoQueue(maxsize=max_size)
        self._closed = False

    def get_connection(self) -> ldap3.Connection:
        if self._closed:
            raise DirectoryConnectionError("Connection pool is closed")

        connection = None
        while connection is None:
            try:
                candidate = self._idle.get_nowait()
            except Empty:
                candidate = self._factory()
            if candidate.bound and candidate.closed:
                # Stale: the server dropped the socket while the connection was idle
                continue
            connection = candidate

        if not connection.bound:
            try:
                bound = connection.bind()
            except LDAPException as exc:
                _discard(connection)
                raise DirectoryConnectionError(f"Could not connect to directory: {exc}", exc) from exc
            if not bound:
                result = connection.result or {}
                _discard(connection)
                raise DirectoryConnectionError(
                    f'Could not bind as "{connection.user}": '
                    f"result-code={result.get('result')} ({result.get('description')})",
                    _operation_result(result),
                )
        return connection

    def release_connection(self, connection: ldap3.Connection) -> None:
        if not self._closed:
            try:
                self._idle.put_nowait(connection)
                return
            except Full:
                pass
        connection.unbind()

    def close(self) -> None:
        self._closed = True
        failures: List[LDAPException] = []
        while True:
            try:
                connection = self._idle.get_nowait()
            except Empty:
                break
            try:
                connection.unbind()
            except LDAPException as exc:
                failures.append(exc)
        if failures:
            raise DirectoryConnectionError(
                f"Could not close {len(failures)} pooled connection(s): {failures[0]}", failures[0]
            )


class LdapAdapter(DirectoryAdapter):
    """Executes creates and searches against an LDAP directory through a connection pool."""

    def __init__(
        self,
        settings: Optional[DirectorySettings] = None,
        *,
        pool: Optional[LdapConnectionPool] = None,
    ) -> None:
        if pool is None:
            if settings is None:
                raise ConfigurationError("Either directory settings or a connection pool is required")
            pool = LdapConnectionPool(connection_factory_for(settings), max_size=settings.pool_size)
        self._pool = pool

    @classmethod
    def from_mapping(cls, config: Mapping[str, str]) -> "LdapAdapter":
        return cls(DirectorySettings.from_mapping(config))

    def __enter__(self) -> "LdapAdapter":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._pool.close()

    @contextmanager
    def _connection(self) -> Iterator[ldap3.Connection]:
        """Borrow a connection for the duration of one operation.

        The connection goes back to the pool on every exit path. If that
        fails, a DirectoryConnectionError is raised carrying both the release
        failure and whatever the operation raised.
        """
        connection = self._pool.get_connection()
        primary: Optional[BaseException] = None
        try:
            yield connection
        except BaseException as exc:
            primary = exc
            raise
        finally:
            try:
                self._pool.release_connection(connection)
            except Exception as exc:
                info = f"Could not release connection back to pool: {exc}"
                if primary is not None:
                    info += f" (operation had failed with: {primary})"
                raise DirectoryConnectionError(info, exc, primary=primary) from exc

    def create_entry(
        self,
        dn: str,
        object_classes: Sequence[str],
        attributes: Mapping[str, Any],
    ) -> None:
        with self._connection() as connection:
            try:
                added = connection.add(dn, list(object_classes), dict(attributes))
            except LDAPInvalidDnError as exc:
                raise ConfigurationError(f"Invalid DN: {dn}: {exc}") from exc
            except LDAPException as exc:
                raise DirectoryWriteError(f"Could not create object in directory: {exc}", exc) from exc

            if added:
                LOGGER.debug("Created %s", dn)
                return

            result = connection.result or {}
            code = result.get("result")
            description = result.get("description")
            message = result.get("message") or ""
            if code == RESULT_ENTRY_ALREADY_EXISTS:
                raise EntryAlreadyExistsError(dn, f'Entry already exists: dn="{dn}"', _operation_result(result))
            if code == RESULT_INVALID_DN_SYNTAX:
                raise ConfigurationError(f"Invalid DN: {dn}: {message or description}")
            raise DirectoryWriteError(
                f'Could not create object: dn="{dn}", result-code={code} ({description}): {message}',
                _operation_result(result),
            )

    def search_one(
        self, base_dn: str, search_filter: str, attributes: Iterable[str] = ("*",)
    ) -> Optional[DirectoryEntry]:
        entries = self._search(base_dn, search_filter, ldap3.BASE, attributes)
        return entries[0] if entries else None

    def search_children(
        self, base_dn: str, search_filter: str, attributes: Iterable[str] = ("*",)
    ) -> List[DirectoryEntry]:
        base = DistinguishedName.parse(base_dn)
        entries = self._search(base_dn, search_filter, ldap3.LEVEL, attributes)
        return [entry for entry in entries if not DistinguishedName.parse(entry.dn).same_as(base)]

    def search_subtree(
        self, base_dn: str, search_filter: str, attributes: Iterable[str] = ("*",)
    ) -> List[DirectoryEntry]:
        return self._search(base_dn, search_filter, ldap3.SUBTREE, attributes)

    def _search(
        self, base_dn: str, search_filter: str, scope: str, attributes: Iterable[str]
    ) -> List[DirectoryEntry]:
        requested = list(attributes) or [ldap3.ALL_ATTRIBUTES]
        with self._connection() as connection:
            try:
                connection.search(base_dn, search_filter, search_scope=scope, attributes=requested)
            except LDAPInvalidFilterError as exc:
                raise ConfigurationError(f'Invalid filter: "{search_filter}": {exc}') from exc
            except LDAPInvalidDnError as exc:
                raise ConfigurationError(f"Invalid DN: {base_dn}: {exc}") from exc
            except LDAPException as exc:
                raise DirectoryReadError(f"Could not find objects in directory: {exc}", exc) from exc

            result = connection.result or {}
            code = result.get("result", RESULT_SUCCESS)
            if code == RESULT_NO_SUCH_OBJECT:
                return []
            if code == RESULT_INVALID_DN_SYNTAX:
                raise ConfigurationError(f"Invalid DN: {base_dn}: {result.get('message') or ''}")
            if code != RESULT_SUCCESS:
                raise DirectoryReadError(
                    f'Could not search "{base_dn}" with filter {search_filter}: '
                    f"result-code={code} ({result.get('description')}): {result.get('message') or ''}",
                    _operation_result(result),
                )
            return [
                self._to_entry(item)
                for item in connection.response or []
                if item.get("type") == "searchResEntry"
            ]

    @staticmethod
    def _to_entry(item: Dict[str, Any]) -> DirectoryEntry:
        attributes: Dict[str, List[str]] = {}
        for name, values in (item.get("attributes") or {}).items():
            attributes[name] = [_as_text(value) for value in _ensure_list(values)]
        return DirectoryEntry(dn=item.get("dn", ""), attributes=attributes)


def _discard(connection: ldap3.Connection) -> None:
    # The socket may already be open after a rejected bind
    try:
        connection.unbind()
    except LDAPException as exc:
        LOGGER.warning("Could not unbind rejected connection: %s", exc)


def _operation_result(result: Mapping[str, Any]) -> LDAPOperationResult:
    return LDAPOperationResult(
        result=result.get("result"),
        description=result.get("description"),
        dn=result.get("dn"),
        message=result.get("message"),
        response_type=result.get("type"),
    )


def _ensure_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _as_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
