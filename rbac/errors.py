"""Error taxonomy shared by the RBAC graph and its directory adapters."""

from __future__ import annotations

from typing import Optional


class RbacError(Exception):
    """Base class for every error raised by the RBAC graph."""


class ConfigurationError(RbacError):
    """Bad or missing configuration, template/marker mismatch or invalid DN syntax."""


class InvalidParameterError(RbacError):
    """A referenced user or group does not exist in the directory."""


class DirectoryError(RbacError):
    """An operation against the directory failed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class DirectoryReadError(DirectoryError):
    pass


class DirectoryWriteError(DirectoryError):
    pass


class EntryAlreadyExistsError(DirectoryWriteError):
    """The directory refused to add an entry because its DN is already taken."""

    def __init__(self, dn: str, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message, cause)
        self.dn = dn


class DirectoryConnectionError(DirectoryError):
    """A connection could not be acquired, bound or handed back to the pool.

    When raised while releasing a connection, ``primary`` holds whatever the
    operation itself raised (``None`` if it had succeeded).
    """

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        primary: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, cause)
        self.primary = primary
