"""Errors raised by server-level operations and by the installer."""

from __future__ import annotations


class ServerError(Exception):
    """Base class for errors about the state of a server instance."""

    message = "server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message if message is not None else self.message)


class ServerIsRunningError(ServerError):
    message = "server is running"


class ServerSuspendedError(ServerError):
    message = "server is currently in a suspended state"


class ServerIsInstallingError(ServerError):
    message = "server is currently installing"


class ServerIsTransferringError(ServerError):
    message = "server is currently being transferred"


class ServerIsRestoringError(ServerError):
    message = "server is currently being restored"


class CrashTooFrequentError(ServerError):
    message = "server has crashed too soon after the last detected crash"


class ServerDoesNotExistError(ServerError):
    message = "server does not exist on remote system"


class ValidationError(Exception):
    """Raised when data passed to the installer fails validation."""

    def __init__(self, msg: str) -> None:
        super().__init__(msg)
        self.msg = msg