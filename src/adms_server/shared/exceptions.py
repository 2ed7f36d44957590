"""Exception types shared across the ADMS core."""


class ADMSError(Exception):
    """Base class for errors raised by the ADMS core."""


class RecordParseError(ADMSError):
    """A wire line could not be decoded."""

    def __init__(self, line: str, reason: str):
        super().__init__(f"{reason}: {line[:100]!r}")
        self.line = line
        self.reason = reason


class CommandNotFoundError(ADMSError):
    """No device command exists with the given id."""

    def __init__(self, command_id: int):
        super().__init__(f"Command {command_id} not found")
        self.command_id = command_id


class InvalidCommandTransition(ADMSError):
    """A command was asked to move to a state its current state does not allow."""

    def __init__(self, command_id: int, current: str, target: str):
        super().__init__(
            f"Command {command_id} cannot move from '{current}' to '{target}'"
        )
        self.command_id = command_id
        self.current = current
        self.target = target


class ExportError(ADMSError):
    """The downstream punch export endpoint rejected a request."""
