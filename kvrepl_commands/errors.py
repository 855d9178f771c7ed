"""
Shell Errors
============

Every way a typed line can fail short of crashing the shell.

All of these are recovered locally: the dispatcher turns them into an
error CommandResult, the REPL prints it, and the loop reads the next
line. None of them ends the process.

    ShellError
    ├── QuoteSyntaxError     unterminated quote (tokenizer)
    ├── UnknownInstruction   first word is not a known verb
    ├── PreconditionFailed   verb needs an open backend
    ├── ArityMismatch        wrong number of trailing arguments
    └── BackendError         the store refused (status text from it)
        └── KeyNotFound      read of a key that is not there

The string form of each exception is exactly the line the operator sees.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kvrepl_commands.dispatcher import Instruction


class ShellError(Exception):
    """Base class for every recoverable shell error."""


class QuoteSyntaxError(ShellError, ValueError):
    """A quote group was opened and never closed.

    Attributes
    ----------
    position : int
        Index of the opening quote character in ``line``.
    message : str
        What went wrong, without the ``error:`` prefix.
    line : str
        The raw input line, kept for rendering.
    """

    def __init__(self, position: int, message: str, line: str):
        super().__init__(f"error: {message}")
        self.position = position
        self.message = message
        self.line = line

    def render(self) -> str:
        """Message, the line, and a caret under the offending column.

        The caret is followed by '~' up to the end of the line:

            error: expected quotes or double quotes to be closed
            write "unterminated
                  ^~~~~~~~~~~~~
        """
        length = self.position + 1
        marker = "^".rjust(length) + "~" * (len(self.line) - length)
        return f"error: {self.message}\n{self.line}\n{marker}"


class UnknownInstruction(ShellError):
    def __init__(self, name: str):
        super().__init__(f"Unknown instruction '{name}' !")
        self.name = name


class PreconditionFailed(ShellError):
    def __init__(self, instruction: Instruction, requirement: str):
        super().__init__(f"error: {instruction.name} requires {requirement}")
        self.instruction = instruction
        self.requirement = requirement


class ArityMismatch(ShellError):
    def __init__(self, instruction: Instruction, expected: int, actual: int):
        super().__init__(
            f"error: {instruction.name} expected {expected} arguments got {actual}"
        )
        self.instruction = instruction
        self.expected = expected
        self.actual = actual


class BackendError(ShellError):
    """The key-value store reported a failure.

    ``status`` is the backend's own text. The handler that caught the
    failure decides the wording of the message around it.
    """

    def __init__(self, status: str, message: str | None = None):
        super().__init__(message if message is not None else status)
        self.status = status


class KeyNotFound(BackendError):
    def __init__(self, key: bytes, message: str | None = None):
        super().__init__(f"NotFound: {key.decode('utf-8', errors='replace')}", message)
        self.key = key
