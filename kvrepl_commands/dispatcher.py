"""
Instruction Dispatcher
======================

The central routing table for the key-value shell.

Role in the System
------------------
Every typed line passes through here. The dispatcher resolves the
first word to an Instruction, checks the line against that
instruction's metadata, and only then hands the remaining words to
the handler:

    User types: write "my key" 'my value'
                  ↓
    Tokenizer → ["write", "my key", "my value"]
                  ↓
    Instruction.lookup("write") → Instruction.write
                  ↓
    requires_backend? → is a backend open?          (PreconditionFailed)
                  ↓
    args spec ("key value", 2) → 2 arguments given? (ArityMismatch)
                  ↓
    handle_write(dispatcher, ["my key", "my value"]) → CommandResult

Design Decisions
----------------
- Validation is driven entirely by the InstructionInfo table. Adding
  an instruction means one enum member, one table row and a handler;
  the dispatch path itself never changes.
- The precondition is checked before the arity, so ``read`` with no
  backend open reports the missing backend whatever its arguments.
- Instructions with no argument spec ignore trailing words rather
  than rejecting them: ``help me`` prints the help.
- Handlers never re-validate. By the time one runs, the backend is
  open if it needs one and the argument count is exact.
- Instruction names are case-sensitive: ``Open`` is unknown.
- The dispatcher owns the backend handle. Handlers reach it through
  the dispatcher they are given, never through module state.

Classes
-------
CommandResult
    Structured output from one dispatched line. Contains:
    - command: which instruction produced this
    - summary: display text (may span several lines)
    - details: structured dict for callers that want data, not text
    - error: if set, the line was rejected or the backend refused
    - cause: the ShellError behind the error, for callers that branch

Instruction
    The closed set of verbs.

ArgSpec, InstructionInfo
    The per-instruction metadata: arguments, precondition, handler.

CommandDispatcher
    Validates and routes lines, and owns the open backend.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Mapping, Optional, Sequence, Union

from kvrepl_commands.backend import KeyValueBackend, SqliteBackend
from kvrepl_commands.errors import (
    ArityMismatch,
    PreconditionFailed,
    QuoteSyntaxError,
    ShellError,
    UnknownInstruction,
)
from kvrepl_commands.tokenizer import Token, tokenize

logger = logging.getLogger(__name__)

BACKEND_REQUIREMENT = "an open backend"


@dataclass
class CommandResult:
    """Structured output from a dispatched line.

    Attributes
    ----------
    command : str
        The instruction name that produced this result (e.g., "read").
        Empty when the line never resolved to an instruction.

    summary : str
        Text for display. Multi-line for ``help`` and ``dump``, the
        raw value for ``read``, "OK" for most writes.

    details : dict
        Structured data. For read: {"key": ..., "value": ...}.
        For dump: {"pairs": [(key, value), ...]}.

    error : str or None
        If set, the line was rejected or the backend failed. Contains
        the message to show the operator. The summary is empty.

    cause : ShellError or None
        The exception behind ``error``.
    """
    command: str
    summary: str
    details: dict = field(default_factory=dict)
    error: Optional[str] = None
    cause: Optional[ShellError] = None

    @property
    def is_error(self) -> bool:
        """Check if this result represents an error."""
        return self.error is not None

    @classmethod
    def from_error(cls, command: str, exc: ShellError) -> CommandResult:
        if isinstance(exc, QuoteSyntaxError):
            message = exc.render()
        else:
            message = str(exc)
        return cls(command=command, summary="", error=message, cause=exc)


class Instruction(Enum):
    """The verbs the shell understands, in help-listing order."""
    help = "help"
    exit = "exit"
    open = "open"
    close = "close"
    read = "read"
    write = "write"
    dump = "dump"

    @classmethod
    def lookup(cls, name: str) -> Optional[Instruction]:
        """Case-sensitive exact match against the instruction names."""
        try:
            return cls(name)
        except ValueError:
            return None


@dataclass(frozen=True)
class ArgSpec:
    """Exactly ``count`` trailing words, shown in help as ``label``."""
    label: str
    count: int


Handler = Callable[["CommandDispatcher", list[str]], CommandResult]


@dataclass(frozen=True)
class InstructionInfo:
    """Everything the dispatcher knows about one instruction.

    Attributes
    ----------
    description : str
        One-line text for the help table.
    args : ArgSpec or None
        Required trailing words. None means the instruction takes no
        arguments and any trailing words are ignored.
    handler : callable
        ``handler(dispatcher, args) -> CommandResult``.
    requires_backend : bool
        Refuse to run unless a backend is open.
    """
    description: str
    args: Optional[ArgSpec]
    handler: Handler
    requires_backend: bool = False


BackendFactory = Callable[[str, bool], KeyValueBackend]


class CommandDispatcher:
    """Validates lines against the instruction table and routes them.

    Also the owner of the session state: the open backend (if any),
    the write options that go with it, and whether the loop should
    keep running.

    Usage
    -----
        from kvrepl_commands import create_dispatcher

        dispatcher = create_dispatcher()

        # In your input loop:
        result = dispatcher.execute(line)
        if result is None:
            pass                      # empty line
        elif result.is_error:
            show_error(result.error)
        else:
            show(result.summary)
        if not dispatcher.running:
            leave_loop()
    """

    def __init__(
        self,
        registry: Mapping[Instruction, InstructionInfo],
        backend_factory: BackendFactory = SqliteBackend.open,
        create_if_missing: bool = True,
        sync_writes: bool = True,
    ):
        missing = [inst.name for inst in Instruction if inst not in registry]
        if missing:
            raise ValueError(f"Instruction table is missing entries for: {', '.join(missing)}")

        self.registry = registry
        self.backend_factory = backend_factory
        self.create_if_missing = create_if_missing
        self.sync_writes = sync_writes

        self.backend: Optional[KeyValueBackend] = None
        self.running = True
        self._shutdown_done = False

    # ─── Validation and routing ─────────────────────────────────────

    @property
    def is_backend_open(self) -> bool:
        return self.backend is not None

    def get_info(self, instruction: Instruction) -> InstructionInfo:
        return self.registry[instruction]

    def validate(self, tokens: Sequence[Union[Token, str]]) -> tuple[Instruction, list[str]]:
        """Resolve and check a tokenized line without running it.

        Returns
        -------
        (Instruction, list[str])
            The instruction and its trailing arguments.

        Raises
        ------
        UnknownInstruction
            If the first word names no instruction (or there is none).
        PreconditionFailed
            If the instruction needs a backend and none is open.
        ArityMismatch
            If the instruction takes an exact argument count and the
            line has a different one.
        """
        words = [str(token) for token in tokens]
        if not words:
            raise UnknownInstruction("")

        name, args = words[0], words[1:]
        instruction = Instruction.lookup(name)
        if instruction is None:
            raise UnknownInstruction(name)

        info = self.get_info(instruction)
        if info.requires_backend and not self.is_backend_open:
            raise PreconditionFailed(instruction, BACKEND_REQUIREMENT)

        if info.args is not None and len(args) != info.args.count:
            raise ArityMismatch(instruction, info.args.count, len(args))

        return instruction, args

    def dispatch(self, tokens: Sequence[Union[Token, str]]) -> CommandResult:
        """Validate a tokenized line and run its handler.

        Never raises ShellError: rejected lines and backend failures
        come back as error results.
        """
        command = str(tokens[0]) if tokens else ""
        try:
            instruction, args = self.validate(tokens)
            logger.debug(f"Dispatching {instruction.name} with {args}")
            return self.get_info(instruction).handler(self, args)
        except ShellError as e:
            logger.debug(f"Rejected {command!r}: {e}")
            return CommandResult.from_error(command, e)

    def execute(self, line: str) -> Optional[CommandResult]:
        """Tokenize and dispatch one raw input line.

        Returns None for an empty line, which is not an error.
        """
        if not line:
            return None

        try:
            tokens = tokenize(line)
        except QuoteSyntaxError as e:
            return CommandResult.from_error("", e)

        return self.dispatch(tokens)

    def list_instructions(self) -> list[tuple[Instruction, InstructionInfo]]:
        """Return (instruction, info) pairs in declaration order."""
        return [(inst, self.registry[inst]) for inst in Instruction]

    # ─── Backend ownership ──────────────────────────────────────────

    def open_backend(self, path: str) -> KeyValueBackend:
        """Open ``path``, replacing any backend already open.

        The old backend is released first. If the new one fails to
        open, no backend is left open and BackendError propagates.
        """
        self.close_backend()
        self.backend = self.backend_factory(path, self.create_if_missing)
        return self.backend

    def close_backend(self) -> None:
        """Release the open backend, if any."""
        if self.backend is None:
            return
        backend, self.backend = self.backend, None
        backend.close()

    def request_exit(self) -> None:
        """Stop the input loop after the current line."""
        self.running = False

    def shutdown(self) -> None:
        """Release everything before the process goes away.

        Safe to call more than once, and with no backend open. Only
        the first call does anything.
        """
        if self._shutdown_done:
            return
        self._shutdown_done = True
        self.running = False
        self.close_backend()
