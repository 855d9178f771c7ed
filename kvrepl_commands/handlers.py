"""
Instruction Handlers
====================

One function per verb. Each receives the dispatcher (which owns the
backend) and the already-validated trailing words, and returns a
CommandResult. Backend failures are raised as BackendError with the
operator-facing wording; the dispatcher turns them into error results.

Keys and values typed at the prompt are UTF-8 encoded on the way in,
with errors="surrogateescape" so bytes that were not valid UTF-8 reach
the store as they were typed. Stored bytes are decoded for display with
errors="replace", so a store written by another tool still dumps.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from kvrepl_commands.dispatcher import CommandResult, Instruction
from kvrepl_commands.errors import BackendError, KeyNotFound

if TYPE_CHECKING:
    from kvrepl_commands.dispatcher import CommandDispatcher

logger = logging.getLogger(__name__)

HELP_ROW_FORMAT = "{:<15}{:<20}{:<20}"
OK = "OK"


def _encode(text: str) -> bytes:
    return text.encode("utf-8", errors="surrogateescape")


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def handle_help(dispatcher: CommandDispatcher, args: list[str]) -> CommandResult:
    lines = [
        "Help",
        "",
        "Input format is: <instruction> <args>",
        "Example: open ./database.sqlite3",
        "",
        HELP_ROW_FORMAT.format("Instruction", "Arguments", "Description"),
    ]
    rows = []
    for instruction, info in dispatcher.list_instructions():
        label = info.args.label if info.args is not None else ""
        lines.append(HELP_ROW_FORMAT.format(instruction.name, label, info.description))
        rows.append({
            "instruction": instruction.name,
            "arguments": label,
            "description": info.description,
        })

    return CommandResult(
        command=Instruction.help.name,
        summary="\n".join(lines),
        details={"instructions": rows},
    )


def handle_exit(dispatcher: CommandDispatcher, args: list[str]) -> CommandResult:
    dispatcher.shutdown()
    return CommandResult(command=Instruction.exit.name, summary="")


def handle_open(dispatcher: CommandDispatcher, args: list[str]) -> CommandResult:
    path = args[0]
    try:
        dispatcher.open_backend(path)
    except BackendError as e:
        logger.warning(f"Failed to open {path}: {e.status}")
        raise BackendError(e.status, f"error: open {path} status='{e.status}'") from e

    return CommandResult(command=Instruction.open.name, summary=OK, details={"path": path})


def handle_close(dispatcher: CommandDispatcher, args: list[str]) -> CommandResult:
    dispatcher.close_backend()
    return CommandResult(command=Instruction.close.name, summary=OK)


def handle_read(dispatcher: CommandDispatcher, args: list[str]) -> CommandResult:
    key = args[0]
    try:
        value = _decode(dispatcher.backend.get(_encode(key)))
    except KeyNotFound as e:
        raise KeyNotFound(e.key, f"error: read {key} status='{e.status}'") from e
    except BackendError as e:
        logger.warning(f"Read of {key!r} failed: {e.status}")
        raise BackendError(e.status, f"error: read {key} status='{e.status}'") from e

    return CommandResult(
        command=Instruction.read.name,
        summary=value,
        details={"key": key, "value": value},
    )


def handle_write(dispatcher: CommandDispatcher, args: list[str]) -> CommandResult:
    key, value = args
    try:
        dispatcher.backend.put(_encode(key), _encode(value), sync=dispatcher.sync_writes)
    except BackendError as e:
        logger.warning(f"Write of {key!r} failed: {e.status}")
        raise BackendError(e.status, f"error: write {key} {value} status='{e.status}'") from e

    return CommandResult(command=Instruction.write.name, summary=OK, details={"key": key})


def handle_dump(dispatcher: CommandDispatcher, args: list[str]) -> CommandResult:
    try:
        pairs = [(_decode(key), _decode(value)) for key, value in dispatcher.backend.iterate()]
    except BackendError as e:
        logger.warning(f"Dump failed: {e.status}")
        raise BackendError(e.status, f"error: dump status='{e.status}'") from e

    return CommandResult(
        command=Instruction.dump.name,
        summary="\n".join(f"{key}: {value}" for key, value in pairs),
        details={"pairs": pairs},
    )
