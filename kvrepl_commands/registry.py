"""
Instruction Table
=================

The single source of truth for what each instruction needs. The
dispatcher reads it; nothing writes it after import.

    Instruction  Arguments   Backend?   Handler
    -----------  ---------   --------   -------------
    help         -           no         handle_help
    exit         -           no         handle_exit
    open         path        no         handle_open
    close        -           yes        handle_close
    read         key         yes        handle_read
    write        key value   yes        handle_write
    dump         -           yes        handle_dump
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from kvrepl_commands.dispatcher import ArgSpec, Instruction, InstructionInfo
from kvrepl_commands.handlers import (
    handle_close,
    handle_dump,
    handle_exit,
    handle_help,
    handle_open,
    handle_read,
    handle_write,
)

REGISTRY: Mapping[Instruction, InstructionInfo] = MappingProxyType({
    Instruction.help: InstructionInfo("Print this help message", None, handle_help),
    Instruction.exit: InstructionInfo("Exit the repl", None, handle_exit),
    Instruction.open: InstructionInfo("Open database", ArgSpec("path", 1), handle_open),
    Instruction.close: InstructionInfo("Close database", None, handle_close, requires_backend=True),
    Instruction.read: InstructionInfo(
        "Read value from database", ArgSpec("key", 1), handle_read, requires_backend=True
    ),
    Instruction.write: InstructionInfo(
        "Write value to database", ArgSpec("key value", 2), handle_write, requires_backend=True
    ),
    Instruction.dump: InstructionInfo("Dump whole database", None, handle_dump, requires_backend=True),
})


def get_info(instruction: Instruction) -> InstructionInfo:
    """Metadata for ``instruction``. Total over the Instruction enum."""
    return REGISTRY[instruction]
