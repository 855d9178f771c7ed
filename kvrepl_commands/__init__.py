"""
kvrepl Command System
=====================

The tokenizer and instruction dispatcher behind kvrepl, an interactive
shell for poking at a key-value store one line at a time.

Architecture Overview
---------------------
Each line the operator types goes through two stages before anything
touches the store. The tokenizer splits it into words, honoring
quotes; the dispatcher resolves the first word to an instruction,
checks the rest against that instruction's metadata, and runs the
handler:

    ┌──────────────┐     ┌────────────┐     ┌──────────────┐     ┌──────────┐
    │  Input line  │────►│ Tokenizer  │────►│  Dispatcher  │────►│ Handler  │
    │  (prompt)    │     │ (quotes)   │     │ (table-driven│     │ (backend │
    └──────────────┘     └─────┬──────┘     │  validation) │     │  calls)  │
                               │            └──────┬───────┘     └────┬─────┘
                               ▼                   ▼                  ▼
                        QuoteSyntaxError   UnknownInstruction    CommandResult
                                           PreconditionFailed    (or BackendError)
                                           ArityMismatch

Every failure on that path is recoverable. The dispatcher hands back an
error CommandResult and the loop reads the next line.

Using It
--------
    from kvrepl_commands import create_dispatcher

    dispatcher = create_dispatcher()

    result = dispatcher.execute('write greeting "hello world"')
    if result is not None:
        if result.is_error:
            show_error(result.error)
        else:
            show_result(result.summary)

    dispatcher.shutdown()  # releases the backend; safe to repeat

Instructions
------------
    help                 Print the instruction table
    exit                 Release the backend and leave the loop
    open <path>          Open (or create) a store, replacing any open one
    close                Release the open store
    read <key>           Print the value stored under key
    write <key> <value>  Store value under key (synced to disk)
    dump                 Print every key: value pair in key order

Extending the Instruction Set
-----------------------------
1. Add a member to Instruction in dispatcher.py.
2. Write a handler ``handle_x(dispatcher, args) -> CommandResult``
   in handlers.py.
3. Add its row to REGISTRY in registry.py: description, ArgSpec (or
   None), handler, requires_backend.

The dispatcher refuses to start if a member has no row, and needs no
other change: the row is all it looks at.

Module Structure
----------------
    kvrepl_commands/
    ├── __init__.py          ← This file. create_dispatcher().
    ├── errors.py            ← ShellError and its subclasses.
    ├── tokenizer.py         ← tokenize(), Token.
    ├── dispatcher.py        ← CommandDispatcher, Instruction, CommandResult.
    ├── registry.py          ← REGISTRY: the instruction table.
    ├── handlers.py          ← The seven verbs.
    └── backend.py           ← KeyValueBackend ABC, SQLite and LevelDB engines.

Dependencies
------------
Standard library only (sqlite3 for the default engine). The leveldb
engine imports plyvel when it opens a store. The REPL and
its configuration live one level up, in kvrepl.py and config_manager.py.
"""

from __future__ import annotations

from kvrepl_commands.backend import BACKENDS, KeyValueBackend, LevelDbBackend, SqliteBackend
from kvrepl_commands.dispatcher import (
    BackendFactory,
    CommandDispatcher,
    CommandResult,
    Instruction,
)
from kvrepl_commands.errors import (
    ArityMismatch,
    BackendError,
    KeyNotFound,
    PreconditionFailed,
    QuoteSyntaxError,
    ShellError,
    UnknownInstruction,
)
from kvrepl_commands.registry import REGISTRY, get_info
from kvrepl_commands.tokenizer import Token, split, tokenize


def create_dispatcher(
    backend_factory: BackendFactory = SqliteBackend.open,
    create_if_missing: bool = True,
    sync_writes: bool = True,
) -> CommandDispatcher:
    """Build a dispatcher over the standard instruction table."""
    return CommandDispatcher(
        REGISTRY,
        backend_factory=backend_factory,
        create_if_missing=create_if_missing,
        sync_writes=sync_writes,
    )


__all__ = [
    'ArityMismatch',
    'BackendError',
    'CommandDispatcher',
    'CommandResult',
    'Instruction',
    'KeyNotFound',
    'KeyValueBackend',
    'PreconditionFailed',
    'QuoteSyntaxError',
    'REGISTRY',
    'ShellError',
    'SqliteBackend',
    'LevelDbBackend',
    'BACKENDS',
    'Token',
    'UnknownInstruction',
    'create_dispatcher',
    'get_info',
    'split',
    'tokenize',
]
