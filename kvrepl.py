#!/usr/bin/env python3
"""
kvrepl - an interactive shell for a key-value store

Type instructions at the prompt, one per line:

	open ./data.sqlite3
	write greeting "hello world"
	read greeting
	dump
	close
	exit

Keys and values may be wrapped in single or double quotes to hold
spaces. The other kind of quote nests literally inside a group.

Class Organization

DebugConfig - console verbosity and the three print levels
ReplSession - the prompt loop around a CommandDispatcher

Shutdown

'exit', end of input, Ctrl+C and SIGTERM all end up in
ReplSession.cleanup(), which releases the store exactly once.
The process always exits 0; malformed lines never end it.
"""

import sys
import signal
import logging
import threading
from contextlib import contextmanager
from typing import Optional, TextIO

from config_manager import KvReplConfig, create_argument_parser, setup_configuration
from kvrepl_commands import BACKENDS, CommandDispatcher, CommandResult, create_dispatcher


BANNER = "Key-Value R.E.P.L."
BANNER_HINT = "Type 'help' for more information."
INTERRUPT_MESSAGE = "User Interrupt"

logger = logging.getLogger(__name__)


class DebugConfig:
	"""Centralized debug configuration"""
	VERBOSE = False
	QUIET = False

	@classmethod
	def set_mode(cls, verbose=False, quiet=False):
		cls.VERBOSE = verbose
		cls.QUIET = quiet

		# Set up logging based on mode
		if verbose:
			level = logging.DEBUG
			logging.basicConfig(level=level, format='🐛 %(name)s: %(message)s')
		elif quiet:
			level = logging.WARNING
			logging.basicConfig(level=level, format='⚠️  %(message)s')
		else:
			level = logging.INFO
			logging.basicConfig(level=level, format='ℹ️  %(message)s')

		# basicConfig is a no-op once the root logger has handlers
		logging.getLogger().setLevel(level)

	@classmethod
	def debug_print(cls, message, force=False, out: Optional[TextIO] = None):
		"""Print message only in verbose mode or if forced"""
		if cls.VERBOSE or force:
			print(message, file=out or sys.stdout)

	@classmethod
	def user_print(cls, message, out: Optional[TextIO] = None):
		"""Print user-facing messages (always shown unless quiet)"""
		if not cls.QUIET:
			print(message, file=out or sys.stdout)

	@classmethod
	def system_print(cls, message, out: Optional[TextIO] = None):
		"""Print important system messages (always shown)"""
		print(message, file=out or sys.stdout)


class _Terminate(Exception):
	"""Raised from the SIGTERM handler to unwind into cleanup."""


class ReplSession:
	"""Read lines, dispatch them, print the results"""

	def __init__(self, dispatcher: CommandDispatcher, config: Optional[KvReplConfig] = None,
				 stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None):
		self.dispatcher = dispatcher
		self.config = config or KvReplConfig()
		self.stdin = stdin or sys.stdin
		self.stdout = stdout or sys.stdout
		self._cleanup_done = False

	def start(self):
		"""Print the banner and open the startup store, if one is configured"""
		if self.config.console.show_banner:
			DebugConfig.user_print(BANNER, out=self.stdout)
			DebugConfig.user_print(BANNER_HINT, out=self.stdout)

		default_path = self.config.storage.default_path
		if default_path:
			self._display_result(self.dispatcher.dispatch(["open", default_path]))

	def run(self) -> int:
		"""The prompt loop. Returns the process exit code."""
		try:
			self.start()
			while self.dispatcher.running:
				line = self._read_line()
				if line is None:
					# end of input behaves like 'exit'
					DebugConfig.debug_print("EOF on input, leaving", out=self.stdout)
					break
				self.handle_line(line)
		except (KeyboardInterrupt, _Terminate):
			DebugConfig.system_print(f"\n{INTERRUPT_MESSAGE}", out=self.stdout)
		finally:
			self.cleanup()
		return 0

	def handle_line(self, line: str) -> Optional[CommandResult]:
		"""Dispatch a single line and print what came back"""
		result = self.dispatcher.execute(line)
		if result is not None:
			self._display_result(result)
		return result

	def _read_line(self) -> Optional[str]:
		"""Prompt and read one line, without its newline. None at end of input."""
		print(self.config.console.prompt, end='', flush=True, file=self.stdout)
		line = self.stdin.readline()
		if not line:
			return None
		return line.rstrip("\r\n")

	def _display_result(self, result: CommandResult):
		if result.is_error:
			DebugConfig.system_print(_printable(result.error), out=self.stdout)
		elif result.summary:
			DebugConfig.system_print(_printable(result.summary), out=self.stdout)

	def cleanup(self):
		"""Release the store - runs once, whichever way the loop ended"""
		if self._cleanup_done:
			DebugConfig.debug_print("🔄 Cleanup already completed - skipping", out=self.stdout)
			return

		self._cleanup_done = True
		with _signals_deferred():
			self.dispatcher.shutdown()
		logger.debug("Session cleanup complete")


def _printable(text: str) -> str:
	"""Echoed input may carry surrogates for undecodable bytes; show them as U+FFFD"""
	return text.encode("utf-8", errors="surrogateescape").decode("utf-8", errors="replace")


def _raise_terminate(signum, frame):
	raise _Terminate()


@contextmanager
def _signals_deferred():
	"""SIGINT and SIGTERM are ignored inside this block"""
	if threading.current_thread() is not threading.main_thread():
		yield
		return

	previous = {signum: signal.signal(signum, signal.SIG_IGN)
				for signum in (signal.SIGINT, signal.SIGTERM)}
	try:
		yield
	finally:
		for signum, handler in previous.items():
			if handler is None:
				continue
			signal.signal(signum, handler)


def main(argv=None) -> int:
	# Console flags first, so config discovery is logged at the right level
	early_args, _ = create_argument_parser().parse_known_args(argv)
	DebugConfig.set_mode(verbose=early_args.verbose, quiet=early_args.quiet)

	config, should_exit, _ = setup_configuration(argv)
	if should_exit:
		return 0

	DebugConfig.set_mode(verbose=config.console.verbose, quiet=config.console.quiet)

	dispatcher = create_dispatcher(
		backend_factory=BACKENDS[config.storage.engine].open,
		create_if_missing=config.storage.create_if_missing,
		sync_writes=config.storage.sync_writes,
	)
	# Undecodable input bytes become surrogates and are stored as typed
	if hasattr(sys.stdin, "reconfigure"):
		sys.stdin.reconfigure(errors="surrogateescape")
	session = ReplSession(dispatcher, config)

	# Ctrl+C already arrives as KeyboardInterrupt; route SIGTERM the same way
	signal.signal(signal.SIGTERM, _raise_terminate)

	return session.run()


if __name__ == "__main__":
	sys.exit(main())
