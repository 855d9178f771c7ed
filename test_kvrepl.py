"""
Tests for the kvrepl prompt loop and process entry point

Run with:  python -m pytest test_kvrepl.py -v
"""

import io
import logging
import signal
import sys
from unittest.mock import Mock

import pytest

import kvrepl
from config_manager import KvReplConfig
from kvrepl import DebugConfig, ReplSession
from kvrepl_commands import KeyValueBackend, create_dispatcher


@pytest.fixture(autouse=True)
def console_mode(monkeypatch):
    """Keep DebugConfig class state from leaking between tests"""
    monkeypatch.setattr(DebugConfig, "VERBOSE", False)
    monkeypatch.setattr(DebugConfig, "QUIET", False)


def run_script(script, config=None, dispatcher=None):
    stdout = io.StringIO()
    session = ReplSession(
        dispatcher or create_dispatcher(),
        config or KvReplConfig(),
        stdin=io.StringIO(script),
        stdout=stdout,
    )
    exit_code = session.run()
    return exit_code, stdout.getvalue(), session


class InterruptOnFirstWrite(io.StringIO):
    """Ctrl+C lands while the first line is being printed"""

    def __init__(self):
        super().__init__()
        self.interrupted = False

    def write(self, text):
        if not self.interrupted:
            self.interrupted = True
            raise KeyboardInterrupt()
        return super().write(text)


def output_lines(output):
    """Printed lines with the prompts taken out"""
    return [line for line in output.replace(">>> ", "").splitlines() if line]


class TestSession:
    """Whole scripts through the prompt loop"""

    def test_open_write_read(self, tmp_path):
        db = tmp_path / "session.sqlite3"
        exit_code, output, _ = run_script(f"open {db}\nwrite k v\nread k\nexit\n")
        assert exit_code == 0
        assert output_lines(output)[2:] == ["OK", "OK", "v"]

    def test_banner(self):
        _, output, _ = run_script("exit\n")
        assert output.startswith("Key-Value R.E.P.L.\nType 'help' for more information.\n")

    def test_quiet_hides_banner(self, monkeypatch):
        monkeypatch.setattr(DebugConfig, "QUIET", True)
        _, output, _ = run_script("exit\n")
        assert "R.E.P.L." not in output

    def test_banner_disabled_in_config(self):
        config = KvReplConfig()
        config.console.show_banner = False
        _, output, _ = run_script("exit\n", config=config)
        assert output == ">>> "

    def test_custom_prompt(self):
        config = KvReplConfig()
        config.console.prompt = "kv> "
        _, output, _ = run_script("exit\n", config=config)
        assert "kv> " in output

    def test_empty_lines_are_ignored(self):
        config = KvReplConfig()
        config.console.show_banner = False
        _, output, _ = run_script("\n\n\nexit\n", config=config)
        assert output == ">>> " * 4

    def test_errors_do_not_end_the_loop(self):
        _, output, session = run_script("bogus\nread k\nwrite \"oops\nhelp\nexit\n")
        lines = output_lines(output)
        assert "Unknown instruction 'bogus' !" in lines
        assert "error: read requires an open backend" in lines
        assert "error: expected quotes or double quotes to be closed" in lines
        assert "Help" in lines
        assert not session.dispatcher.running

    def test_syntax_error_caret(self):
        _, output, _ = run_script('write "value\nexit\n')
        marker = " " * 6 + "^" + "~" * 5
        assert f'>>> error: expected quotes or double quotes to be closed\nwrite "value\n{marker}\n' in output

    def test_dump_output(self, tmp_path):
        script = f"open {tmp_path / 'd.sqlite3'}\nwrite b 2\nwrite a 1\ndump\nexit\n"
        _, output, _ = run_script(script)
        assert output_lines(output)[-2:] == ["a: 1", "b: 2"]

    def test_crlf_line_endings(self, tmp_path):
        db = tmp_path / "crlf.sqlite3"
        _, output, _ = run_script(f"open {db}\r\nwrite k v\r\nread k\r\nexit\r\n")
        assert output_lines(output)[-1] == "v"

    def test_undecodable_bytes_do_not_end_the_session(self, tmp_path):
        # a strict UTF-8 stream, like a real terminal, refuses to print surrogates
        raw = io.BytesIO()
        stdout = io.TextIOWrapper(raw, encoding="utf-8")
        script = f"open {tmp_path / 'raw.sqlite3'}\nwrite k \udcff\nread k\nbad\udcff\nhelp\nexit\n"
        session = ReplSession(create_dispatcher(), KvReplConfig(), stdin=io.StringIO(script), stdout=stdout)

        assert session.run() == 0
        stdout.flush()
        lines = output_lines(raw.getvalue().decode("utf-8"))
        assert lines[2:5] == ["OK", "OK", "\ufffd"]
        assert "Unknown instruction 'bad\ufffd' !" in lines
        assert "Help" in lines


class TestShutdown:
    """Every way out releases the store exactly once"""

    def _mocked(self):
        backend = Mock(spec=KeyValueBackend)
        dispatcher = create_dispatcher(backend_factory=lambda path, create_if_missing: backend)
        return backend, dispatcher

    def test_exit_releases_once(self):
        backend, dispatcher = self._mocked()
        run_script("open x\nexit\n", dispatcher=dispatcher)
        backend.close.assert_called_once()

    def test_end_of_input_behaves_like_exit(self):
        backend, dispatcher = self._mocked()
        exit_code, _, _ = run_script("open x\nwrite k v\n", dispatcher=dispatcher)
        assert exit_code == 0
        backend.close.assert_called_once()
        assert not dispatcher.running

    def test_interrupt(self):
        backend, dispatcher = self._mocked()
        stdin = Mock()
        stdin.readline.side_effect = ["open x\n", KeyboardInterrupt()]
        stdout = io.StringIO()
        session = ReplSession(dispatcher, KvReplConfig(), stdin=stdin, stdout=stdout)

        assert session.run() == 0
        assert "\nUser Interrupt\n" in stdout.getvalue()
        backend.close.assert_called_once()

    def test_interrupt_without_backend(self):
        stdin = Mock()
        stdin.readline.side_effect = KeyboardInterrupt()
        stdout = io.StringIO()
        session = ReplSession(create_dispatcher(), KvReplConfig(), stdin=stdin, stdout=stdout)
        assert session.run() == 0
        assert "User Interrupt" in stdout.getvalue()

    def test_interrupt_during_startup_open(self):
        def interrupted(path, create_if_missing):
            raise KeyboardInterrupt()

        dispatcher = create_dispatcher(backend_factory=interrupted)
        config = KvReplConfig()
        config.storage.default_path = "slow.sqlite3"

        exit_code, output, session = run_script("", config=config, dispatcher=dispatcher)
        assert exit_code == 0
        assert output.endswith("\nUser Interrupt\n")
        assert session._cleanup_done
        assert not dispatcher.running

    def test_interrupt_during_banner_releases_open_store(self):
        backend, dispatcher = self._mocked()
        dispatcher.execute("open x")
        stdout = InterruptOnFirstWrite()
        session = ReplSession(dispatcher, KvReplConfig(), stdin=io.StringIO("help\n"), stdout=stdout)

        assert session.run() == 0
        assert stdout.getvalue() == "\nUser Interrupt\n"
        backend.close.assert_called_once()

    def test_cleanup_twice(self):
        backend, dispatcher = self._mocked()
        dispatcher.execute("open x")
        session = ReplSession(dispatcher, KvReplConfig(), stdin=io.StringIO(), stdout=io.StringIO())
        session.cleanup()
        session.cleanup()
        backend.close.assert_called_once()

    def test_signal_handlers_restored_after_cleanup(self):
        before = signal.getsignal(signal.SIGINT)
        session = ReplSession(create_dispatcher(), KvReplConfig(), stdin=io.StringIO(), stdout=io.StringIO())
        session.cleanup()
        assert signal.getsignal(signal.SIGINT) is before


class TestStartup:
    """Opening a store before the first prompt"""

    def test_default_path_opened(self, tmp_path):
        config = KvReplConfig()
        config.storage.default_path = str(tmp_path / "start.sqlite3")
        _, output, _ = run_script("write k v\nread k\nexit\n", config=config)
        assert output_lines(output)[2:] == ["OK", "OK", "v"]

    def test_failed_default_path_still_starts(self):
        def failing(path, create_if_missing):
            from kvrepl_commands import BackendError
            raise BackendError("IO error: nope")

        config = KvReplConfig()
        config.storage.default_path = "broken"
        _, output, session = run_script(
            "help\nexit\n", config=config, dispatcher=create_dispatcher(backend_factory=failing)
        )
        assert "error: open broken status='IO error: nope'" in output_lines(output)
        assert "Help" in output_lines(output)


class TestMain:
    """The process entry point"""

    @pytest.fixture
    def workdir(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(kvrepl.signal, "signal", Mock(return_value=None))
        root = logging.getLogger()
        level = root.level
        yield tmp_path
        root.setLevel(level)

    def test_config_discovery_is_logged(self, workdir, monkeypatch, caplog):
        (workdir / "kvrepl.yaml").write_text("console: {show_banner: false}\n")
        monkeypatch.setattr("sys.stdin", io.StringIO("exit\n"))
        assert kvrepl.main([]) == 0
        messages = [record.getMessage() for record in caplog.records]
        assert any(message.startswith("Auto-discovered config:") for message in messages)

    def test_raw_bytes_on_stdin(self, workdir, monkeypatch, capsys):
        stdin = io.TextIOWrapper(io.BytesIO(b"write k \xff\nread k\nexit\n"), encoding="utf-8")
        monkeypatch.setattr("sys.stdin", stdin)
        assert kvrepl.main(["-o", str(workdir / "raw.sqlite3"), "-q"]) == 0
        assert output_lines(capsys.readouterr().out) == ["OK", "OK", "\ufffd"]

    def test_engine_flag_selects_backend(self, workdir, monkeypatch, capsys):
        monkeypatch.setitem(sys.modules, "plyvel", None)
        monkeypatch.setattr("sys.stdin", io.StringIO("help\nexit\n"))
        assert kvrepl.main(["--engine", "leveldb", "-o", "store", "-q"]) == 0
        lines = output_lines(capsys.readouterr().out)
        assert lines[0].startswith("error: open store status='Not supported")
        assert "Help" in lines

    def test_main_runs_script(self, workdir, monkeypatch, capsys):
        db = workdir / "main.sqlite3"
        monkeypatch.setattr("sys.stdin", io.StringIO("write k v\nread k\nexit\n"))
        assert kvrepl.main(["-o", str(db), "-q"]) == 0
        lines = output_lines(capsys.readouterr().out)
        assert lines == ["OK", "OK", "v"]

    def test_sigterm_routed_to_shutdown(self, workdir, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("exit\n"))
        kvrepl.main(["-q"])
        kvrepl.signal.signal.assert_any_call(signal.SIGTERM, kvrepl._raise_terminate)

    def test_create_config_does_not_start_loop(self, workdir, monkeypatch):
        stdin = Mock()
        monkeypatch.setattr("sys.stdin", stdin)
        assert kvrepl.main(["--create-config", "sample.yaml"]) == 0
        assert (workdir / "sample.yaml").exists()
        stdin.readline.assert_not_called()
