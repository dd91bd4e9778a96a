from typer.testing import CliRunner

from turnq import __version__
from turnq.cli import app

runner = CliRunner()


def test_run_command_echoes_each_message_in_order() -> None:
    result = runner.invoke(app, ["run", "hello", "world", "--session", "demo", "--delay", "0"])

    assert result.exit_code == 0, result.output
    assert "turn=1 hello" in result.output
    assert "turn=1 world" in result.output
    assert result.output.index("turn=1 hello") < result.output.index("turn=1 world")
    assert "completed" in result.output


def test_run_command_reports_dedupe() -> None:
    result = runner.invoke(
        app,
        ["run", "ping", "ping", "ping", "--internal", "--dedupe-key", "k", "--delay", "0"],
    )

    assert result.exit_code == 0, result.output
    assert "deduped" in result.output


def test_run_command_rejects_empty_message() -> None:
    result = runner.invoke(app, ["run", "   ", "--delay", "0"])

    assert result.exit_code == 2
    assert "rejected" in result.output


def test_version_command() -> None:
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert result.output.strip() == __version__
