"""
Tests for idlsync/render.py rendering functions.
"""
from io import StringIO

from rich.console import Console

from idlsync import render
from idlsync.domain import Collision, Contender, RunReport, RunStage, SourceError


def _console():
    return Console(file=StringIO(), width=160, color_system=None)


def _text(console):
    return console.file.getvalue()


class TestRenderTable:
    """Tests for render_table function."""

    def test_empty_rows_shows_message(self):
        console = _console()
        render.render_table(["Col1", "Col2"], [], out=console)
        assert "No data to display" in _text(console)

    def test_rows_and_title(self):
        console = _console()
        render.render_table(["Name", "Value"], [["test", 123]], title="Sources", out=console)

        output = _text(console)
        assert "Sources" in output
        assert "test" in output
        assert "123" in output

    def test_default_console_is_stderr(self, capsys):
        render.render_table(["Col"], [["data"]])
        captured = capsys.readouterr()
        assert "data" in captured.err
        assert captured.out == ""


class TestRenderReport:
    """Tests for render_report function."""

    def test_successful_report(self):
        report = RunReport(
            stage=RunStage.PUBLISHED,
            sources=["A", "B"],
            contributions={"A": ["idl/A.thrift"], "B": ["idl/B.thrift"]},
            commit="f" * 40,
            committed=True,
            pushed=True,
        )
        console = _console()

        render.render_report(report, out=console)

        output = _text(console)
        assert "idl/A.thrift" in output
        assert "Published" in output
        assert "(pushed)" in output

    def test_partial_report_shows_errors(self):
        report = RunReport(
            stage=RunStage.PUBLISHED,
            sources=["A", "B"],
            contributions={"A": ["idl/A.thrift"]},
            source_errors=[SourceError("B", "cache", "repository not found")],
            commit="f" * 40,
        )
        console = _console()

        render.render_report(report, out=console)

        output = _text(console)
        assert "repository not found" in output
        assert "No changes" in output

    def test_collisions_table(self):
        contenders = [
            Contender("A", "a" * 40, "service.thrift", b"1"),
            Contender("B", "b" * 40, "service.thrift", b"2"),
        ]
        report = RunReport(
            stage=RunStage.PUBLISHED,
            sources=["A", "B"],
            collisions=[Collision("service.thrift", "A", contenders)],
        )
        console = _console()

        render.render_report(report, out=console)

        output = _text(console)
        assert "Collisions" in output
        assert "A, B" in output

    def test_failed_report(self):
        report = RunReport(sources=["A"])
        report.fail(RunStage.CACHE_READY, "No remote sources could be refreshed")
        console = _console()

        render.render_report(report, out=console)

        output = _text(console)
        assert "Failed" in output
        assert "cache_ready" in output
