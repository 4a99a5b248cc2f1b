"""Tests for the domain layer."""

import dataclasses
import json

import pytest

from idlsync.domain import (
    RemoteSource,
    ExtractedFile,
    Collision,
    Contender,
    ProvenanceEntry,
    StaleEntry,
    ProvenanceRecord,
    RunReport,
    RunStage,
    SourceError,
    name_from_repository,
)


class TestNameFromRepository:
    """Tests for deriving source names from repository locations."""

    @pytest.mark.parametrize("repository,expected", [
        ("file:///srv/remotes/A", "A"),
        ("/srv/remotes/B", "B"),
        ("/srv/remotes/C/", "C"),
        ("git@github.com:org/service-idl.git", "service-idl"),
        ("https://example.com/org/foo.git/", "foo"),
        ("ssh://git@example.com:2222/org/bar.git", "bar"),
        ("relative/dir/D", "D"),
        ("C:\\repos\\users", "users"),
    ])
    def test_last_segment(self, repository, expected):
        assert name_from_repository(repository) == expected


class TestRemoteSource:
    """Tests for RemoteSource."""

    def test_from_config_defaults(self):
        """Branch, IDL directory and name fall back to defaults."""
        source = RemoteSource.from_config({"repository": "file:///srv/remotes/A"})

        assert source.name == "A"
        assert source.branch == "master"
        assert source.idl_directory == "idl"
        assert source.recursive is False

    def test_from_config_explicit_values(self):
        """Explicit values win; camelCase keys are accepted."""
        source = RemoteSource.from_config({
            "repository": "git@host:org/users.git",
            "name": "users-api",
            "branch": "release",
            "idlDirectory": "thrift/",
            "recursive": True,
        })

        assert source.name == "users-api"
        assert source.branch == "release"
        assert source.idl_directory == "thrift"
        assert source.recursive is True

    def test_from_config_default_idl_directory(self):
        source = RemoteSource.from_config({"repository": "/r/A"}, default_idl_directory="schemas")
        assert source.idl_directory == "schemas"

    def test_is_immutable(self):
        source = RemoteSource(name="A", repository="/r/A")
        with pytest.raises(dataclasses.FrozenInstanceError):
            source.name = "B"

    def test_to_dict(self):
        source = RemoteSource(name="A", repository="/r/A")
        assert source.to_dict() == {
            "name": "A",
            "repository": "/r/A",
            "branch": "master",
            "idl_directory": "idl",
            "recursive": False,
        }


class TestCollision:
    """Tests for Collision."""

    def _contender(self, source, content):
        return Contender(source=source, commit="c" * 40, original_path="service.thrift", content=content)

    def test_identical_contents(self):
        collision = Collision("service.thrift", "A", [self._contender("A", b"x"), self._contender("B", b"x")])
        assert collision.identical is True
        assert collision.sources == ["A", "B"]

    def test_differing_contents(self):
        collision = Collision("service.thrift", "A", [self._contender("A", b"x"), self._contender("B", b"y")])
        assert collision.identical is False

    def test_to_dict_omits_content(self):
        """Serialised contenders carry size, not bytes."""
        collision = Collision("service.thrift", "A", [self._contender("A", b"abc")])
        data = collision.to_dict()

        assert data["contenders"][0]["size"] == 3
        assert "content" not in data["contenders"][0]
        json.dumps(data)

    def test_contender_of_extracted_file(self):
        extracted = ExtractedFile("A.thrift", b"x", source_name="A", commit="abc", original_path="s.thrift")
        contender = Contender.of(extracted)
        assert (contender.source, contender.commit, contender.original_path) == ("A", "abc", "s.thrift")


class TestProvenanceRecord:
    """Tests for the meta.json record."""

    def test_to_dict_sorts_sources_and_files(self):
        record = ProvenanceRecord(remotes={
            "B": ProvenanceEntry("/r/B", "master", "b" * 40, ["idl/B2.thrift", "idl/B1.thrift"]),
            "A": ProvenanceEntry("/r/A", "master", "a" * 40, ["idl/A.thrift"]),
        })
        data = record.to_dict()

        assert list(data["remotes"]) == ["A", "B"]
        assert data["remotes"]["B"]["files"] == ["idl/B1.thrift", "idl/B2.thrift"]
        assert data["version"] == 1
        assert data["stale"] == {}

    def test_from_dict_restores_entries(self):
        data = {
            "version": 1,
            "remotes": {"A": {"repository": "/r/A", "branch": "master", "commit": "abc", "files": ["idl/A.thrift"]}},
            "stale": {"B": {"commit": "def", "files": ["idl/B.thrift"], "error": "unreachable"}},
        }
        record = ProvenanceRecord.from_dict(data)

        assert record.remotes["A"].commit == "abc"
        assert record.stale["B"].error == "unreachable"
        assert record.to_dict() == data

    def test_from_dict_tolerates_empty_document(self):
        record = ProvenanceRecord.from_dict({})
        assert record.remotes == {}
        assert record.stale == {}

    def test_last_known(self):
        """last_known looks in remotes first, then in stale."""
        record = ProvenanceRecord(
            remotes={"A": ProvenanceEntry("/r/A", "master", "abc", ["idl/A.thrift"])},
            stale={"B": StaleEntry("def", ["idl/B.thrift"], "boom")},
        )

        assert record.last_known("A").commit == "abc"
        assert record.last_known("A").files == ["idl/A.thrift"]
        assert record.last_known("B").commit == "def"
        assert record.last_known("C") is None


class TestRunReport:
    """Tests for RunReport."""

    def test_default_report_is_not_success(self):
        report = RunReport()
        assert report.stage == RunStage.INIT
        assert report.success is False
        assert report.partial is False

    def test_published_report(self):
        report = RunReport(stage=RunStage.PUBLISHED, commit="abc", committed=True)
        assert report.success is True
        assert report.partial is False

    def test_partial_report(self):
        report = RunReport(
            stage=RunStage.PUBLISHED,
            source_errors=[SourceError("B", "cache", "unreachable")],
        )
        assert report.success is True
        assert report.partial is True

    def test_fail(self):
        report = RunReport(stage=RunStage.CACHE_READY)
        report.fail(RunStage.EXTRACTED, "No sources could be extracted")

        assert report.stage == RunStage.FAILED
        assert report.failed_stage == RunStage.EXTRACTED
        assert report.success is False

    def test_to_dict(self):
        """Report serialises to JSON with failure details only when failed."""
        ok = RunReport(stage=RunStage.PUBLISHED, sources=["A"], files=["idl/A.thrift"]).to_dict()
        assert ok["success"] is True
        assert ok["stage"] == "published"
        assert "failed_stage" not in ok

        failed = RunReport()
        failed.fail(RunStage.INIT, "No remote sources configured")
        data = failed.to_dict()
        assert data["failed_stage"] == "init"
        assert data["error"] == "No remote sources configured"
        json.dumps(data)
