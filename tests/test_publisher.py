"""
Tests for the publisher service with a mocked git client.
"""

import json
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from conftest import ConcurrencyMeter
from idlsync.domain import (
    AggregationResult,
    ExtractedFile,
    ProvenanceEntry,
    ProvenanceRecord,
    StaleEntry,
)
from idlsync.exit_codes import PublishError
from idlsync.infra.git_client import GitClient, GitCommandError
from idlsync.services.publisher import META_FILENAME, Publisher


def _result(*names):
    result = AggregationResult()
    for name in names:
        result.files[f"{name}.thrift"] = ExtractedFile(
            public_name=f"{name}.thrift",
            content=f"service {name} {{}}\n".encode(),
            source_name=name,
            commit=name.lower() * 40,
            original_path="service.thrift",
        )
        result.provenance.remotes[name] = ProvenanceEntry(
            repository=f"/remotes/{name}",
            branch="master",
            commit=name.lower() * 40,
            files=[f"idl/{name}.thrift"],
        )
    return result


@pytest.fixture
def git():
    client = MagicMock(spec=GitClient)
    client.is_git_repo.return_value = True
    client.ref_exists.return_value = True
    client.has_staged_changes.return_value = True
    client.commit.return_value = "c" * 40
    client.head_commit.return_value = "p" * 40
    return client


@pytest.fixture
def repo(tmp_path):
    path = tmp_path / "registry"
    path.mkdir()
    return path


@pytest.fixture
def publisher(repo, git):
    return Publisher(repo, "/upstream.git", git_client=git, clock=lambda: "2024-01-01T00:00:00Z")


class TestPrepare:
    """Tests for pairing the working repository with the upstream."""

    def test_clones_when_folder_missing(self, tmp_path, git):
        git.is_git_repo.return_value = False
        publisher = Publisher(tmp_path / "new", "/upstream.git", git_client=git)

        publisher.prepare()

        git.clone.assert_called_once_with("/upstream.git", tmp_path / "new")
        git.checkout_branch.assert_called_once_with(tmp_path / "new", "master", "origin/master")

    def test_clone_of_empty_upstream_points_head_at_branch(self, tmp_path, git):
        git.is_git_repo.return_value = False
        git.ref_exists.return_value = False
        publisher = Publisher(tmp_path / "new", "/upstream.git", branch="main", git_client=git)

        publisher.prepare()

        git.run.assert_called_once_with(["symbolic-ref", "HEAD", "refs/heads/main"], cwd=tmp_path / "new")
        git.checkout_branch.assert_not_called()

    def test_refreshes_existing_repository(self, publisher, repo, git):
        publisher.prepare()

        git.set_remote.assert_called_once_with(repo, "/upstream.git", "origin")
        git.fetch.assert_called_once_with(repo, "origin")
        git.checkout_branch.assert_called_once_with(repo, "master", "origin/master")
        git.clean.assert_called_once_with(repo)
        git.clone.assert_not_called()

    def test_refresh_without_upstream_branch_resets_index(self, publisher, repo, git):
        """Before the first push there is no origin/<branch>; discard local leftovers."""
        git.ref_exists.return_value = False
        git.head_commit.return_value = None

        publisher.prepare()

        git.run.assert_called_once_with(["read-tree", "--empty"], cwd=repo)
        git.clean.assert_called_once_with(repo)

    def test_non_repository_folder_with_content_is_rejected(self, repo, git):
        git.is_git_repo.return_value = False
        (repo / "notes.txt").write_text("mine")

        with pytest.raises(PublishError) as exc_info:
            Publisher(repo, "/upstream.git", git_client=git).prepare()

        assert "not a git repository" in str(exc_info.value)
        git.clone.assert_not_called()

    def test_unreachable_upstream(self, publisher, repo, git):
        git.fetch.side_effect = GitCommandError(["fetch"], repo, 128, stderr="does not appear to be a git repository")

        with pytest.raises(PublishError) as exc_info:
            publisher.prepare()

        assert "does not appear" in exc_info.value.stderr

    def test_previous_provenance(self, publisher, repo):
        (repo / META_FILENAME).write_text(json.dumps({
            "version": 1,
            "remotes": {"A": {"repository": "/remotes/A", "branch": "master", "commit": "abc", "files": []}},
        }))
        publisher.prepare()

        assert publisher.previous_provenance().remotes["A"].commit == "abc"

    def test_previous_provenance_without_meta(self, publisher):
        assert publisher.previous_provenance().remotes == {}


class TestPublish:
    """Tests for writing, committing and pushing."""

    def test_writes_tree_and_meta(self, publisher, repo, git):
        outcome = publisher.publish(_result("A", "B"))

        assert (repo / "idl" / "A.thrift").read_bytes() == b"service A {}\n"
        assert (repo / "idl" / "B.thrift").exists()
        meta = json.loads((repo / META_FILENAME).read_text())
        assert meta["remotes"]["A"]["commit"] == "a" * 40
        assert meta["remotes"]["B"]["files"] == ["idl/B.thrift"]
        assert outcome.commit == "c" * 40
        assert outcome.committed is True
        assert outcome.pushed is True
        git.add_all.assert_called_once_with(repo)
        git.push.assert_called_once_with(repo, "origin", "HEAD:refs/heads/master")

    def test_meta_is_stable(self, publisher, repo):
        """Same provenance, same bytes: no timestamp in meta.json."""
        publisher.publish(_result("A"))
        first = (repo / META_FILENAME).read_bytes()
        publisher.publish(_result("A"))

        assert (repo / META_FILENAME).read_bytes() == first
        assert first.startswith(b'{\n    "remotes"')

    def test_prunes_files_no_longer_published(self, publisher, repo):
        stale_file = repo / "idl" / "D.thrift"
        stale_file.parent.mkdir()
        stale_file.write_text("old")
        (repo / "README.md").write_text("outside the publish directory")

        publisher.publish(_result("A"))

        assert not stale_file.exists()
        assert (repo / "README.md").exists()

    def test_nested_public_names(self, publisher, repo):
        result = AggregationResult()
        result.files["A/sub/x.thrift"] = ExtractedFile("A/sub/x.thrift", b"x", "A", "a" * 40, "sub/x.thrift")

        publisher.publish(result)

        assert (repo / "idl" / "A" / "sub" / "x.thrift").read_bytes() == b"x"

    def test_unchanged_tree_is_not_committed(self, publisher, git):
        git.has_staged_changes.return_value = False

        outcome = publisher.publish(_result("A"))

        git.commit.assert_not_called()
        git.push.assert_not_called()
        assert outcome.committed is False
        assert outcome.commit == "p" * 40

    def test_allow_empty_commits(self, repo, git):
        git.has_staged_changes.return_value = False
        publisher = Publisher(repo, "/upstream.git", git_client=git, allow_empty_commits=True)

        outcome = publisher.publish(_result("A"))

        assert git.commit.call_args.kwargs["allow_empty"] is True
        assert outcome.committed is True

    def test_no_push(self, repo, git):
        publisher = Publisher(repo, "/upstream.git", git_client=git, push=False)

        outcome = publisher.publish(_result("A"))

        git.push.assert_not_called()
        assert outcome.committed is True
        assert outcome.pushed is False

    def test_commit_message_lists_source_commits(self, publisher, git):
        provenance = _result("A", "B").provenance
        provenance.stale["C"] = StaleEntry(commit=None, error="unreachable")
        result = _result("A", "B")
        result.provenance = provenance

        publisher.publish(result)

        message = git.commit.call_args[0][1]
        lines = message.splitlines()
        assert lines[0] == "Update IDL registry 2024-01-01T00:00:00Z"
        assert f"A: {'a' * 40}" in lines
        assert f"B: {'b' * 40}" in lines
        assert "C: stale" in lines

    def test_default_timestamp_has_microseconds(self, repo, git):
        Publisher(repo, "/upstream.git", git_client=git).publish(_result("A"))

        subject = git.commit.call_args[0][1].splitlines()[0]
        assert re.fullmatch(r"Update IDL registry \d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{6}Z", subject)

    def test_explicit_provenance_overrides_result(self, publisher, repo):
        record = ProvenanceRecord(remotes={"Z": ProvenanceEntry("/remotes/Z", "master", "z" * 40, [])})

        publisher.publish(_result("A"), provenance=record)

        meta = json.loads((repo / META_FILENAME).read_text())
        assert list(meta["remotes"]) == ["Z"]

    def test_push_failure_rolls_back(self, publisher, repo, git):
        git.push.side_effect = GitCommandError(["push"], repo, 1, stderr="rejected (non-fast-forward)")

        with pytest.raises(PublishError) as exc_info:
            publisher.publish(_result("A"))

        assert "rejected" in exc_info.value.stderr
        git.reset_hard.assert_called_once_with(repo, "HEAD")
        git.clean.assert_called_once_with(repo)

    def test_commit_failure_rolls_back_unborn_head(self, publisher, repo, git):
        git.commit.side_effect = GitCommandError(["commit"], repo, 1, stderr="hook failed")
        git.head_commit.return_value = None

        with pytest.raises(PublishError):
            publisher.publish(_result("A"))

        git.run.assert_called_once_with(["read-tree", "--empty"], cwd=repo)
        git.push.assert_not_called()

    def test_custom_publish_directory(self, repo, git):
        publisher = Publisher(repo, "/upstream.git", git_client=git, publish_directory="schemas/")

        publisher.publish(_result("A"))

        assert (repo / "schemas" / "A.thrift").exists()
        assert not (repo / "idl").exists()


class TestRepositoryLock:
    """Every write to a working repository goes through one lock per path."""

    def test_publishers_on_the_same_path_share_a_lock(self, tmp_path, repo, git):
        first = Publisher(repo, "/upstream.git", git_client=git)
        second = Publisher(tmp_path / "elsewhere" / ".." / "registry", "/upstream.git", git_client=git)

        assert first.locked() is second.locked()
        assert first.locked() is not Publisher(tmp_path / "other", "/upstream.git", git_client=git).locked()

    def test_prepare_waits_for_the_lock(self, publisher, git):
        done = threading.Event()

        def prepare():
            publisher.prepare()
            done.set()

        worker = threading.Thread(target=prepare)
        with publisher.locked():
            worker.start()
            assert not done.wait(0.2)
            git.fetch.assert_not_called()
            git.clean.assert_not_called()
        worker.join(timeout=5)

        assert done.is_set()
        git.fetch.assert_called_once()

    def test_lock_is_reentrant_for_the_holder(self, publisher, git):
        with publisher.locked():
            publisher.prepare()
            outcome = publisher.publish(_result("A"))

        assert outcome.committed

    def test_concurrent_publishes_are_serialised(self, repo, git):
        meter = ConcurrencyMeter()
        git.add_all.side_effect = meter.wrap()
        publishers = [Publisher(repo, "/upstream.git", git_client=git) for _ in range(3)]

        with ThreadPoolExecutor(max_workers=3) as pool:
            outcomes = list(pool.map(lambda p: p.publish(_result("A")), publishers))

        assert meter.peak == 1
        assert all(o.committed for o in outcomes)
