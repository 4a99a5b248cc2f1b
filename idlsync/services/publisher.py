"""
Publishing service for idlsync.

Writes an aggregation into the working repository, commits it and pushes
it to the upstream. The working repository is paired with the upstream by
prepare(), which also discards anything an interrupted run left behind.
"""

import logging
import shutil
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Optional

from ..domain.result import META_FILENAME, AggregationResult, ProvenanceRecord, PublishOutcome
from ..exit_codes import PublishError
from ..infra.file_store import FileStore
from ..infra.git_client import GitClient, GitCommandError

logger = logging.getLogger(__name__)

# One writer per working repository in this process. Reentrant so a run can
# hold it from prepare() through publish().
_repo_locks: Dict[str, "threading.RLock"] = {}
_repo_locks_guard = threading.Lock()


def _publish_lock(path: Path) -> "threading.RLock":
    key = str(path.resolve())
    with _repo_locks_guard:
        if key not in _repo_locks:
            _repo_locks[key] = threading.RLock()
        return _repo_locks[key]


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')


class Publisher:
    """
    Commits aggregated IDL trees to the working repository and pushes them.

    Example:
        publisher = Publisher(Path("registry"), "git@host:org/idl.git")
        publisher.prepare()
        outcome = publisher.publish(result)
        print(outcome.commit, outcome.committed, outcome.pushed)
    """

    def __init__(
        self,
        repository_folder: Path,
        upstream: str,
        branch: str = "master",
        git_client: Optional[GitClient] = None,
        publish_directory: str = "idl",
        commit_message: str = "Update IDL registry",
        allow_empty_commits: bool = False,
        push: bool = True,
        clock: Callable[[], str] = _utc_timestamp
    ):
        """
        Initialize Publisher.

        Args:
            repository_folder: Local working repository
            upstream: Location the working repository pushes to
            branch: Upstream branch receiving the snapshots
            git_client: GitClient instance (creates new if None)
            publish_directory: Directory (relative to the repo root) holding the IDL files
            commit_message: Subject prefix; a UTC timestamp (microseconds) is appended
            allow_empty_commits: Commit even when nothing changed
            push: Push after committing
            clock: Returns the timestamp used in commit subjects
        """
        self.path = Path(repository_folder)
        self.upstream = upstream
        self.branch = branch
        self.git = git_client or GitClient()
        self.publish_directory = publish_directory.strip('/')
        self.commit_message = commit_message
        self.allow_empty_commits = allow_empty_commits
        self.push = push
        self.clock = clock
        self.meta = FileStore(self.path / META_FILENAME)

    def locked(self) -> "threading.RLock":
        """Lock serialising every write to this working repository."""
        return _publish_lock(self.path)

    @property
    def tracking_ref(self) -> str:
        return f"origin/{self.branch}"

    def prepare(self) -> None:
        """
        Pair the working repository with the upstream and reset it to the
        upstream branch tip.

        Raises:
            PublishError: If the folder is unusable or the upstream unreachable
        """
        with self.locked():
            try:
                if self.git.is_git_repo(self.path):
                    self._refresh()
                elif self.path.exists() and any(self.path.iterdir()):
                    raise PublishError(
                        f"Repository folder {self.path} exists and is not a git repository"
                    )
                else:
                    self._clone()
            except GitCommandError as e:
                raise PublishError(
                    f"Cannot prepare working repository {self.path}: {e}",
                    stdout=e.stdout, stderr=e.stderr
                ) from e
            except OSError as e:
                raise PublishError(f"Cannot prepare working repository {self.path}: {e}") from e

            self.meta.invalidate_cache()

    def previous_provenance(self) -> ProvenanceRecord:
        """The provenance record of the last publish (empty if none)."""
        return ProvenanceRecord.from_dict(self.meta.read())

    def publish(
        self,
        result: AggregationResult,
        provenance: Optional[ProvenanceRecord] = None
    ) -> PublishOutcome:
        """
        Replace the published tree with ``result``, commit and push.

        Files that are not part of ``result`` are pruned from the publish
        directory. With nothing to commit (and empty commits disabled) no
        commit is created and nothing is pushed.

        Raises:
            PublishError: If writing, committing or pushing fails
        """
        provenance = provenance or result.provenance

        with self.locked():
            try:
                self._write_tree(result, provenance)
                self.git.add_all(self.path)

                changed = self.git.has_staged_changes(self.path)
                if not changed and not self.allow_empty_commits:
                    logger.info("Published tree unchanged; nothing to commit")
                    return PublishOutcome(commit=self.git.head_commit(self.path))

                commit = self.git.commit(
                    self.path, self._message(provenance), allow_empty=not changed
                )
                logger.info(f"Committed {commit[:12]} ({len(result.files)} file(s))")

                if not self.push:
                    return PublishOutcome(commit=commit, committed=True)

                self.git.push(self.path, "origin", f"HEAD:refs/heads/{self.branch}")
                logger.info(f"Pushed {commit[:12]} to {self.upstream} ({self.branch})")
                return PublishOutcome(commit=commit, committed=True, pushed=True)

            except GitCommandError as e:
                self._rollback()
                raise PublishError(f"Publish failed: {e}", stdout=e.stdout, stderr=e.stderr) from e
            except OSError as e:
                self._rollback()
                raise PublishError(f"Publish failed: {e}") from e

    # ------------------------------------------------------------------
    # Helpers

    def _clone(self) -> None:
        logger.info(f"Cloning upstream {self.upstream} into {self.path}")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.git.clone(self.upstream, self.path)
        if self.git.ref_exists(self.path, self.tracking_ref):
            self.git.checkout_branch(self.path, self.branch, self.tracking_ref)
        else:
            # empty upstream: first publish creates the branch
            self.git.run(["symbolic-ref", "HEAD", f"refs/heads/{self.branch}"], cwd=self.path)

    def _refresh(self) -> None:
        self.git.set_remote(self.path, self.upstream, "origin")
        self.git.fetch(self.path, "origin")
        if self.git.ref_exists(self.path, self.tracking_ref):
            self.git.checkout_branch(self.path, self.branch, self.tracking_ref)
        else:
            self._reset_index()
        self.git.clean(self.path)

    def _reset_index(self) -> None:
        if self.git.head_commit(self.path) is not None:
            self.git.reset_hard(self.path, "HEAD")
        else:
            self.git.run(["read-tree", "--empty"], cwd=self.path)

    def _rollback(self) -> None:
        """Leave the repository clean so the next run can retry."""
        try:
            self._reset_index()
            self.git.clean(self.path)
        except GitCommandError as e:
            logger.warning(f"Could not reset {self.path} after failed publish: {e}")

    def _write_tree(self, result: AggregationResult, provenance: ProvenanceRecord) -> None:
        target = self.path / self.publish_directory
        if target.exists():
            shutil.rmtree(target)
        target.mkdir(parents=True)

        for public_name, extracted in result.files.items():
            dest = target / public_name
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(extracted.content)

        self.meta.write(provenance.to_dict())

    def _message(self, provenance: ProvenanceRecord) -> str:
        lines = [f"{self.commit_message} {self.clock()}", ""]
        for name, entry in sorted(provenance.remotes.items()):
            lines.append(f"{name}: {entry.commit}")
        for name in sorted(provenance.stale):
            lines.append(f"{name}: stale")
        return "\n".join(lines).rstrip() + "\n"
