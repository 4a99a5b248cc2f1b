"""
Git client infrastructure for idlsync.

Provides a clean abstraction over git command execution.
All git operations go through this client, making them:
- Easy to mock for testing
- Consistent in error handling
- Isolated from business logic

Unlike a status probe, every operation here mutates a repository, so a
non-zero exit is never swallowed: it is raised as GitCommandError with the
captured output attached.
"""

import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union
import logging

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class GitCommandError(Exception):
    """A git command exited non-zero (or could not be started)."""

    def __init__(
        self,
        args: Sequence[str],
        cwd: PathLike,
        returncode: int,
        stdout: str = "",
        stderr: str = ""
    ):
        self.command = list(args)
        self.cwd = str(cwd)
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        detail = self.stderr.strip() or self.stdout.strip() or f"exit status {returncode}"
        super().__init__(f"git {' '.join(self.command)} failed in {self.cwd}: {detail}")


class GitTimeoutError(GitCommandError):
    """A git command exceeded the configured timeout."""

    def __init__(self, args: Sequence[str], cwd: PathLike, timeout: float):
        self.timeout = timeout
        super().__init__(args, cwd, -1, stderr=f"timed out after {timeout}s")


class GitClient:
    """
    Abstraction over git commands.

    Example:
        client = GitClient(timeout=60)
        client.clone("file:///srv/remotes/A", Path("/tmp/cache/A"), branch="master")
        sha = client.head_commit("/tmp/cache/A")
    """

    def __init__(
        self,
        timeout: Optional[float] = 120,
        user_name: str = "idlsync",
        user_email: str = "idlsync@localhost"
    ):
        """
        Initialize GitClient.

        Args:
            timeout: Command timeout in seconds (None disables the limit)
            user_name: Identity recorded on commits made by this client
            user_email: Identity recorded on commits made by this client
        """
        self.timeout = timeout
        self.user_name = user_name
        self.user_email = user_email

    def run(self, args: Sequence[str], cwd: PathLike) -> Tuple[str, str]:
        """
        Run a single git command.

        Args:
            args: Arguments after ``git`` (e.g. ``["fetch", "origin"]``)
            cwd: Working directory

        Returns:
            Tuple of (stdout, stderr)

        Raises:
            GitCommandError: On non-zero exit or if git cannot be started
            GitTimeoutError: If the command exceeds the timeout
        """
        cmd = ['git'] + list(args)
        logger.debug(f"Running in '{cwd}': {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                cwd=str(cwd),
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Git command timed out: {' '.join(cmd)}")
            raise GitTimeoutError(args, cwd, self.timeout)
        except OSError as e:
            raise GitCommandError(args, cwd, -1, stderr=str(e)) from e

        if result.returncode != 0:
            raise GitCommandError(
                args, cwd, result.returncode,
                stdout=result.stdout, stderr=result.stderr
            )

        return result.stdout, result.stderr

    # ------------------------------------------------------------------
    # Queries

    def is_git_repo(self, path: PathLike) -> bool:
        """Check if path is the top level of a git work tree."""
        if not (Path(path) / ".git").exists():
            return False
        try:
            out, _ = self.run(["rev-parse", "--show-toplevel"], cwd=path)
        except GitCommandError:
            return False
        return Path(out.strip()).resolve() == Path(path).resolve()

    def head_commit(self, path: PathLike) -> Optional[str]:
        """Return the HEAD commit SHA, or None for an unborn branch."""
        try:
            out, _ = self.run(["rev-parse", "--verify", "--quiet", "HEAD"], cwd=path)
        except GitCommandError:
            return None
        return out.strip() or None

    def ref_exists(self, path: PathLike, ref: str) -> bool:
        """Check whether ``ref`` resolves to a commit."""
        try:
            self.run(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], cwd=path)
        except GitCommandError:
            return False
        return True

    def remote_url(self, path: PathLike, remote: str = "origin") -> Optional[str]:
        """
        Get remote URL.

        Returns:
            Remote URL or None if not found
        """
        try:
            out, _ = self.run(["config", "--get", f"remote.{remote}.url"], cwd=path)
        except GitCommandError:
            return None
        return out.strip() or None

    def has_staged_changes(self, path: PathLike) -> bool:
        """True if the index differs from HEAD (or HEAD is unborn and index is non-empty)."""
        out, _ = self.run(["status", "--porcelain"], cwd=path)
        return any(line[:1] not in (" ", "?") for line in out.splitlines() if line)

    # ------------------------------------------------------------------
    # Mutations

    def init(self, path: PathLike, branch: Optional[str] = None) -> None:
        """Create an empty repository at ``path``."""
        Path(path).mkdir(parents=True, exist_ok=True)
        self.run(["init"], cwd=path)
        if branch:
            self.run(["symbolic-ref", "HEAD", f"refs/heads/{branch}"], cwd=path)

    def clone(self, uri: str, dest: PathLike, branch: Optional[str] = None) -> None:
        """Clone ``uri`` into ``dest`` (which must not exist yet)."""
        args = ["clone", "--no-tags"]
        if branch:
            args += ["--branch", branch]
        args += [uri, str(dest)]
        self.run(args, cwd=Path(dest).parent)

    def set_remote(self, path: PathLike, url: str, remote: str = "origin") -> None:
        """Point ``remote`` at ``url``, adding it if missing."""
        if self.remote_url(path, remote) is None:
            self.run(["remote", "add", remote, url], cwd=path)
        else:
            self.run(["remote", "set-url", remote, url], cwd=path)

    def fetch(self, path: PathLike, remote: str = "origin", branch: Optional[str] = None) -> None:
        """Fetch ``branch`` (or all branches) from ``remote`` into remote-tracking refs."""
        args = ["fetch", "--no-tags", "--prune", remote]
        if branch:
            args.append(f"+refs/heads/{branch}:refs/remotes/{remote}/{branch}")
        self.run(args, cwd=path)

    def checkout_branch(self, path: PathLike, branch: str, start_point: str) -> None:
        """Force ``branch`` to ``start_point`` and check it out, discarding local changes."""
        self.run(["checkout", "--force", "-B", branch, start_point], cwd=path)

    def reset_hard(self, path: PathLike, ref: str = "HEAD") -> None:
        self.run(["reset", "--hard", ref], cwd=path)

    def clean(self, path: PathLike) -> None:
        """Remove untracked and ignored files."""
        self.run(["clean", "-fdx"], cwd=path)

    def add_all(self, path: PathLike) -> None:
        self.run(["add", "--all", "."], cwd=path)

    def commit(self, path: PathLike, message: str, allow_empty: bool = False) -> str:
        """
        Commit the index.

        Returns:
            SHA of the new commit
        """
        args: List[str] = [
            "-c", f"user.name={self.user_name}",
            "-c", f"user.email={self.user_email}",
            "commit", "--no-verify", "-m", message,
        ]
        if allow_empty:
            args.append("--allow-empty")
        self.run(args, cwd=path)
        sha = self.head_commit(path)
        if sha is None:
            raise GitCommandError(["rev-parse", "HEAD"], path, -1, stderr="no HEAD after commit")
        return sha

    def push(self, path: PathLike, remote: str = "origin", refspec: str = "HEAD") -> str:
        """
        Push to remote.

        Returns:
            Combined push output (git reports progress on stderr)
        """
        out, err = self.run(["push", remote, refspec], cwd=path)
        return (out + err).strip()
