"""Live mirrors of remote git repositories.

Each remote referenced by a chart source is mirrored once into a bare
repository and polled for new commits. Polling and on-demand refreshes of a
mirror share one fetch path serialized by a per-mirror lock. A refresh that
changes any ref signals the mirror as changed; changes are coalesced into a
set of mirror ids handed to a single consumer, so a notification is never
lost and never blocks the mirror.

A mirror starts as `not-ready`, becomes `ready` after the first successful
clone and moves to `error` when a fetch fails. The last error is retained
and the fetch is retried on the next poll.
"""

import asyncio
from collections.abc import Callable
from enum import StrEnum
import logging
from pathlib import Path
from shutil import rmtree

import git

from ..exceptions import GitError
from ..task import TaskService, get_task_service
from .cache import SourceCache
from .export import Export

__all__ = [
    "Mirror",
    "Mirrors",
    "MirrorStatus",
]

_LOGGER = logging.getLogger(__name__)

_GIT_ENV = {"GIT_TERMINAL_PROMPT": "0"}

_GIT_ERRORS = (
    git.GitCommandError,
    git.InvalidGitRepositoryError,
    git.NoSuchPathError,
    OSError,
)


class MirrorStatus(StrEnum):
    """The state of a git mirror."""

    NOT_READY = "not-ready"
    READY = "ready"
    ERROR = "error"


class Mirror:
    """A bare mirror of a git remote."""

    def __init__(
        self,
        remote: str,
        path: Path,
        poll_interval: float,
        timeout: float,
        on_change: Callable[[str], None],
    ) -> None:
        """Initialize Mirror."""
        self._remote = remote
        self._path = path
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._on_change = on_change
        self._repo: git.Repo | None = None
        self._status = MirrorStatus.NOT_READY
        self._error: Exception | None = None
        self._refs: dict[str, str] = {}
        self._lock = asyncio.Lock()
        self._refresh_requested = asyncio.Event()

    @property
    def mirror_id(self) -> str:
        """The identifier of the mirror, the remote URL."""
        return self._remote

    @property
    def remote(self) -> str:
        """The URL of the mirrored remote."""
        return self._remote

    @property
    def status(self) -> MirrorStatus:
        """The current state of the mirror."""
        return self._status

    @property
    def error(self) -> Exception | None:
        """The error of the last failed refresh."""
        return self._error

    def status_message(self) -> str:
        """Describe the state of the mirror."""
        message = f"git repo {self._remote} is {self._status}"
        if self._error is not None:
            message += f": {self._error}"
        return message

    def request_refresh(self) -> None:
        """Ask the poll loop to refresh now instead of on the next tick."""
        self._refresh_requested.set()

    async def run(self) -> None:
        """Refresh the mirror every poll interval until cancelled."""
        while True:
            self._refresh_requested.clear()
            try:
                await self.refresh()
            except GitError as err:
                _LOGGER.warning("Unable to refresh mirror: %s", err)
            try:
                await asyncio.wait_for(
                    self._refresh_requested.wait(), self._poll_interval
                )
            except asyncio.TimeoutError:
                pass

    async def refresh(self, timeout: float | None = None) -> None:
        """Clone or fetch the remote, signalling a change when refs moved."""
        async with self._lock:
            try:
                changed = await asyncio.to_thread(
                    self._sync, timeout or self._timeout
                )
            except _GIT_ERRORS as err:
                self._status = MirrorStatus.ERROR
                self._error = err
                raise GitError(
                    f"Failed to fetch git repo {self._remote}: {err}"
                ) from err
            if self._status != MirrorStatus.READY:
                _LOGGER.info("Mirror of %s is ready", self._remote)
            self._status = MirrorStatus.READY
            self._error = None
        if changed:
            _LOGGER.debug("Mirror of %s changed", self._remote)
            self._on_change(self._remote)

    def _open_or_clone(self, timeout: float) -> git.Repo:
        """Open a mirror left on disk or clone a new one."""
        if self._path.exists():
            try:
                repo = git.Repo(self._path)
            except (git.InvalidGitRepositoryError, git.NoSuchPathError):
                _LOGGER.debug("Removing invalid mirror at %s", self._path)
                rmtree(self._path, ignore_errors=True)
            else:
                _LOGGER.debug("Reusing mirror of %s at %s", self._remote, self._path)
                repo.git.update_environment(**_GIT_ENV)
                repo.git.remote("update", "--prune", kill_after_timeout=timeout)
                return repo
        _LOGGER.debug("Cloning mirror of %s to %s", self._remote, self._path)
        cmd = git.Git()
        cmd.update_environment(**_GIT_ENV)
        try:
            cmd.clone(
                "--mirror", self._remote, str(self._path), kill_after_timeout=timeout
            )
        except git.GitCommandError:
            rmtree(self._path, ignore_errors=True)
            raise
        repo = git.Repo(self._path)
        repo.git.update_environment(**_GIT_ENV)
        return repo

    def _sync(self, timeout: float) -> bool:
        """Bring the bare mirror up to date, returning True if any ref moved."""
        if self._repo is None:
            self._repo = self._open_or_clone(timeout)
        else:
            self._repo.git.remote("update", "--prune", kill_after_timeout=timeout)
        refs = {}
        out = self._repo.git.for_each_ref("--format=%(refname) %(objectname)")
        for line in out.splitlines():
            name, _, sha = line.partition(" ")
            refs[name] = sha
        changed = refs != self._refs
        self._refs = refs
        return changed

    def _ready_repo(self) -> git.Repo:
        if self._repo is None:
            raise GitError(f"Mirror of {self._remote} has not been cloned")
        return self._repo

    async def revision(self, ref: str) -> str:
        """Return the commit the ref points at."""
        repo = self._ready_repo()
        try:
            out = await asyncio.to_thread(
                repo.git.rev_parse, "--verify", f"{ref}^{{commit}}"
            )
        except git.GitCommandError as err:
            raise GitError(
                f"Unable to resolve ref '{ref}' in {self._remote}: {err}"
            ) from err
        return out.strip()

    async def commits_between(self, old: str, new: str, path: str) -> list[str]:
        """Return the commits after old up to new that touch the path."""
        repo = self._ready_repo()
        try:
            out = await asyncio.to_thread(
                repo.git.rev_list, f"{old}..{new}", "--", path or "."
            )
        except git.GitCommandError as err:
            raise GitError(
                f"Unable to list commits {old}..{new} in {self._remote}: {err}"
            ) from err
        return out.split()

    async def export(self, revision: str, dest: Path) -> Export:
        """Check out a working copy of the revision into the directory."""
        self._ready_repo()

        def _export() -> None:
            repo = git.Repo.clone_from(str(self._path), str(dest), no_checkout=True)
            repo.git.checkout(revision)
            repo.close()

        _LOGGER.debug("Exporting %s at %s to %s", self._remote, revision, dest)
        try:
            await asyncio.to_thread(_export)
        except _GIT_ERRORS as err:
            rmtree(dest, ignore_errors=True)
            raise GitError(
                f"Unable to export {self._remote} at {revision}: {err}"
            ) from err
        return Export(dest, revision)

    def close(self) -> None:
        """Release the resources held by the repository object."""
        if self._repo is not None:
            self._repo.close()
            self._repo = None


class Mirrors:
    """Manages the mirrors of all git remotes in use."""

    def __init__(
        self, cache: SourceCache, task_service: TaskService | None = None
    ) -> None:
        """Initialize Mirrors."""
        self._cache = cache
        self._task_service = task_service or get_task_service()
        self._mirrors: dict[str, Mirror] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._pending: set[str] = set()
        self._changed = asyncio.Event()

    def ensure(self, remote: str, poll_interval: float, timeout: float) -> bool:
        """Start mirroring the remote, returning True if it already was."""
        if remote in self._mirrors:
            return True
        _LOGGER.info("Starting mirror of %s", remote)
        mirror = Mirror(
            remote,
            self._cache.mirror_path(remote),
            poll_interval,
            timeout,
            self._notify,
        )
        self._mirrors[remote] = mirror
        self._tasks[remote] = self._task_service.create_background_task(
            mirror.run(), name=f"mirror-{remote}"
        )
        return False

    def get(self, mirror_id: str) -> Mirror | None:
        """Return the mirror or None if the remote is not mirrored."""
        return self._mirrors.get(mirror_id)

    def __contains__(self, mirror_id: str) -> bool:
        """Whether the remote is mirrored."""
        return mirror_id in self._mirrors

    async def stop(self, mirror_id: str) -> None:
        """Stop mirroring the remote.

        The bare repository is kept on disk and reused if the remote is
        mirrored again.
        """
        if (mirror := self._mirrors.pop(mirror_id, None)) is None:
            return
        _LOGGER.info("Stopping mirror of %s", mirror_id)
        if (task := self._tasks.pop(mirror_id, None)) is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        mirror.close()
        self._pending.discard(mirror_id)

    async def stop_all(self) -> None:
        """Stop all mirrors."""
        for mirror_id in list(self._mirrors):
            await self.stop(mirror_id)

    async def refresh_all(self, timeout: float | None = None) -> list[GitError]:
        """Refresh all mirrors now, returning the errors encountered."""
        mirrors = list(self._mirrors.values())
        results = await asyncio.gather(
            *(mirror.refresh(timeout) for mirror in mirrors), return_exceptions=True
        )
        errors = []
        for result in results:
            if isinstance(result, GitError):
                errors.append(result)
            elif isinstance(result, BaseException):
                raise result
        return errors

    def _notify(self, mirror_id: str) -> None:
        self._pending.add(mirror_id)
        self._changed.set()

    async def changes(self) -> set[str]:
        """Wait for mirrors to change and return their ids."""
        while not self._pending:
            self._changed.clear()
            await self._changed.wait()
        changed, self._pending = self._pending, set()
        return changed
