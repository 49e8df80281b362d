"""On-disk layout under the base directory.

    base_dir/UUID/filename   the managed copy of a file
    base_dir/TOKEN -> UUID   relative symlink, one per share token

A web server that follows symlinks then serves ``base_url/TOKEN/filename``.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from .errors import StorageError
from .logging import get_logger, redact_token

logger = get_logger(__name__)

DIR_MODE = 0o750
FILE_MODE = 0o640


class LocalStorage:
    """Publishes managed files and share links under ``root``."""

    def __init__(
        self,
        root: Path | str,
        *,
        web_user: str = '',
        web_group: str = '',
    ) -> None:
        self.root = Path(root).resolve()
        self.web_user = web_user
        self.web_group = web_group

    def _abs(self, name: str) -> Path:
        """Resolve a single path component under root.

        Raises:
            StorageError: If the name is empty or escapes the root directory
        """
        if not name or name in ('.', '..') or '/' in name or '\0' in name:
            raise StorageError(f'invalid path component: {name!r}')
        path = self.root / name
        if path.parent != self.root:
            raise StorageError(f'path outside of base directory: {name}')
        return path

    def file_dir(self, file_uuid: str) -> Path:
        return self._abs(file_uuid)

    def link_path(self, token: str) -> Path:
        return self._abs(token)

    def _chown(self, path: Path) -> None:
        if not (self.web_user and self.web_group):
            return
        try:
            shutil.chown(path, user=self.web_user, group=self.web_group)
        except (LookupError, OSError) as exc:
            raise StorageError(
                f'failed to set owner {self.web_user}:{self.web_group} '
                f'on {path}: {exc}'
            ) from exc

    def place(self, source: Path, file_uuid: str, filename: str) -> Path:
        """Copy ``source`` to ``root/file_uuid/filename`` and set permissions."""
        target_dir = self.file_dir(file_uuid)
        target = target_dir / self._abs(filename).name
        try:
            target_dir.mkdir(mode=DIR_MODE)
        except OSError as exc:
            raise StorageError(f'failed to create {target_dir}: {exc}') from exc
        try:
            shutil.copyfile(source, target)
            os.chmod(target, FILE_MODE)
            os.chmod(target_dir, DIR_MODE)
        except OSError as exc:
            shutil.rmtree(target_dir, ignore_errors=True)
            raise StorageError(f'failed to copy {source} to {target}: {exc}') from exc
        self._chown(target)
        self._chown(target_dir)
        return target

    def link_target(self, token: str) -> str | None:
        """UUID that ``root/token`` points at, or None if there is no link."""
        link = self.link_path(token)
        if not link.is_symlink():
            return None
        try:
            return Path(os.readlink(link)).name
        except OSError:
            return None

    def is_claimed(self, token: str, file_uuid: str) -> bool:
        """True if ``root/token`` is in use by anything other than ``file_uuid``.

        Share links of all files live in one directory, so a token that is
        new for one file can still be a live link of another.
        """
        target = self.link_target(token)
        if target is None:
            return self.link_path(token).exists()
        return target != file_uuid

    def publish(self, token: str, file_uuid: str) -> Path:
        """Point ``root/token`` at the file directory.

        An existing link to the same file is recreated; a link to any
        other file is never replaced.

        Raises:
            StorageError: the token path belongs to another file or is not a link
        """
        link = self.link_path(token)
        if self.is_claimed(token, file_uuid):
            raise StorageError(f'{link} is already in use by another file')
        try:
            if link.is_symlink():
                link.unlink()
            link.symlink_to(file_uuid)
        except OSError as exc:
            raise StorageError(f'failed to create link {link}: {exc}') from exc
        logger.debug('link_published', token=redact_token(token), file_uuid=file_uuid)
        return link

    def unpublish(self, token: str, file_uuid: str) -> bool:
        """Remove the link for ``token`` if it points at ``file_uuid``.

        Missing links and links owned by another file are left alone.
        """
        link = self.link_path(token)
        if self.link_target(token) != file_uuid:
            return False
        try:
            link.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f'failed to remove link {link}: {exc}') from exc
        return True

    def links_to(self, file_uuid: str) -> list[Path]:
        """Every share link in root pointing at ``file_uuid``."""
        found: list[Path] = []
        for entry in self.root.iterdir():
            if entry.is_symlink() and Path(os.readlink(entry)).name == file_uuid:
                found.append(entry)
        return sorted(found)

    def remove(self, file_uuid: str) -> None:
        """Delete all links to the file and its directory."""
        try:
            for link in self.links_to(file_uuid):
                link.unlink()
            target_dir = self.file_dir(file_uuid)
            if target_dir.exists():
                shutil.rmtree(target_dir)
        except OSError as exc:
            raise StorageError(f'failed to remove file {file_uuid}: {exc}') from exc
