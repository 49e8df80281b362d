"""Share lifecycle: create, list and soft-remove shares.

Shares move one way, Active -> Removed.  A removed share keeps its token
in the file's history so it is never reissued.

The uniqueness check and the insert run as one claim step: the store's
(file_uuid, token) constraint is the backstop against a concurrent
invocation, and a conflict there is retried like any other collision.
A token whose link in the base directory belongs to another file is a
collision too.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable
from urllib.parse import quote

from .config import SlinkConfig
from .errors import InvalidShareTransition, ShareConflictError, StorageError
from .guard import MAX_MINT_ATTEMPTS, mint_unique_token
from .logging import get_logger, redact_token
from .model import FileRecord, RecordStore, ShareRecord, ShareStatus, utcnow
from .storage import LocalStorage

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def share_url(base_url: str, token: str, filename: str) -> str:
    """``{base_url}/{token}/{url-encoded filename}``."""
    return f'{base_url.rstrip("/")}/{token}/{quote(filename, safe="")}'


class ShareLifecycle:
    """Creates and removes shares for managed files."""

    def __init__(
        self,
        store: RecordStore,
        config: SlinkConfig,
        *,
        storage: LocalStorage | None = None,
        clock: Clock = utcnow,
        max_attempts: int = MAX_MINT_ATTEMPTS,
    ) -> None:
        self.store = store
        self.config = config
        self.storage = storage
        self.clock = clock
        self.max_attempts = max_attempts

    def url_for(self, file: FileRecord, share: ShareRecord) -> str:
        return share_url(self.config.base_url, share.token, file.filename)

    def list_shares(self, file: FileRecord) -> list[ShareRecord]:
        """All shares of ``file`` (both statuses), oldest first."""
        return self.store.list_shares_by_file(file.uuid)

    def create_share(self, file: FileRecord, recipient: str) -> ShareRecord:
        """Mint a token for ``recipient`` and persist an Active share.

        Raises:
            ValueError: empty recipient.
            TokenExhaustionError: every candidate collided.
            StorageError: the link could not be created; the share is
                left Removed so its token stays in the history.
        """
        if not recipient:
            raise ValueError('recipient must not be empty')

        existing = [s.token for s in self.store.list_shares_by_file(file.uuid)]
        generation = self.store.count_shares_for(file.uuid, recipient)
        created: list[ShareRecord] = []

        def claim(token: str, salt: int) -> bool:
            # Links of every file share one directory.
            if self.storage is not None and self.storage.is_claimed(token, file.uuid):
                return False
            record = ShareRecord(
                file_uuid=file.uuid,
                recipient=recipient,
                token=token,
                salt=salt,
                status=ShareStatus.ACTIVE,
                created_at=self.clock(),
            )
            try:
                created.append(self.store.insert_share(record))
            except ShareConflictError:
                return False
            return True

        minted = mint_unique_token(
            secret=self.config.secret,
            file_uuid=file.uuid,
            recipient=recipient,
            hash_bytes=self.config.hash_bytes,
            existing_tokens=existing,
            first_salt=generation,
            max_attempts=self.max_attempts,
            claim=claim,
        )
        share = created[-1]

        if self.storage is not None:
            try:
                self.storage.publish(share.token, file.uuid)
            except StorageError:
                self._retire(file, [share], self.clock(), unpublish=False)
                logger.warning(
                    'share_publish_failed',
                    file_uuid=file.uuid,
                    recipient=recipient,
                    token=redact_token(share.token),
                )
                raise

        logger.info(
            'share_created',
            file_uuid=file.uuid,
            recipient=recipient,
            token=redact_token(share.token),
            salt=minted.salt,
            attempts=minted.attempts,
        )
        return share

    def _retire(
        self,
        file: FileRecord,
        shares: list[ShareRecord],
        removed_at: datetime,
        *,
        unpublish: bool = True,
    ) -> int:
        """Move ``shares`` to Removed, then drop their links.

        A share another invocation already removed is skipped and not
        counted.
        """
        retired: list[ShareRecord] = []
        for share in shares:
            try:
                updated = self.store.update_share_status(
                    file.uuid, share.token, ShareStatus.REMOVED, removed_at,
                )
            except InvalidShareTransition:
                updated = None
            if updated is not None:
                retired.append(updated)

        if unpublish and self.storage is not None:
            for share in retired:
                self.storage.unpublish(share.token, file.uuid)
        return len(retired)

    def remove_share(self, file: FileRecord, recipient: str) -> int:
        """Remove every active share of ``file`` for ``recipient``.

        Returns the number of shares transitioned; 0 means nothing was
        active for that recipient.
        """
        active = [
            s
            for s in self.store.list_shares_by_file(file.uuid)
            if s.recipient == recipient and s.is_active
        ]
        if not active:
            return 0

        count = self._retire(file, active, self.clock())
        logger.info(
            'share_removed',
            file_uuid=file.uuid,
            recipient=recipient,
            count=count,
        )
        return count

    def remove_all(self, file: FileRecord, *, unpublish: bool = True) -> int:
        """Mark every active share of ``file`` removed."""
        active = [s for s in self.store.list_shares_by_file(file.uuid) if s.is_active]
        return self._retire(file, active, self.clock(), unpublish=unpublish)
