"""Per-file token uniqueness with bounded retry.

``mint_unique_token`` asks the codec for a candidate and retries with the
next salt while the candidate is already part of the file's history.  An
optional ``claim`` callback performs the check-then-insert step; a
``False`` return (store-level conflict from a concurrent invocation) is
treated exactly like a collision and consumes the same retry budget.

Uniqueness is scoped per file: URLs have the shape
``base_url/token/filename`` so a token only needs to be unique among the
shares of one file.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable

from .codec import generate_token, validate_hash_bytes
from .errors import TokenExhaustionError
from .logging import get_logger, redact_token

logger = get_logger(__name__)

MAX_MINT_ATTEMPTS = 5

ClaimFn = Callable[[str, int], bool]


@dataclass(frozen=True, slots=True)
class MintedToken:
    token: str
    salt: int
    attempts: int


def mint_unique_token(
    *,
    secret: bytes,
    file_uuid: str,
    recipient: str,
    hash_bytes: int,
    existing_tokens: Iterable[str],
    first_salt: int = 0,
    max_attempts: int = MAX_MINT_ATTEMPTS,
    claim: ClaimFn | None = None,
) -> MintedToken:
    """Mint a token not yet issued for ``file_uuid``.

    Args:
        existing_tokens: Every token ever issued for the file.
        first_salt: Salt of the first attempt; later attempts count up.
        claim: Persists the candidate; returns False on a store conflict.

    Raises:
        ConfigError: invalid ``hash_bytes`` or empty secret.
        TokenExhaustionError: ``max_attempts`` candidates all collided.
    """
    validate_hash_bytes(hash_bytes)
    if max_attempts < 1:
        raise ValueError('max_attempts must be >= 1')
    taken = set(existing_tokens)

    for attempt in range(max_attempts):
        salt = first_salt + attempt
        token = generate_token(secret, file_uuid, recipient, salt, hash_bytes)
        if token not in taken and (claim is None or claim(token, salt)):
            return MintedToken(token=token, salt=salt, attempts=attempt + 1)

        taken.add(token)
        logger.info(
            'token_collision',
            file_uuid=file_uuid,
            token=redact_token(token),
            salt=salt,
            attempt=attempt + 1,
        )

    logger.error(
        'token_exhausted',
        file_uuid=file_uuid,
        attempts=max_attempts,
        hash_bytes=hash_bytes,
    )
    raise TokenExhaustionError(file_uuid, max_attempts, hash_bytes)
