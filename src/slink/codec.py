"""Share-token derivation.

A token is a keyed BLAKE2b hash over a domain-separated encoding of
(file UUID, recipient, salt), truncated to ``hash_bytes`` and encoded as
padding-free URL-safe base64.

Properties:
  - Deterministic: identical inputs always yield the identical token.
  - Changing any input changes the token with overwhelming probability.
  - No global uniqueness by itself; see ``slink.guard``.
"""

from __future__ import annotations

import base64
import hashlib
import re

from .errors import ConfigError, EncodingError

MIN_HASH_BYTES = 2
MAX_HASH_BYTES = 32
DEFAULT_HASH_BYTES = 7  # 56 bits.

_DIGEST_SIZE = 32
_KEY_PERSON = b'slink-key'
_SHARE_PERSON = b'slink-share'
_DOMAIN_TAG = b'slink/share/v1'
_URL_SAFE = re.compile(r'[A-Za-z0-9_-]+')


def validate_hash_bytes(hash_bytes: object) -> int:
    """Return ``hash_bytes`` if it is an int in [2, 32], else raise ConfigError."""
    if isinstance(hash_bytes, bool) or not isinstance(hash_bytes, int):
        raise ConfigError(
            f'hash_bytes must be an integer, got {type(hash_bytes).__name__}'
        )
    if not MIN_HASH_BYTES <= hash_bytes <= MAX_HASH_BYTES:
        raise ConfigError(
            f'hash_bytes must be between {MIN_HASH_BYTES} and '
            f'{MAX_HASH_BYTES}, got {hash_bytes}'
        )
    return hash_bytes


def token_length(hash_bytes: int) -> int:
    """Characters in an encoded token of ``hash_bytes`` bytes."""
    return -(-4 * hash_bytes // 3)


def derive_key(secret: bytes) -> bytes:
    if not secret:
        raise ConfigError('hash secret is missing or empty')
    return hashlib.blake2b(
        secret, digest_size=_DIGEST_SIZE, person=_KEY_PERSON,
    ).digest()


def _field(value: bytes) -> bytes:
    return len(value).to_bytes(8, 'big') + value


def share_message(file_uuid: str, recipient: str, salt: int) -> bytes:
    if salt < 0:
        raise ValueError('salt must be >= 0')
    return b''.join((
        _DOMAIN_TAG,
        _field(file_uuid.encode('utf-8')),
        _field(recipient.encode('utf-8')),
        _field(salt.to_bytes(8, 'big')),
    ))


def encode_token(raw: bytes) -> str:
    """URL-safe base64 without padding."""
    text = base64.urlsafe_b64encode(raw).rstrip(b'=').decode('ascii')
    if not _URL_SAFE.fullmatch(text):
        raise EncodingError(f'token encoding produced unsafe text: {text!r}')
    return text


def generate_token(
    secret: bytes,
    file_uuid: str,
    recipient: str,
    salt: int,
    hash_bytes: int = DEFAULT_HASH_BYTES,
) -> str:
    """Derive the share token for one (file, recipient, salt).

    Raises:
        ConfigError: ``hash_bytes`` outside [2, 32] or empty ``secret``.
    """
    hash_bytes = validate_hash_bytes(hash_bytes)
    digest = hashlib.blake2b(
        share_message(file_uuid, recipient, salt),
        digest_size=_DIGEST_SIZE,
        key=derive_key(secret),
        person=_SHARE_PERSON,
    ).digest()
    return encode_token(digest[:hash_bytes])
