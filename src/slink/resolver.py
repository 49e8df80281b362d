"""Map a user-supplied file reference to exactly one file record.

A reference is one of:
  - a canonical UUID (``8-4-4-4-12`` hex, any case): direct lookup;
  - ``name``: the only file with that display name;
  - ``name/N``: the N-th (1-based) file with that name, oldest first.

Ambiguity is an expected outcome, so ``resolve`` returns a tagged result
(``Resolved`` / ``Ambiguous`` / ``NotFound``).  ``resolve_or_raise`` turns
the non-resolved variants into exceptions for the command line.

Age order is ``(added_at, uuid)`` ascending so an index shown once keeps
pointing at the same file for the same store state.
"""

from __future__ import annotations

import uuid as uuid_mod
from dataclasses import dataclass
from typing import Union

from .errors import AmbiguityError, NotFoundError
from .logging import get_logger
from .model import FileRecord, RecordStore, file_age_order

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Reference:
    raw: str
    uuid: str | None = None
    name: str | None = None
    index: int | None = None
    index_text: str | None = None

    @property
    def has_index(self) -> bool:
        return self.index_text is not None


@dataclass(frozen=True, slots=True)
class Resolved:
    record: FileRecord


@dataclass(frozen=True, slots=True)
class Ambiguous:
    reference: str
    reason: str
    candidates: tuple[tuple[int, FileRecord], ...]


@dataclass(frozen=True, slots=True)
class NotFound:
    reference: str


Resolution = Union[Resolved, Ambiguous, NotFound]


def canonical_uuid(text: str) -> str | None:
    """Return the lower-case canonical UUID if ``text`` is one, else None."""
    if len(text) != 36:
        return None
    try:
        parsed = uuid_mod.UUID(text)
    except ValueError:
        return None
    canonical = str(parsed)
    return canonical if canonical == text.lower() else None


def _parse_index(text: str) -> int | None:
    if not text.isascii() or not text.isdigit():
        return None
    value = int(text)
    return value if value >= 1 else None


def parse_reference(reference: str) -> Reference:
    as_uuid = canonical_uuid(reference)
    if as_uuid is not None:
        return Reference(raw=reference, uuid=as_uuid)

    if '/' in reference:
        name, index_text = reference.rsplit('/', 1)
        return Reference(
            raw=reference,
            name=name,
            index=_parse_index(index_text),
            index_text=index_text,
        )
    return Reference(raw=reference, name=reference)


def number_candidates(
    records: list[FileRecord],
) -> tuple[tuple[int, FileRecord], ...]:
    ordered = sorted(records, key=file_age_order)
    return tuple(enumerate(ordered, start=1))


def resolve(reference: str, store: RecordStore) -> Resolution:
    """Resolve ``reference`` against ``store``."""
    ref = parse_reference(reference)

    if ref.uuid is not None:
        record = store.get_file(ref.uuid)
        return Resolved(record) if record is not None else NotFound(reference)

    candidates = number_candidates(store.list_files_by_name(ref.name or ''))
    if not candidates:
        return NotFound(reference)

    count = len(candidates)
    if not ref.has_index:
        if count == 1:
            return Resolved(candidates[0][1])
        return Ambiguous(
            reference=reference,
            reason=(
                f'{count} files named {ref.name!r}; '
                f'specify one as {ref.name}/1..{ref.name}/{count}'
            ),
            candidates=candidates,
        )

    if ref.index is None or ref.index > count:
        valid = '1' if count == 1 else f'1..{count}'
        return Ambiguous(
            reference=reference,
            reason=f'index {ref.index_text!r} out of range (valid: {valid})',
            candidates=candidates,
        )
    return Resolved(candidates[ref.index - 1][1])


def resolve_or_raise(reference: str, store: RecordStore) -> FileRecord:
    """Resolve ``reference`` or raise NotFoundError / AmbiguityError."""
    result = resolve(reference, store)
    if isinstance(result, Resolved):
        return result.record
    if isinstance(result, Ambiguous):
        logger.info(
            'reference_ambiguous',
            reference=reference,
            candidates=len(result.candidates),
        )
        raise AmbiguityError(reference, result.reason, result.candidates)
    raise NotFoundError(reference)
