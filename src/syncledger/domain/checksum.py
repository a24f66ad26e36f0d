"""Deterministic fingerprints and field-level diffs."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from syncledger.domain.codec import to_jsonable
from syncledger.domain.model import ChangeType

if TYPE_CHECKING:
    from collections.abc import Mapping

CHECKSUM_DIGEST_SIZE: Final[int] = 8


def canonical_json(value: object) -> str:
    """Serialize ``value`` with sorted keys so equal content yields equal text."""

    return json.dumps(
        to_jsonable(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def checksum(value: object) -> str:
    """Return a 64-bit, key-order independent fingerprint of ``value``."""

    digest = hashlib.blake2b(
        canonical_json(value).encode("utf-8"),
        digest_size=CHECKSUM_DIGEST_SIZE,
    )
    return digest.hexdigest()


def same_value(left: object, right: object) -> bool:
    return checksum(left) == checksum(right)


@dataclass(frozen=True, slots=True)
class FieldDiff:
    field: str
    before: object
    after: object
    change_type: ChangeType


def change_type_for(before: object, after: object) -> ChangeType:
    if before is None:
        return ChangeType.ADDED
    if after is None:
        return ChangeType.REMOVED
    return ChangeType.MODIFIED


def diff_fields(
    before: Mapping[str, object] | None,
    after: Mapping[str, object] | None,
) -> list[FieldDiff]:
    """Compare two field mappings, returning one entry per differing field.

    Fields are visited in sorted order over the union of both key sets; a field
    missing on one side compares as ``None``.
    """

    before_fields = before or {}
    after_fields = after or {}
    diffs: list[FieldDiff] = []
    for name in sorted(set(before_fields) | set(after_fields)):
        old = before_fields.get(name)
        new = after_fields.get(name)
        if same_value(old, new):
            continue
        diffs.append(FieldDiff(name, old, new, change_type_for(old, new)))
    return diffs


def changed_field_names(
    before: Mapping[str, object] | None,
    after: Mapping[str, object] | None,
) -> set[str]:
    return {diff.field for diff in diff_fields(before, after)}
