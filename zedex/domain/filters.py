"""
Stateless queries over an in-memory ExtensionIndex snapshot.

These back the list, update-check and per-id version endpoints. Nothing here
performs I/O.
"""
from __future__ import annotations

import logging
from functools import cmp_to_key
from typing import Callable, Dict, Iterable, List, Optional

from zedex.domain.models import ExtensionIndex, ExtensionRecord
from zedex.domain.versions import compare_versions, in_range

logger = logging.getLogger(__name__)


def _latest_per_id(
    records: Iterable[ExtensionRecord],
    accept: Callable[[ExtensionRecord], bool],
    ids: Optional[set] = None,
) -> Dict[str, ExtensionRecord]:
    """
    Pick the newest accepted record of every id. Among versions that compare
    equal the first one in index order wins.
    """
    latest: Dict[str, ExtensionRecord] = {}
    for record in records:
        if ids is not None and record.id not in ids:
            continue
        if not accept(record):
            continue
        current = latest.get(record.id)
        if current is None or compare_versions(record.version, current.version) > 0:
            latest[record.id] = record
    return latest


def _matches_text(record: ExtensionRecord, needle: str) -> bool:
    return needle in record.name.lower() or needle in (record.description or "").lower()


def list_extensions(
    index: ExtensionIndex,
    filter_text: Optional[str] = None,
    max_schema_version: Optional[int] = None,
    provides: Optional[str] = None,
) -> List[ExtensionRecord]:
    """
    One record per id: the latest version with ``schema_version <= max_schema_version``,
    then narrowed by text filter and capability. Ordered by id.
    """
    latest = _latest_per_id(
        index.data,
        lambda r: max_schema_version is None or r.schema_version <= max_schema_version,
    )

    needle = filter_text.lower() if filter_text else None
    result: List[ExtensionRecord] = []
    for ext_id in sorted(latest):
        record = latest[ext_id]
        if needle and not _matches_text(record, needle):
            continue
        if provides and not record.provides_capability(provides):
            continue
        result.append(record)

    logger.debug(
        f"Listed {len(result)} of {len(latest)} extensions "
        f"(filter={filter_text!r}, max_schema_version={max_schema_version}, provides={provides!r})"
    )
    return result


def extension_updates(
    index: ExtensionIndex,
    min_schema_version: Optional[int] = None,
    max_schema_version: Optional[int] = None,
    min_wasm_api_version: Optional[str] = None,
    max_wasm_api_version: Optional[str] = None,
    ids: Optional[List[str]] = None,
) -> List[ExtensionRecord]:
    """
    For each requested id (all ids when ``ids`` is None), the latest version
    satisfying every bound. Ids without a satisfying version are left out.
    """
    wasm_bounded = min_wasm_api_version is not None or max_wasm_api_version is not None

    def accept(record: ExtensionRecord) -> bool:
        if min_schema_version is not None and record.schema_version < min_schema_version:
            return False
        if max_schema_version is not None and record.schema_version > max_schema_version:
            return False
        if wasm_bounded:
            if record.wasm_api_version is None:
                return False
            if not in_range(record.wasm_api_version, min_wasm_api_version, max_wasm_api_version):
                return False
        return True

    wanted = set(ids) if ids is not None else None
    latest = _latest_per_id(index.data, accept, wanted)
    return [latest[ext_id] for ext_id in sorted(latest)]


def extension_versions(index: ExtensionIndex, extension_id: str) -> List[ExtensionRecord]:
    """Every known version of ``extension_id``, newest first. Empty if unknown."""
    records = index.records_for(extension_id)
    return sorted(
        records,
        key=cmp_to_key(lambda a, b: compare_versions(a.version, b.version)),
        reverse=True,
    )
