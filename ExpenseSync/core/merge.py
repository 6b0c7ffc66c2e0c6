"""Timestamp based merge of local and remote records.

For every record id present on either side:

- present on both sides: the copy with the greater ``updated_at`` wins,
  the local copy wins ties;
- only local: kept;
- only remote: dropped when the last sync happened after the remote copy was
  last modified (it was deleted on this device since), otherwise added.

The merge is pure. It never touches local or remote storage.
"""
import datetime
import logging
from typing import Dict, Iterable, Optional

from .model import MergeResult, Record


def _aware(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.astimezone()
    return value


def _merged_sort_key(record: Record):
    return _aware(record.created_at), record.id


def _index(records: Iterable[Record]) -> Dict[str, Record]:
    index: Dict[str, Record] = {}
    for r in records:
        if r.id in index:
            # Duplicate ids on one side: the newer copy stands for the id
            if _aware(r.updated_at) <= _aware(index[r.id].updated_at):
                continue
        index[r.id] = r
    return index


def merge(local: Iterable[Record], remote: Iterable[Record],
          last_sync: Optional[datetime.datetime]) -> MergeResult:
    """Merge local and remote records.

    Args:
        local: Records in the local store.
        remote: Records downloaded from the remote.
        last_sync: Instant of the last successful sync, None if never synced.

    Returns:
        MergeResult: The merged records sorted by creation time, newest first, and counters
            describing where each record came from.
    """
    local_index = _index(local)
    remote_index = _index(remote)
    last_sync = _aware(last_sync) if last_sync else None

    result = MergeResult()
    merged: Dict[str, Record] = {}

    for record_id, local_record in local_index.items():
        remote_record = remote_index.get(record_id)
        if remote_record is None:
            merged[record_id] = local_record
            result.local_only += 1
            continue

        if _aware(remote_record.updated_at) > _aware(local_record.updated_at):
            merged[record_id] = remote_record
            result.updated_from_remote += 1
        else:
            merged[record_id] = local_record
            if _aware(local_record.updated_at) > _aware(remote_record.updated_at):
                result.updated_from_local += 1

    for record_id, remote_record in remote_index.items():
        if record_id in local_index:
            continue
        if last_sync is not None and last_sync > _aware(remote_record.updated_at):
            logging.debug(f'Record {record_id} was deleted locally after the last sync, not restoring it.')
            result.deleted_locally += 1
            continue
        merged[record_id] = remote_record
        result.new_from_remote += 1

    result.merged = sorted(merged.values(), key=_merged_sort_key, reverse=True)
    logging.debug(
        f'Merge: {len(result.merged)} records, {result.new_from_remote} new from remote, '
        f'{result.updated_from_remote} updated from remote, {result.updated_from_local} kept local, '
        f'{result.local_only} local only, {result.deleted_locally} deleted locally.'
    )
    return result
