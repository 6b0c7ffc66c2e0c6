"""Day sharding of records.

Records are stored remotely as one file per local calendar day,
``expenses-YYYY-MM-DD.csv``.
"""
import datetime
import re
from typing import Dict, Iterable, List, Optional, Union

from .model import Record

FILENAME_PREFIX = 'expenses-'
FILENAME_SUFFIX = '.csv'
FILENAME_PATTERN = re.compile(r'^expenses-(\d{4}-\d{2}-\d{2})\.csv$')
DAY_FORMAT = '%Y-%m-%d'


def day_key(value: Union[Record, datetime.datetime]) -> str:
    """Return the local calendar day of a record or datetime as 'YYYY-MM-DD'.

    Aware datetimes are converted to the local timezone first. Naive datetimes
    are already local wall-clock times.
    """
    dt = value.date if isinstance(value, Record) else value
    if dt.tzinfo is not None:
        dt = dt.astimezone()
    return dt.strftime(DAY_FORMAT)


def _shard_sort_key(record: Record):
    created = record.created_at
    if created.tzinfo is None:
        created = created.astimezone()
    return created, record.id


def group_by_day(records: Iterable[Record]) -> Dict[str, List[Record]]:
    """Group records by their day key.

    Records inside a day are ordered by creation time and id, so the same set
    of records always produces the same shard regardless of input order.

    Args:
        records: Records to group.

    Returns:
        Dict[str, List[Record]]: Day key to the records of that day.
    """
    groups: Dict[str, List[Record]] = {}
    for r in records:
        groups.setdefault(day_key(r), []).append(r)
    for day in groups:
        groups[day].sort(key=_shard_sort_key)
    return groups


def filename_for_day(day: str) -> str:
    """Return the shard filename for a day key."""
    return f'{FILENAME_PREFIX}{day}{FILENAME_SUFFIX}'


def day_from_filename(name: str) -> Optional[str]:
    """Return the day key encoded in a shard filename.

    Returns:
        Optional[str]: The day key, or None if the name is not a shard filename
            or does not name a real calendar day.
    """
    m = FILENAME_PATTERN.match(name)
    if not m:
        return None
    try:
        datetime.datetime.strptime(m.group(1), DAY_FORMAT)
    except ValueError:
        return None
    return m.group(1)


def is_shard_filename(name: str) -> bool:
    return day_from_filename(name) is not None


def unique_days(records: Iterable[Record]) -> List[str]:
    """Return the sorted, de-duplicated day keys of the given records."""
    return sorted({day_key(r) for r in records})
