"""CSV encoding and decoding of expense records.

One shard file holds the records of one day as CSV with a fixed header. Older
files written before payment methods, currencies or soft deletes existed are
still readable: missing optional columns decode to empty values.
"""
import datetime
import io
import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from .model import PaymentMethod, Record, utc_now

CSV_COLUMNS: List[str] = [
    'id',
    'amount',
    'currency',
    'category',
    'date',
    'note',
    'paymentMethodType',
    'paymentMethodId',
    'paymentInstrumentId',
    'createdAt',
    'updatedAt',
    'deletedAt',
]
REQUIRED_COLUMNS: List[str] = ['id', 'amount', 'date']


class CodecError(ValueError):
    """Raised when remote content cannot be decoded into records."""


def format_instant(value: datetime.datetime) -> str:
    """Format a datetime as ISO 8601 with millisecond precision.

    Aware datetimes are written in UTC with a 'Z' suffix. Naive datetimes are
    local wall-clock times and are written without an offset.

    Args:
        value: The datetime to format.

    Returns:
        str: The formatted timestamp.
    """
    if value.tzinfo is None:
        return value.isoformat(timespec='milliseconds')
    value = value.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return f'{value.isoformat(timespec="milliseconds")}Z'


def parse_instant(value: str, assume_utc: bool = True) -> datetime.datetime:
    """Parse an ISO 8601 timestamp.

    Args:
        value: Timestamp string. Accepts a 'Z' suffix, an explicit offset or no offset.
        assume_utc: If True, timestamps without an offset are taken as UTC.
            If False they are returned naive (local wall-clock time).

    Returns:
        datetime.datetime: The parsed timestamp.

    Raises:
        ValueError: If the value is not an ISO 8601 timestamp.
    """
    value = value.strip()
    if value.endswith(('Z', 'z')):
        value = f'{value[:-1]}+00:00'
    dt = datetime.datetime.fromisoformat(value)
    if dt.tzinfo is None and assume_utc:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt


def _record_to_row(record: Record) -> Dict[str, str]:
    pm = record.payment_method
    return {
        'id': record.id,
        'amount': str(record.amount),
        'currency': record.currency or '',
        'category': record.category,
        'date': format_instant(record.date),
        'note': record.note or '',
        'paymentMethodType': pm.type if pm else '',
        'paymentMethodId': (pm.identifier or '') if pm else '',
        'paymentInstrumentId': (pm.instrument_id or '') if pm else '',
        'createdAt': format_instant(record.created_at),
        'updatedAt': format_instant(record.updated_at),
        'deletedAt': format_instant(record.deleted_at) if record.deleted_at else '',
    }


def encode_records(records: Sequence[Record]) -> str:
    """Encode records as CSV text.

    The output depends only on the records and their order, so encoding the
    same sequence twice gives byte-identical text.

    Args:
        records: Records to encode, written in the given order.

    Returns:
        str: CSV text with a header row and '\\n' line endings.
    """
    rows = [_record_to_row(r) for r in records]
    df = pd.DataFrame(rows, columns=CSV_COLUMNS, dtype=str)
    return df.to_csv(index=False, lineterminator='\n')


def _row_value(row: Dict[str, Any], column: str) -> str:
    v = row.get(column, '')
    return '' if v is None else str(v)


def _row_to_record(row: Dict[str, Any], line: int, now: datetime.datetime) -> Record:
    record_id = _row_value(row, 'id').strip()
    if not record_id:
        raise CodecError(f'Row {line}: missing id.')

    try:
        amount = Decimal(_row_value(row, 'amount').strip())
    except InvalidOperation as ex:
        raise CodecError(f'Row {line}: invalid amount "{row.get("amount")}".') from ex
    if not amount.is_finite():
        raise CodecError(f'Row {line}: invalid amount "{row.get("amount")}".')

    try:
        date = parse_instant(_row_value(row, 'date'), assume_utc=False)

        created_raw = _row_value(row, 'createdAt').strip()
        updated_raw = _row_value(row, 'updatedAt').strip()
        deleted_raw = _row_value(row, 'deletedAt').strip()
        created_at = parse_instant(created_raw) if created_raw else now
        updated_at = parse_instant(updated_raw) if updated_raw else now
        deleted_at = parse_instant(deleted_raw) if deleted_raw else None
    except ValueError as ex:
        raise CodecError(f'Row {line}: {ex}') from ex

    payment_method: Optional[PaymentMethod] = None
    pm_type = _row_value(row, 'paymentMethodType').strip()
    if pm_type:
        payment_method = PaymentMethod(
            type=pm_type,
            identifier=_row_value(row, 'paymentMethodId').strip() or None,
            instrument_id=_row_value(row, 'paymentInstrumentId').strip() or None,
        )

    return Record(
        id=record_id,
        amount=amount,
        category=_row_value(row, 'category'),
        date=date,
        note=_row_value(row, 'note'),
        payment_method=payment_method,
        created_at=created_at,
        updated_at=updated_at,
        deleted_at=deleted_at,
        currency=_row_value(row, 'currency').strip(),
    )


def decode_records(content: str) -> List[Record]:
    """Decode CSV text into records.

    Args:
        content: CSV text as written by :func:`encode_records`.

    Returns:
        List[Record]: The decoded records in file order. Empty content yields an empty list.

    Raises:
        CodecError: If the text is not valid CSV, lacks a required column, or a row holds
            an invalid amount or timestamp.
    """
    if not content or not content.strip():
        return []

    try:
        df = pd.read_csv(
            io.StringIO(content),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError:
        return []
    except (pd.errors.ParserError, ValueError) as ex:
        raise CodecError(f'Could not parse CSV: {ex}') from ex

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise CodecError(f'CSV is missing required columns: {missing}')

    now = utc_now()
    records = [
        _row_to_record(row, idx + 2, now)  # +1 for the header, +1 for 1-based lines
        for idx, row in enumerate(df.to_dict(orient='records'))
    ]
    logging.debug(f'Decoded {len(records)} records.')
    return records


def encode_settings(settings: Dict[str, Any]) -> str:
    """Encode app settings as JSON text with sorted keys."""
    return json.dumps(settings, indent=2, sort_keys=True, ensure_ascii=False) + '\n'


def decode_settings(content: str) -> Dict[str, Any]:
    """Decode app settings from JSON text.

    Raises:
        CodecError: If the text is not a JSON object.
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as ex:
        raise CodecError(f'Could not parse settings: {ex}') from ex
    if not isinstance(data, dict):
        raise CodecError('Settings file must contain a JSON object.')
    return data
