"""Local expense store.

The sync engine only needs two things from the local store: all records, and
a way to replace them with a merged set. :class:`LedgerFileStore` implements
that on top of a single CSV file written with the content codec, and adds the
record editing used by the command line interface.
"""
import logging
import os
import pathlib
import uuid
from decimal import Decimal
from typing import List, Optional, Protocol, Union, runtime_checkable

from . import codec
from .database import StateDatabase
from .model import Record, utc_now
from ..status import status


def _now():
    # The ledger keeps millisecond precision
    value = utc_now()
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


@runtime_checkable
class LocalStore(Protocol):
    """What the sync orchestrator needs from local storage."""

    def get_all_records(self) -> List[Record]:
        ...

    def replace_all_records(self, records: List[Record]) -> None:
        ...


class LedgerFileStore:
    """Keep the whole ledger in one CSV file.

    Editing operations mark the sync state dirty. Replacing all records is what
    a merge does and leaves the dirty flag alone: the orchestrator clears it
    once the merged result has been pushed.

    Args:
        path: Ledger file. Defaults to the configured ledger path.
        state: Sync state database to flag local changes in.
    """

    def __init__(self, path: Optional[Union[str, pathlib.Path]] = None,
                 state: Optional[StateDatabase] = None) -> None:
        self._path = pathlib.Path(path) if path else None
        self.state = state

    @property
    def path(self) -> pathlib.Path:
        from ..settings import lib
        return self._path if self._path else lib.settings.ledger_path

    def get_all_records(self) -> List[Record]:
        """Return every record, including soft-deleted ones.

        Raises:
            status.LedgerInvalidException: If the ledger file cannot be decoded.
        """
        if not self.path.exists():
            return []
        content = self.path.read_text(encoding='utf-8')
        try:
            return codec.decode_records(content)
        except codec.CodecError as ex:
            raise status.LedgerInvalidException(f'{self.path}: {ex}') from ex

    def replace_all_records(self, records: List[Record]) -> None:
        """Overwrite the ledger with ``records``."""
        self._write(records)
        logging.debug(f'Ledger replaced with {len(records)} records.')

    def _write(self, records: List[Record]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(f'{self.path.suffix}.tmp')
        tmp.write_text(codec.encode_records(records), encoding='utf-8', newline='')
        os.replace(tmp, self.path)

        from .signals import signals
        signals.localDataChanged.emit()

    def _mark_dirty(self) -> None:
        if self.state is not None:
            self.state.set_dirty(True)

    def get_record(self, record_id: str) -> Optional[Record]:
        return next((r for r in self.get_all_records() if r.id == record_id), None)

    def add_record(self, amount: Decimal, category: str, date, note: str = '',
                   payment_method=None, currency: str = '') -> Record:
        """Create a record with a new id and save it.

        Returns:
            Record: The created record.
        """
        now = _now()
        record = Record(
            id=str(uuid.uuid4()),
            amount=Decimal(amount),
            category=category,
            date=date,
            note=note,
            payment_method=payment_method,
            created_at=now,
            updated_at=now,
            currency=currency,
        )
        records = self.get_all_records()
        records.append(record)
        self._write(records)
        self._mark_dirty()
        logging.info(f'Added record {record.id}.')
        return record

    def update_record(self, record_id: str, **changes) -> Record:
        """Change fields of a record and advance its ``updated_at``.

        Raises:
            KeyError: If no record has the id.
            AttributeError: If a change names an unknown field.
        """
        records = self.get_all_records()
        for idx, record in enumerate(records):
            if record.id != record_id:
                continue
            for key, value in changes.items():
                if key in ('id', 'created_at', 'updated_at') or not hasattr(record, key):
                    raise AttributeError(f'Cannot change field "{key}".')
                setattr(record, key, value)
            record.updated_at = _now()
            records[idx] = record
            self._write(records)
            self._mark_dirty()
            logging.info(f'Updated record {record_id}.')
            return record
        raise KeyError(record_id)

    def delete_record(self, record_id: str) -> Record:
        """Soft delete a record.

        The record stays in the ledger with ``deleted_at`` set, so the deletion
        wins against older remote copies during a merge.

        Raises:
            KeyError: If no record has the id.
        """
        records = self.get_all_records()
        for record in records:
            if record.id == record_id:
                now = _now()
                record.deleted_at = now
                record.updated_at = now
                self._write(records)
                self._mark_dirty()
                logging.info(f'Deleted record {record_id}.')
                return record
        raise KeyError(record_id)
