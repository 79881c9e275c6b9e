"""
Ledger Mutator

Append, update and soft-delete records of one ledger against the ledger
store, with a best-effort copy of every change sent to the mirror.

DESIGN DECISION: The ledger write is authoritative. The mirror write is
spawned as a background task after the ledger write succeeds; its
failures are logged and audited inside the task and never reach the
caller, and nothing is rolled back because of them.

Duplicate checks happen against a fresh read right before the write.
There is no lock between the check and the write, so two concurrent
requests for the same key can both pass; a later listing will show both
rows.
"""

import asyncio
from typing import Any, Awaitable, Callable, Generic, Optional

from sheet_ledger.audit.logger import AuditLogger, get_logger
from sheet_ledger.ledger.codecs import K, R, RowCodec
from sheet_ledger.ledger.layouts import AppendMode
from sheet_ledger.ledger.locator import NOT_FOUND, LedgerLocator
from sheet_ledger.models.series import MutationAction, MutationResult
from sheet_ledger.services.storage.interface import (
    DuplicateError,
    LedgerStoreInterface,
    MirrorStoreInterface,
    NotFoundError,
)

logger = get_logger(__name__)

MirrorOperation = Callable[[MirrorStoreInterface], Awaitable[Any]]


class BackgroundMirror:
    """
    Fire-and-forget writer for the mirror store.

    Holds references to its pending tasks so they are not garbage
    collected mid-flight; drain() waits for all of them.
    """

    def __init__(
        self,
        mirror: Optional[MirrorStoreInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._mirror = mirror
        self._audit_logger = audit_logger
        self._tasks: set[asyncio.Task] = set()

    @property
    def store(self) -> Optional[MirrorStoreInterface]:
        return self._mirror

    @property
    def enabled(self) -> bool:
        return self._mirror is not None

    def schedule(self, table: str, entity_key: str, operation: MirrorOperation) -> bool:
        """Spawn `operation` against the mirror. False when no mirror is configured."""
        if self._mirror is None:
            return False
        task = asyncio.create_task(self._run(table, entity_key, operation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run(self, table: str, entity_key: str, operation: MirrorOperation) -> None:
        try:
            await operation(self._mirror)
            logger.debug("mirror_write_done", table=table, key=entity_key)
        except Exception as e:
            logger.error("mirror_write_failed", table=table, key=entity_key, error=str(e))
            if self._audit_logger is not None:
                await self._audit_logger.log_mirror_failed(
                    table=table,
                    error_message=str(e),
                    entity_key=entity_key,
                )

    async def drain(self) -> None:
        """Wait for every pending mirror write."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class LedgerMutator(Generic[R, K]):
    """Mutations of one ledger area, keyed by natural key."""

    def __init__(
        self,
        store: LedgerStoreInterface,
        codec: RowCodec[R, K],
        mirror: Optional[BackgroundMirror] = None,
        owner_id: str = "local",
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._codec = codec
        self._layout = codec.layout
        self._locator: LedgerLocator[R, K] = LedgerLocator(codec)
        self._mirror = mirror or BackgroundMirror()
        self._owner_id = owner_id
        self._audit_logger = audit_logger

    @property
    def layout(self):
        return self._layout

    @property
    def locator(self) -> LedgerLocator[R, K]:
        return self._locator

    async def _fetch(self) -> list[list]:
        return await self._store.read_range(self._layout.read_range)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_records(self) -> list[R]:
        """Every usable record of the ledger, in sheet order."""
        rows = await self._fetch()
        return [record for _, record in self._locator.decode_all(rows)]

    async def find(self, key: K) -> Optional[R]:
        rows = await self._fetch()
        index = self._locator.find_by_key(rows, key)
        if index == NOT_FOUND:
            return None
        return self._locator.decode_at(rows, index)

    # ------------------------------------------------------------------
    # Append
    # ------------------------------------------------------------------

    async def append(self, record: R) -> MutationResult:
        """
        Write a new record.

        Raises:
            DuplicateError: If the ledger already holds the record's key
        """
        rows = await self._fetch()
        key = record.natural_key()

        if not self._layout.allows_multiple_per_key:
            existing = self._locator.find_by_key(rows, key)
            if existing != NOT_FOUND:
                await self._reject_duplicate(key, existing)

        sheet_row = await self._write_new(rows, record)

        label = self._codec.key_label(key)
        scheduled = self._mirror.schedule(
            self._layout.mirror_table,
            label,
            self._upsert_operation(record),
        )
        if self._audit_logger:
            await self._audit_logger.log_record_appended(
                entity_type=self._layout.kind.value,
                entity_key=label,
                row=sheet_row,
            )
        logger.info("record_appended", ledger=self._layout.kind.value, key=label, row=sheet_row)

        return MutationResult(
            ledger=self._layout.kind,
            action=MutationAction.APPENDED,
            sheet_row=sheet_row,
            mirror_scheduled=scheduled,
            message=f"Saved {label}",
        )

    async def _write_new(self, rows: list[list], record: R) -> Optional[int]:
        """Write a record into a new position; returns the sheet row when known."""
        cells = self._codec.encode(record)
        mode = self._layout.append_mode

        if mode is AppendMode.SHEET_APPEND:
            await self._store.append_rows(self._layout.read_range, [self._layout.full_row(cells)])
            return None

        if mode is AppendMode.FIRST_EMPTY_SLOT:
            index = self._locator.find_first_empty_slot(rows)
            sheet_row = max(self._layout.sheet_row(index), self._layout.min_start_row or 1)
        else:
            sheet_row = self._locator.next_append_row(rows)

        await self._store.write_ranges(self._layout.writes_for(sheet_row, cells))
        return sheet_row

    async def _reject_duplicate(self, key: K, index: int) -> None:
        label = self._codec.key_label(key)
        sheet_row = self._layout.sheet_row(index)
        logger.warning("duplicate_rejected", ledger=self._layout.kind.value, key=label, row=sheet_row)
        if self._audit_logger:
            await self._audit_logger.log_duplicate_rejected(
                entity_type=self._layout.kind.value,
                entity_key=label,
                existing_row=sheet_row,
            )
        raise DuplicateError(f"{label} already exists (row {sheet_row})", key=key)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update(self, old_key: K, new_record: R) -> MutationResult:
        """
        Replace the record at `old_key` with `new_record`.

        Same key (or a slot-based ledger): the owned columns of the old row
        are rewritten in place. Changed key: the new record is written to a
        new position first, then the old row is blanked. A new key that
        collides with another record fails before anything is written.

        Raises:
            NotFoundError: If no row matches `old_key`
            DuplicateError: If the new key belongs to a different record
        """
        rows = await self._fetch()
        index = self._locator.find_by_key(rows, old_key)
        if index == NOT_FOUND:
            await self._report_not_found(old_key, "update")
            raise NotFoundError(
                f"Nothing to update: {self._codec.key_label(old_key)} not found",
                key=old_key,
            )

        old_record = self._locator.decode_at(rows, index)
        new_key = new_record.natural_key()
        key_changed = old_record is None or old_record.natural_key() != new_key

        if key_changed and not self._layout.allows_multiple_per_key:
            collision = self._locator.find_by_key(rows, new_key)
            if collision not in (NOT_FOUND, index):
                await self._reject_duplicate(new_key, collision)

        old_row = self._layout.sheet_row(index)
        shift = self._codec.column_shift(rows[index])
        in_place = not key_changed or self._layout.append_mode is AppendMode.FIRST_EMPTY_SLOT

        if in_place:
            cells = self._codec.encode(new_record)
            await self._store.write_ranges(self._layout.writes_for(old_row, cells, shift))
            sheet_row: Optional[int] = old_row
        else:
            sheet_row = await self._write_new(rows, new_record)
            await self._store.write_ranges(self._layout.blank_writes(old_row, shift))

        old_label = self._codec.key_label(old_key)
        new_label = self._codec.key_label(new_key)
        scheduled = self._mirror.schedule(
            self._layout.mirror_table,
            new_label,
            self._replace_operation(
                old_key if old_record is None else old_record.natural_key(), new_record
            ),
        )
        if self._audit_logger:
            await self._audit_logger.log_record_updated(
                entity_type=self._layout.kind.value,
                old_key=old_label,
                new_key=new_label,
                row=sheet_row,
            )
        logger.info(
            "record_updated",
            ledger=self._layout.kind.value,
            old_key=old_label,
            new_key=new_label,
            in_place=in_place,
        )

        return MutationResult(
            ledger=self._layout.kind,
            action=MutationAction.UPDATED,
            sheet_row=sheet_row,
            mirror_scheduled=scheduled,
            message=f"Updated {new_label}",
        )

    # ------------------------------------------------------------------
    # Soft delete
    # ------------------------------------------------------------------

    async def soft_delete(self, key: K) -> MutationResult:
        """
        Blank the value columns of the row matching `key`.

        On a ledger miss the mirror copy is deleted directly; the call
        still succeeds when that removes something.

        Raises:
            NotFoundError: If neither the ledger nor the mirror holds `key`
        """
        rows = await self._fetch()
        index = self._locator.find_by_key(rows, key)
        label = self._codec.key_label(key)

        if index == NOT_FOUND:
            logger.warning("soft_delete_ledger_miss", ledger=self._layout.kind.value, key=label)
            removed = await self._delete_from_mirror_now(key)
            if removed == 0:
                await self._report_not_found(key, "delete")
                raise NotFoundError(f"Nothing to delete: {label} not found", key=key)
            return MutationResult(
                ledger=self._layout.kind,
                action=MutationAction.SOFT_DELETED,
                ledger_hit=False,
                message=f"Removed {label} from the mirror only",
            )

        sheet_row = self._layout.sheet_row(index)
        previous = list(rows[index])
        shift = self._codec.column_shift(rows[index])
        await self._store.write_ranges(self._layout.blank_writes(sheet_row, shift))

        filters = self._codec.mirror_filter(self._matched_key(rows, index, key), self._owner_id)
        table = self._layout.mirror_table
        scheduled = self._mirror.schedule(
            table,
            label,
            lambda mirror: mirror.delete(table, filters),
        )
        if self._audit_logger:
            await self._audit_logger.log_record_soft_deleted(
                entity_type=self._layout.kind.value,
                entity_key=label,
                row=sheet_row,
                previous_values=previous,
            )
        logger.info("record_soft_deleted", ledger=self._layout.kind.value, key=label, row=sheet_row)

        return MutationResult(
            ledger=self._layout.kind,
            action=MutationAction.SOFT_DELETED,
            sheet_row=sheet_row,
            mirror_scheduled=scheduled,
            message=f"Deleted {label}",
        )

    def _matched_key(self, rows: list[list], index: int, key: K) -> K:
        """Natural key of the row actually found; the mirror filters on exact values."""
        record = self._locator.decode_at(rows, index)
        return key if record is None else record.natural_key()

    async def _delete_from_mirror_now(self, key: K) -> int:
        mirror = self._mirror.store
        if mirror is None:
            return 0
        try:
            return await mirror.delete(
                self._layout.mirror_table,
                self._codec.mirror_filter(key, self._owner_id),
            )
        except Exception as e:
            logger.error(
                "mirror_delete_failed",
                table=self._layout.mirror_table,
                key=self._codec.key_label(key),
                error=str(e),
            )
            return 0

    async def _report_not_found(self, key: K, operation: str) -> None:
        if self._audit_logger:
            await self._audit_logger.log_not_found(
                entity_type=self._layout.kind.value,
                entity_key=self._codec.key_label(key),
                operation=operation,
            )

    # ------------------------------------------------------------------
    # Mirror operations
    # ------------------------------------------------------------------

    def _upsert_operation(self, record: R) -> MirrorOperation:
        table = self._layout.mirror_table
        conflict_key = self._layout.mirror_conflict_key
        row = self._codec.to_mirror_row(record, self._owner_id)
        return lambda mirror: mirror.upsert(table, [row], conflict_key)

    def _replace_operation(self, old_key: K, record: R) -> MirrorOperation:
        table = self._layout.mirror_table
        conflict_key = self._layout.mirror_conflict_key
        filters = self._codec.mirror_filter(old_key, self._owner_id)
        row = self._codec.to_mirror_row(record, self._owner_id)

        async def replace(mirror: MirrorStoreInterface) -> None:
            await mirror.delete(table, filters)
            await mirror.upsert(table, [row], conflict_key)

        return replace


class MirrorLedger(Generic[R, K]):
    """
    The same operations served from the mirror alone.

    Used when no spreadsheet is configured. Every write is awaited since
    the mirror is the only copy.
    """

    def __init__(self, mirror: MirrorStoreInterface, codec: RowCodec[R, K], owner_id: str = "local"):
        self._mirror = mirror
        self._codec = codec
        self._layout = codec.layout
        self._owner_id = owner_id

    @property
    def layout(self):
        return self._layout

    async def list_records(self) -> list[R]:
        rows = await self._mirror.select(self._layout.mirror_table, {"user_id": self._owner_id})
        records = []
        for row in rows:
            try:
                records.append(self._codec.from_mirror_row(row))
            except (KeyError, ValueError, ArithmeticError) as e:
                logger.debug("mirror_row_skipped", table=self._layout.mirror_table, error=str(e))
        return records

    async def find(self, key: K) -> Optional[R]:
        for record in await self.list_records():
            if self._codec.key_matches(record, key):
                return record
        return None

    async def _exists(self, key: K) -> bool:
        return await self.find(key) is not None

    async def append(self, record: R) -> MutationResult:
        key = record.natural_key()
        label = self._codec.key_label(key)
        if not self._layout.allows_multiple_per_key and await self._exists(key):
            raise DuplicateError(f"{label} already exists", key=key)
        await self._mirror.upsert(
            self._layout.mirror_table,
            [self._codec.to_mirror_row(record, self._owner_id)],
            self._layout.mirror_conflict_key,
        )
        return MutationResult(
            ledger=self._layout.kind,
            action=MutationAction.APPENDED,
            ledger_hit=False,
            message=f"Saved {label}",
        )

    async def update(self, old_key: K, new_record: R) -> MutationResult:
        old_label = self._codec.key_label(old_key)
        old_record = await self.find(old_key)
        if old_record is None:
            raise NotFoundError(f"Nothing to update: {old_label} not found", key=old_key)

        new_key = new_record.natural_key()
        if (
            old_record.natural_key() != new_key
            and not self._layout.allows_multiple_per_key
            and await self._exists(new_key)
        ):
            raise DuplicateError(f"{self._codec.key_label(new_key)} already exists", key=new_key)

        await self._mirror.delete(
            self._layout.mirror_table,
            self._codec.mirror_filter(old_record.natural_key(), self._owner_id),
        )
        await self._mirror.upsert(
            self._layout.mirror_table,
            [self._codec.to_mirror_row(new_record, self._owner_id)],
            self._layout.mirror_conflict_key,
        )
        return MutationResult(
            ledger=self._layout.kind,
            action=MutationAction.UPDATED,
            ledger_hit=False,
            message=f"Updated {self._codec.key_label(new_key)}",
        )

    async def soft_delete(self, key: K) -> MutationResult:
        label = self._codec.key_label(key)
        record = await self.find(key)
        removed = await self._mirror.delete(
            self._layout.mirror_table,
            self._codec.mirror_filter(key if record is None else record.natural_key(), self._owner_id),
        )
        if removed == 0:
            raise NotFoundError(f"Nothing to delete: {label} not found", key=key)
        return MutationResult(
            ledger=self._layout.kind,
            action=MutationAction.SOFT_DELETED,
            ledger_hit=False,
            message=f"Deleted {label}",
        )
