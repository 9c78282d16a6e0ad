import logging
from datetime import datetime, timezone

import pytest
from sqlalchemy import Boolean, DateTime, Integer, event, func, update
from sqlalchemy.dialects import sqlite
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from rowguard.exceptions.base import (
    InstanceFilterMismatch,
    InvalidFieldError,
    NotFoundError,
    RepositoryError,
)
from rowguard.models.item import Item
from rowguard.records.handle import RecordHandle
from rowguard.repositories.item_repository import ItemRepository


# Mapped classes that are never created in the database: the tests using them
# only build handles or check that no SQL runs.
class _DetachedBase(DeclarativeBase):
    pass


class Flag(_DetachedBase):
    __tablename__ = "flags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False)


class Touch(_DetachedBase):
    __tablename__ = "touches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    touched_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())


def sql_of(statement) -> str:
    return str(statement.compile(dialect=sqlite.dialect()))


@pytest.fixture
def executed(async_engine):
    """Collect every SQL string sent to the database during the test."""
    statements: list[str] = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(async_engine.sync_engine, "before_cursor_execute", _record)
    yield statements
    event.remove(async_engine.sync_engine, "before_cursor_execute", _record)


@pytest.mark.asyncio
class TestGuardedDelete:

    async def test_filter_not_matching_raises_and_keeps_row(self, item_repository, create_item):
        """
        Behavior:
                - Handle filtered on delete_allowed=True, row has delete_allowed=False.
                - delete() raises InstanceFilterMismatch; the row is still there.

        Importance:
                - The central guarantee: a guarded delete never removes a row that
                  does not satisfy the handle's filters.
        """
        item = await create_item(delete_allowed=False)
        handle = await item_repository.get_or_raise(item.id)
        handle.instance_filter({"delete_allowed": True})

        with pytest.raises(InstanceFilterMismatch) as exc_info:
            await handle.delete()

        assert "DELETE FROM items" in exc_info.value.sql
        assert "delete_allowed" in str(exc_info.value)
        assert exc_info.value.rowcount == 0
        assert exc_info.value.operation == "delete"
        assert await item_repository.exists(item.id)

        # failure keeps the filters and the handle usable
        assert len(handle.filters) == 1
        assert handle.deleted is False

    async def test_succeeds_after_another_handle_made_row_match(self, item_repository, create_item):
        """
        Behavior:
                - Handle H filtered on delete_allowed=True; a second handle on the
                  same row sets delete_allowed=True; H.delete() then succeeds.
                - H's filters are empty afterwards.
        """
        item = await create_item(delete_allowed=False)
        handle = await item_repository.get_or_raise(item.id)
        other = await item_repository.get_or_raise(item.id)
        handle.instance_filter({"delete_allowed": True})

        await other.update(delete_allowed=True)
        await handle.delete()

        assert handle.deleted is True
        assert len(handle.filters) == 0
        assert not await item_repository.exists(item.id)

    async def test_succeeds_after_concurrent_session_committed(
        self, item_repository, create_item, other_session, test_settings, db_session
    ):
        item = await create_item(delete_allowed=False)
        handle = await item_repository.get_or_raise(item.id)
        handle.instance_filter({"delete_allowed": True})

        other_repo = ItemRepository(other_session, test_settings)
        other = await other_repo.get_or_raise(item.id)
        await other.update(delete_allowed=True)
        await other_session.commit()

        await handle.delete()
        await db_session.commit()

        assert not await other_repo.exists(item.id)

    async def test_retry_after_mismatch_uses_same_filters(self, item_repository, create_item):
        item = await create_item(delete_allowed=False)
        handle = await item_repository.get_or_raise(item.id)
        handle.instance_filter({"delete_allowed": True})

        with pytest.raises(InstanceFilterMismatch):
            await handle.delete()

        fixer = await item_repository.get_or_raise(item.id)
        await fixer.update(delete_allowed=True)

        await handle.delete()
        assert len(handle.filters) == 0

    async def test_delete_without_filters_checks_row_count(self, item_repository, created_item, db_session):
        """
        Behavior:
                - Two handles without filters on the same row; the first deletes it.
                - The second delete affects zero rows and raises InstanceFilterMismatch.

        Importance:
                - The exactly-one-row check runs whether or not filters were added.
        """
        first = await item_repository.get_or_raise(created_item.id)
        second = await item_repository.get_or_raise(created_item.id)

        await first.delete()
        await db_session.commit()

        with pytest.raises(InstanceFilterMismatch) as exc_info:
            await second.delete()
        assert exc_info.value.rowcount == 0

    async def test_zero_row_mismatch_keeps_pending_work_in_session(self, item_repository, create_item):
        """
        Behavior:
                - An uncommitted row is inserted, then a filtered delete on another
                  row matches nothing and raises.
                - The uncommitted row is still visible in the session afterwards.

        Importance:
                - A mismatch changed nothing, so the caller's transaction is theirs
                  to keep or roll back.
        """
        item = await create_item(delete_allowed=False)
        pending = await item_repository.create(name="pending-unrelated")
        handle = await item_repository.get_or_raise(item.id)
        handle.instance_filter({"delete_allowed": True})

        with pytest.raises(InstanceFilterMismatch):
            await handle.delete()

        assert await item_repository.exists(pending.id)
        assert await item_repository.exists(item.id)

    async def test_deleting_twice_through_same_handle_is_rejected(self, item_repository, created_item, executed):
        handle = await item_repository.get_or_raise(created_item.id)
        await handle.delete()
        executed.clear()

        with pytest.raises(RepositoryError, match="already deleted"):
            await handle.delete()
        with pytest.raises(RepositoryError, match="already deleted"):
            await handle.update(name="again")
        assert executed == []

    async def test_generated_delete_orders_identity_then_filters(self, item_repository, created_item):
        """
        Behavior:
                - Filters {status} then {quantity}: DELETE ... WHERE identity AND
                  status AND quantity, in that order.
        """
        handle = await item_repository.get_or_raise(created_item.id)
        handle.instance_filter({"status": "draft"})
        handle.instance_filter({"quantity": 5})

        sql = sql_of(handle.delete_statement())

        assert sql.startswith("DELETE FROM items WHERE items.id = ?")
        assert sql.index("items.id") < sql.index("items.status") < sql.index("items.quantity")

        await handle.delete()
        assert len(handle.filters) == 0

    async def test_mismatch_is_logged_with_structured_fields(self, item_repository, create_item, caplog):
        caplog.set_level(logging.INFO, logger="rowguard")
        item = await create_item(delete_allowed=False)
        handle = await item_repository.get_or_raise(item.id)
        handle.instance_filter({"delete_allowed": True})

        with pytest.raises(InstanceFilterMismatch):
            await handle.delete()

        record = next(r for r in caplog.records if r.getMessage() == "instance_filters.mismatch")
        assert record.model == "Item"
        assert record.operation == "delete"
        assert record.rowcount == 0
        assert "delete_allowed" in record.sql


@pytest.mark.asyncio
class TestGuardedUpdate:

    async def test_update_without_filters_matches_plain_identity_update(self, item_repository, created_item):
        """
        Behavior:
                - With no filters the handle's UPDATE is exactly the identity-scoped
                  UPDATE, and executing it changes the row.
        """
        handle = await item_repository.get_or_raise(created_item.id)

        expected = (
            update(Item.__table__)
            .where(Item.id == handle.id)
            .values({Item.__table__.c.name: "x"})
        )
        assert sql_of(handle.update_statement({"name": "x"})) == sql_of(expected)

        await handle.update(name="x")

        assert handle.name == "x"
        reloaded = await item_repository.get_or_raise(created_item.id)
        assert reloaded.name == "x"

    async def test_failed_update_keeps_filters_row_and_snapshot(self, item_repository, create_item):
        """
        Behavior:
                - A filtered update that matches nothing raises; the row, the handle's
                  values and its filters are all unchanged.
        """
        item = await create_item(status="draft", quantity=1)
        handle = await item_repository.get_or_raise(item.id)
        handle.instance_filter({"status": "published"})

        with pytest.raises(InstanceFilterMismatch) as exc_info:
            await handle.update(quantity=99)

        assert exc_info.value.operation == "update"
        assert exc_info.value.sql.startswith("UPDATE items SET")
        assert handle.quantity == 1
        assert len(handle.filters) == 1

        reloaded = await item_repository.get_or_raise(item.id)
        assert reloaded.quantity == 1

    async def test_each_successful_update_clears_filters(self, item_repository, created_item):
        handle = await item_repository.get_or_raise(created_item.id)

        handle.instance_filter({"quantity": 5})
        await handle.update(quantity=6)
        assert len(handle.filters) == 0

        handle.instance_filter({"quantity": 6})
        await handle.update(quantity=7)
        assert len(handle.filters) == 0

        # filters are gone, so the next update is only identity-scoped
        await handle.update(quantity=8)
        assert (await item_repository.get_or_raise(created_item.id)).quantity == 8

    async def test_stale_read_is_rejected(self, item_repository, created_item, db_session):
        """
        Behavior:
                - Two handles read quantity=5 and both filter on it; the first
                  update wins and the second raises.

        Importance:
                - Instance filters give optimistic concurrency control on any column.
        """
        first = await item_repository.get_or_raise(created_item.id)
        second = await item_repository.get_or_raise(created_item.id)
        first.instance_filter({"quantity": first.quantity})
        second.instance_filter({"quantity": second.quantity})

        await first.update(quantity=first.quantity - 1)
        await db_session.commit()

        with pytest.raises(InstanceFilterMismatch):
            await second.update(quantity=second.quantity - 1)

        assert (await item_repository.get_or_raise(created_item.id)).quantity == 4

    async def test_dynamic_filter_reads_value_when_statement_is_built(self, item_repository, created_item):
        handle = await item_repository.get_or_raise(created_item.id)
        threshold = {"value": 10}
        handle.instance_filter(dynamic=lambda model: model.quantity >= threshold["value"])

        with pytest.raises(InstanceFilterMismatch):
            await handle.update(status="published")

        threshold["value"] = 5
        await handle.update(status="published")

        assert handle.status == "published"
        assert len(handle.filters) == 0

    async def test_zero_row_mismatch_keeps_earlier_updates_in_session(self, item_repository, create_item):
        item = await create_item(status="draft", quantity=1)
        other = await create_item(name="other", quantity=3)
        other_handle = await item_repository.get_or_raise(other.id)
        await other_handle.update(quantity=4)

        handle = await item_repository.get_or_raise(item.id)
        handle.instance_filter({"status": "published"})
        with pytest.raises(InstanceFilterMismatch):
            await handle.update(quantity=99)

        assert (await item_repository.get_or_raise(other.id)).quantity == 4

    async def test_update_reads_back_onupdate_timestamp(self, item_repository, created_item):
        """
        Behavior:
                - After update(note=...), the handle's updated_at is the value the
                  database wrote through the column's onupdate default.
        """
        handle = await item_repository.get_or_raise(created_item.id)
        await handle.update(updated_at=datetime(2000, 1, 1, tzinfo=timezone.utc))

        await handle.update(note="hello")

        reloaded = await item_repository.get_or_raise(created_item.id)
        assert handle.updated_at.year != 2000
        assert handle.updated_at == reloaded.updated_at

    async def test_unknown_column_raises_before_any_sql(self, item_repository, created_item, executed):
        handle = await item_repository.get_or_raise(created_item.id)
        executed.clear()

        with pytest.raises(InvalidFieldError) as exc_info:
            await handle.update(colour="red")

        assert exc_info.value.fields == ["colour"]
        assert executed == []

    async def test_primary_key_cannot_be_updated(self, item_repository, created_item):
        handle = await item_repository.get_or_raise(created_item.id)

        with pytest.raises(InvalidFieldError, match="Primary key"):
            await handle.update(id=created_item.id)

    async def test_empty_update_is_a_no_op(self, item_repository, created_item, executed, caplog):
        caplog.set_level(logging.WARNING, logger="rowguard")
        handle = await item_repository.get_or_raise(created_item.id)
        handle.instance_filter({"status": "archived"})
        executed.clear()

        result = await handle.update()

        assert result is handle
        assert executed == []
        assert len(handle.filters) == 1
        assert any(r.getMessage() == "record.update.no_values" for r in caplog.records)

    async def test_update_sets_onupdate_timestamp_column(self, item_repository, created_item, executed):
        handle = await item_repository.get_or_raise(created_item.id)
        executed.clear()

        await handle.update(note="hello")

        update_sql = next(s for s in executed if s.startswith("UPDATE"))
        assert "updated_at" in update_sql

    async def test_unreliable_rowcount_is_warned_about_but_still_checked(
        self, item_repository, create_item, db_session, monkeypatch, caplog
    ):
        caplog.set_level(logging.WARNING, logger="rowguard")
        monkeypatch.setattr(db_session.get_bind().dialect, "supports_sane_rowcount", False)
        item = await create_item(delete_allowed=False)
        handle = await item_repository.get_or_raise(item.id)
        handle.instance_filter({"delete_allowed": True})

        with pytest.raises(InstanceFilterMismatch):
            await handle.delete()

        assert any(r.getMessage() == "record.rowcount_unreliable" for r in caplog.records)


@pytest.mark.asyncio
class TestHandleState:

    async def test_handles_for_same_row_have_independent_filters(self, item_repository, created_item):
        first = await item_repository.get_or_raise(created_item.id)
        second = await item_repository.get_or_raise(created_item.id)

        first.instance_filter({"delete_allowed": False})

        assert first is not second
        assert first.filters is not second.filters
        assert len(second.filters) == 0
        assert "delete_allowed" not in sql_of(second.delete_statement())

        # second is unaffected by first's filter and deletes the row
        await second.delete()

    async def test_value_access(self, item_repository, created_item):
        handle = await item_repository.get_or_raise(created_item.id)

        assert handle.name == "widget"
        assert handle["quantity"] == 5
        assert handle.values["status"] == "draft"
        assert handle.identity == {"id": created_item.id}
        assert "RecordHandle Item" in repr(handle)

        with pytest.raises(AttributeError):
            handle.no_such_column
        with pytest.raises(KeyError):
            handle["no_such_column"]

    async def test_set_then_save_changes_writes_only_changed_columns(
        self, item_repository, created_item, executed
    ):
        handle = await item_repository.get_or_raise(created_item.id)
        handle.set(note="packed", quantity=9)
        assert handle.changed_columns == ["note", "quantity"]
        executed.clear()

        await handle.save_changes()

        update_sql = next(s for s in executed if s.startswith("UPDATE"))
        assert "note=" in update_sql and "quantity=" in update_sql
        assert "name=" not in update_sql
        assert handle.changed_columns == []

        reloaded = await item_repository.get_or_raise(created_item.id)
        assert (reloaded.note, reloaded.quantity) == ("packed", 9)

    async def test_save_changes_with_nothing_changed_runs_no_sql(self, item_repository, created_item, executed):
        handle = await item_repository.get_or_raise(created_item.id)
        executed.clear()

        await handle.save_changes()

        assert executed == []

    async def test_save_is_guarded_like_update(self, item_repository, created_item):
        handle = await item_repository.get_or_raise(created_item.id)
        handle.set(status="published")
        handle.instance_filter({"quantity": 0})

        with pytest.raises(InstanceFilterMismatch):
            await handle.save()
        assert handle.changed_columns == ["status"]

        handle.filters.clear()
        await handle.save()
        assert (await item_repository.get_or_raise(created_item.id)).status == "published"

    async def test_column_named_like_handle_attribute_is_read_by_key(self, db_session):
        handle = RecordHandle(Flag, db_session, {"id": 1, "deleted": True})

        # attribute access finds the handle's own flag, not the column
        assert handle.deleted is False
        assert handle["deleted"] is True
        assert handle.values["deleted"] is True

    async def test_save_with_nothing_writable_runs_no_sql(self, db_session, executed, caplog):
        """
        Behavior:
                - A model with only a primary key and an onupdate column has nothing
                  for save() to write; save() returns without running SQL.
        """
        caplog.set_level(logging.WARNING, logger="rowguard")
        handle = RecordHandle(Touch, db_session, {"id": 1, "touched_at": None})
        handle.instance_filter({"id": 1})
        executed.clear()

        result = await handle.save()

        assert result is handle
        assert executed == []
        assert len(handle.filters) == 1
        assert any(r.getMessage() == "record.save.no_values" for r in caplog.records)

    async def test_set_rejects_unknown_columns(self, item_repository, created_item):
        handle = await item_repository.get_or_raise(created_item.id)

        with pytest.raises(InvalidFieldError):
            handle.set(colour="red")

    async def test_refresh_reloads_values_and_keeps_filters(self, item_repository, created_item):
        handle = await item_repository.get_or_raise(created_item.id)
        other = await item_repository.get_or_raise(created_item.id)
        handle.instance_filter({"status": "draft"})

        await other.update(quantity=42)
        await handle.refresh()

        assert handle.quantity == 42
        assert len(handle.filters) == 1

    async def test_refresh_of_deleted_row_raises_not_found(self, item_repository, created_item):
        handle = await item_repository.get_or_raise(created_item.id)
        other = await item_repository.get_or_raise(created_item.id)
        await other.delete()

        with pytest.raises(NotFoundError):
            await handle.refresh()

    async def test_hooks_observers_run_only_after_success(self, item_repository, create_item):
        item = await create_item(delete_allowed=False)
        handle = await item_repository.get_or_raise(item.id)
        events: list[str] = []
        handle.hooks.on_after_delete(lambda: events.append("deleted"))
        handle.instance_filter({"delete_allowed": True})

        with pytest.raises(InstanceFilterMismatch):
            await handle.delete()
        assert events == []

        handle.filters.clear()
        await handle.delete()
        assert events == ["deleted"]
