from __future__ import annotations

import logging
from typing import TYPE_CHECKING, cast

import pytest

from permanent.domain.errors import NotFoundError, UserError
from permanent.domain.events import request_context
from permanent.domain.ports.storage import Output
from permanent.domain.validation import Validation
from tests.helpers.entities import AuditedUser, Note, User
from tests.helpers.storage import RecordingAdapter, count_rows, fetch_rows

if TYPE_CHECKING:
    from permanent.adapters.sqlalchemy import SqlAlchemyAdapter


def _create_user(name: str = "Alice", email: str | None = None) -> object:
    new_id = User.create({"name": name, "email": email}, ["name", "email"])
    assert new_id is not None
    return new_id


def test_create_fills_audit_fields_and_returns_new_id(storage: SqlAlchemyAdapter) -> None:
    operation = User.get_create_operation({"name": "Alice"}, ["name"])

    with request_context(client_ip="192.0.2.1"):
        validation = operation.validate()

    assert validation.is_valid()
    assert operation.data["name"] == "Alice"
    assert isinstance(operation.data["created_time"], int)
    assert operation.data["created_ip"] == "192.0.2.1"

    new_id = operation.run_if_valid()

    assert new_id is not None
    user = User.load(new_id)
    assert user is not None
    assert user.get_value("name") == "Alice"
    assert user.get_value("created_ip") == "192.0.2.1"
    assert count_rows(storage, "users") == 1


def test_create_with_default_events_fills_dates(storage: SqlAlchemyAdapter) -> None:
    with request_context(client_ip="198.51.100.7", user_agent="pytest"):
        note = Note.create_and_get({"body": "hello"}, ["body"])

    assert note is not None
    assert note.get_value("create_date") is not None
    assert note.get_value("edit_date") is not None
    assert note.get_value("create_ip") == "198.51.100.7"
    assert note.get_value("create_agent") == "pytest"
    assert count_rows(storage, "notes") == 1


def test_create_with_invalid_input_reports_errors(storage: SqlAlchemyAdapter) -> None:
    validation = Validation()

    new_id = User.create({"name": " ", "email": "nope"}, ["name", "email"], validation=validation)

    assert new_id is None
    assert [error.message for error in validation] == ["name_invalidName", "email_invalidEmail"]
    assert {error.domain for error in validation} == {"users"}
    assert count_rows(storage, "users") == 0


def test_create_rejected_by_object_check(storage: SqlAlchemyAdapter) -> None:
    validation = Validation()

    new_id = Note.create({"body": ""}, ["body"], validation=validation)

    assert new_id is None
    assert [error.message for error in validation] == ["emptyNote"]
    assert validation.errors[0].domain == "note"
    assert count_rows(storage, "notes") == 0


def test_create_ignores_id_in_input(storage: SqlAlchemyAdapter) -> None:
    new_id = User.create({"id": 99, "name": "Alice"}, ["id", "name"])

    assert new_id != 99
    assert count_rows(storage, "users") == 1


def test_test_user_input_collects_errors() -> None:
    validation = Validation()

    assert not User.test_user_input({"name": ""}, ["name"], validation=validation)
    assert validation.error_count == 1
    assert User.test_user_input({"name": "Bob"}, ["name"])


def test_check_user_input_without_fields_returns_nothing() -> None:
    data, validation = User.check_user_input({"name": "Bob"}, [])

    assert data == {}
    assert validation.is_valid()


@pytest.mark.usefixtures("storage")
def test_load_missing_row_depends_on_nullable() -> None:
    assert User.load(404) is None
    with pytest.raises(NotFoundError):
        User.load(404, nullable=False)


@pytest.mark.usefixtures("storage")
def test_load_empty_value() -> None:
    assert User.load(None) is None
    assert User.load(0) is None
    with pytest.raises(NotFoundError) as exc:
        User.load("", nullable=False)

    assert exc.value.message == "invalidParameter_load"


@pytest.mark.usefixtures("storage")
@pytest.mark.parametrize("value", [-3, "   ", 1.5, ["1"]])
def test_load_rejects_invalid_ids(value: object) -> None:
    with pytest.raises(UserError) as exc:
        User.load(value)

    assert exc.value.message == "invalidID"
    assert exc.value.domain == "users"


@pytest.mark.usefixtures("storage")
def test_load_returns_cached_instance() -> None:
    new_id = _create_user()

    first = User.load(new_id)
    second = User.load(new_id)

    assert first is second
    assert User.get_cache_stats() == 1


@pytest.mark.usefixtures("storage")
def test_load_without_cache_returns_distinct_instances() -> None:
    new_id = _create_user()

    first = User.load(new_id, use_cache=False)
    second = User.load(new_id, use_cache=False)

    assert first is not None
    assert second is not None
    assert first is not second
    assert first.get_value() == second.get_value()


@pytest.mark.usefixtures("storage")
def test_load_accepts_instances_and_rows() -> None:
    new_id = _create_user()
    user = User.load(new_id)
    assert user is not None

    assert User.load(user) is user
    assert User.load(user.get_value()) is user
    assert User.load(str(new_id)) is user


def test_load_of_digit_string_hits_the_cache(
    storage: SqlAlchemyAdapter,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    recorder = RecordingAdapter(storage)
    monkeypatch.setattr(User, "storage_adapter", recorder)
    user = User.load(_create_user())
    assert user is not None
    selects = recorder.count("select")

    assert User.load(f" {user.id} ") is user
    assert recorder.count("select") == selects


@pytest.mark.usefixtures("storage")
def test_get_outputs() -> None:
    _create_user("Alice")
    _create_user("Bob")
    _create_user("Carol")

    objects = cast("list[User]", User.get(order_by=("-name",)))
    rows = cast("list[dict[str, object]]", User.get(output=Output.ROWS, order_by=("name",)))
    first = cast("dict[str, object]", User.get({"name": "Bob"}, output=Output.FIRST))
    single = User.get("name LIKE 'C%'", output=Output.OBJECT)
    page = cast("list[User]", User.get(order_by=("name",), number=1, offset=1))

    assert [user.get_value("name") for user in objects] == ["Carol", "Bob", "Alice"]
    assert [row["name"] for row in rows] == ["Alice", "Bob", "Carol"]
    assert first["name"] == "Bob"
    assert isinstance(single, User)
    assert single.get_value("name") == "Carol"
    assert [user.get_value("name") for user in page] == ["Bob"]
    assert User.get({"name": "Nobody"}, output=Output.OBJECT) is None


@pytest.mark.usefixtures("storage")
def test_get_hydrates_through_identity_cache() -> None:
    new_id = _create_user()
    loaded = User.load(new_id)

    objects = cast("list[User]", User.get())

    assert objects == [loaded]
    assert objects[0] is loaded


def test_update_writes_validated_input(storage: SqlAlchemyAdapter) -> None:
    user = User.load(_create_user())
    assert user is not None

    result = user.update({"email": "ALICE@Example.com"}, ["email"])

    assert result == 1
    assert user.get_value("email") == "alice@example.com"
    assert isinstance(user.get_value("update_time"), int)
    assert not user.has_changes()
    assert fetch_rows(storage, "users")[0]["email"] == "alice@example.com"


def test_update_with_invalid_input_writes_nothing(storage: SqlAlchemyAdapter) -> None:
    user = User.load(_create_user(email="alice@example.com"))
    assert user is not None
    validation = Validation()

    result = user.update({"email": "broken"}, ["email"], validation=validation)

    assert result == 0
    assert [report["code"] for report in validation.get_reports()] == ["email_invalidEmail"]
    assert fetch_rows(storage, "users")[0]["email"] == "alice@example.com"


def test_update_without_changes_skips_audit_fields(storage: SqlAlchemyAdapter) -> None:
    user = User.load(_create_user(email="alice@example.com"))
    assert user is not None
    operation = user.get_update_operation({"email": "alice@example.com"}, ["email"])

    validation = operation.validate()

    assert validation.is_valid()
    assert not operation.is_valid()
    assert operation.data == {}
    assert operation.run_if_valid() == 0
    assert fetch_rows(storage, "users")[0]["update_time"] is None


def test_save_writes_modified_fields(storage: SqlAlchemyAdapter) -> None:
    user = User.load(_create_user())
    assert user is not None

    user.set_value("name", "Alicia")

    assert user.save()
    assert not user.has_changes()
    assert user.get_value("name") == "Alicia"
    assert fetch_rows(storage, "users")[0]["name"] == "Alicia"


@pytest.mark.usefixtures("storage")
def test_save_without_changes_returns_false() -> None:
    user = User.load(_create_user())
    assert user is not None

    assert not user.save()


def test_save_failure_keeps_changes(
    storage: SqlAlchemyAdapter,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    user = User.load(_create_user())
    assert user is not None
    monkeypatch.setattr(User, "storage_adapter", RecordingAdapter(storage, fail_on={"update"}))

    user.set_value("name", "Alicia")

    assert not user.save()
    assert user.has_changes()
    assert fetch_rows(storage, "users")[0]["name"] == "Alice"


@pytest.mark.usefixtures("storage")
def test_post_save_hook_runs_once_per_write() -> None:
    new_id = AuditedUser.create({"name": "Alice"}, ["name"])
    user = AuditedUser.load(new_id)
    assert user is not None

    user.set_value("name", "Alicia")
    user.save()

    assert len(AuditedUser.saved) == 2
    created_data, created_subject = AuditedUser.saved[0]
    assert created_data["name"] == "Alice"
    assert created_subject == new_id
    assert AuditedUser.saved[1][0] == {"name": "Alicia"}


@pytest.mark.usefixtures("storage")
def test_post_save_hook_is_not_reentrant() -> None:
    class SelfEditingUser(User):
        calls = 0

        @classmethod
        def on_saved(cls, data: dict[str, object], subject: object) -> None:
            cls.calls += 1
            entity = getattr(subject, "entity", None)
            if isinstance(entity, SelfEditingUser):
                entity.set_value("email", "hook@example.com")
                entity.save()

    new_id = SelfEditingUser.create({"name": "Alice"}, ["name"])
    SelfEditingUser.calls = 0
    user = SelfEditingUser.load(new_id)
    assert user is not None

    user.set_value("name", "Alicia")
    assert user.save()

    assert SelfEditingUser.calls == 1
    assert user.get_value("email") == "hook@example.com"


def test_changes_made_by_post_save_hook_stay_pending(storage: SqlAlchemyAdapter) -> None:
    class StampingUser(User):
        @classmethod
        def on_saved(cls, data: dict[str, object], subject: object) -> None:
            entity = getattr(subject, "entity", None)
            if isinstance(entity, StampingUser):
                entity.set_value("email", "stamped@example.com")

    user = StampingUser.load(StampingUser.create({"name": "Alice"}, ["name"]))
    assert user is not None

    user.set_value("name", "Alicia")
    assert user.save()

    assert user.get_value("email") == "stamped@example.com"
    assert user.list_modified_fields() == ["email"]
    row = fetch_rows(storage, "users")[0]
    assert (row["name"], row["email"]) == ("Alicia", None)


def test_remove_then_second_remove_is_noop(
    storage: SqlAlchemyAdapter,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    recorder = RecordingAdapter(storage)
    monkeypatch.setattr(User, "storage_adapter", recorder)
    user = User.load(_create_user())
    assert user is not None

    assert user.remove() == 1
    assert user.is_deleted()
    assert not user.is_valid()
    assert user.remove() == 0

    assert recorder.count("delete") == 1
    assert count_rows(storage, "users") == 0


@pytest.mark.usefixtures("storage")
def test_save_after_remove_returns_false() -> None:
    user = User.load(_create_user())
    assert user is not None
    user.remove()

    user.set_value("name", "Ghost")

    assert not user.save()


@pytest.mark.usefixtures("storage")
def test_free_removes_row_and_drops_from_cache() -> None:
    new_id = _create_user()
    user = User.load(new_id)
    assert user is not None

    assert user.free()

    assert User.get_cache_stats() == 0
    assert User.load(new_id) is None


@pytest.mark.usefixtures("storage")
def test_set_value_after_free_keeps_the_new_value() -> None:
    user = User.load(_create_user())
    assert user is not None
    user.free()

    user.set_value("name", "Ghost")

    assert user.get_value("name") == "Ghost"
    assert user.list_modified_fields() == ["name"]
    assert not user.save()


def test_reload_refreshes_from_storage(storage: SqlAlchemyAdapter) -> None:
    user = User.load(_create_user())
    assert user is not None
    other = User.load(user.id, use_cache=False)
    assert other is not None
    other.set_value("email", "new@example.com")
    other.save()
    user.set_value("name", "Local")

    assert user.reload("email")
    assert user.get_value("email") == "new@example.com"
    assert user.list_modified_fields() == ["name"]

    assert user.reload()
    assert user.get_value("name") == "Alice"
    assert not user.has_changes()
    assert count_rows(storage, "users") == 1


def test_reload_of_vanished_row_marks_deleted(storage: SqlAlchemyAdapter) -> None:
    user = User.load(_create_user())
    assert user is not None
    other = User.load(user.id, use_cache=False)
    assert other is not None
    other.remove()

    assert not user.reload()
    assert user.is_deleted()
    assert count_rows(storage, "users") == 0


def test_reload_swallows_storage_failure(
    storage: SqlAlchemyAdapter,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    user = User.load(_create_user())
    assert user is not None
    monkeypatch.setattr(User, "storage_adapter", RecordingAdapter(storage, fail_on={"select"}))

    assert not user.reload()
    assert user.is_deleted()


@pytest.mark.usefixtures("storage")
def test_cache_maintenance() -> None:
    first = User.load(_create_user("Alice"))
    second = User.load(_create_user("Bob"))
    assert first is not None
    assert second is not None
    first.remove()

    assert User.get_cache_stats() == 2
    assert User.clear_deleted_instances() == 1
    assert User.get_cache_stats() == 1

    User.clear_all_instances()
    assert User.get_cache_stats() == 0
    assert User.cache_objects([second]) == [second]
    assert User.load(second.id) is second


def test_release_saves_pending_changes(storage: SqlAlchemyAdapter) -> None:
    user = User.load(_create_user())
    assert user is not None
    user.set_value("name", "Released")

    assert user.release()
    assert fetch_rows(storage, "users")[0]["name"] == "Released"


def test_release_logs_storage_crash(
    storage: SqlAlchemyAdapter,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    user = User.load(_create_user())
    assert user is not None
    monkeypatch.setattr(User, "storage_adapter", RecordingAdapter(storage, crash_on={"update"}))
    user.set_value("name", "Released")

    with caplog.at_level(logging.ERROR, logger="permanent.domain.entity"):
        assert not user.release()

    assert "Saving User#" in caplog.text
    assert fetch_rows(storage, "users")[0]["name"] == "Alice"


@pytest.mark.usefixtures("storage")
def test_formatting_goes_through_adapter() -> None:
    assert User.escape_identifier() == '"users"'
    assert User.escape_identifier("name") == '"name"'
    assert User.format_value("O'Brien") == "'O''Brien'"
    assert User.format_value(None) == "NULL"
