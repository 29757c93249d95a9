"""Entity classes and tables shared by the tests."""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

from sqlalchemy import Column, DateTime, ForeignKey, Integer, MetaData, String, Table, Text

from permanent.domain.entity import PermanentObject
from permanent.domain.errors import UserError
from permanent.domain.schema import EntitySchema

if TYPE_CHECKING:
    from collections.abc import Mapping

metadata = MetaData()

users_table = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("email", String(255), nullable=True),
    Column("created_time", Integer, nullable=True),
    Column("created_ip", String(45), nullable=True),
    Column("update_time", Integer, nullable=True),
)

notes_table = Table(
    "notes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=True),
    Column("body", Text, nullable=False),
    Column("create_date", DateTime, nullable=True),
    Column("create_ip", String(45), nullable=True),
    Column("create_agent", String(255), nullable=True),
    Column("edit_date", DateTime, nullable=True),
)


def check_name(input_data: Mapping[str, object], ref: PermanentObject | None) -> object:
    if "name" not in input_data and ref is not None:
        return ref.get_value("name")
    value = input_data.get("name")
    if not isinstance(value, str) or not value.strip():
        raise UserError("invalidName")
    return value.strip()


def check_email(input_data: Mapping[str, object], ref: PermanentObject | None) -> object:
    if "email" not in input_data:
        return ref.get_value("email") if ref is not None else None
    value = input_data["email"]
    if value is None:
        return None
    if not isinstance(value, str) or "@" not in value:
        raise UserError("invalidEmail")
    return value.lower()


class User(PermanentObject):
    schema = EntitySchema(
        table="users",
        fields=("name", "email", "created_time", "created_ip", "update_time"),
        editable_fields=("name", "email"),
        validator={"name": check_name, "email": check_email},
        create_events=("created",),
        update_events=("update",),
    )


class AuditedUser(User):
    """Records every post-save hook call."""

    saved: ClassVar[list[tuple[dict[str, object], object]]] = []

    @classmethod
    def on_saved(cls, data: Mapping[str, object], subject: object) -> None:
        cls.saved.append((dict(data), subject))


class Note(PermanentObject):
    schema = EntitySchema(
        table="notes",
        fields=("user_id", "body", "create_date", "create_ip", "create_agent", "edit_date"),
        editable_fields=("user_id", "body"),
        domain="note",
    )

    @classmethod
    def check_for_object(cls, data: Mapping[str, object], ref: PermanentObject | None) -> None:
        body = data.get("body")
        if ref is None and not body:
            raise UserError("emptyNote")


def user_row(**overrides: object) -> dict[str, object]:
    row: dict[str, object] = {
        "id": 1,
        "name": "Alice",
        "email": "alice@example.com",
        "created_time": 1_700_000_000,
        "created_ip": "127.0.0.1",
        "update_time": None,
    }
    row.update(overrides)
    return row
