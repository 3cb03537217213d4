"""PAYDESK — Record and filter models.

Every collection has a fixed record type and a closed set of equality
filters. Attribute names are snake_case; the document store keeps the
camelCase field names the back office has always used. Documents are
validated on the way in, so a malformed field never reaches a consumer.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from paydesk.canonical import normalize_filters
from paydesk.exceptions import InvalidDocument, UnknownCollection

if TYPE_CHECKING:
    from paydesk.storage import Document

PayType = Literal["hourly", "per_diem"]
Role = Literal["admin", "standard"]


def store_field(name: str) -> str:
    """Map an attribute name to its document field name (pay_rate -> payRate)."""
    return to_camel(name)


# ─── Records ──────────────────────────────────────────────────────


class Record(BaseModel):
    """Base class for stored records. ``id`` is unique within a collection."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    id: str

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(name for name in cls.model_fields if name != "id")

    @classmethod
    def from_document(cls, doc: Document) -> Record:
        """Build a record from a stored document.

        Missing fields take their defaults and unknown fields are ignored.

        Raises:
            ValidationError: If a stored field has the wrong type.
        """
        return cls.model_validate({**doc.data, "id": doc.id})

    @classmethod
    def encode_fields(cls, updates: Mapping[str, Any]) -> dict[str, Any]:
        """Validate a partial update and translate it to store field names.

        Raises:
            ValueError: On ``id``, an unknown attribute or a value of the
                wrong type (pydantic's ``ValidationError`` is a ``ValueError``).
        """
        known = set(cls.field_names())
        for name in updates:
            if name == "id":
                raise ValueError("Record id cannot be updated")
            if name not in known:
                raise ValueError(f"{cls.__name__} has no field {name!r}")
        checked = cls.model_validate({**updates, "id": ""})
        return checked.model_dump(by_alias=True, include=set(updates))

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"id"})

    def merged(self, updates: Mapping[str, Any]) -> Record:
        """Return a validated copy with ``updates`` applied."""
        return type(self).model_validate({**self.model_dump(), **dict(updates)})


class Company(Record):
    name: str = ""
    active: bool = True
    next_check_number: Optional[int] = Field(None, ge=1)


class Client(Record):
    name: str = ""
    company_id: str = ""
    active: bool = True
    miscellaneous: bool = False


class Employee(Record):
    name: str = ""
    client_id: str = ""
    company_id: str = ""
    pay_rate: float = Field(0.0, ge=0)
    pay_type: PayType = "hourly"
    start_date: str = ""
    active: bool = True


class User(Record):
    email: str = ""
    role: Role = "standard"
    active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class Check(Record):
    employee_id: str = ""
    company_id: str = ""
    amount: float = 0.0
    date: str = ""
    client_id: Optional[str] = None
    employee_name: str = ""
    memo: str = ""
    check_number: Optional[int] = None
    status: str = "pending"
    reviewed: bool = False
    created_by: Optional[str] = None
    made_by_name: str = ""
    hours: float = 0.0
    ot_hours: float = 0.0
    holiday_hours: float = 0.0
    pay_rate: float = 0.0
    pay_type: str = ""
    test_print: bool = False


class Bank(Record):
    bank_name: str = ""
    routing_number: str = ""
    account_number: str = ""
    starting_check_number: str = ""
    company_id: Optional[str] = None

    @field_validator("starting_check_number", "routing_number", "account_number", mode="before")
    @classmethod
    def digits_as_text(cls, v: Any) -> Any:
        # Older bank documents stored these as numbers
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


# ─── Filters ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class RecordFilter:
    """Conjunction of equality predicates; ``None`` fields are not applied."""

    def predicates(self) -> dict[str, Any]:
        return {
            store_field(f.name): getattr(self, f.name)
            for f in dataclasses.fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass(frozen=True)
class CompanyFilter(RecordFilter):
    active: Optional[bool] = None


@dataclass(frozen=True)
class ClientFilter(RecordFilter):
    company_id: Optional[str] = None
    active: Optional[bool] = None


@dataclass(frozen=True)
class EmployeeFilter(RecordFilter):
    company_id: Optional[str] = None
    client_id: Optional[str] = None
    active: Optional[bool] = None


@dataclass(frozen=True)
class UserFilter(RecordFilter):
    role: Optional[str] = None
    active: Optional[bool] = None


@dataclass(frozen=True)
class CheckFilter(RecordFilter):
    company_id: Optional[str] = None
    employee_id: Optional[str] = None
    created_by: Optional[str] = None
    reviewed: Optional[bool] = None


@dataclass(frozen=True)
class BankFilter(RecordFilter):
    company_id: Optional[str] = None


# ─── Collections ──────────────────────────────────────────────────


@dataclass(frozen=True)
class Collection:
    name: str
    record_type: type[Record]
    filter_type: type[RecordFilter]

    def decode(self, doc: Document) -> Record:
        try:
            return self.record_type.from_document(doc)
        except ValidationError as e:
            raise InvalidDocument(self.name, doc.id, e) from e

    def predicates(self, filters: Any = None) -> dict[str, Any]:
        """Normalize ``filters`` for this collection.

        Filter structs must belong to this collection; plain mappings are
        passed through with ``None`` values dropped.
        """
        if isinstance(filters, RecordFilter) and not isinstance(filters, self.filter_type):
            raise TypeError(
                f"{type(filters).__name__} cannot filter collection {self.name!r}"
            )
        return normalize_filters(filters)


COMPANIES = Collection("companies", Company, CompanyFilter)
CLIENTS = Collection("clients", Client, ClientFilter)
EMPLOYEES = Collection("employees", Employee, EmployeeFilter)
USERS = Collection("users", User, UserFilter)
CHECKS = Collection("checks", Check, CheckFilter)
BANKS = Collection("banks", Bank, BankFilter)

COLLECTIONS: dict[str, Collection] = {
    c.name: c for c in (COMPANIES, CLIENTS, EMPLOYEES, USERS, CHECKS, BANKS)
}


def get_collection(collection: str | Collection) -> Collection:
    """Resolve a collection descriptor by name."""
    if isinstance(collection, Collection):
        return collection
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise UnknownCollection(f"Unknown collection: {collection!r}") from None
