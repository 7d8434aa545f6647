"""Field- and record-level checks shared by manual enrollment and the bulk importer.

Every check runs on every call and all failures are reported together, so a
caller can show the operator every problem with a row in one pass. Nothing
here touches the store.
"""
import math
import re
from datetime import date
from typing import Any, Mapping, Optional, Type

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError

from schemas import (
    CLASSES, SECTIONS, BaseSchema, BloodGroup, FieldError, Gender,
    HealthRecordCreate, ValidationResult,
)

GENDERS = tuple(g.value for g in Gender)
BLOOD_GROUPS = tuple(b.value for b in BloodGroup)

REQUIRED_COLUMNS = (
    "firstName", "lastName", "dateOfBirth", "gender", "bloodGroup",
    "class", "section", "admissionDate",
)
CONTACT_COLUMNS = ("parentName", "parentPhone", "parentEmail", "parentRelationship")

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
PHONE_PATTERN = re.compile(r"^\+?[0-9][0-9\s\-()]{6,19}$")


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return str(value).strip() == ""


def _required(value: Any, message: str) -> str:
    if _is_blank(value):
        raise PydanticCustomError("missing", message)
    return str(value).strip()


def _optional(value: Any) -> Optional[str]:
    return None if _is_blank(value) else str(value).strip()


def _one_of(value: Any, allowed: tuple, label: str) -> str:
    text = "" if _is_blank(value) else str(value).strip()
    if text not in allowed:
        raise PydanticCustomError(
            "enum", "{label} must be one of: {allowed}",
            {"label": label, "allowed": ", ".join(allowed)},
        )
    return text


def _calendar_date(value: Any, label: str) -> date:
    """Accept only ``YYYY-MM-DD`` naming a real calendar day; nothing is guessed."""
    if isinstance(value, date):
        return value
    text = _required(value, f"{label} is required (format: YYYY-MM-DD)")
    if not DATE_PATTERN.match(text):
        raise PydanticCustomError("date_format", "Invalid date format. Use YYYY-MM-DD")
    try:
        return date.fromisoformat(text)
    except ValueError:
        raise PydanticCustomError("date_value", "{value} is not a valid calendar date", {"value": text})


class StudentRow(BaseSchema):
    """A candidate student, as typed into the enrollment form or read from one CSV row."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, validate_default=True,
    )

    first_name: str = None
    last_name: str = None
    date_of_birth: date = None
    gender: Gender = None
    blood_group: BloodGroup = None
    class_name: str = Field(None, alias="class")
    section: str = None
    admission_date: date = None
    parent_name: Optional[str] = None
    parent_phone: Optional[str] = None
    parent_email: Optional[str] = None
    parent_relationship: Optional[str] = None

    @field_validator("first_name", mode="before")
    @classmethod
    def check_first_name(cls, v):
        return _required(v, "First name is required")

    @field_validator("last_name", mode="before")
    @classmethod
    def check_last_name(cls, v):
        return _required(v, "Last name is required")

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def check_date_of_birth(cls, v):
        return _calendar_date(v, "Date of birth")

    @field_validator("gender", mode="before")
    @classmethod
    def check_gender(cls, v):
        return _one_of(v, GENDERS, "Gender")

    @field_validator("blood_group", mode="before")
    @classmethod
    def check_blood_group(cls, v):
        return _one_of(v, BLOOD_GROUPS, "Blood group")

    @field_validator("class_name", mode="before")
    @classmethod
    def check_class(cls, v):
        return _one_of(v, CLASSES, "Class")

    @field_validator("section", mode="before")
    @classmethod
    def check_section(cls, v):
        return _one_of(v, SECTIONS, "Section")

    @field_validator("admission_date", mode="before")
    @classmethod
    def check_admission_date(cls, v):
        return _calendar_date(v, "Admission date")

    @field_validator("parent_name", "parent_relationship", mode="before")
    @classmethod
    def strip_optional(cls, v):
        return _optional(v)

    @field_validator("parent_phone", mode="before")
    @classmethod
    def check_parent_phone(cls, v):
        phone = _optional(v)
        if phone is not None and not PHONE_PATTERN.match(phone):
            raise PydanticCustomError("phone", "Parent phone must be a valid phone number")
        return phone

    @field_validator("parent_email", mode="before")
    @classmethod
    def check_parent_email(cls, v):
        email = _optional(v)
        if email is None:
            return None
        try:
            return validate_email(email, check_deliverability=False).normalized
        except EmailNotValidError:
            raise PydanticCustomError("email", "Parent email must be a valid email address")

    @model_validator(mode="after")
    def check_dates_in_order(self):
        if self.admission_date < self.date_of_birth:
            raise PydanticCustomError(
                "date_order", "Admission date cannot be before date of birth",
                {"field": "admissionDate"},
            )
        return self

    @property
    def has_contact(self) -> bool:
        return bool(self.parent_name and self.parent_phone)


def _field_name(model_cls: Type[BaseModel], error: dict) -> str:
    if error["loc"]:
        name = str(error["loc"][0])
        field = model_cls.model_fields.get(name)
        return field.alias if field is not None and field.alias else name
    return (error.get("ctx") or {}).get("field", "record")


def validate_payload(model_cls: Type[BaseModel], data: Mapping[str, Any]) -> ValidationResult:
    """Validate ``data`` against ``model_cls``; one verdict, every field error collected."""
    try:
        record = model_cls.model_validate(dict(data))
    except ValidationError as exc:
        errors = [
            FieldError(field=_field_name(model_cls, err), message=err["msg"])
            for err in exc.errors()
        ]
        return ValidationResult(valid=False, errors=errors)
    return ValidationResult(valid=True, record=record)


def validate_student(data: Mapping[str, Any]) -> ValidationResult:
    return validate_payload(StudentRow, data)


def validate_health_record(data: Mapping[str, Any]) -> ValidationResult:
    return validate_payload(HealthRecordCreate, data)
