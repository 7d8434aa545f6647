from datetime import date

import pytest

from schemas import BloodGroup, Gender
from tests.conftest import student_row
from validation import validate_health_record, validate_student


def errors_by_field(result):
    return {e.field: e.message for e in result.errors}


def test_valid_row_produces_typed_record():
    result = validate_student(student_row())
    assert result.valid
    assert result.errors == []
    record = result.record
    assert record.gender == Gender.FEMALE
    assert record.blood_group == BloodGroup.B_POS
    assert record.date_of_birth == date(2012, 3, 9)
    assert record.class_name == "7"


def test_values_are_trimmed():
    result = validate_student(student_row(firstName="  Asha ", section=" B"))
    assert result.record.first_name == "Asha"
    assert result.record.section == "B"


def test_errors_are_accumulated_not_short_circuited():
    result = validate_student(student_row(
        firstName="", gender="Unknown", dateOfBirth="2010/05/15", bloodGroup="C+",
    ))
    assert not result.valid
    assert result.record is None
    errors = errors_by_field(result)
    assert set(errors) == {"firstName", "gender", "dateOfBirth", "bloodGroup"}
    assert errors["firstName"] == "First name is required"
    assert errors["gender"] == "Gender must be one of: Male, Female, Other"
    assert errors["dateOfBirth"] == "Invalid date format. Use YYYY-MM-DD"


def test_missing_keys_are_reported_as_required():
    result = validate_student({})
    errors = errors_by_field(result)
    assert errors["lastName"] == "Last name is required"
    assert errors["admissionDate"] == "Admission date is required (format: YYYY-MM-DD)"
    assert len(errors) == 8


@pytest.mark.parametrize("value", ["15-05-2010", "2010-5-15", "05/15/2010", "20100515", "2010-05-15T00:00"])
def test_ambiguous_or_malformed_dates_are_rejected(value):
    errors = errors_by_field(validate_student(student_row(dateOfBirth=value)))
    assert errors["dateOfBirth"] == "Invalid date format. Use YYYY-MM-DD"


def test_impossible_calendar_date_is_rejected():
    errors = errors_by_field(validate_student(student_row(admissionDate="2019-02-30")))
    assert errors["admissionDate"] == "2019-02-30 is not a valid calendar date"


@pytest.mark.parametrize("field, value", [
    ("class", "0"), ("class", "13"), ("class", "seven"),
    ("section", "E"), ("section", "a"),
    ("bloodGroup", "AB"), ("gender", "male"),
])
def test_enum_membership(field, value):
    assert field in errors_by_field(validate_student(student_row(**{field: value})))


def test_admission_before_birth_is_a_record_error():
    errors = errors_by_field(validate_student(student_row(dateOfBirth="2015-01-01", admissionDate="2014-06-01")))
    assert errors == {"admissionDate": "Admission date cannot be before date of birth"}


def test_guardian_fields_are_optional():
    result = validate_student(student_row(parentName="", parentPhone="", parentEmail=""))
    assert result.valid
    assert result.record.parent_name is None
    assert not result.record.has_contact


def test_guardian_contact_requires_name_and_phone():
    only_name = validate_student(student_row(parentName="Jane Doe"))
    assert only_name.valid and not only_name.record.has_contact

    both = validate_student(student_row(parentName="Jane Doe", parentPhone="+91-9876543210"))
    assert both.record.has_contact


def test_guardian_phone_and_email_formats():
    errors = errors_by_field(validate_student(student_row(
        parentName="Jane Doe", parentPhone="call me", parentEmail="not-an-email",
    )))
    assert set(errors) == {"parentPhone", "parentEmail"}


def test_guardian_email_is_normalized():
    result = validate_student(student_row(parentEmail="Parent@Email.com"))
    assert result.record.parent_email == "Parent@email.com"


def test_health_record_payload_validation():
    ok = validate_health_record({
        "studentId": "STU-0001", "doctorId": "doc-001", "checkupDate": "2025-05-01",
        "height": 140, "weight": 35, "bloodPressure": "100/65", "temperature": 36.7,
    })
    assert ok.valid

    bad = validate_health_record({
        "studentId": "STU-0001", "doctorId": "doc-001", "checkupDate": "yesterday",
        "height": 0, "weight": 35, "bloodPressure": "100/65", "temperature": 36.7,
    })
    assert not bad.valid
    assert {"checkupDate", "height"} <= set(errors_by_field(bad))
