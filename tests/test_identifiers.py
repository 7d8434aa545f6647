import pytest

from identifiers import IdentifierGenerator, IdentifierRangeExhausted
from tests.conftest import NOW


def test_entity_ids_are_sequential_per_prefix():
    gen = IdentifierGenerator(clock=lambda: NOW)
    assert gen.entity_id("STU") == "STU-0001"
    assert gen.entity_id("STU") == "STU-0002"
    assert gen.entity_id("HR") == "HR-0001"


def test_taken_candidates_are_skipped():
    gen = IdentifierGenerator(clock=lambda: NOW)
    taken = {"STU-0001", "STU-0002"}
    assert gen.entity_id("STU", taken=taken.__contains__) == "STU-0003"


def test_student_code_uses_clock_year():
    gen = IdentifierGenerator(clock=lambda: NOW)
    assert gen.student_code() == "SCH2025-001"
    assert gen.student_code(taken={"SCH2025-002"}.__contains__) == "SCH2025-003"


def test_roll_numbers_are_sequenced_per_class_and_section():
    gen = IdentifierGenerator(clock=lambda: NOW)
    assert gen.roll_number("7", "B") == "7B-01"
    assert gen.roll_number("7", "B") == "7B-02"
    assert gen.roll_number("7", "A") == "7A-01"
    assert gen.roll_number("12", "D") == "12D-01"


def test_reset_restarts_counters_but_taken_check_still_applies():
    gen = IdentifierGenerator(clock=lambda: NOW)
    gen.entity_id("MSG")
    gen.reset()
    assert gen.entity_id("MSG") == "MSG-0001"
    assert gen.entity_id("MSG", taken={"MSG-0002"}.__contains__) == "MSG-0003"


def test_student_codes_stop_at_three_digits():
    gen = IdentifierGenerator(clock=lambda: NOW)
    taken = {f"SCH2025-{n:03d}" for n in range(1, 999)}
    assert gen.student_code(taken=taken.__contains__) == "SCH2025-999"
    with pytest.raises(IdentifierRangeExhausted):
        gen.student_code()


def test_full_roll_range_raises():
    gen = IdentifierGenerator(clock=lambda: NOW)
    taken = {f"7B-{n:02d}" for n in range(1, 100)}
    with pytest.raises(IdentifierRangeExhausted):
        gen.roll_number("7", "B", taken=taken.__contains__)
    assert gen.roll_number("7", "C", taken=taken.__contains__) == "7C-01"
