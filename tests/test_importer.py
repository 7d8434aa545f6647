import io

import pandas as pd
import pytest

from importer import BulkImportPipeline, CSVParseError, ImportStateError
from schemas import ImportStage

HEADER = "firstName,lastName,dateOfBirth,gender,bloodGroup,class,section,admissionDate"
FULL_HEADER = HEADER + ",parentName,parentPhone,parentEmail,parentRelationship"


def csv(*rows, header=HEADER):
    return "\n".join((header,) + rows) + "\n"


def row(first="Asha", gender="Female", dob="2012-03-09", klass="7", section="B"):
    return f"{first},Rao,{dob},{gender},B+,{klass},{section},2019-06-01"


@pytest.fixture
def pipeline(store):
    return BulkImportPipeline(store)


def test_three_row_scenario(pipeline):
    summary = pipeline.load(csv(
        row(first="Valid"),
        row(first="BadGender", gender="Unknown"),
        row(first="BadDate", dob="2010/05/15"),
    ))

    assert len(pipeline.valid_rows) == 1
    assert len(pipeline.errors) == 2
    # Rows are file line numbers: the header is line 1
    assert [(e.row, e.field) for e in pipeline.errors] == [(3, "gender"), (4, "dateOfBirth")]
    assert pipeline.errors[1].data["dateOfBirth"] == "2010/05/15"
    assert summary.total_rows == 3
    assert summary.valid_rows == 1
    assert summary.error_rows == 2


def test_partial_commit_creates_only_valid_rows(pipeline, store):
    pipeline.load(csv(
        row(first="One"), row(first="Two"), row(first="Three", klass="13"),
        row(first="Four"), row(first="Five"),
    ))

    result = pipeline.commit()

    assert len(store.students) == 4
    assert [s.first_name for s in store.students] == ["One", "Two", "Four", "Five"]
    assert len(pipeline.errors) == 1
    error = pipeline.errors[0]
    assert (error.row, error.field) == (4, "class")
    assert error.message == "Class must be one of: " + ", ".join(str(n) for n in range(1, 13))
    assert result.stage == ImportStage.COMPLETE
    assert result.progress.committed == 4
    assert result.student_ids == [s.id for s in store.students]


def test_commit_assigns_identifiers_in_file_order(pipeline, store):
    pipeline.load(csv(row(first="A"), row(first="B"), row(first="C", section="A")))
    pipeline.commit()
    assert [s.roll_number for s in store.students] == ["7B-01", "7B-02", "7A-01"]
    assert [s.student_code for s in store.students] == ["SCH2025-001", "SCH2025-002", "SCH2025-003"]


def test_guardian_contact_created_only_when_name_and_phone_present(pipeline, store):
    pipeline.load(csv(
        row(first="Both") + ",Jane Rao,+91-9876543210,jane@email.com,Mother",
        row(first="NameOnly") + ",Jane Rao,,,",
        row(first="None") + ",,,,",
        header=FULL_HEADER,
    ))

    result = pipeline.commit()

    assert len(store.students) == 3
    assert len(result.contact_ids) == 1
    contact = store.emergency_contacts.get(result.contact_ids[0])
    both = store.search_students("Both")[0]
    assert contact.student_id == both.id
    assert contact.is_primary
    assert contact.relationship == "Mother"
    assert contact.email == "jane@email.com"


def test_guardian_relationship_defaults_to_parent(pipeline, store):
    pipeline.load(csv(row() + ",Jane Rao,+91-9876543210,,", header=FULL_HEADER))
    pipeline.commit()
    assert store.emergency_contacts.list()[0].relationship == "Parent"


def test_validation_is_idempotent(pipeline):
    pipeline.parse(csv(row(), row(gender="?")))
    first = pipeline.validate()
    first_errors = list(pipeline.errors)
    second = pipeline.validate()
    assert first == second
    assert pipeline.errors == first_errors


def test_rows_failing_validation_are_never_attempted(store):
    attempted = []
    original = store.add_student

    def spy(student):
        attempted.append(student.first_name)
        original(student)

    store.add_student = spy
    pipeline = BulkImportPipeline(store)
    pipeline.load(csv(row(first="Good"), row(first="Bad", section="Z")))
    pipeline.commit()
    assert attempted == ["Good"]


def test_failing_row_does_not_block_later_rows(store):
    original = store.add_student

    def flaky(student):
        if student.first_name == "Boom":
            raise RuntimeError("write failed")
        original(student)

    store.add_student = flaky
    pipeline = BulkImportPipeline(store)
    pipeline.load(csv(row(first="A"), row(first="Boom"), row(first="C")))

    result = pipeline.commit()

    assert [s.first_name for s in store.students] == ["A", "C"]
    assert [(f.row, f.message) for f in result.failures] == [(3, "write failed")]
    assert result.progress.committed == 2
    assert result.progress.failed == 1
    assert result.progress.percent == 100.0


def test_progress_is_reported_per_row(store):
    seen = []
    pipeline = BulkImportPipeline(store, on_progress=seen.append)
    pipeline.load(csv(row(first="A"), row(first="B"), row(first="C")))
    pipeline.commit()
    assert [(p.committed, p.total) for p in seen] == [(1, 3), (2, 3), (3, 3)]


def test_cooperative_cancel_keeps_committed_rows(store):
    pipeline = BulkImportPipeline(store)

    def stop_after_first(progress):
        if progress.committed == 1:
            pipeline.cancel()

    pipeline.on_progress = stop_after_first
    pipeline.load(csv(row(first="A"), row(first="B"), row(first="C")))

    result = pipeline.commit()

    assert result.cancelled
    assert result.stage == ImportStage.COMPLETE
    assert [s.first_name for s in store.students] == ["A"]
    assert result.progress.attempted == 1
    assert result.progress.total == 3


def test_commit_is_not_idempotent_across_reset(pipeline, store):
    content = csv(row(first="A"), row(first="B"))
    pipeline.load(content)
    pipeline.commit()
    with pytest.raises(ImportStateError):
        pipeline.commit()

    pipeline.reset()
    pipeline.load(content)
    pipeline.commit()
    assert len(store.students) == 4
    assert len({s.roll_number for s in store.students}) == 4


def test_stage_transitions(pipeline):
    assert pipeline.stage == ImportStage.UPLOADED
    with pytest.raises(ImportStateError):
        pipeline.validate()
    with pytest.raises(ImportStateError):
        pipeline.commit()

    pipeline.parse(csv(row()))
    assert pipeline.stage == ImportStage.PARSED
    with pytest.raises(ImportStateError):
        pipeline.parse(csv(row()))

    pipeline.validate()
    assert pipeline.stage == ImportStage.VALIDATED
    pipeline.commit()
    assert pipeline.stage == ImportStage.COMPLETE
    with pytest.raises(ImportStateError):
        pipeline.validate()

    pipeline.reset()
    assert pipeline.stage == ImportStage.UPLOADED
    assert pipeline.rows == []
    assert pipeline.errors == []


@pytest.mark.parametrize("content", [
    "",
    b"\xff\xfe\x00bad",
    "firstName,lastName\nAsha,Rao\n",
    HEADER + ",parentName\n" + row() + ",Jane\n",
    csv(row(), row() + ",EXTRA,MORE"),
])
def test_structural_errors_abort_before_any_row(pipeline, store, content):
    with pytest.raises(CSVParseError):
        pipeline.parse(content)
    assert pipeline.stage == ImportStage.UPLOADED
    assert pipeline.rows == []
    assert len(store.students) == 0


def test_missing_columns_are_named(pipeline):
    with pytest.raises(CSVParseError, match="section, admissionDate"):
        pipeline.parse("firstName,lastName,dateOfBirth,gender,bloodGroup,class\n")


def test_blank_lines_are_skipped_but_keep_numbering(pipeline):
    pipeline.load(HEADER + "\n" + row() + "\n\n" + row(gender="X") + "\n")
    assert [n for n, _ in pipeline.rows] == [2, 4]
    assert pipeline.errors[0].row == 4


def test_bytes_with_byte_order_mark(pipeline):
    pipeline.parse(("\ufeff" + csv(row())).encode("utf-8"))
    assert pipeline.columns[0] == "firstName"
    assert pipeline.validate().valid_rows == 1


def test_parse_file(pipeline, tmp_path):
    path = tmp_path / "students.csv"
    path.write_text(csv(row(), row()), encoding="utf-8")
    assert pipeline.parse_file(path) == 2

    with pytest.raises(CSVParseError):
        BulkImportPipeline(pipeline.store).parse_file(tmp_path / "missing.csv")


def test_error_report_lists_original_values(pipeline):
    pipeline.load(csv(row(first="Ok"), row(first="", gender="Unknown")))
    report = pipeline.error_report()

    assert list(report.columns[:3]) == ["Row", "Field", "Error"]
    assert list(report.columns[3:]) == HEADER.split(",")
    assert report["Row"].tolist() == [3, 3]
    assert report["Field"].tolist() == ["firstName", "gender"]
    assert (report["gender"] == "Unknown").all()

    reread = pd.read_csv(io.StringIO(pipeline.error_report_csv()), dtype=str, keep_default_na=False)
    assert reread.shape == (2, 3 + len(HEADER.split(",")))


def test_error_report_is_empty_for_clean_file(pipeline):
    pipeline.load(csv(row()))
    assert pipeline.error_report().empty


def test_template_is_a_valid_import(pipeline):
    template = BulkImportPipeline.template_csv()
    assert template.splitlines()[0] == FULL_HEADER
    summary = pipeline.load(template)
    assert summary.valid_rows == 1
    assert pipeline.commit().contact_ids
