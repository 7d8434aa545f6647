import io
import warnings
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import pandas as pd

from config import get_logger
from crud import EntityStore
from schemas import (
    CommitFailure, EmergencyContact, ImportProgress, ImportResult, ImportRowError,
    ImportStage, ImportSummary, Student,
)
import validation
from validation import CONTACT_COLUMNS, REQUIRED_COLUMNS, StudentRow

logger = get_logger(__name__)

ProgressCallback = Callable[[ImportProgress], None]

TEMPLATE_ROW = {
    "firstName": "John",
    "lastName": "Doe",
    "dateOfBirth": "2010-05-15",
    "gender": "Male",
    "bloodGroup": "O+",
    "class": "10",
    "section": "A",
    "admissionDate": "2024-04-01",
    "parentName": "Jane Doe",
    "parentPhone": "+91-9876543210",
    "parentEmail": "parent@email.com",
    "parentRelationship": "Father",
}


class CSVParseError(ValueError):
    """The file could not be read as a student CSV; no row was evaluated."""


class ImportStateError(RuntimeError):
    """An operation was called in the wrong pipeline stage."""


class BulkImportPipeline:
    """Uploaded -> Parsed -> Validated -> Importing -> Complete, with ``reset`` back to Uploaded.

    Rows are validated independently and only the valid ones are committed.
    ``commit`` is not idempotent: it may run once per validation, and a second
    import of the same file requires ``reset`` and will create new students.
    """

    def __init__(self, store: EntityStore, on_progress: Optional[ProgressCallback] = None):
        self.store = store
        self.on_progress = on_progress
        self.reset()

    def reset(self) -> None:
        self.stage = ImportStage.UPLOADED
        self.columns: List[str] = []
        self.rows: List[Tuple[int, Dict[str, str]]] = []
        self.valid_rows: List[Tuple[int, StudentRow]] = []
        self.errors: List[ImportRowError] = []
        self.progress = ImportProgress()
        self.result: Optional[ImportResult] = None
        self._cancel_requested = False

    def _require(self, *stages: ImportStage) -> None:
        if self.stage not in stages:
            allowed = ", ".join(s.value for s in stages)
            raise ImportStateError(f"Pipeline is {self.stage.value}; expected {allowed}")

    def _advance(self, stage: ImportStage) -> None:
        logger.debug("Import pipeline %s -> %s", self.stage.value, stage.value)
        self.stage = stage

    # Parsing
    def parse(self, content: Union[str, bytes]) -> int:
        """Parse CSV text or bytes; returns the number of data rows."""
        self._require(ImportStage.UPLOADED)

        if isinstance(content, bytes):
            try:
                content = content.decode("utf-8-sig")
            except UnicodeDecodeError as exc:
                raise CSVParseError(f"Failed to parse CSV: file is not UTF-8 text ({exc})") from exc
        content = content.lstrip("\ufeff")

        try:
            with warnings.catch_warnings():
                # Extra fields on a row only warn in pandas; they are fatal here
                warnings.simplefilter("error", pd.errors.ParserWarning)
                # Blank lines are kept as empty rows so the index tracks the file line
                frame = pd.read_csv(
                    io.StringIO(content),
                    dtype=str,
                    keep_default_na=False,
                    skip_blank_lines=False,
                    index_col=False,
                )
        except (pd.errors.ParserError, pd.errors.EmptyDataError, pd.errors.ParserWarning) as exc:
            raise CSVParseError(f"Failed to parse CSV: {exc}") from exc

        frame.columns = [str(c).strip() for c in frame.columns]
        missing = [c for c in REQUIRED_COLUMNS if c not in frame.columns]
        if missing:
            raise CSVParseError(f"Missing required columns: {', '.join(missing)}")
        contact_columns = [c for c in CONTACT_COLUMNS if c in frame.columns]
        if contact_columns and len(contact_columns) != len(CONTACT_COLUMNS):
            absent = [c for c in CONTACT_COLUMNS if c not in frame.columns]
            raise CSVParseError(
                f"Parent columns must be supplied together; missing: {', '.join(absent)}"
            )

        frame = frame.fillna("")
        blank = (frame.apply(lambda col: col.str.strip()) == "").all(axis=1)
        frame = frame[~blank]

        self.columns = list(frame.columns)
        # Header is line 1 and the frame index is zero-based
        self.rows = [
            (int(index) + 2, {k: str(v) for k, v in record.items()})
            for index, record in zip(frame.index, frame.to_dict(orient="records"))
        ]
        self._advance(ImportStage.PARSED)
        logger.info("Parsed %d rows", len(self.rows))
        return len(self.rows)

    def parse_file(self, path: Union[str, Path]) -> int:
        try:
            content = Path(path).read_bytes()
        except OSError as exc:
            raise CSVParseError(f"Failed to read {path}: {exc}") from exc
        return self.parse(content)

    # Validation
    def validate(self) -> ImportSummary:
        """Partition the parsed rows; running it again yields the same partition."""
        self._require(ImportStage.PARSED, ImportStage.VALIDATED)

        valid_rows: List[Tuple[int, StudentRow]] = []
        errors: List[ImportRowError] = []
        for row_number, raw in self.rows:
            result = validation.validate_student(raw)
            if result.valid:
                valid_rows.append((row_number, result.record))
                continue
            for error in result.errors:
                errors.append(ImportRowError(
                    row=row_number, field=error.field, message=error.message, data=raw,
                ))

        self.valid_rows = valid_rows
        self.errors = errors
        self._advance(ImportStage.VALIDATED)

        summary = self.summary()
        logger.info(
            "Validated %d rows: %d valid, %d with errors",
            summary.total_rows, summary.valid_rows, summary.error_rows,
        )
        return summary

    def summary(self) -> ImportSummary:
        return ImportSummary(
            total_rows=len(self.rows),
            valid_rows=len(self.valid_rows),
            error_rows=len({e.row for e in self.errors}),
            error_count=len(self.errors),
        )

    def load(self, content: Union[str, bytes]) -> ImportSummary:
        """Parse and validate in one step."""
        self.parse(content)
        return self.validate()

    # Commit
    def cancel(self) -> None:
        """Stop committing after the current row; rows already committed stay in the store."""
        self._cancel_requested = True

    def _build_records(self, row: StudentRow) -> Tuple[Student, Optional[EmergencyContact]]:
        student = self.store.build_student(row)
        contact = None
        if row.has_contact:
            contact = EmergencyContact(
                id=self.store.new_id("emergency_contacts"),
                student_id=student.id,
                contact_name=row.parent_name,
                relationship=row.parent_relationship or "Parent",
                phone_primary=row.parent_phone,
                email=row.parent_email,
                is_primary=True,
                created_at=self.store.now(),
            )
        return student, contact

    def _report_progress(self) -> None:
        if self.on_progress:
            self.on_progress(self.progress.model_copy())

    def commit(self) -> ImportResult:
        """Create a student (and its guardian contact) for every valid row, in file order.

        A row that fails to commit is recorded and skipped; later rows still run.
        """
        self._require(ImportStage.VALIDATED)
        self._advance(ImportStage.IMPORTING)
        self.progress = ImportProgress(total=len(self.valid_rows))

        student_ids: List[str] = []
        contact_ids: List[str] = []
        failures: List[CommitFailure] = []
        cancelled = False

        for row_number, row in self.valid_rows:
            if self._cancel_requested:
                cancelled = True
                logger.warning("Import cancelled after %d of %d rows", self.progress.attempted, self.progress.total)
                break
            try:
                student, contact = self._build_records(row)
                self.store.add_student(student)
                if contact is not None:
                    self.store.add_emergency_contact(contact)
            except Exception as exc:
                logger.error("Error importing row %d", row_number, exc_info=True)
                failures.append(CommitFailure(row=row_number, message=str(exc)))
                self.progress.failed += 1
            else:
                student_ids.append(student.id)
                if contact is not None:
                    contact_ids.append(contact.id)
                self.progress.committed += 1
            self._report_progress()

        self._advance(ImportStage.COMPLETE)
        self.result = ImportResult(
            stage=self.stage,
            summary=self.summary(),
            progress=self.progress.model_copy(),
            student_ids=student_ids,
            contact_ids=contact_ids,
            failures=failures,
            cancelled=cancelled,
        )
        logger.info(
            "Imported %d students (%d failed, %d rejected by validation)",
            self.progress.committed, self.progress.failed, self.result.summary.error_rows,
        )
        return self.result

    # Reports
    def error_report(self) -> pd.DataFrame:
        """One row per validation failure: Row, Field, Error, then the submitted values."""
        report_columns = ["Row", "Field", "Error"] + self.columns
        records = [
            {"Row": e.row, "Field": e.field, "Error": e.message, **e.data}
            for e in self.errors
        ]
        return pd.DataFrame(records, columns=report_columns)

    def error_report_csv(self) -> str:
        return self.error_report().to_csv(index=False)

    @staticmethod
    def template_csv() -> str:
        return pd.DataFrame([TEMPLATE_ROW], columns=list(REQUIRED_COLUMNS + CONTACT_COLUMNS)).to_csv(index=False)
