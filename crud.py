from datetime import date, datetime
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, Type, TypeVar

from pydantic import BaseModel

from config import get_logger
from identifiers import IdentifierGenerator
from schemas import (
    Alert, Allergy, Appointment, AppointmentStatus, BloodRequest,
    BloodRequestStatus, EmergencyContact, EnrollmentRequest, HealthRecord,
    HealthRecordCreate, MedicalCondition, Message, SingleStudent, Student,
    ValidationResult, Vaccination, VisionTest, normalize_keys,
)
from storage import PersistenceAdapter
import validation

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)
ChangeListener = Callable[[str, List[Any]], None]


class Repository(Generic[T]):
    """Ordered, id-addressed collection of immutable records of one entity type.

    Mutations replace records wholesale: ``update`` validates a new record built
    from the old one merged with the partial, so derived fields are recomputed.
    A merge that breaks a model rule is rejected with the model's
    ``pydantic.ValidationError`` and the stored record is left untouched; nothing
    is silently corrected. Every mutation that changes the collection notifies
    the change listener.
    """

    def __init__(
        self,
        name: str,
        model: Type[T],
        prefix: str,
        records: Optional[List[T]] = None,
        newest_first: bool = False,
        on_change: Optional[ChangeListener] = None,
    ):
        self.name = name
        self.model = model
        self.prefix = prefix
        self.newest_first = newest_first
        self.on_change = on_change
        self._records: List[T] = list(records or [])

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._records))

    def __contains__(self, record_id: object) -> bool:
        return any(r.id == record_id for r in self._records)

    def _changed(self) -> None:
        if self.on_change:
            self.on_change(self.name, list(self._records))

    def list(self) -> List[T]:
        return list(self._records)

    def get(self, record_id: str) -> Optional[T]:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def query(self, predicate: Callable[[T], bool]) -> List[T]:
        return [r for r in self._records if predicate(r)]

    def first(self, predicate: Callable[[T], bool]) -> Optional[T]:
        for record in self._records:
            if predicate(record):
                return record
        return None

    def add(self, record: T) -> None:
        if self.newest_first:
            self._records.insert(0, record)
        else:
            self._records.append(record)
        self._changed()

    def _merge(self, current: T, changes: Dict[str, Any]) -> T:
        return self.model.model_validate({**current.model_dump(), **changes})

    def update(self, record_id: str, partial: Dict[str, Any]) -> Optional[T]:
        """Merge ``partial`` onto the record; returns the new record, or None if the id is unknown."""
        for index, current in enumerate(self._records):
            if current.id == record_id:
                changes = normalize_keys(self.model, partial)
                changes.pop("id", None)
                updated = self._merge(current, changes)
                self._records[index] = updated
                self._changed()
                return updated
        return None

    def remove(self, record_id: str) -> bool:
        remaining = [r for r in self._records if r.id != record_id]
        if len(remaining) == len(self._records):
            return False
        self._records = remaining
        self._changed()
        return True

    def remove_where(self, predicate: Callable[[T], bool]) -> int:
        remaining = [r for r in self._records if not predicate(r)]
        removed = len(self._records) - len(remaining)
        if removed:
            self._records = remaining
            self._changed()
        return removed

    def replace_all(self, records: List[T]) -> None:
        self._records = list(records)
        self._changed()


class StudentRepository(Repository[Student]):
    """Stamps ``updated_at`` with the current date on every update."""

    def __init__(self, *args, today: Callable[[], date] = date.today, **kwargs):
        super().__init__(*args, **kwargs)
        self.today = today

    def _merge(self, current: Student, changes: Dict[str, Any]) -> Student:
        changes = {**changes, "updated_at": self.today()}
        return super()._merge(current, changes)


# name -> (model, id prefix, newest first)
COLLECTIONS = {
    "students": (Student, "STU", False),
    "health_records": (HealthRecord, "HR", False),
    "medical_conditions": (MedicalCondition, "MC", False),
    "allergies": (Allergy, "ALG", False),
    "emergency_contacts": (EmergencyContact, "EC", False),
    "vaccinations": (Vaccination, "VAC", False),
    "vision_tests": (VisionTest, "VT", False),
    "alerts": (Alert, "ALR", True),
    "messages": (Message, "MSG", True),
    "blood_requests": (BloodRequest, "BR", False),
    "appointments": (Appointment, "APT", False),
}

# Collections whose records reference a student through `student_id`
STUDENT_DEPENDENTS = (
    "health_records", "medical_conditions", "allergies", "emergency_contacts",
    "vaccinations", "vision_tests", "appointments",
)


class EntityStore:
    """The in-memory record store behind every dashboard page.

    Built once at startup and passed to its consumers. When a persistence adapter
    is supplied every collection is hydrated from it (falling back to ``seed``) and
    written back through it after each mutation.
    """

    def __init__(
        self,
        persistence: Optional[PersistenceAdapter] = None,
        generator: Optional[IdentifierGenerator] = None,
        seed: Optional[Dict[str, List[BaseModel]]] = None,
    ):
        self.persistence = persistence
        self.generator = generator or IdentifierGenerator()
        seed = seed or {}

        self.repositories: Dict[str, Repository] = {}
        for name, (model, prefix, newest_first) in COLLECTIONS.items():
            if persistence is not None:
                records = persistence.hydrate(name, model, seed.get(name, ()))
            else:
                records = list(seed.get(name, ()))
            options = {"records": records, "newest_first": newest_first, "on_change": self._persist}
            if model is Student:
                self.repositories[name] = StudentRepository(
                    name, model, prefix, today=lambda: self.now().date(), **options
                )
            else:
                self.repositories[name] = Repository(name, model, prefix, **options)

    def _persist(self, name: str, records: List[Any]) -> None:
        if self.persistence is not None:
            self.persistence.persist(name, records)

    def flush(self) -> None:
        """Write every collection out, e.g. right after hydrating from seed data."""
        for name, repo in self.repositories.items():
            self._persist(name, repo.list())

    def collection(self, name: str) -> Repository:
        return self.repositories[name]

    # Typed accessors
    @property
    def students(self) -> Repository[Student]:
        return self.repositories["students"]

    @property
    def health_records(self) -> Repository[HealthRecord]:
        return self.repositories["health_records"]

    @property
    def medical_conditions(self) -> Repository[MedicalCondition]:
        return self.repositories["medical_conditions"]

    @property
    def allergies(self) -> Repository[Allergy]:
        return self.repositories["allergies"]

    @property
    def emergency_contacts(self) -> Repository[EmergencyContact]:
        return self.repositories["emergency_contacts"]

    @property
    def vaccinations(self) -> Repository[Vaccination]:
        return self.repositories["vaccinations"]

    @property
    def vision_tests(self) -> Repository[VisionTest]:
        return self.repositories["vision_tests"]

    @property
    def alerts(self) -> Repository[Alert]:
        return self.repositories["alerts"]

    @property
    def messages(self) -> Repository[Message]:
        return self.repositories["messages"]

    @property
    def blood_requests(self) -> Repository[BloodRequest]:
        return self.repositories["blood_requests"]

    @property
    def appointments(self) -> Repository[Appointment]:
        return self.repositories["appointments"]

    # Identifiers
    def new_id(self, name: str) -> str:
        repo = self.repositories[name]
        return self.generator.entity_id(repo.prefix, taken=repo.__contains__)

    def new_student_code(self) -> str:
        codes = {s.student_code for s in self.students}
        return self.generator.student_code(taken=codes.__contains__)

    def new_roll_number(self, class_name: str, section: str) -> str:
        # A roll number already held by another student is skipped, never reused
        rolls = {s.roll_number for s in self.students}
        return self.generator.roll_number(class_name, section, taken=rolls.__contains__)

    def now(self) -> datetime:
        return self.generator.now()

    # Generic CRUD
    def create(self, name: str, data: Dict[str, Any]) -> BaseModel:
        """Build a record from ``data`` (alias or attribute keys), assigning id and timestamps."""
        repo = self.repositories[name]
        fields = normalize_keys(repo.model, data)
        fields["id"] = self.new_id(name)
        stamp = self.now()
        model_fields = repo.model.model_fields
        if "created_at" in model_fields and "created_at" not in fields:
            fields["created_at"] = stamp.date() if repo.model is Student else stamp
        if "updated_at" in model_fields and "updated_at" not in fields:
            fields["updated_at"] = stamp.date()
        if "requested_at" in model_fields and "requested_at" not in fields:
            fields["requested_at"] = stamp
        record = repo.model.model_validate(fields)
        self.add(name, record)
        return record

    def add(self, name: str, record: BaseModel) -> None:
        if name == "emergency_contacts":
            self.add_emergency_contact(record)
            return
        self.repositories[name].add(record)

    def update(self, name: str, record_id: str, partial: Dict[str, Any]) -> Optional[BaseModel]:
        if name == "emergency_contacts":
            return self.update_emergency_contact(record_id, partial)
        return self.repositories[name].update(record_id, partial)

    def remove(self, name: str, record_id: str) -> bool:
        if name == "students":
            return self.delete_student(record_id)
        return self.repositories[name].remove(record_id)

    # Student
    def add_student(self, student: Student) -> None:
        self.students.add(student)

    def get_student(self, student_id: str) -> Optional[Student]:
        return self.students.get(student_id)

    def update_student(self, student_id: str, data: Dict[str, Any]) -> Optional[Student]:
        return self.students.update(student_id, data)

    def delete_student(self, student_id: str) -> bool:
        """Remove a student together with every record that references it."""
        if not self.students.remove(student_id):
            return False

        removed = {}
        for name in STUDENT_DEPENDENTS:
            count = self.repositories[name].remove_where(lambda r: r.student_id == student_id)
            if count:
                removed[name] = count
        alert_count = self.alerts.remove_where(
            lambda a: isinstance(a.target, SingleStudent) and a.target.student_id == student_id
        )
        if alert_count:
            removed["alerts"] = alert_count

        logger.info("Deleted student %s and dependents %s", student_id, removed)
        return True

    def search_students(self, query: str, limit: int = 20) -> List[Student]:
        """Case-insensitive match on name, roll number or student code."""
        terms = [t.lower() for t in query.split() if t]
        if not terms:
            return []

        def matches(student: Student) -> bool:
            haystack = " ".join([
                student.first_name, student.last_name,
                student.roll_number, student.student_code,
            ]).lower()
            return all(term in haystack for term in terms)

        return self.students.query(matches)[:limit]

    def enroll_student(self, request: EnrollmentRequest) -> ValidationResult:
        """Validate and create a student with its contacts, conditions and allergies.

        Nothing is written when validation fails; the result carries the field errors.
        """
        result = validation.validate_student(request.student)
        if not result.valid:
            return result

        student = self.build_student(result.record)
        self.add_student(student)

        for index, contact in enumerate(request.contacts):
            data = contact.model_dump()
            # First contact becomes primary when none is flagged
            if index == 0 and not any(c.is_primary for c in request.contacts):
                data["is_primary"] = True
            self.create("emergency_contacts", {**data, "student_id": student.id})
        for condition in request.conditions:
            self.create("medical_conditions", {**condition.model_dump(), "student_id": student.id})
        for allergy in request.allergies:
            self.create("allergies", {**allergy.model_dump(), "student_id": student.id})

        logger.info("Enrolled student %s (%s)", student.id, student.student_code)
        return ValidationResult(valid=True, record=student)

    def build_student(self, row: "validation.StudentRow") -> Student:
        today = self.now().date()
        return Student(
            id=self.new_id("students"),
            roll_number=self.new_roll_number(row.class_name, row.section),
            student_code=self.new_student_code(),
            first_name=row.first_name,
            last_name=row.last_name,
            date_of_birth=row.date_of_birth,
            gender=row.gender,
            blood_group=row.blood_group,
            class_name=row.class_name,
            section=row.section,
            admission_date=row.admission_date,
            created_at=today,
            updated_at=today,
        )

    # Health records
    def record_checkup(self, checkup: HealthRecordCreate) -> HealthRecord:
        record = HealthRecord(
            id=self.new_id("health_records"),
            created_at=self.now(),
            **checkup.model_dump(),
        )
        self.health_records.add(record)
        return record

    def get_health_records_by_student(self, student_id: str) -> List[HealthRecord]:
        return self.health_records.query(lambda r: r.student_id == student_id)

    def get_medical_conditions_by_student(self, student_id: str) -> List[MedicalCondition]:
        return self.medical_conditions.query(lambda c: c.student_id == student_id)

    def get_allergies_by_student(self, student_id: str) -> List[Allergy]:
        return self.allergies.query(lambda a: a.student_id == student_id)

    def get_vaccinations_by_student(self, student_id: str) -> List[Vaccination]:
        return self.vaccinations.query(lambda v: v.student_id == student_id)

    def get_vision_tests_by_student(self, student_id: str) -> List[VisionTest]:
        return self.vision_tests.query(lambda v: v.student_id == student_id)

    def update_vaccination(self, vaccination_id: str, data: Dict[str, Any]) -> Optional[Vaccination]:
        return self.vaccinations.update(vaccination_id, data)

    # Emergency contacts
    def get_emergency_contacts_by_student(self, student_id: str) -> List[EmergencyContact]:
        return self.emergency_contacts.query(lambda c: c.student_id == student_id)

    def _demote_other_primaries(self, contact: EmergencyContact) -> None:
        others = self.emergency_contacts.query(
            lambda c: c.student_id == contact.student_id and c.is_primary and c.id != contact.id
        )
        for other in others:
            self.emergency_contacts.update(other.id, {"is_primary": False})
            logger.info("Contact %s is no longer primary for student %s", other.id, contact.student_id)

    def add_emergency_contact(self, contact: EmergencyContact) -> None:
        """Add a contact; a new primary contact demotes the student's previous primary."""
        if contact.is_primary:
            self._demote_other_primaries(contact)
        self.emergency_contacts.add(contact)

    def update_emergency_contact(self, contact_id: str, data: Dict[str, Any]) -> Optional[EmergencyContact]:
        updated = self.emergency_contacts.update(contact_id, data)
        if updated is not None and updated.is_primary:
            self._demote_other_primaries(updated)
        return updated

    def emergency_profile(self, student_id: str) -> Optional[Dict[str, Any]]:
        """Everything a doctor needs in an emergency, primary contact first."""
        student = self.get_student(student_id)
        if not student:
            return None

        contacts = sorted(
            self.get_emergency_contacts_by_student(student_id),
            key=lambda c: not c.is_primary,
        )
        return {
            "student": student,
            "blood_group": student.blood_group,
            "active_conditions": [
                c for c in self.get_medical_conditions_by_student(student_id) if c.is_active
            ],
            "allergies": self.get_allergies_by_student(student_id),
            "emergency_contacts": contacts,
        }

    # Alerts
    def add_alert(self, alert: Alert) -> None:
        self.alerts.add(alert)

    def get_alerts_for_student(self, student_id: str) -> List[Alert]:
        return self.alerts.query(lambda a: a.concerns(student_id))

    def mark_alert_read(self, alert_id: str) -> Optional[Alert]:
        return self.alerts.update(alert_id, {"is_read": True})

    def resolve_alert(self, alert_id: str) -> Optional[Alert]:
        return self.alerts.update(alert_id, {"is_read": True, "resolved_at": self.now()})

    def broadcast_alert(self, data: Dict[str, Any]) -> Alert:
        return self.create("alerts", {**data, "target": {"kind": "all"}})

    # Messages
    def add_message(self, message: Message) -> None:
        self.messages.add(message)

    def mark_message_read(self, message_id: str) -> Optional[Message]:
        return self.messages.update(message_id, {"is_read": True})

    def get_conversation(self, user_a: str, user_b: str) -> List[Message]:
        pair = {user_a, user_b}
        return self.messages.query(lambda m: {m.sender_id, m.recipient_id} == pair)

    def get_inbox(self, user_id: str, unread_only: bool = False) -> List[Message]:
        return self.messages.query(
            lambda m: m.recipient_id == user_id and (not unread_only or not m.is_read)
        )

    # Blood requests
    def add_blood_request(self, request: BloodRequest) -> None:
        self.blood_requests.add(request)

    def update_blood_request(self, request_id: str, data: Dict[str, Any]) -> Optional[BloodRequest]:
        return self.blood_requests.update(request_id, data)

    def fulfil_blood_request(self, request_id: str) -> Optional[BloodRequest]:
        return self.blood_requests.update(request_id, {
            "status": BloodRequestStatus.FULFILLED,
            "fulfilled_at": self.now(),
        })

    # Appointments
    def add_appointment(self, appointment: Appointment) -> None:
        self.appointments.add(appointment)

    def update_appointment(self, appointment_id: str, data: Dict[str, Any]) -> Optional[Appointment]:
        return self.appointments.update(appointment_id, data)

    def get_appointments_by_doctor(self, doctor_id: str) -> List[Appointment]:
        return self.appointments.query(lambda a: a.doctor_id == doctor_id)

    def get_today_appointments(self, today: Optional[date] = None) -> List[Appointment]:
        today = today or self.now().date()
        return self.appointments.query(
            lambda a: a.appointment_date.date() == today and a.status == AppointmentStatus.SCHEDULED
        )
