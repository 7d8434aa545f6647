from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# Base Schemas
class BaseSchema(BaseModel):
    """Snake_case attributes in Python, camelCase keys on the wire and in snapshots."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def normalize_keys(model_cls: Type[BaseModel], data: Dict[str, Any]) -> Dict[str, Any]:
    """Map alias keys (``firstName``) onto attribute names (``first_name``); other keys pass through."""
    by_alias = {}
    for name, field in model_cls.model_fields.items():
        by_alias[name] = name
        if field.alias:
            by_alias[field.alias] = name
    return {by_alias.get(key, key): value for key, value in data.items()}


# Enumerations
class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"

class BloodGroup(str, Enum):
    A_POS = "A+"
    A_NEG = "A-"
    B_POS = "B+"
    B_NEG = "B-"
    AB_POS = "AB+"
    AB_NEG = "AB-"
    O_POS = "O+"
    O_NEG = "O-"

class BMICategory(str, Enum):
    UNDERWEIGHT = "Underweight"
    NORMAL = "Normal"
    OVERWEIGHT = "Overweight"
    OBESE = "Obese"

class ConditionSeverity(str, Enum):
    MILD = "Mild"
    MODERATE = "Moderate"
    SEVERE = "Severe"

class AllergyType(str, Enum):
    FOOD = "Food"
    DRUG = "Drug"
    ENVIRONMENTAL = "Environmental"

class AllergySeverity(str, Enum):
    MILD = "Mild"
    MODERATE = "Moderate"
    SEVERE = "Severe"
    LIFE_THREATENING = "Life-threatening"

class VaccinationStatus(str, Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    OVERDUE = "Overdue"

class VisionResult(str, Enum):
    PASSED = "Passed"
    FAILED = "Failed"

class AlertType(str, Enum):
    MEDICAL_EMERGENCY = "Medical Emergency"
    VACCINATION_DUE = "Vaccination Due"
    CHECKUP_REMINDER = "Checkup Reminder"
    BLOOD_REQUEST = "Blood Request"

class AlertSeverity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

class BloodRequestUrgency(str, Enum):
    NORMAL = "Normal"
    URGENT = "Urgent"
    CRITICAL = "Critical"

class BloodRequestStatus(str, Enum):
    PENDING = "Pending"
    FULFILLED = "Fulfilled"
    CANCELLED = "Cancelled"

class AppointmentType(str, Enum):
    REGULAR_CHECKUP = "Regular Checkup"
    FOLLOW_UP = "Follow-up"
    EMERGENCY = "Emergency"
    VACCINATION = "Vaccination"

class AppointmentStatus(str, Enum):
    SCHEDULED = "Scheduled"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    NO_SHOW = "No-show"


CLASSES = tuple(str(n) for n in range(1, 13))
SECTIONS = ("A", "B", "C", "D")


# BMI derivation
def calculate_bmi(height_cm: float, weight_kg: float) -> float:
    """BMI rounded to one decimal place; 0.0 when height is not positive."""
    if not height_cm or height_cm <= 0:
        return 0.0
    return round(weight_kg / ((height_cm / 100) ** 2), 1)

def classify_bmi(bmi: float) -> BMICategory:
    # Each threshold opens the next band: 18.5 is Normal, 25.0 Overweight, 30.0 Obese
    if bmi < 18.5:
        return BMICategory.UNDERWEIGHT
    if bmi < 25:
        return BMICategory.NORMAL
    if bmi < 30:
        return BMICategory.OVERWEIGHT
    return BMICategory.OBESE


# Student
class Student(BaseSchema):
    id: str
    roll_number: str
    student_code: str = Field(..., alias="studentId")
    first_name: str
    last_name: str
    date_of_birth: date
    gender: Gender
    blood_group: BloodGroup
    class_name: str = Field(..., alias="class")
    section: str
    admission_date: date
    profile_image: Optional[str] = None
    created_at: date
    updated_at: date

    @field_validator("first_name", "last_name")
    @classmethod
    def check_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("class_name")
    @classmethod
    def check_class(cls, v: str) -> str:
        if v not in CLASSES:
            raise ValueError(f"must be one of: {', '.join(CLASSES)}")
        return v

    @field_validator("section")
    @classmethod
    def check_section(cls, v: str) -> str:
        if v not in SECTIONS:
            raise ValueError(f"must be one of: {', '.join(SECTIONS)}")
        return v

    @model_validator(mode="after")
    def check_dates_in_order(self):
        if self.admission_date < self.date_of_birth:
            raise ValueError("admissionDate cannot be before dateOfBirth")
        return self

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

# Health Records
class HealthRecord(BaseSchema):
    id: str
    student_id: str
    doctor_id: str
    checkup_date: date
    height: float = Field(..., gt=0, description="centimetres")
    weight: float = Field(..., gt=0, description="kilograms")
    bmi: float = 0.0
    bmi_category: BMICategory = BMICategory.NORMAL
    blood_pressure: str
    temperature: float
    pulse_rate: Optional[int] = None
    notes: str = ""
    next_checkup_date: Optional[date] = None
    created_at: datetime

    @model_validator(mode="after")
    def derive_bmi(self):
        # Supplied bmi/bmiCategory values are always overwritten
        self.bmi = calculate_bmi(self.height, self.weight)
        self.bmi_category = classify_bmi(self.bmi)
        return self

class MedicalCondition(BaseSchema):
    id: str
    student_id: str
    condition_name: str
    diagnosis_date: date
    severity: ConditionSeverity
    notes: Optional[str] = None
    is_active: bool = True
    created_at: datetime

class Allergy(BaseSchema):
    id: str
    student_id: str
    allergy_type: AllergyType
    allergen: str
    reaction: str
    severity: AllergySeverity
    created_at: datetime

class EmergencyContact(BaseSchema):
    id: str
    student_id: str
    contact_name: str
    relationship: str
    phone_primary: str
    phone_secondary: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    is_primary: bool = False
    created_at: datetime

class Vaccination(BaseSchema):
    id: str
    student_id: str
    vaccine_name: str
    vaccine_type: str
    dose_number: int = Field(1, ge=1)
    status: VaccinationStatus = VaccinationStatus.PENDING
    administered_date: Optional[date] = None
    next_dose_date: Optional[date] = None
    administered_by: Optional[str] = None
    batch_number: Optional[str] = None
    created_at: datetime

    @model_validator(mode="after")
    def check_administered_date(self):
        if self.administered_date is not None and self.status != VaccinationStatus.COMPLETED:
            raise ValueError("administeredDate may only be set when status is Completed")
        return self

class VisionTest(BaseSchema):
    id: str
    student_id: str
    test_date: date
    left_eye_vision: str
    right_eye_vision: str
    result: VisionResult
    requires_glasses: bool = False
    notes: Optional[str] = None
    created_at: datetime


# Alert targets
ALL_STUDENTS_SENTINELS = ("all", "all-students")

class SingleStudent(BaseSchema):
    kind: Literal["student"] = "student"
    student_id: str

class AllStudents(BaseSchema):
    kind: Literal["all"] = "all"

Target = Annotated[Union[SingleStudent, AllStudents], Field(discriminator="kind")]

class Alert(BaseSchema):
    id: str
    target: Target
    alert_type: AlertType
    severity: AlertSeverity
    message: str
    is_read: bool = False
    created_by: str
    created_at: datetime
    resolved_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def read_legacy_student_id(cls, data: Any) -> Any:
        """Older snapshots store the target as a bare ``studentId`` (possibly the ``all`` sentinel)."""
        if not isinstance(data, dict) or "target" in data:
            return data
        data = dict(data)
        student_id = data.pop("studentId", data.pop("student_id", None))
        if student_id is None:
            return data
        if student_id in ALL_STUDENTS_SENTINELS:
            data["target"] = {"kind": "all"}
        else:
            data["target"] = {"kind": "student", "studentId": student_id}
        return data

    def concerns(self, student_id: str) -> bool:
        if isinstance(self.target, AllStudents):
            return True
        return self.target.student_id == student_id

class Message(BaseSchema):
    id: str
    sender_id: str
    recipient_id: str
    subject: str
    message: str
    is_read: bool = False
    parent_message_id: Optional[str] = None
    created_at: datetime

class BloodRequest(BaseSchema):
    id: str
    blood_group: BloodGroup
    units_required: int = Field(..., ge=1)
    urgency: BloodRequestUrgency = BloodRequestUrgency.NORMAL
    requested_by: str
    hospital_name: str
    contact_number: str
    status: BloodRequestStatus = BloodRequestStatus.PENDING
    requested_at: datetime
    fulfilled_at: Optional[datetime] = None

class Appointment(BaseSchema):
    id: str
    student_id: str
    doctor_id: str
    appointment_date: datetime
    appointment_type: AppointmentType
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    notes: Optional[str] = None
    created_at: datetime


# Manual entry payloads
class HealthRecordCreate(BaseSchema):
    student_id: str
    doctor_id: str
    checkup_date: date
    height: float = Field(..., gt=0)
    weight: float = Field(..., gt=0)
    blood_pressure: str
    temperature: float
    pulse_rate: Optional[int] = None
    notes: str = ""
    next_checkup_date: Optional[date] = None

class EmergencyContactCreate(BaseSchema):
    contact_name: str = Field(..., min_length=1)
    relationship: str = "Parent"
    phone_primary: str = Field(..., min_length=1)
    phone_secondary: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    is_primary: bool = False

class MedicalConditionCreate(BaseSchema):
    condition_name: str
    diagnosis_date: date
    severity: ConditionSeverity
    notes: Optional[str] = None

class AllergyCreate(BaseSchema):
    allergy_type: AllergyType
    allergen: str
    reaction: str
    severity: AllergySeverity

class EnrollmentRequest(BaseSchema):
    student: Dict[str, Any]
    contacts: List[EmergencyContactCreate] = []
    conditions: List[MedicalConditionCreate] = []
    allergies: List[AllergyCreate] = []


# Validation results
class FieldError(BaseSchema):
    field: str
    message: str

class ValidationResult(BaseSchema):
    valid: bool
    record: Optional[Any] = None
    errors: List[FieldError] = []


# Bulk import
class ImportStage(str, Enum):
    UPLOADED = "Uploaded"
    PARSED = "Parsed"
    VALIDATED = "Validated"
    IMPORTING = "Importing"
    COMPLETE = "Complete"

class ImportRowError(BaseSchema):
    row: int
    field: str
    message: str
    data: Dict[str, str]

class ImportSummary(BaseSchema):
    total_rows: int
    valid_rows: int
    error_rows: int
    error_count: int

class ImportProgress(BaseSchema):
    committed: int = 0
    failed: int = 0
    total: int = 0

    @property
    def attempted(self) -> int:
        return self.committed + self.failed

    @property
    def percent(self) -> float:
        if self.total == 0:
            return 100.0
        return round(self.attempted / self.total * 100, 2)

class CommitFailure(BaseSchema):
    row: int
    message: str

class ImportResult(BaseSchema):
    stage: ImportStage
    summary: ImportSummary
    progress: ImportProgress
    student_ids: List[str] = []
    contact_ids: List[str] = []
    failures: List[CommitFailure] = []
    cancelled: bool = False


# Analytics Schemas
class VaccinationCompliance(BaseSchema):
    total: int
    by_status: Dict[str, int]
    compliance_rate: float

class PendingCheckup(BaseSchema):
    student_id: str
    student_name: str
    last_checkup_date: Optional[date] = None
    days_since_checkup: Optional[int] = None

class DashboardMetrics(BaseSchema):
    total_students: int
    unread_alerts: int
    pending_vaccinations: int
    appointments_today: int
    pending_checkups: int
    bmi_distribution: Dict[str, int]
    blood_group_distribution: Dict[str, int]
    vaccination_compliance: VaccinationCompliance


# API Response Schemas
class SuccessResponse(BaseSchema):
    success: bool = True
    message: str
    data: Optional[Any] = None

class ErrorResponse(BaseSchema):
    success: bool = False
    error: str
    code: str
    details: Optional[Dict[str, Any]] = None
