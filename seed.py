"""Deterministic demo data used when no snapshot exists for a collection."""
import random
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel

from schemas import (
    CLASSES, SECTIONS, Alert, Allergy, AllergySeverity, AllergyType, AlertSeverity,
    AlertType, Appointment, AppointmentStatus, AppointmentType, BloodGroup,
    BloodRequest, BloodRequestStatus, BloodRequestUrgency, ConditionSeverity,
    EmergencyContact, Gender, HealthRecord, MedicalCondition, Message, Student,
    Vaccination, VaccinationStatus, VisionResult, VisionTest,
)

FIRST_NAMES = [
    "Aarav", "Vivaan", "Aditya", "Vihaan", "Arjun", "Sai", "Reyansh", "Ayaan",
    "Rohan", "Karthik", "Pranav", "Ishaan", "Advait", "Dhruv", "Kabir", "Krishna",
    "Aanya", "Aisha", "Avni", "Kiara", "Myra", "Navya", "Pari", "Sara",
]
LAST_NAMES = [
    "Sharma", "Verma", "Patel", "Kumar", "Singh", "Gupta", "Reddy", "Nair",
    "Iyer", "Menon", "Joshi", "Desai", "Shah", "Mehta", "Agarwal", "Banerjee",
]
CONDITIONS = ["Asthma", "Diabetes Type 1", "Epilepsy", "ADHD", "Eczema", "Migraine"]
ALLERGENS = {
    AllergyType.FOOD: ["Peanuts", "Milk", "Eggs", "Shellfish", "Wheat", "Soy"],
    AllergyType.DRUG: ["Penicillin", "Aspirin", "Ibuprofen", "Sulfa drugs"],
    AllergyType.ENVIRONMENTAL: ["Pollen", "Dust mites", "Pet dander", "Mold"],
}
VACCINES = [
    ("MMR", "Measles, Mumps, Rubella", 2),
    ("Tdap", "Tetanus, Diphtheria, Pertussis", 1),
    ("Polio", "Inactivated Poliovirus", 4),
    ("Hepatitis B", "Hepatitis B", 3),
    ("Varicella", "Chickenpox", 2),
    ("HPV", "Human Papillomavirus", 2),
]
DOCTOR_ID = "doc-001"


def build_seed_data(
    seed: int = 42,
    student_count: int = 50,
    now: Optional[datetime] = None,
) -> Dict[str, List[BaseModel]]:
    """Return seed records for every collection, keyed by collection name."""
    rng = random.Random(seed)
    now = now or datetime.now(timezone.utc)
    today = now.date()

    students: List[Student] = []
    for i in range(1, student_count + 1):
        first = rng.choice(FIRST_NAMES)
        last = rng.choice(LAST_NAMES)
        class_name = rng.choice(CLASSES)
        section = rng.choice(SECTIONS)
        year = today.year - rng.randint(1, 5)
        birth_year = today.year - (int(class_name) + 5)
        students.append(Student(
            id=f"STU-{i:04d}",
            roll_number=f"{class_name}{section}-{i:02d}",
            student_code=f"SCH{year}-{i:03d}",
            first_name=first,
            last_name=last,
            date_of_birth=date(birth_year, rng.randint(1, 12), rng.randint(1, 28)),
            gender=rng.choice([Gender.MALE, Gender.FEMALE]),
            blood_group=rng.choice(list(BloodGroup)),
            class_name=class_name,
            section=section,
            admission_date=date(year, 4, 1),
            created_at=date(year, 4, 1),
            updated_at=today,
        ))

    counters = {"HR": 0, "MC": 0, "ALG": 0, "EC": 0, "VAC": 0, "VT": 0}

    def next_id(prefix: str) -> str:
        counters[prefix] += 1
        return f"{prefix}-{counters[prefix]:04d}"

    health_records, conditions, allergies, contacts = [], [], [], []
    vaccinations, vision_tests = [], []
    for student in students:
        created = datetime.combine(student.created_at, datetime.min.time(), tzinfo=timezone.utc)

        for visit in range(rng.randint(1, 3)):
            checkup = today - timedelta(days=120 * visit + rng.randint(0, 200))
            health_records.append(HealthRecord(
                id=next_id("HR"),
                student_id=student.id,
                doctor_id=DOCTOR_ID,
                checkup_date=checkup,
                height=round(100 + rng.random() * 80, 1),
                weight=round(20 + rng.random() * 50, 1),
                blood_pressure=f"{100 + rng.randint(0, 29)}/{60 + rng.randint(0, 19)}",
                temperature=round(36 + rng.random() * 2, 1),
                pulse_rate=60 + rng.randint(0, 39),
                notes="Regular checkup completed. Student appears healthy.",
                next_checkup_date=checkup + timedelta(days=365),
                created_at=datetime.combine(checkup, datetime.min.time(), tzinfo=timezone.utc),
            ))

        if rng.random() > 0.7:
            conditions.append(MedicalCondition(
                id=next_id("MC"),
                student_id=student.id,
                condition_name=rng.choice(CONDITIONS),
                diagnosis_date=student.admission_date,
                severity=rng.choice(list(ConditionSeverity)),
                notes="Under medication, regular monitoring required.",
                created_at=created,
            ))

        if rng.random() > 0.75:
            allergy_type = rng.choice(list(AllergyType))
            allergies.append(Allergy(
                id=next_id("ALG"),
                student_id=student.id,
                allergy_type=allergy_type,
                allergen=rng.choice(ALLERGENS[allergy_type]),
                reaction="Rash, swelling, difficulty breathing",
                severity=rng.choice(list(AllergySeverity)),
                created_at=created,
            ))

        contacts.append(EmergencyContact(
            id=next_id("EC"),
            student_id=student.id,
            contact_name=f"{rng.choice(FIRST_NAMES)} {student.last_name}",
            relationship="Father",
            phone_primary=f"+91 {rng.randint(1000000000, 9999999999)}",
            phone_secondary=f"+91 {rng.randint(1000000000, 9999999999)}",
            email=f"parent.{student.last_name.lower()}@email.com",
            address="123 Main Street, City",
            is_primary=True,
            created_at=created,
        ))
        contacts.append(EmergencyContact(
            id=next_id("EC"),
            student_id=student.id,
            contact_name=f"{rng.choice(FIRST_NAMES)} {student.last_name}",
            relationship="Mother",
            phone_primary=f"+91 {rng.randint(1000000000, 9999999999)}",
            email=f"mother.{student.last_name.lower()}@email.com",
            is_primary=False,
            created_at=created,
        ))

        for name, vaccine_type, doses in VACCINES:
            roll = rng.random()
            if roll > 0.3:
                status = VaccinationStatus.COMPLETED
            elif roll > 0.15:
                status = VaccinationStatus.PENDING
            else:
                status = VaccinationStatus.OVERDUE
            completed = status == VaccinationStatus.COMPLETED
            vaccinations.append(Vaccination(
                id=next_id("VAC"),
                student_id=student.id,
                vaccine_name=name,
                vaccine_type=vaccine_type,
                dose_number=doses if completed else rng.randint(1, doses),
                status=status,
                administered_date=student.admission_date + timedelta(days=60) if completed else None,
                next_dose_date=None if completed else today + timedelta(days=rng.randint(-60, 150)),
                administered_by="Dr. Rajesh Kumar" if completed else None,
                batch_number=f"BATCH-{rng.randint(0, 9999)}" if completed else None,
                created_at=created,
            ))

        passed = rng.random() > 0.2
        vision_tests.append(VisionTest(
            id=next_id("VT"),
            student_id=student.id,
            test_date=today - timedelta(days=rng.randint(30, 300)),
            left_eye_vision="20/20" if passed else f"20/{20 + rng.randint(1, 40)}",
            right_eye_vision="20/20" if passed else f"20/{20 + rng.randint(1, 40)}",
            result=VisionResult.PASSED if passed else VisionResult.FAILED,
            requires_glasses=not passed,
            notes="Vision is normal." if passed else "Recommended to consult an ophthalmologist.",
            created_at=created,
        ))

    def pick(index: int) -> str:
        return students[index % len(students)].id if students else "STU-0000"

    day = timedelta(days=1)
    alerts = [
        Alert(id="ALR-0001", target={"kind": "student", "studentId": pick(0)},
              alert_type=AlertType.VACCINATION_DUE, severity=AlertSeverity.MEDIUM,
              message="Tdap booster vaccination is due next week.",
              created_by="system", created_at=now),
        Alert(id="ALR-0002", target={"kind": "student", "studentId": pick(2)},
              alert_type=AlertType.MEDICAL_EMERGENCY, severity=AlertSeverity.HIGH,
              message="Student reported breathing difficulty. Asthma attack suspected.",
              created_by=DOCTOR_ID, created_at=now),
        Alert(id="ALR-0003", target={"kind": "student", "studentId": pick(4)},
              alert_type=AlertType.CHECKUP_REMINDER, severity=AlertSeverity.LOW,
              message="Annual health checkup is due.", is_read=True,
              created_by="system", created_at=now - day),
    ]

    messages = [
        Message(id="MSG-0001", sender_id="parent-001", recipient_id=DOCTOR_ID,
                subject="Query about vaccination schedule",
                message="I wanted to know about the upcoming vaccination schedule for my child. When is the next dose due?",
                created_at=now),
        Message(id="MSG-0002", sender_id=DOCTOR_ID, recipient_id="parent-001",
                subject="Re: Query about vaccination schedule",
                message="The next Tdap booster is due next month. Please ensure your child is available on that date.",
                is_read=True, parent_message_id="MSG-0001", created_at=now - day),
        Message(id="MSG-0003", sender_id="admin-001", recipient_id=DOCTOR_ID,
                subject="Health camp next month",
                message="We are planning a health camp for all students next month. Please confirm your availability.",
                created_at=now - 2 * day),
    ]

    blood_requests = [
        BloodRequest(id="BR-0001", blood_group=BloodGroup.O_POS, units_required=3,
                     urgency=BloodRequestUrgency.URGENT, requested_by="blood-001",
                     hospital_name="City General Hospital", contact_number="+91 98765 00001",
                     requested_at=now),
        BloodRequest(id="BR-0002", blood_group=BloodGroup.B_NEG, units_required=2,
                     urgency=BloodRequestUrgency.CRITICAL, requested_by="blood-001",
                     hospital_name="Apollo Hospital", contact_number="+91 98765 00002",
                     status=BloodRequestStatus.FULFILLED,
                     requested_at=now - 3 * day, fulfilled_at=now - 2 * day),
    ]

    appointment_types = [
        AppointmentType.REGULAR_CHECKUP, AppointmentType.FOLLOW_UP, AppointmentType.VACCINATION,
    ]
    appointments = [
        Appointment(
            id=f"APT-{i + 1:04d}",
            student_id=student.id,
            doctor_id=DOCTOR_ID,
            appointment_date=now + i * day,
            appointment_type=appointment_types[i % 3],
            status=AppointmentStatus.COMPLETED if 5 <= i < 10 else AppointmentStatus.SCHEDULED,
            notes="Regular checkup appointment",
            created_at=now - 7 * day,
        )
        for i, student in enumerate(students[:15])
    ]

    return {
        "students": students,
        "health_records": health_records,
        "medical_conditions": conditions,
        "allergies": allergies,
        "emergency_contacts": contacts,
        "vaccinations": vaccinations,
        "vision_tests": vision_tests,
        "alerts": alerts,
        "messages": messages,
        "blood_requests": blood_requests,
        "appointments": appointments,
    }
