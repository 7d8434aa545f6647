from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd
from pydantic import BaseModel

from crud import EntityStore
from schemas import (
    CLASSES, BloodGroup, BloodRequestStatus, BMICategory, DashboardMetrics, PendingCheckup,
    VaccinationCompliance, VaccinationStatus, VisionResult,
)

Moment = Union[date, datetime]


def _as_date(moment: Moment) -> date:
    return moment.date() if isinstance(moment, datetime) else moment


def _frame(records: Sequence[BaseModel], columns: List[str]) -> pd.DataFrame:
    """Records as a DataFrame restricted to ``columns``; empty input keeps the columns."""
    rows = [{c: getattr(r, c) for c in columns} for r in records]
    return pd.DataFrame(rows, columns=columns)


def _counts(series: pd.Series, domain: Sequence[str]) -> Dict[str, int]:
    """Count values over a fixed domain, zero buckets included, in domain order."""
    values = series.map(lambda v: v.value if hasattr(v, "value") else v)
    counts = values.value_counts().reindex(list(domain), fill_value=0)
    return {key: int(count) for key, count in counts.items()}


class HealthAnalytics:
    """Read-only statistics over an `EntityStore`.

    Every method scans the store's current collections and returns plain values;
    results depend only on the store contents and the ``now`` passed in.
    """

    def __init__(self, store: EntityStore, checkup_window_months: int = 6):
        self.store = store
        self.checkup_window_months = checkup_window_months

    def _now(self, now: Optional[Moment]) -> date:
        return _as_date(now) if now is not None else self.store.now().date()

    def _known_student_ids(self) -> set:
        return {s.id for s in self.store.students}

    # BMI
    def latest_health_records(self) -> pd.DataFrame:
        """Most recent health record per known student; orphaned records are left out."""
        frame = _frame(
            self.store.health_records.list(),
            ["id", "student_id", "checkup_date", "bmi", "bmi_category"],
        )
        frame = frame[frame["student_id"].isin(list(self._known_student_ids()))]
        if frame.empty:
            return frame
        frame = frame.assign(checkup_date=pd.to_datetime(frame["checkup_date"]))
        frame = frame.sort_values("checkup_date", kind="stable")
        return frame.groupby("student_id", sort=False).tail(1)

    def bmi_distribution(self, latest_only: bool = False) -> Dict[str, int]:
        """Health records bucketed by BMI category.

        With ``latest_only`` each student counts once, using their most recent checkup.
        """
        domain = [c.value for c in BMICategory]
        if latest_only:
            frame = self.latest_health_records()
        else:
            frame = _frame(self.store.health_records.list(), ["bmi_category"])
        return _counts(frame["bmi_category"], domain)

    # Vaccinations
    def vaccination_compliance(self) -> VaccinationCompliance:
        frame = _frame(self.store.vaccinations.list(), ["status"])
        by_status = _counts(frame["status"], [s.value for s in VaccinationStatus])
        total = len(frame)
        completed = by_status[VaccinationStatus.COMPLETED.value]
        rate = round(completed / total, 4) if total else 0.0
        return VaccinationCompliance(total=total, by_status=by_status, compliance_rate=rate)

    def overdue_vaccinations(self, now: Optional[Moment] = None) -> List[Any]:
        """Vaccinations marked Overdue, or still Pending past their next dose date."""
        today = self._now(now)
        return [
            v for v in self.store.vaccinations
            if v.status == VaccinationStatus.OVERDUE
            or (
                v.status == VaccinationStatus.PENDING
                and v.next_dose_date is not None
                and v.next_dose_date < today
            )
        ]

    # Students
    def blood_group_distribution(self) -> Dict[str, int]:
        frame = _frame(self.store.students.list(), ["blood_group"])
        return _counts(frame["blood_group"], [b.value for b in BloodGroup])

    def pending_checkups(
        self,
        now: Optional[Moment] = None,
        window_months: Optional[int] = None,
    ) -> List[PendingCheckup]:
        """Students without a checkup inside the recency window ending at ``now``.

        Only each student's most recent checkup is compared; students never checked
        are always pending. Result order follows the student collection.
        """
        today = self._now(now)
        months = self.checkup_window_months if window_months is None else window_months
        cutoff = (pd.Timestamp(today) - pd.DateOffset(months=months)).date()

        students = _frame(self.store.students.list(), ["id", "first_name", "last_name"])
        if students.empty:
            return []
        records = _frame(self.store.health_records.list(), ["student_id", "checkup_date"])
        records["checkup_date"] = pd.to_datetime(records["checkup_date"])
        latest = (
            records.groupby("student_id", as_index=False)["checkup_date"].max()
            .rename(columns={"student_id": "id", "checkup_date": "last_checkup"})
        )
        # Left join on students drops records of unknown students
        merged = students.merge(latest, on="id", how="left")

        pending = []
        for row in merged.itertuples(index=False):
            last = None if pd.isna(row.last_checkup) else row.last_checkup.date()
            if last is not None and last >= cutoff:
                continue
            pending.append(PendingCheckup(
                student_id=row.id,
                student_name=f"{row.first_name} {row.last_name}",
                last_checkup_date=last,
                days_since_checkup=(today - last).days if last is not None else None,
            ))
        return pending

    # Other distributions
    def vision_test_distribution(self) -> Dict[str, int]:
        frame = _frame(self.store.vision_tests.list(), ["result"])
        return _counts(frame["result"], [r.value for r in VisionResult])

    def blood_request_summary(self) -> Dict[str, int]:
        frame = _frame(self.store.blood_requests.list(), ["status"])
        return _counts(frame["status"], [s.value for s in BloodRequestStatus])

    def class_distribution(self) -> Dict[str, int]:
        frame = _frame(self.store.students.list(), ["class_name"])
        return _counts(frame["class_name"], CLASSES)

    # Dashboard
    def dashboard(self, now: Optional[Moment] = None) -> DashboardMetrics:
        today = self._now(now)
        compliance = self.vaccination_compliance()
        return DashboardMetrics(
            total_students=len(self.store.students),
            unread_alerts=len(self.store.alerts.query(lambda a: not a.is_read)),
            pending_vaccinations=compliance.by_status[VaccinationStatus.PENDING.value],
            appointments_today=len(self.store.get_today_appointments(today)),
            pending_checkups=len(self.pending_checkups(today)),
            bmi_distribution=self.bmi_distribution(),
            blood_group_distribution=self.blood_group_distribution(),
            vaccination_compliance=compliance,
        )
