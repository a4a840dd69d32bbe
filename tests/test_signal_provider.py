"""Tests for EMR signal extraction and the SQL patient directory."""

from datetime import date, datetime, timedelta, timezone

import pytest

from emr_risk.core.exceptions import PatientNotFound
from emr_risk.models.emr import (
    CriticalLabValue,
    DetailedExercise,
    DetailedNutrition,
    HistoryRecord,
    LabResult,
    Patient,
    VitalSign,
)
from emr_risk.services.patient_directory import SqlPatientDirectory
from emr_risk.services.signal_provider import (
    SqlHealthSignalProvider,
    extract_gestational_diabetes,
    extract_physical_activity,
    extract_smoking,
    normalize_gender,
    normalize_intensity,
)

TODAY = date(2025, 10, 19)
T0 = datetime(2025, 10, 1, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
async def emr(session_maker):
    async with session_maker() as session:
        async with session.begin():
            session.add_all([
                Patient(
                    id="P1", hospital_number="HN001", first_name="Somchai", last_name="Jaidee",
                    thai_name="สมชาย ใจดี", date_of_birth=date(1960, 11, 2), gender="M",
                    weight=80.0, height=170.0, chronic_diseases="Hypertension, dyslipidemia",
                    created_at=T0,
                ),
                Patient(
                    id="P2", hospital_number="HN002", first_name="Malee", last_name="Sukjai",
                    date_of_birth=date(1990, 1, 1), gender="หญิง", created_at=T0 + timedelta(days=1),
                ),
            ])
            session.add_all([
                VitalSign(patient_id="P1", systolic_bp=128, diastolic_bp=82, weight=92.0,
                          height=170.0, measurement_time=T0),
                VitalSign(patient_id="P1", systolic_bp=145, diastolic_bp=92, weight=95.0,
                          height=170.0, body_fat_percentage=33.0,
                          measurement_time=T0 + timedelta(days=7)),
                LabResult(patient_id="P1", test_name="Fasting Blood Sugar (FBS)",
                          result_numeric=110.0, result_date=T0),
                LabResult(patient_id="P1", test_name="Glucose, fasting",
                          result_numeric=131.0, result_date=T0 + timedelta(days=5)),
                LabResult(patient_id="P1", test_name="HbA1c (glycated haemoglobin)",
                          result_numeric=6.9, result_date=T0 + timedelta(days=6)),
                LabResult(patient_id="P1", test_name="Creatinine",
                          result_numeric=1.1, result_date=T0 + timedelta(days=6)),
                HistoryRecord(patient_id="P1", family_history="พ่อเป็นเบาหวาน",
                              social_history="Smoking 10 cigarettes/day, no exercise",
                              recorded_time=T0),
            ])
    return session_maker


@pytest.fixture
def sql_provider(emr):
    return SqlHealthSignalProvider(emr, today=lambda: TODAY)


async def test_snapshot_built_from_emr_rows(sql_provider):
    snapshot = await sql_provider.fetch("P1")

    assert snapshot.patient_id == "P1"
    assert snapshot.age == 64
    assert snapshot.sex == "male"
    # Latest vitals win
    assert snapshot.systolic_bp == 145
    assert snapshot.body_fat_percentage == 33.0
    assert snapshot.effective_bmi == 32.9
    assert snapshot.fasting_glucose == 131.0
    assert snapshot.hba1c == 6.9
    assert snapshot.glucose_collected_at == T0 + timedelta(days=5)
    assert snapshot.family_history_diabetes
    assert snapshot.smoking
    assert snapshot.physical_activity == "low"
    assert snapshot.hypertension
    assert snapshot.dyslipidemia
    assert not snapshot.cardiovascular_disease


async def test_patient_without_clinical_data(sql_provider):
    snapshot = await sql_provider.fetch("P2")

    assert snapshot.sex == "female"
    assert snapshot.age == 35
    assert snapshot.fasting_glucose is None
    assert snapshot.effective_bmi is None
    assert snapshot.physical_activity is None
    assert not snapshot.family_history_diabetes


async def test_unknown_patient(sql_provider):
    with pytest.raises(PatientNotFound):
        await sql_provider.fetch("P404")


async def test_snapshot_scores(sql_provider, model):
    assessment = model.score(await sql_provider.fetch("P1"))

    assert assessment.risk_level.value == "very_high"
    assert "HbA1c in diabetic range (6.5% or higher)" in assessment.contributing_factors


async def test_extended_signals_from_structured_tables(emr, sql_provider, model):
    async with emr() as session:
        async with session.begin():
            session.add(Patient(
                id="P3", hospital_number="HN003", first_name="Anan", last_name="Wongsa",
                gender="male", created_at=T0 - timedelta(days=30),
            ))
            session.add_all([
                VitalSign(patient_id="P3", sleep_quality=4, stress_score=8, depression_score=12,
                          measurement_time=T0),
                CriticalLabValue(patient_id="P3", hba1c=5.0, fasting_insulin=18.0,
                                 test_date=T0 - timedelta(days=60)),
                CriticalLabValue(patient_id="P3", hba1c=6.0, fasting_insulin=30.0,
                                 triglycerides=250.0, hdl_cholesterol=35.0, test_date=T0),
                DetailedNutrition(patient_id="P3", daily_calorie_intake=3000.0, sugar_intake=60.0,
                                  assessment_date=T0),
                DetailedExercise(patient_id="P3", exercise_frequency=1, walking_steps=3000,
                                 exercise_intensity="Low", assessment_date=T0),
                # Ordered HbA1c results outrank the panel value
                CriticalLabValue(patient_id="P1", hba1c=5.2, test_date=T0 + timedelta(days=9)),
            ])

    snapshot = await sql_provider.fetch("P3")
    assessment = model.score(snapshot, assessed_at=T0)

    assert snapshot.hba1c == 6.0
    assert snapshot.fasting_insulin == 30.0
    assert snapshot.triglycerides == 250.0
    assert snapshot.sleep_quality == 4
    assert snapshot.daily_calorie_intake == 3000.0
    assert snapshot.exercise_intensity == "low"
    assert snapshot.walking_steps == 3000
    assert "High fasting insulin (insulin resistance)" in assessment.contributing_factors
    assert "High triglycerides" in assessment.contributing_factors
    assert "Fewer than 5000 steps a day" in assessment.contributing_factors
    assert (await sql_provider.fetch("P1")).hba1c == 6.9


@pytest.mark.parametrize("value,expected", [
    ("moderate", "moderate"), (" HIGH ", "high"), ("vigorous", None), (None, None),
])
def test_normalize_intensity(value, expected):
    assert normalize_intensity(value) == expected


@pytest.mark.parametrize("text,expected", [
    ("Smoking 1 pack/day", True),
    ("สูบบุหรี่วันละ 5 มวน", True),
    ("Non-smoker", False),
    ("ไม่สูบบุหรี่", False),
    ("Quit smoking in 2015", False),
    (None, False),
])
def test_extract_smoking(text, expected):
    assert extract_smoking(text) is expected


@pytest.mark.parametrize("text,expected", [
    ("Exercise daily, jogging", "high"),
    ("ออกกำลังกายทุกวัน", "high"),
    ("Exercise 3 times a week", "moderate"),
    ("Office worker", "low"),
    (None, None),
])
def test_extract_physical_activity(text, expected):
    assert extract_physical_activity(text) == expected


@pytest.mark.parametrize("text,expected", [
    ("GDM in 2nd pregnancy", True),
    ("เป็นเบาหวานขณะตั้งครรภ์", True),
    ("G2P2, uneventful", False),
    (None, False),
])
def test_extract_gestational_diabetes(text, expected):
    assert extract_gestational_diabetes(text) is expected


@pytest.mark.parametrize("value,expected", [
    ("M", "male"), ("female", "female"), ("ชาย", "male"), ("other", None), ("", None), (None, None),
])
def test_normalize_gender(value, expected):
    assert normalize_gender(value) == expected


async def test_directory_lists_newest_first(emr):
    directory = SqlPatientDirectory(emr)

    patients = await directory.list_patients()

    assert [p.id for p in patients] == ["P2", "P1"]
    assert patients[1].thai_name == "สมชาย ใจดี"
    assert [p.id for p in await directory.list_patients(limit=1)] == ["P2"]


async def test_directory_get_patient(emr):
    directory = SqlPatientDirectory(emr)

    patient = await directory.get_patient("P1")

    assert patient.hospital_number == "HN001"
    assert patient.age(TODAY) == 64
    assert await directory.get_patient("P404") is None
