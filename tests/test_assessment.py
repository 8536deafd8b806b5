from __future__ import annotations

import pytest

from kincare.bot.handler import HELP_TEXT, format_reply
from kincare.interpret.assessment import assess, assess_blood_pressure, assess_glucose
from kincare.models.schemas import BloodPressure, Glucose, HelpRequest, StatusQuery, Symptom, Unrecognized


@pytest.mark.parametrize(
    "systolic, diastolic, status, alert",
    [
        (85, 70, "Low", True),
        (115, 75, "Normal", False),
        (125, 78, "Elevated", False),
        (118, 82, "Elevated", False),
        (145, 85, "High", True),
        (185, 100, "Critical - Seek medical attention!", True),
        (150, 125, "Critical - Seek medical attention!", True),
    ],
)
def test_blood_pressure_bands(systolic, diastolic, status, alert):
    assessment = assess_blood_pressure(systolic, diastolic)
    assert (assessment.status, assessment.alert) == (status, alert)


@pytest.mark.parametrize(
    "value, context, status",
    [
        (65, "fasting", "Low"),
        (95, "fasting", "Normal"),
        (110, "before_meal", "Pre-diabetic range"),
        (130, "fasting", "High"),
        (130, "after_meal", "Normal"),
        (160, "random", "Elevated"),
        (210, "after_meal", "High"),
    ],
)
def test_glucose_bands_depend_on_meal_context(value, context, status):
    assert assess_glucose(value, context).status == status


def test_only_numeric_readings_are_assessed():
    assert assess(Symptom(symptom="headache", confidence=0.7, source_text="sir dard")) is None
    assert assess(Unrecognized(source_text="?")) is None
    assert assess(Glucose(value=95, meal_context="fasting", confidence=0.85, source_text="x")).status == "Normal"


def test_blood_pressure_reply():
    reading = BloodPressure(systolic=150, diastolic=95, pulse=80, confidence=0.9, source_text="bp 150/95 pulse 80")
    reply = format_reply(reading)
    assert "150/95 mmHg" in reply
    assert "Pulse: 80 bpm" in reply
    assert "Status: High" in reply
    assert "consult your doctor" in reply


def test_normal_sugar_reply_has_no_warning():
    reading = Glucose(value=95, meal_context="fasting", confidence=0.85, source_text="khali pet sugar 95")
    reply = format_reply(reading)
    assert "95 mg/dL (fasting)" in reply
    assert "consult" not in reply


def test_other_replies():
    assert "headache" in format_reply(Symptom(symptom="headache", confidence=0.7, source_text="sir dard"))
    assert "History" in format_reply(StatusQuery(confidence=0.95, source_text="aaj ka status"))
    assert format_reply(HelpRequest(confidence=0.95, source_text="help")) == HELP_TEXT
    assert "couldn't understand" in format_reply(Unrecognized(source_text="hmm"))
