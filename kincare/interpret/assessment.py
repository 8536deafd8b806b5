from kincare.models.schemas import Assessment, BloodPressure, Glucose, StructuredReading


def assess_blood_pressure(systolic: int, diastolic: int) -> Assessment:
    if systolic < 90 or diastolic < 60:
        return Assessment(status="Low", alert=True)
    if systolic >= 180 or diastolic >= 120:
        return Assessment(status="Critical - Seek medical attention!", alert=True)
    if systolic >= 140 or diastolic >= 90:
        return Assessment(status="High", alert=True)
    if systolic >= 120 or diastolic >= 80:
        return Assessment(status="Elevated", alert=False)
    return Assessment(status="Normal", alert=False)


def assess_glucose(value: int, meal_context: str) -> Assessment:
    if value < 70:
        return Assessment(status="Low", alert=True)

    if meal_context in ("fasting", "before_meal"):
        if value >= 126:
            return Assessment(status="High", alert=True)
        if value >= 100:
            return Assessment(status="Pre-diabetic range", alert=False)
        return Assessment(status="Normal", alert=False)

    if value >= 200:
        return Assessment(status="High", alert=True)
    if value >= 140:
        return Assessment(status="Elevated", alert=False)
    return Assessment(status="Normal", alert=False)


def assess(reading: StructuredReading) -> Assessment | None:
    """Status band for numeric readings; None for everything else."""
    if isinstance(reading, BloodPressure):
        return assess_blood_pressure(reading.systolic, reading.diastolic)
    if isinstance(reading, Glucose):
        return assess_glucose(reading.value, reading.meal_context)
    return None
