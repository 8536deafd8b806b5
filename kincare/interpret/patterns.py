"""
Deterministic rule cascade for WhatsApp / Telegram style health messages.

Rule groups are evaluated in a fixed order (BP, glucose, status, help,
symptom). Inside a group the patterns are tried in priority order and the
first plausible match wins. Each group carries the fixed confidence it was
tuned to. Hinglish is handled through transliterated synonym lists, never
through language detection.
"""

import re
from dataclasses import dataclass
from typing import Callable

from kincare.models.schemas import (
    BloodPressure,
    Glucose,
    HelpRequest,
    StatusQuery,
    StructuredReading,
    Symptom,
    Unrecognized,
)

BP_CONFIDENCE = 0.9
GLUCOSE_CONFIDENCE = 0.85
STATUS_CONFIDENCE = 0.95
HELP_CONFIDENCE = 0.95
SYMPTOM_CONFIDENCE = 0.7

# Physiological bounds; anything outside is treated as a non-match.
SYSTOLIC_RANGE = (60, 260)
DIASTOLIC_RANGE = (30, 160)
PULSE_RANGE = (30, 220)
GLUCOSE_RANGE = (20, 600)

_NUM = r"(\d{2,3})\b"
_PAIR_SEP = r"(?:\s*(?:/|-|\bover\b|\bby\b)\s*|\s+)"

# ── Blood pressure ──────────────────────────────────────────────────

BP_PATTERNS = (
    # "bp 130/85", "mera bp 140 over 90 hai", "blood pressure check kiya 135 by 88"
    re.compile(r"(?:\bb\.?\s?p\b\.?|blood\s*pressure|\bpressure)\D{0,20}?\b" + _NUM + _PAIR_SEP + _NUM),
    # "130/85", "140 over 90" without a keyword
    re.compile(r"\b(\d{2,3})\s*(?:/|\bover\b|\bby\b)\s*" + _NUM),
)

PULSE_PATTERN = re.compile(r"(?:\bpulse|\bnabz|\bnadi|heart\s*rate|\bhr)\D{0,10}?\b" + _NUM)

# ── Glucose ─────────────────────────────────────────────────────────

_SUGAR = r"(?:\bsugar|\bshoogar|\bsugr|\bglucose|\bfbs|\bppbs|\brbs)"

GLUCOSE_PATTERNS = (
    # "sugar 110 fasting", "khali pet sugar 95", "glucose was 140"
    re.compile(_SUGAR + r"\D{0,25}?\b" + _NUM),
    # "dinner ke baad 160 tha sugar", "95 mg/dl"
    re.compile(r"\b(\d{2,3})\s*(?:mg\s*/?\s*dl\b|\D{0,12}?" + _SUGAR + r")"),
    # "khali pet 95"
    re.compile(r"\bkhali\s*pet\D{0,15}?\b" + _NUM),
    # "khana khane ke baad 140", "lunch ke baad 160"
    re.compile(
        r"\b(?:khana|khane|dinner|lunch|breakfast|nashta|meal|food)\D{0,20}?"
        r"(?:\bbaad|\bbad|\bafter|\bpehle|\bpahle|\bbefore)\D{0,15}?\b" + _NUM
    ),
)

# Checked in order; first hit decides the meal context. No hit means fasting.
MEAL_CONTEXT_PATTERNS = (
    ("fasting", re.compile(r"\b(?:fasting|fast|khali\s*pet|empty\s*stomach|nahar|nihar|fbs)\b")),
    (
        "after_meal",
        re.compile(
            r"\b(?:after|baad|post|pp|ppbs)\b"
            r"|\b(?:khana|khane|dinner|lunch|breakfast|nashta|meal|food)\D{0,15}?\bbad\b"
        ),
    ),
    ("before_meal", re.compile(r"\b(?:before|pehle|pahle|pre)\b")),
    ("random", re.compile(r"\b(?:random|rbs)\b")),
)

# ── Keyword groups ──────────────────────────────────────────────────

STATUS_PATTERNS = (
    re.compile(r"\baaj\s*(?:ka|ki|ke)\b"),
    re.compile(r"\b(?:status|summary|report|readings?|history)\b"),
    re.compile(r"\bmy\s+(?:numbers|levels)\b"),
)

HELP_PATTERNS = (
    re.compile(r"\b(?:help|madad|sahayata|guide|menu)\b"),
    re.compile(r"\bkaise\b"),
    re.compile(r"\bhow\s+(?:to|do\s+i|can\s+i)\b"),
)

# Longest terms first so "sir dard" wins over "dard".
SYMPTOM_TERMS = (
    ("seene mein dard", "chest pain"),
    ("chest pain", "chest pain"),
    ("sir dard", "headache"),
    ("sar dard", "headache"),
    ("pet dard", "stomach pain"),
    ("headache", "headache"),
    ("breathless", "breathlessness"),
    ("saans", "breathlessness"),
    ("ghabrahat", "anxiety"),
    ("kamzori", "weakness"),
    ("thakaan", "fatigue"),
    ("thakan", "fatigue"),
    ("chakkar", "dizziness"),
    ("bukhar", "fever"),
    ("khansi", "cough"),
    ("zukam", "cold"),
    ("nausea", "nausea"),
    ("vomit", "vomiting"),
    ("ulti", "vomiting"),
    ("neend", "sleep trouble"),
    ("dizz", "dizziness"),
    ("tired", "fatigue"),
    ("fever", "fever"),
    ("cough", "cough"),
    ("cold", "cold"),
    ("weak", "weakness"),
    ("pain", "pain"),
    ("dard", "pain"),
)

# Generic triggers: a symptom message, but nothing to name.
SYMPTOM_TRIGGERS = ("feeling", "not well", "unwell", "theek nahi", "tabiyat")

SYMPTOM_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(t) for t, _ in SYMPTOM_TERMS + tuple((t, t) for t in SYMPTOM_TRIGGERS)) + r")"
)

SEVERE_WORDS = re.compile(r"\b(?:bahut|bohot|bahot|severe|very|tez|zyada|unbearable|extreme)\b")
MILD_WORDS = re.compile(r"\b(?:thoda|thodi|mild|halka|halki|slight|slightly|a bit|little)\b")


def _in_range(value: int, bounds: tuple[int, int]) -> bool:
    return bounds[0] <= value <= bounds[1]


def normalize(text: str) -> str:
    return re.sub(r"\s+", " ", text.strip().lower())


# ── Extractors ──────────────────────────────────────────────────────
# Each extractor gets (match, normalized text, original text) and returns a
# reading, or None when the match is implausible and the next pattern should
# be tried.


def _extract_bp(match: re.Match, text: str, source: str) -> StructuredReading | None:
    systolic, diastolic = int(match.group(1)), int(match.group(2))
    if not (_in_range(systolic, SYSTOLIC_RANGE) and _in_range(diastolic, DIASTOLIC_RANGE)):
        return None
    if systolic <= diastolic:
        return None

    pulse = None
    pulse_match = PULSE_PATTERN.search(text)
    if pulse_match and _in_range(int(pulse_match.group(1)), PULSE_RANGE):
        pulse = int(pulse_match.group(1))

    note = f"Blood pressure {systolic}/{diastolic} mmHg"
    if pulse is not None:
        note += f", pulse {pulse}"
    return BloodPressure(
        systolic=systolic,
        diastolic=diastolic,
        pulse=pulse,
        confidence=BP_CONFIDENCE,
        source_text=source,
        interpretation_note=note,
    )


def meal_context(text: str) -> str:
    for context, pattern in MEAL_CONTEXT_PATTERNS:
        if pattern.search(text):
            return context
    return "fasting"


def _extract_glucose(match: re.Match, text: str, source: str) -> StructuredReading | None:
    value = int(match.group(1))
    if not _in_range(value, GLUCOSE_RANGE):
        return None
    context = meal_context(text)
    return Glucose(
        value=value,
        meal_context=context,
        confidence=GLUCOSE_CONFIDENCE,
        source_text=source,
        interpretation_note=f"Glucose {value} mg/dL ({context.replace('_', ' ')})",
    )


def _extract_status(match: re.Match, text: str, source: str) -> StructuredReading:
    return StatusQuery(confidence=STATUS_CONFIDENCE, source_text=source)


def _extract_help(match: re.Match, text: str, source: str) -> StructuredReading:
    return HelpRequest(confidence=HELP_CONFIDENCE, source_text=source)


def _severity(text: str) -> str:
    if SEVERE_WORDS.search(text):
        return "severe"
    if MILD_WORDS.search(text):
        return "mild"
    return "moderate"


def _extract_symptom(match: re.Match, text: str, source: str) -> StructuredReading:
    named: list[str] = []
    remaining = text
    for term, canonical in SYMPTOM_TERMS:
        term_re = re.compile(r"\b" + re.escape(term))
        if term_re.search(remaining):
            if canonical not in named:
                named.append(canonical)
            remaining = term_re.sub(" ", remaining)

    return Symptom(
        symptom=", ".join(named) if named else source.strip(),
        severity=_severity(text),
        confidence=SYMPTOM_CONFIDENCE,
        source_text=source,
        interpretation_note="Symptom report" + (f": {', '.join(named)}" if named else ""),
    )


@dataclass(frozen=True)
class RuleGroup:
    name: str
    patterns: tuple[re.Pattern, ...]
    extract: Callable[[re.Match, str, str], StructuredReading | None]
    confidence: float


RULE_GROUPS: tuple[RuleGroup, ...] = (
    RuleGroup("blood_pressure", BP_PATTERNS, _extract_bp, BP_CONFIDENCE),
    RuleGroup("glucose", GLUCOSE_PATTERNS, _extract_glucose, GLUCOSE_CONFIDENCE),
    RuleGroup("status_query", STATUS_PATTERNS, _extract_status, STATUS_CONFIDENCE),
    RuleGroup("help_request", HELP_PATTERNS, _extract_help, HELP_CONFIDENCE),
    RuleGroup("symptom", (SYMPTOM_PATTERN,), _extract_symptom, SYMPTOM_CONFIDENCE),
)


class PatternMatcher:
    def __init__(self, groups: tuple[RuleGroup, ...] = RULE_GROUPS):
        self.groups = groups

    def match(self, text: str) -> StructuredReading:
        """Run the cascade. Always returns a reading, Unrecognized at 0 when nothing fits."""
        normalized = normalize(text)
        if not normalized:
            return Unrecognized(source_text=text)

        for group in self.groups:
            for pattern in group.patterns:
                for found in pattern.finditer(normalized):
                    reading = group.extract(found, normalized, text)
                    if reading is not None:
                        return reading

        return Unrecognized(source_text=text)
