"""
Title-document scoring: extract key fields and look for signs of forgery.

Two scorers share one interface:

  OpenAIDocumentScorer     one JSON-mode chat completion over the document
                           text (or image URL). Used when OPENAI_API_KEY is set.
  HeuristicDocumentScorer  deterministic regex extraction + red-flag checks.
                           Always available; never calls out.

Heuristic scoring:
  field confidence   grantor 0.4 + parcel id 0.4 + date of issue 0.2
  × 0.3              date of issue in the future or older than 99 years
  × 0.5              suspicious text (fraud keywords, modern terms, digital artifacts)
  × 0.5              document grantor does not match the claim's grantor

A scorer raises when it cannot score at all (no text, API error). The
document agent turns that into a failed result.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date, datetime
from typing import Optional, Protocol

from openai import OpenAI

from .config import Settings
from .matching import names_match
from .models import DocumentAssessment, DocumentInput

logger = logging.getLogger(__name__)

GRANTOR_FIELD_WEIGHT = 0.4
PARCEL_FIELD_WEIGHT = 0.4
DATE_FIELD_WEIGHT = 0.2

DATE_ANOMALY_PENALTY = 0.3
SUSPICIOUS_TEXT_PENALTY = 0.5
GRANTOR_MISMATCH_PENALTY = 0.5

MAX_DOCUMENT_AGE_YEARS = 99

FRAUD_KEYWORDS = ("fraud", "fake", "forged", "counterfeit", "duplicate")
MODERN_TERMS = ("email", "website", "http", "www", "digital", "online")
DIGITAL_ARTIFACTS = ("�", "\\x", "\\u")


class DocumentScorer(Protocol):
    name: str

    def score(self, document: DocumentInput) -> DocumentAssessment: ...


# ─── Regex Extraction ────────────────────────────────────────────────

_GRANTOR_PATTERNS = (
    re.compile(r"(?:Grantor|Vendor|Owner)[\s:]+([A-Z][A-Za-z\s.&]+?)\s*(?:\n|$)", re.I),
    re.compile(r"This is to certify that\s+([A-Z][A-Za-z\s.&]+?)\s*(?:\n|$)", re.I),
)

_PARCEL_PATTERNS = (
    re.compile(r"Parcel\s+ID[\s:]+([A-Z]{2}\d{8,12})", re.I),
    re.compile(r"Parcel\s+Number[\s:]+([A-Z]{2}\d{8,12})", re.I),
    re.compile(r"Plot\s+ID[\s:]+([A-Z]{2}\d{8,12})", re.I),
)

_DATE_PATTERNS = (
    re.compile(r"Date\s+of\s+Issue[\s:]+(\d{1,2}(?:st|nd|rd|th)?\s+[A-Za-z]+\s+\d{4})", re.I),
    re.compile(r"Dated[\s:]+(\d{1,2}(?:st|nd|rd|th)?\s+[A-Za-z]+\s+\d{4})", re.I),
    re.compile(r"Date\s+of\s+Issue[\s:]+(\d{4}-\d{2}-\d{2})", re.I),
)

_DOCUMENT_TYPES = (
    ("Indenture", re.compile(r"indenture|plan\s*of\s*land|stool|family")),
    ("Certificate of Occupancy", re.compile(r"certificate\s*of\s*occupancy|certificate|occupancy")),
    ("Deed of Assignment", re.compile(r"deed\s*of\s*assignment|deed|assignment")),
)


def extract_grantor(text: str) -> Optional[str]:
    """Match 'Vendor/Grantor: GHANA LANDS COMMISSION' and similar."""
    for pattern in _GRANTOR_PATTERNS:
        match = pattern.search(text)
        if match:
            return re.sub(r"\s+", " ", match.group(1)).strip()
    return None


def extract_parcel_id(text: str) -> Optional[str]:
    """Two letters then 8-12 digits, e.g. 'GH20260001234'."""
    for pattern in _PARCEL_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1).upper()
    return None


def extract_issue_date(text: str) -> Optional[date]:
    """'Date of Issue: 15th January 2026' → date(2026, 1, 15). None if unparseable."""
    for pattern in _DATE_PATTERNS:
        match = pattern.search(text)
        if match:
            return _parse_date(match.group(1))
    return None


def detect_document_type(text: str) -> str:
    lowered = text.lower()
    for label, pattern in _DOCUMENT_TYPES:
        if pattern.search(lowered):
            return label
    return "Unknown"


def _parse_date(raw: str) -> Optional[date]:
    cleaned = re.sub(r"(\d)(st|nd|rd|th)\b", r"\1", raw.strip(), flags=re.I)
    for fmt in ("%d %B %Y", "%d %b %Y", "%Y-%m-%d"):
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    return None


# ─── Red Flags ───────────────────────────────────────────────────────


def date_anomaly(issued: Optional[date], today: date) -> Optional[str]:
    if issued is None:
        return None
    if issued > today:
        return f"Date of issue {issued.isoformat()} is in the future"
    if (today - issued).days > MAX_DOCUMENT_AGE_YEARS * 365.25:
        return f"Date of issue {issued.isoformat()} is more than {MAX_DOCUMENT_AGE_YEARS} years old"
    return None


def suspicious_text(text: str) -> list[str]:
    """Formatting red flags: fraud vocabulary, anachronisms, editing artifacts."""
    lowered = text.lower()
    flags = []
    keywords = [k for k in FRAUD_KEYWORDS if k in lowered]
    if keywords:
        flags.append(f"Fraud keywords detected: {', '.join(keywords)}")
    modern = [t for t in MODERN_TERMS if t in lowered]
    if modern:
        flags.append(f"Modern terms on a historical document: {', '.join(modern)}")
    if any(artifact in text for artifact in DIGITAL_ARTIFACTS):
        flags.append("Digital editing artifacts detected")
    return flags


# ─── Scorers ─────────────────────────────────────────────────────────


class HeuristicDocumentScorer:
    name = "heuristic"

    def __init__(self, today: date | None = None):
        self._today = today

    def score(self, document: DocumentInput) -> DocumentAssessment:
        text = document.document_text
        if not text or not text.strip():
            raise ValueError("No document text captured for this claim")

        today = self._today or date.today()
        grantor = extract_grantor(text)
        parcel_id = extract_parcel_id(text)
        issued = extract_issue_date(text)

        confidence = 0.0
        notes = []
        if grantor:
            confidence += GRANTOR_FIELD_WEIGHT
            notes.append(f"Grantor extracted: {grantor}")
        if parcel_id:
            confidence += PARCEL_FIELD_WEIGHT
            notes.append(f"Parcel ID extracted: {parcel_id}")
        if issued:
            confidence += DATE_FIELD_WEIGHT
            notes.append(f"Date of issue: {issued.isoformat()}")

        fraud_indicators: list[str] = []
        tampering: list[str] = []
        is_fraudulent = False

        anomaly = date_anomaly(issued, today)
        if anomaly:
            fraud_indicators.append(anomaly)
            confidence *= DATE_ANOMALY_PENALTY
            is_fraudulent = True

        flags = suspicious_text(text)
        if flags:
            fraud_indicators.extend(flags)
            tampering.extend(f for f in flags if f.startswith("Digital"))
            confidence *= SUSPICIOUS_TEXT_PENALTY
            is_fraudulent = is_fraudulent or any(f.startswith("Fraud") for f in flags)

        if grantor and document.grantor_name and not names_match(grantor, document.grantor_name):
            fraud_indicators.append(
                f"Document grantor '{grantor}' does not match claimed grantor "
                f"'{document.grantor_name}'"
            )
            confidence *= GRANTOR_MISMATCH_PENALTY

        return DocumentAssessment(
            document_type=detect_document_type(text),
            grantor_name=grantor,
            parcel_id=parcel_id,
            document_date=issued.isoformat() if issued else None,
            fraud_indicators=fraud_indicators,
            tampering_indicators=tampering,
            is_fraudulent=is_fraudulent,
            fraud_score=round(1.0 - confidence, 4) if fraud_indicators else 0.0,
            confidence=round(confidence, 4),
            source=self.name,
            notes=notes,
        )


SYSTEM_PROMPT = """\
You are a land title document examiner for West African land registries.
You receive the text (or an image) of a title document: an indenture,
certificate of occupancy, deed of assignment or similar.

CRITICAL RULES:
1. Extract EXACTLY what is written. Do not correct names, dates or numbers.
2. Do not infer or hallucinate values for missing fields; use null.
3. Report anything that suggests forgery or tampering: anachronisms,
   inconsistent fonts or dates, editing artifacts, implausible seals.

Return a JSON object with these exact keys:
{
    "document_type": "string or null",
    "grantor_name": "string exactly as written, or null",
    "parcel_id": "string or null",
    "document_date": "YYYY-MM-DD or null",
    "fraud_indicators": ["string", ...],
    "tampering_indicators": ["string", ...],
    "is_fraudulent": true or false,
    "fraud_score": number between 0 and 1,
    "confidence": number between 0 and 1 (how authentic the document looks)
}
"""


class OpenAIDocumentScorer:
    name = "openai"

    def __init__(self, api_key: str, model: str = "gpt-5", client: OpenAI | None = None):
        self._client = client or OpenAI(api_key=api_key)
        self._model = model

    def score(self, document: DocumentInput) -> DocumentAssessment:
        response = self._client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": _user_content(document)},
            ],
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content
        if not content:
            raise ValueError("Document scorer returned empty content")
        data = json.loads(content)
        logger.info("OpenAI document analysis completed for claim %s", document.claim_id)

        fraud_indicators = _safe_str_list(data.get("fraud_indicators"))
        grantor = _safe_str(data.get("grantor_name"))
        if grantor and document.grantor_name and not names_match(grantor, document.grantor_name):
            fraud_indicators.append(
                f"Document grantor '{grantor}' does not match claimed grantor "
                f"'{document.grantor_name}'"
            )

        return DocumentAssessment(
            document_type=_safe_str(data.get("document_type")),
            grantor_name=grantor,
            parcel_id=_safe_str(data.get("parcel_id")),
            document_date=_safe_str(data.get("document_date")),
            fraud_indicators=fraud_indicators,
            tampering_indicators=_safe_str_list(data.get("tampering_indicators")),
            is_fraudulent=bool(data.get("is_fraudulent", False)),
            fraud_score=_safe_unit_float(data.get("fraud_score"), default=0.0),
            confidence=_safe_unit_float(data.get("confidence"), default=0.0),
            source=self.name,
        )


def _user_content(document: DocumentInput) -> str | list[dict]:
    header = (
        f"Claimed grantor: {document.grantor_name or 'unknown'}\n"
        f"Claimant: {document.claimant_name or 'unknown'}\n"
    )
    if document.document_text:
        return f"{header}\nTitle document text:\n\n{document.document_text}"
    if document.document_ref and document.document_ref.startswith(("http://", "https://")):
        return [
            {"type": "text", "text": f"{header}\nAnalyse the attached title document."},
            {"type": "image_url", "image_url": {"url": document.document_ref}},
        ]
    raise ValueError("Claim has neither document text nor a document URL")


def build_document_scorer(settings: Settings) -> DocumentScorer:
    if settings.ai_configured:
        return OpenAIDocumentScorer(settings.openai_api_key, model=settings.openai_model)
    logger.warning("No OPENAI_API_KEY set; document analysis runs on heuristics only")
    return HeuristicDocumentScorer()


# ─── Safe Type Converters ────────────────────────────────────────────


def _safe_unit_float(value: object, default: float) -> float:
    """Clamp an LLM number into [0, 1]. Returns `default` when not a number."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return min(max(number, 0.0), 1.0)


def _safe_str(value: object) -> str | None:
    """Scalars become stripped strings; anything else (or blank) becomes None."""
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return str(value).strip() or None
    return None


def _safe_str_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item]
