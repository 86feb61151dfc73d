"""Built-in AI engine used by the free "custom" adapter.

Template and heuristic implementations of every gateway operation. No network
calls and no subscription cost; output is deterministic for a given input
(template choices are seeded from a hash of the parameters), so results are
safe to cache and stable in tests.

Raises UnreadableDocument when a document has no extractable text (the
adapter reports it as unavailable so a vision-capable provider can try);
any other ValueError is reported as invalid input.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import re
from collections import Counter
from typing import Any

from rentai.gateway.types import (
    DocumentAnalysisParams,
    DocumentInfoParams,
    PropertyDescriptionParams,
    RecommendationParams,
    TextGenerationParams,
)

logger = logging.getLogger(__name__)

ENGINE_VERSION = "custom-engine-4.0"


class UnreadableDocument(ValueError):
    """The built-in engine cannot read this document (e.g. a scanned image)."""


_DESCRIPTION_TEMPLATES = [
    "This {property_type} offers {bedrooms} bedrooms and {bathrooms} bathrooms in the desirable area of "
    "{location}. {university_text}The property features {features_list} making it perfect for {audience}.",
    "Located in {location}, this {property_type} provides {bedrooms} bedrooms and {bathrooms} bathrooms. "
    "{university_text}With amenities including {features_list}, it's an ideal choice for {audience}.",
    "A {adjective} {bedrooms} bedroom {property_type} in {location} with {bathrooms} bathrooms. "
    "{university_text}Highlights include {features_list}, perfect for {audience} seeking comfort and convenience.",
]

_TEMPLATE_FEATURES = {
    "apartment": ["modern kitchen", "spacious living room", "private balcony", "fitted storage", "secure entry system"],
    "house": ["large garden", "modern fitted kitchen", "spacious living room", "off-street parking", "central heating"],
    "studio": ["kitchenette", "efficient storage solutions", "built-in workspace", "good natural light"],
}

_ADJECTIVES = ["stunning", "spacious", "charming", "modern", "bright", "elegant", "welcoming", "stylish"]

_STOPWORDS = frozenset(
    "a an and are as at be by for from has have in is it its of on or that the this to was were will with "
    "shall any all not be been may must such their which who your you".split()
)

_PATTERNS = {
    "email": re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+"),
    "postcode": re.compile(r"\b[A-Z]{1,2}[0-9][A-Z0-9]? ?[0-9][A-Z]{2}\b"),
    "date": re.compile(r"\b\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}\b"),
    "amount": re.compile(r"£\s?\d[\d,]*(?:\.\d{2})?"),
    "phone": re.compile(r"(?:\+44\s?|\b0)\d{3,4}\s?\d{3}\s?\d{3,4}\b"),
    "passport_number": re.compile(r"\b\d{9}\b"),
    "sort_code": re.compile(r"\b\d{2}-\d{2}-\d{2}\b"),
}

# Document type → keywords found in file names, hints or text
_DOCUMENT_KEYWORDS = {
    "passport": ("passport",),
    "driving_licence": ("driving", "licence", "license"),
    "utility_bill": ("utility", "bill", "electricity", "gas", "water"),
    "bank_statement": ("bank", "statement", "sort code"),
    "tenancy_agreement": ("tenancy", "tenant", "landlord", "agreement", "deposit"),
    "payslip": ("payslip", "salary", "net pay"),
}

_FIELDS_BY_TYPE = {
    "passport": ("passport_number", "date"),
    "driving_licence": ("date", "postcode"),
    "utility_bill": ("amount", "date", "postcode"),
    "bank_statement": ("sort_code", "amount", "date"),
    "tenancy_agreement": ("amount", "date", "postcode", "email"),
    "payslip": ("amount", "date"),
}

# Clauses expected in an assured shorthold tenancy agreement
_TENANCY_CLAUSES = {
    "deposit protection": ("deposit protection", "tenancy deposit scheme", "deposit scheme"),
    "notice period": ("notice",),
    "rent amount": ("rent",),
    "repair obligations": ("repair",),
    "gas safety certificate": ("gas safety",),
    "energy performance certificate": ("energy performance", "epc"),
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _seed(*parts: Any) -> int:
    digest = hashlib.sha256(json.dumps(parts, sort_keys=True, default=str).encode()).hexdigest()
    return int(digest[:12], 16)


def _choose(items: list[str], seed: int) -> str:
    return items[seed % len(items)]


def _format_list(items: list[str]) -> str:
    if not items:
        return "a well-kept interior"
    if len(items) == 1:
        return items[0]
    return ", ".join(items[:-1]) + f" and {items[-1]}"


def decode_document_text(document_base64: str) -> str:
    """Best-effort text extraction from a base64 document; empty for binary formats."""
    if not document_base64:
        return ""
    raw = base64.b64decode(document_base64)
    if raw.startswith(b"%PDF"):
        # Pull literal strings out of uncompressed PDF content streams
        chunks = re.findall(rb"\(([^()]*)\)\s*Tj", raw)
        return " ".join(c.decode("latin-1", errors="ignore") for c in chunks)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return ""


def classify_document(*hints: str) -> str:
    haystack = " ".join(h.lower() for h in hints if h)
    best, best_hits = "unknown", 0
    for doc_type, keywords in _DOCUMENT_KEYWORDS.items():
        hits = sum(1 for k in keywords if k in haystack)
        if hits > best_hits:
            best, best_hits = doc_type, hits
    return best


def _key_terms(text: str, limit: int = 8) -> list[str]:
    words = [w for w in re.findall(r"[a-zA-Z][a-zA-Z'-]{2,}", text.lower()) if w not in _STOPWORDS]
    return [w for w, _ in Counter(words).most_common(limit)]


def _summary(text: str, sentences: int = 2) -> str:
    parts = [s.strip() for s in re.split(r"(?<=[.!?])\s+", text.strip()) if s.strip()]
    return " ".join(parts[:sentences])


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def generate_text(params: TextGenerationParams) -> Any:
    prompt = params.prompt.strip()
    lower = prompt.lower()

    if any(k in lower for k in ("deposit", "tenancy", "landlord", "rent")):
        topic = "tenancy"
        answer = (
            "For UK assured shorthold tenancies, deposits must be protected in a government-approved "
            "scheme within 30 days, and tenants should receive the prescribed information. "
            "Check the notice period and repair responsibilities in your agreement."
        )
    elif any(k in lower for k in ("student", "university", "accommodation")):
        topic = "student_housing"
        answer = (
            "Student accommodation is best secured early. Compare bills-included options, "
            "distance to campus and whether the property holds an HMO licence where required."
        )
    elif any(k in lower for k in ("price", "budget", "cost")):
        topic = "budget"
        answer = (
            "Rental budgets typically allow around 30% of income for rent. Factor in council tax, "
            "utilities and contents insurance when comparing properties."
        )
    else:
        topic = "general"
        answer = f"Here is a brief response to your request: {_summary(prompt, 1) or prompt}"

    if params.max_tokens:
        # Roughly four characters per token
        answer = answer[: params.max_tokens * 4].rstrip()

    if params.response_format == "json":
        return {"text": answer, "topic": topic, "engine": ENGINE_VERSION}
    return answer


def generate_property_description(params: PropertyDescriptionParams) -> str:
    seed = _seed(params.title, params.property_type, params.location, params.bedrooms, params.bathrooms)
    property_type = params.property_type.strip()
    lower_type = property_type.lower()

    if "apartment" in lower_type or "flat" in lower_type:
        template_features = _TEMPLATE_FEATURES["apartment"]
    elif "studio" in lower_type:
        template_features = _TEMPLATE_FEATURES["studio"]
    else:
        template_features = _TEMPLATE_FEATURES["house"]

    features = list(params.features)
    for feature in template_features[seed % 2 : seed % 2 + 3]:
        if feature not in features:
            features.append(feature)

    if params.university:
        audience = "students"
    elif "studio" in lower_type:
        audience = "professionals"
    else:
        audience = "families or professionals"

    description = _choose(_DESCRIPTION_TEMPLATES, seed).format(
        property_type=property_type,
        bedrooms=params.bedrooms,
        bathrooms=params.bathrooms,
        location=params.location,
        university_text=f"Conveniently located near {params.university}. " if params.university else "",
        features_list=_format_list(features),
        audience=audience,
        adjective=_choose(_ADJECTIVES, seed >> 4),
    )

    if params.max_length and len(description) > params.max_length:
        cut = description[: params.max_length - 1].rsplit(" ", 1)[0]
        description = cut.rstrip(",.;: ") + "…"

    logger.debug("Generated built-in property description for %r", params.title)
    return description


def extract_document_info(params: DocumentInfoParams) -> dict:
    text = decode_document_text(params.document_base64)
    if not text.strip():
        raise UnreadableDocument("Document contains no readable text")
    doc_type = classify_document(params.document_type, params.file_name, text[:2000])

    extracted: dict[str, Any] = {}
    for field_name in _FIELDS_BY_TYPE.get(doc_type, ("date", "email", "postcode", "amount")):
        matches = _PATTERNS[field_name].findall(text)
        if matches:
            extracted[field_name] = matches[0] if len(matches) == 1 else list(dict.fromkeys(matches))

    if doc_type == "unknown":
        confidence = 0.4 if extracted else 0.25
    else:
        confidence = min(0.95, 0.6 + 0.1 * len(extracted))

    return {
        "documentType": doc_type,
        "extractedInfo": extracted,
        "confidence": round(confidence, 2),
    }


def analyze_document(params: DocumentAnalysisParams) -> dict:
    text = params.text or decode_document_text(params.document_base64)
    if not text.strip():
        raise UnreadableDocument("Document contains no readable text")

    doc_type = classify_document(params.file_name, text[:2000])
    lower = text.lower()

    compliance_issues: list[str] = []
    if doc_type == "tenancy_agreement":
        for clause, keywords in _TENANCY_CLAUSES.items():
            if not any(k in lower for k in keywords):
                compliance_issues.append(f"Missing {clause} clause")

    result = {
        "documentType": doc_type,
        "summary": _summary(text),
        "keyTerms": _key_terms(text),
        "complianceIssues": compliance_issues,
        "wordCount": len(text.split()),
        "confidence": 0.7 if doc_type != "unknown" else 0.45,
    }
    if params.response_format != "json":
        issues = "; ".join(compliance_issues) or "none found"
        return {"analysis": f"{doc_type.replace('_', ' ').title()}: {result['summary']} Compliance issues: {issues}."}
    return result


def _as_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def score_property(prop: dict[str, Any], preferences: dict[str, Any]) -> tuple[float, list[str]]:
    """Score a property against tenant preferences (base 50, clamped 0-100)."""
    score = 50.0
    reasons: list[str] = []

    location = str(preferences.get("location") or "").lower()
    city = str(prop.get("city") or prop.get("location") or "").lower()
    if location and city and location in city:
        score += 25
        reasons.append(f"Located in requested city: {prop.get('city') or prop.get('location')}")

    university = str(preferences.get("university") or "").lower()
    if university:
        nearby = [str(u).lower() for u in prop.get("nearbyUniversities", []) or []]
        if university in str(prop.get("university") or "").lower():
            score += 20
            reasons.append(f"Near requested university: {prop.get('university')}")
        elif any(university in u for u in nearby):
            score += 15
            reasons.append("Near a related university")
        distance = _as_float(prop.get("distanceToUniversity"))
        if distance is not None and distance < 1.5:
            score += 10
            reasons.append(f"Very close to university ({distance} miles)")

    budget = _as_float(preferences.get("budget"))
    price = _as_float(prop.get("price"))
    if budget and price is not None:
        if price <= budget:
            score += 20
            reasons.append(f"Within budget at £{price:g} per month")
            if price <= budget * 0.85:
                score += 10
                reasons.append("Great value: significantly below max budget")
        else:
            over = (price - budget) / budget
            if over <= 0.1:
                score -= 5
                reasons.append(f"Slightly over budget ({round(over * 100)}% above max)")
            else:
                score -= 15
                reasons.append(f"Over budget at £{price:g} per month")

    wanted_type = str(preferences.get("propertyType") or "").lower()
    if wanted_type and str(prop.get("propertyType") or "").lower() == wanted_type:
        score += 15
        reasons.append(f"Requested property type: {prop.get('propertyType')}")

    min_bedrooms = _as_float(preferences.get("minBedrooms"))
    bedrooms = _as_float(prop.get("bedrooms"))
    if min_bedrooms and bedrooms is not None:
        if bedrooms >= min_bedrooms:
            score += 15
            reasons.append(f"Has {bedrooms:g} bedrooms (minimum requested: {min_bedrooms:g})")
        else:
            score -= 10
            reasons.append(f"Only has {bedrooms:g} bedrooms (minimum requested: {min_bedrooms:g})")

    wanted_features = {str(f).lower() for f in preferences.get("mustHaveFeatures", []) or []}
    if wanted_features:
        have = {str(f).lower() for f in prop.get("features", []) or []}
        matched = sorted(wanted_features & have)
        if matched:
            score += 5 * len(matched)
            reasons.append(f"Has requested features: {', '.join(matched)}")

    return max(0.0, min(100.0, score)), reasons


def generate_recommendations(params: RecommendationParams) -> dict:
    scored = []
    for index, prop in enumerate(params.properties):
        score, reasons = score_property(prop, params.preferences)
        scored.append((score, index, prop, reasons))

    # Stable ordering: higher score first, then original position
    scored.sort(key=lambda item: (-item[0], item[1]))

    recommendations = []
    for score, index, prop, reasons in scored[: params.count]:
        entry: dict[str, Any] = {"propertyId": prop.get("id", index), "score": round(score, 1)}
        if params.include_reasons:
            entry["reasons"] = reasons
        recommendations.append(entry)
    return {"recommendations": recommendations}
