"""Output Normalizer — turns raw provider text into each operation's result shape.

Applied by remote adapters after a successful HTTP round trip:
  - Strips markdown code fences and surrounding chatter
  - Parses JSON for structured operations
  - Truncates property descriptions to the requested length
  - Clamps confidence scores into [0, 1]

Raises MalformedOutput when a provider answers with something unusable;
adapters report that as a transient failure so the next adapter is tried.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from rentai.gateway.types import (
    DocumentAnalysisParams,
    Operation,
    OperationParams,
    PropertyDescriptionParams,
    RecommendationParams,
    TextGenerationParams,
)

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)\n?```", re.DOTALL)


class MalformedOutput(ValueError):
    """Provider output could not be converted to the operation's result shape."""


def extract_json(text: str) -> Any:
    """Parse JSON from a model answer, tolerating code fences and leading prose."""
    if not text or not text.strip():
        raise MalformedOutput("Empty response")

    fenced = _FENCE_PATTERN.search(text)
    candidate = fenced.group(1) if fenced else text.strip()

    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    # Fall back to the outermost object/array in the text
    starts = [i for i in (candidate.find("{"), candidate.find("[")) if i >= 0]
    if not starts:
        raise MalformedOutput("No JSON found in response")
    start = min(starts)
    end = max(candidate.rfind("}"), candidate.rfind("]"))
    if end <= start:
        raise MalformedOutput("Unterminated JSON in response")
    try:
        return json.loads(candidate[start : end + 1])
    except json.JSONDecodeError as e:
        raise MalformedOutput(f"Invalid JSON in response: {e}") from e


def truncate_text(text: str, max_length: int | None) -> str:
    """Cut text to max_length on a word boundary, ending with an ellipsis."""
    text = text.strip()
    if not max_length or len(text) <= max_length:
        return text
    cut = text[: max_length - 1]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip(",.;: ") + "…"


def _clamp_confidence(value: Any, default: float = 0.5) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return default
    if confidence > 1.0:
        confidence = confidence / 100.0  # Some models answer in percent
    return round(max(0.0, min(1.0, confidence)), 3)


def _normalize_text(params: TextGenerationParams, raw_text: str) -> Any:
    if params.response_format == "json":
        return extract_json(raw_text)
    text = raw_text.strip()
    if not text:
        raise MalformedOutput("Empty response")
    return text


def _normalize_property_description(params: PropertyDescriptionParams, raw_text: str) -> str:
    text = raw_text.strip().strip('"')
    if not text:
        raise MalformedOutput("Empty property description")
    return truncate_text(text, params.max_length)


def _normalize_document_info(params: Any, raw_text: str) -> dict:
    data = extract_json(raw_text)
    if not isinstance(data, dict):
        raise MalformedOutput("Expected a JSON object for document info")
    extracted = data.get("extractedInfo", data.get("extracted_info"))
    if not isinstance(extracted, dict):
        extracted = {k: v for k, v in data.items() if k not in ("documentType", "confidence")}
    return {
        "documentType": data.get("documentType") or params.document_type or "unknown",
        "extractedInfo": extracted,
        "confidence": _clamp_confidence(data.get("confidence")),
    }


def _normalize_document_analysis(params: DocumentAnalysisParams, raw_text: str) -> dict:
    if params.response_format != "json":
        text = raw_text.strip()
        if not text:
            raise MalformedOutput("Empty document analysis")
        return {"analysis": text}

    data = extract_json(raw_text)
    if not isinstance(data, dict):
        raise MalformedOutput("Expected a JSON object for document analysis")
    data.setdefault("keyTerms", [])
    data.setdefault("complianceIssues", [])
    data["confidence"] = _clamp_confidence(data.get("confidence"))
    return data


def _normalize_recommendations(params: RecommendationParams, raw_text: str) -> dict:
    data = extract_json(raw_text)
    items = data.get("recommendations") if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise MalformedOutput("Expected a list of recommendations")

    known_ids = {str(p.get("id")) for p in params.properties if "id" in p}
    result: list[dict] = []
    for item in items:
        if not isinstance(item, dict) or "propertyId" not in item:
            continue
        # Drop hallucinated properties that were not in the candidate list
        if known_ids and str(item["propertyId"]) not in known_ids:
            logger.debug("Dropping unknown recommended property %s", item["propertyId"])
            continue
        try:
            score = round(float(item.get("score", 0)), 1)
        except (TypeError, ValueError):
            score = 0.0
        entry = {"propertyId": item["propertyId"], "score": score}
        if params.include_reasons:
            entry["reasons"] = [str(r) for r in item.get("reasons", [])]
        result.append(entry)

    result.sort(key=lambda r: r["score"], reverse=True)
    return {"recommendations": result[: params.count]}


_NORMALIZERS = {
    Operation.GENERATE_TEXT: _normalize_text,
    Operation.GENERATE_PROPERTY_DESCRIPTION: _normalize_property_description,
    Operation.EXTRACT_DOCUMENT_INFO: _normalize_document_info,
    Operation.ANALYZE_DOCUMENT: _normalize_document_analysis,
    Operation.GENERATE_RECOMMENDATIONS: _normalize_recommendations,
}


def normalize_output(operation: Operation, params: OperationParams, raw_text: str) -> Any:
    """Convert raw provider text to the operation's result shape.

    Idempotent for structured outputs: the same text always yields the same value.
    """
    return _NORMALIZERS[operation](params, raw_text)
