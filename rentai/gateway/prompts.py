"""Prompt construction for remote (LLM-backed) adapters.

Each operation maps to a system/user prompt pair plus an optional inline
document. Adapters translate a PromptSpec into their own wire protocol.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from rentai.gateway.types import (
    DocumentAnalysisParams,
    DocumentInfoParams,
    Operation,
    OperationParams,
    PropertyDescriptionParams,
    RecommendationParams,
    TextGenerationParams,
)

_MIME_TYPES = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".txt": "text/plain",
}

DEFAULT_EXTRACTION_PROMPT = (
    "Extract all structured information from this document. Return the data in a structured "
    "format including all fields, values, dates, and any other relevant information."
)


@dataclass(frozen=True)
class InlineDocument:
    data_base64: str
    mime_type: str
    file_name: str = ""

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


@dataclass(frozen=True)
class PromptSpec:
    system_prompt: str
    user_prompt: str
    max_tokens: int = 1024
    json_output: bool = False
    document: InlineDocument | None = None


def guess_mime_type(file_name: str, data_base64: str = "") -> str:
    """Guess a MIME type from the file extension, then from magic bytes."""
    lower = file_name.lower()
    for ext, mime in _MIME_TYPES.items():
        if lower.endswith(ext):
            return mime
    if data_base64.startswith("JVBER"):
        return "application/pdf"
    if data_base64.startswith("iVBOR"):
        return "image/png"
    if data_base64.startswith("/9j/"):
        return "image/jpeg"
    return "application/octet-stream"


def _text_prompt(params: TextGenerationParams) -> PromptSpec:
    system = params.system_prompt or "You are a helpful assistant for a UK student and rental property marketplace."
    if params.response_format == "json":
        system += " Respond with a single JSON object only."
    return PromptSpec(
        system_prompt=system,
        user_prompt=params.prompt,
        max_tokens=params.max_tokens or 1024,
        json_output=params.response_format == "json",
    )


def _property_prompt(params: PropertyDescriptionParams) -> PromptSpec:
    lines = [
        "Write an engaging, accurate marketing description for this rental property.",
        f"Title: {params.title}" if params.title else "",
        f"Property type: {params.property_type}",
        f"Bedrooms: {params.bedrooms}",
        f"Bathrooms: {params.bathrooms}",
        f"Location: {params.location}",
        f"Nearby university: {params.university}" if params.university else "",
        f"Features: {', '.join(params.features)}" if params.features else "",
    ]
    if params.max_length:
        lines.append(f"Keep it under {params.max_length} characters.")
    return PromptSpec(
        system_prompt="You are an expert UK letting agent copywriter. Do not invent amenities that are not listed.",
        user_prompt="\n".join(line for line in lines if line),
        max_tokens=600,
    )


def _document_info_prompt(params: DocumentInfoParams) -> PromptSpec:
    instructions = params.prompt or DEFAULT_EXTRACTION_PROMPT
    hint = f" The document is expected to be a {params.document_type}." if params.document_type else ""
    return PromptSpec(
        system_prompt="You extract structured data from identity, financial and tenancy documents.",
        user_prompt=(
            f"{instructions}{hint}\n"
            'Return JSON: {"documentType": string, "extractedInfo": object, "confidence": number between 0 and 1}'
        ),
        max_tokens=1500,
        json_output=True,
        document=InlineDocument(
            data_base64=params.document_base64,
            mime_type=guess_mime_type(params.file_name, params.document_base64),
            file_name=params.file_name,
        ),
    )


def _document_analysis_prompt(params: DocumentAnalysisParams) -> PromptSpec:
    instructions = params.prompt or (
        f"Perform a {params.analysis_type} analysis of this document. Identify the document type, "
        "summarize it, list key terms and flag any compliance issues relevant to UK residential lettings."
    )
    if params.response_format == "json":
        instructions += (
            '\nReturn JSON: {"documentType": string, "summary": string, "keyTerms": [string], '
            '"complianceIssues": [string], "confidence": number}'
        )
    if params.text:
        instructions += f"\n\nDocument text:\n{params.text}"
    document = None
    if params.document_base64:
        document = InlineDocument(
            data_base64=params.document_base64,
            mime_type=guess_mime_type(params.file_name, params.document_base64),
            file_name=params.file_name,
        )
    return PromptSpec(
        system_prompt="You are a meticulous property-law document analyst.",
        user_prompt=instructions,
        max_tokens=2000,
        json_output=params.response_format == "json",
        document=document,
    )


def _recommendation_prompt(params: RecommendationParams) -> PromptSpec:
    return PromptSpec(
        system_prompt="You match tenants to rental properties. Only recommend properties from the provided list.",
        user_prompt=(
            f"Tenant preferences: {json.dumps(params.preferences, sort_keys=True)}\n"
            f"Available properties: {json.dumps(list(params.properties), sort_keys=True)}\n"
            f"Recommend the best {params.count} properties. "
            'Return JSON: {"recommendations": [{"propertyId": id, "score": number 0-100'
            + (', "reasons": [string]' if params.include_reasons else "")
            + "}]}"
        ),
        max_tokens=1500,
        json_output=True,
    )


_PROMPT_BUILDERS = {
    Operation.GENERATE_TEXT: _text_prompt,
    Operation.GENERATE_PROPERTY_DESCRIPTION: _property_prompt,
    Operation.EXTRACT_DOCUMENT_INFO: _document_info_prompt,
    Operation.ANALYZE_DOCUMENT: _document_analysis_prompt,
    Operation.GENERATE_RECOMMENDATIONS: _recommendation_prompt,
}


def build_prompt(operation: Operation, params: OperationParams) -> PromptSpec:
    return _PROMPT_BUILDERS[operation](params)
