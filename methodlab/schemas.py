"""
Response schemas for every oracle call.

Descriptors use the Gemini OpenAPI subset and are sent verbatim as
``response_schema``; utils.schema_validator checks payloads against the same
descriptors locally.
"""

from typing import Any, Dict, List

from methodlab.models import DETAIL_SECTION_KEYS, SECTION_KEYS

LEVELS = ["Low", "Medium", "High"]

STRING = {"type": "STRING"}


def _method_card_schema() -> Dict[str, Any]:
    return {
        "type": "OBJECT",
        "properties": {
            "title": STRING,
            "analytes": STRING,
            "chemicalGroup": STRING,
            "matrix": STRING,
            "technique": STRING,
            "referenceStandards": STRING,
            "sections": {
                "type": "OBJECT",
                "properties": {key: STRING for key in SECTION_KEYS},
                "required": list(SECTION_KEYS),
            },
        },
        "required": ["title", "analytes", "matrix", "technique", "referenceStandards", "sections"],
    }


# Draft Stage: all nine sections are mandatory
DRAFT_SCHEMA = _method_card_schema()

QC_REPORT_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "issues": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "description": STRING,
                    "section": STRING,
                    "risk": {"type": "STRING", "enum": LEVELS},
                },
                "required": ["description", "risk"],
            },
        },
        "suggestions": STRING,
        "isReady": {"type": "BOOLEAN"},
        "confidence": {"type": "STRING", "enum": LEVELS},
    },
    "required": ["issues", "isReady", "confidence"],
}

# QC/Finalize Stage: report and full corrected card are siblings, both required
QC_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "qcReport": QC_REPORT_SCHEMA,
        "finalCard": _method_card_schema(),
    },
    "required": ["qcReport", "finalCard"],
}

SEARCH_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "standards": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "id": STRING,
                    "code": STRING,
                    "title": STRING,
                    "organization": STRING,
                    "status": STRING,
                    "lastUpdate": STRING,
                    "matrix": STRING,
                    "parameters": {
                        "type": "OBJECT",
                        "properties": {
                            "analyte": STRING,
                            "lod": STRING,
                            "instrument": STRING,
                            "technique": STRING,
                        },
                    },
                    "summary": STRING,
                    "twoMinuteRead": STRING,
                },
                "required": ["code", "title"],
            },
        },
    },
    "required": ["standards"],
}

DETAIL_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        key: {
            "type": "OBJECT",
            "properties": {"en": STRING, "vi": STRING},
            "required": ["en", "vi"],
        }
        for key in DETAIL_SECTION_KEYS
    },
    "required": list(DETAIL_SECTION_KEYS),
}


def comparison_schema(codes: List[str]) -> Dict[str, Any]:
    """Comparison schema whose row values require exactly the given codes."""
    return {
        "type": "OBJECT",
        "properties": {
            "comparisonTable": {
                "type": "ARRAY",
                "items": {
                    "type": "OBJECT",
                    "properties": {
                        "attribute": STRING,
                        "values": {
                            "type": "OBJECT",
                            "properties": {code: STRING for code in codes},
                            "required": list(codes),
                        },
                    },
                    "required": ["attribute", "values"],
                },
            },
            "expertInsight": STRING,
        },
        "required": ["comparisonTable"],
    }
