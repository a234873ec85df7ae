"""
Shared fixtures for methodlab tests.

Gemini responses are faked with SimpleNamespace objects shaped like the
SDK's GenerateContentResponse; the model itself is an AsyncMock.
"""

import json
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from tenacity import wait_none

from methodlab.models import SECTION_KEYS
from methodlab.services.gemini_service import GeminiService, StructuredResult


# =============================================================================
# Response builders
# =============================================================================


def make_response(
    text: str = "",
    finish_reason: Optional[str] = None,
    block_reason: Optional[str] = None,
    grounding: Optional[List[Dict[str, Optional[str]]]] = None,
    no_candidates: bool = False,
):
    """Build a fake generate_content_async response."""
    feedback = SimpleNamespace(block_reason=block_reason)
    if no_candidates:
        return SimpleNamespace(prompt_feedback=feedback, candidates=[])

    chunks = [
        SimpleNamespace(web=SimpleNamespace(uri=g.get("uri"), title=g.get("title")))
        for g in grounding or []
    ]
    candidate = SimpleNamespace(
        content=SimpleNamespace(parts=[SimpleNamespace(text=text)]),
        finish_reason=SimpleNamespace(name=finish_reason or "STOP"),
        grounding_metadata=SimpleNamespace(grounding_chunks=chunks),
    )
    return SimpleNamespace(prompt_feedback=feedback, candidates=[candidate])


def json_response(payload: Any, **kwargs):
    return make_response(json.dumps(payload, ensure_ascii=False), **kwargs)


def method_card_payload(title: str = "Pesticide residues in Fruit by LC-MS/MS") -> Dict[str, Any]:
    return {
        "title": title,
        "analytes": "Pesticide",
        "matrix": "Fruit",
        "technique": "LC-MS/MS",
        "referenceStandards": "EN 15662",
        "sections": {key: f"{key} text" for key in SECTION_KEYS},
    }


def qc_payload(title: str = "Pesticide residues in Fruit (final)") -> Dict[str, Any]:
    return {
        "qcReport": {
            "issues": [
                {
                    "description": "Recovery range missing for polar pesticides",
                    "section": "performance",
                    "risk": "Medium",
                }
            ],
            "suggestions": "Add matrix-matched calibration.",
            "isReady": True,
            "confidence": "High",
        },
        "finalCard": method_card_payload(title),
    }


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_model():
    """Gemini model double; set generate_content_async.side_effect per test."""
    model = MagicMock()
    model.generate_content_async = AsyncMock()
    return model


@pytest.fixture
def model_factory(fake_model):
    return MagicMock(return_value=fake_model)


@pytest.fixture
def gemini_service(model_factory):
    """GeminiService wired to the fake model, no backoff between retries."""
    return GeminiService(
        model_name="test-model",
        parse_policy="strict",
        timeout_seconds=5,
        max_attempts=3,
        retry_wait=wait_none(),
        model_factory=model_factory,
    )


@pytest.fixture
def stub_service():
    """Service double returning prepared StructuredResults from generate()."""
    service = MagicMock(spec=GeminiService)
    service.generate = AsyncMock()
    return service


def result(data: Dict[str, Any], chunks=None) -> StructuredResult:
    return StructuredResult(data=data, raw_text=json.dumps(data), grounding_chunks=chunks or [])
