"""
Draft Stage: first pass of the Method Card workflow.

Builds a generation request from the user's parameters and a fixed
Senior Application Engineer profile, and returns the draft MethodDocument.
Technical plausibility is not checked here; that is the QC stage's job.
"""

import logging
import time
from typing import Optional

from methodlab.errors import SchemaViolation
from methodlab.models import NOT_SPECIFIED, GenerationParameters, MethodDocument
from methodlab.schemas import DRAFT_SCHEMA
from methodlab.services.gemini_service import GeminiService
from methodlab.services.prompt_loader import language_name, load_prompt, render_prompt

logger = logging.getLogger(__name__)

STAGE_NAME = "draft"


def require_complete_sections(document: MethodDocument, stage: str) -> MethodDocument:
    """
    Reject a card with blank sections.

    The response schema only guarantees that all nine keys are present.

    Raises:
        SchemaViolation: If any section is empty or whitespace
    """
    empty = document.sections.empty_keys()
    if empty:
        raise SchemaViolation(
            f"Method Card has empty sections: {empty}",
            stage=stage,
            errors=[
                {"path": f"sections.{key}", "message": "section is empty", "validator": "minLength"}
                for key in empty
            ],
        )
    return document


class DraftStage:
    """Generates the draft Method Card."""

    def __init__(self, gemini_service: Optional[GeminiService] = None):
        self.gemini_service = gemini_service or GeminiService()

    def build_role_instruction(self, params: GenerationParameters) -> str:
        return render_prompt(
            load_prompt("draft_role"),
            language=language_name(params.language),
            not_specified=NOT_SPECIFIED,
        )

    def build_prompt(self, params: GenerationParameters) -> str:
        return render_prompt(
            load_prompt("draft_prompt"),
            language=language_name(params.language),
            **params.prompt_values(),
        )

    async def draft(self, params: GenerationParameters) -> MethodDocument:
        """
        Generate a draft Method Card.

        Args:
            params: Validated generation parameters

        Returns:
            The parsed draft document, unchanged

        Raises:
            InputValidationError: If analyte or matrix is blank
            GenerationError: If the generation call fails
        """
        params.validate()

        logger.info(f"Drafting Method Card for {params.analyte} in {params.matrix}")
        start_time = time.time()

        result = await self.gemini_service.generate(
            prompt_body=self.build_prompt(params),
            role_instruction=self.build_role_instruction(params),
            schema=DRAFT_SCHEMA,
            stage=STAGE_NAME,
        )

        document = require_complete_sections(MethodDocument.from_dict(result.data), STAGE_NAME)
        logger.info(f"Draft completed in {time.time() - start_time:.2f}s: {document.title!r}")
        return document
