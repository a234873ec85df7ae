"""
QC/Finalize Stage: audit and rewrite of a draft Method Card.

The whole draft is serialized into the prompt; the oracle answers with a QC
report and a complete corrected card in one response. The returned final
card supersedes the draft; nothing is merged.
"""

import json
import logging
import time
from typing import Optional, Tuple

from methodlab.models import AppLanguage, AuditReport, MethodDocument
from methodlab.schemas import QC_SCHEMA
from methodlab.services.draft_stage import require_complete_sections
from methodlab.services.gemini_service import GeminiService
from methodlab.services.prompt_loader import language_name, load_prompt, render_prompt

logger = logging.getLogger(__name__)

STAGE_NAME = "qc"


class QCStage:
    """Audits a draft and produces the final Method Card."""

    def __init__(self, gemini_service: Optional[GeminiService] = None):
        self.gemini_service = gemini_service or GeminiService()

    def build_role_instruction(self, language: Optional[AppLanguage] = None) -> str:
        return render_prompt(load_prompt("qc_role"), language=language_name(language))

    def build_prompt(self, draft: MethodDocument) -> str:
        # Serialized verbatim: the auditor sees the full draft, not a summary
        draft_json = json.dumps(draft.to_dict(), ensure_ascii=False)
        return render_prompt(load_prompt("qc_prompt"), draft_json=draft_json)

    async def review_and_finalize(
        self,
        draft: MethodDocument,
        language: Optional[AppLanguage] = None,
    ) -> Tuple[AuditReport, MethodDocument]:
        """
        Audit the draft and return the report with the finalized card.

        Args:
            draft: Draft document from the Draft Stage
            language: Output language (default from settings)

        Returns:
            Tuple of (report, final_document)

        Raises:
            GenerationError: If the call fails or either part is missing
        """
        logger.info(f"Reviewing draft {draft.title!r}")
        start_time = time.time()

        result = await self.gemini_service.generate(
            prompt_body=self.build_prompt(draft),
            role_instruction=self.build_role_instruction(language),
            schema=QC_SCHEMA,
            stage=STAGE_NAME,
        )

        report = AuditReport.from_dict(result.data["qcReport"])
        final = require_complete_sections(
            MethodDocument.from_dict(result.data["finalCard"]), STAGE_NAME
        )

        logger.info(
            f"QC completed in {time.time() - start_time:.2f}s: "
            f"{len(report.issues)} issues, ready={report.is_ready}, "
            f"confidence={report.confidence.value}"
        )
        return report, final
