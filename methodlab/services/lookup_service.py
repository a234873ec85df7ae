"""
Lookup operations outside the Method Card workflow.

Three independent single-shot calls, each with its own schema:
- search: grounded search for standards plus citation sources
- fetch_details: bilingual (en/vi) technical breakdown of one standard
- compare: side-by-side comparison table for two or more standards

None of them touches workflow state, so they may run concurrently with a
WorkflowRun and with each other.
"""

import logging
from typing import List, Optional

from methodlab.errors import InputValidationError
from methodlab.models import (
    AnalyticalStandard,
    ComparisonResult,
    ComparisonRow,
    DetailedMethod,
    SearchResult,
    SearchSource,
)
from methodlab.schemas import DETAIL_SCHEMA, SEARCH_SCHEMA, comparison_schema
from methodlab.services.gemini_service import GeminiService
from methodlab.services.prompt_loader import load_prompt, render_prompt

logger = logging.getLogger(__name__)


class LookupService:
    """Search, detail and comparison lookups against the oracle."""

    def __init__(self, gemini_service: Optional[GeminiService] = None):
        self.gemini_service = gemini_service or GeminiService()

    async def search(self, query: str) -> SearchResult:
        """
        Find analytical standards matching a free-text query.

        Sources come from the grounding metadata; entries without a uri are
        dropped, as are repeated uris.
        """
        if not query or not query.strip():
            raise InputValidationError("Search query is required", field="query")

        result = await self.gemini_service.generate(
            prompt_body=render_prompt(load_prompt("search_prompt"), query=query.strip()),
            role_instruction=load_prompt("lookup_role"),
            schema=SEARCH_SCHEMA,
            stage="search",
            grounded=True,
        )

        standards = [AnalyticalStandard.from_dict(s) for s in result.data["standards"]]

        sources: List[SearchSource] = []
        seen = set()
        for chunk in result.grounding_chunks:
            uri = chunk.get("uri")
            if not uri or uri in seen:
                continue
            seen.add(uri)
            sources.append(SearchSource(uri=uri, title=chunk.get("title")))

        logger.info(f"Search {query!r}: {len(standards)} standards, {len(sources)} sources")
        return SearchResult(standards=standards, sources=sources)

    async def fetch_details(self, code: str, title: str) -> DetailedMethod:
        """Bilingual technical breakdown of a standard."""
        if not code or not code.strip():
            raise InputValidationError("Standard code is required", field="code")

        result = await self.gemini_service.generate(
            prompt_body=render_prompt(
                load_prompt("detail_prompt"),
                code=code.strip(),
                title=(title or "").strip(),
            ),
            role_instruction=load_prompt("lookup_role"),
            schema=DETAIL_SCHEMA,
            stage="details",
        )
        return DetailedMethod.from_dict(result.data)

    async def compare(self, codes: List[str]) -> ComparisonResult:
        """
        Compare two or more standards.

        Every row of the returned table has exactly the requested codes as
        value keys, in request order.
        """
        unique_codes: List[str] = []
        for code in codes or []:
            code = (code or "").strip()
            if code and code not in unique_codes:
                unique_codes.append(code)
        if len(unique_codes) < 2:
            raise InputValidationError(
                "At least two distinct standard codes are required", field="codes"
            )

        result = await self.gemini_service.generate(
            prompt_body=render_prompt(
                load_prompt("compare_prompt"), codes=", ".join(unique_codes)
            ),
            role_instruction=load_prompt("lookup_role"),
            schema=comparison_schema(unique_codes),
            stage="compare",
        )

        rows = []
        for row in result.data["comparisonTable"]:
            values = row["values"]
            extra = set(values) - set(unique_codes)
            if extra:
                logger.warning(f"Dropping unrequested comparison keys: {sorted(extra)}")
            rows.append(ComparisonRow(
                attribute=str(row["attribute"]),
                values={code: str(values[code]) for code in unique_codes},
            ))

        return ComparisonResult(
            codes=unique_codes,
            comparison_table=rows,
            expert_insight=str(result.data.get("expertInsight", "")),
        )
