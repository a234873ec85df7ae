"""
methodlab - Analytical standards lookup and Method Card generation backend.

This package provides:
- Standards search with grounded citation sources
- Bilingual (en/vi) technical breakdowns and standard comparison
- Two-stage Method Card workflow (Draft -> QC/Finalize)
- Gemini structured generation with schema enforcement
"""

__version__ = "1.0.0"
