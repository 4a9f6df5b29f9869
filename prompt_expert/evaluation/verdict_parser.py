"""Turning the judge's free-text verdict into a structured ``Verdict``.

The default parser is keyword based and deterministic for a given text.
It is brittle by construction, so every parse keeps the raw text and
notes which fields fell back to a default.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from prompt_expert.schemas.evaluation import Verdict

logger = structlog.get_logger(__name__)


class VerdictParser(Protocol):
    def parse(self, text: str, score_delta: float = 0.0) -> Verdict: ...


class KeywordVerdictParser:
    """Winner is "A" unless the text names version/prompt B; confidence is
    "high" if the word appears, else "low" if that appears, else "medium";
    production readiness needs both "recommend" and "production"."""

    def parse(self, text: str, score_delta: float = 0.0) -> Verdict:
        lowered = text.lower()
        warnings: list[str] = []

        if "version b" in lowered or "prompt b" in lowered:
            winner = "B"
        else:
            winner = "A"
            if "version a" not in lowered and "prompt a" not in lowered:
                warnings.append("No version named in verdict; winner defaulted to A")

        if "high" in lowered:
            confidence = "high"
        elif "low" in lowered:
            confidence = "low"
        else:
            confidence = "medium"
            if "medium" not in lowered:
                warnings.append("No confidence level in verdict; defaulted to medium")

        recommend_production = "recommend" in lowered and "production" in lowered

        if warnings:
            logger.warning("verdict_parse_fallback", warnings=warnings)
        logger.info(
            "verdict_parsed",
            winner=winner,
            confidence=confidence,
            recommend_production=recommend_production,
        )
        return Verdict(
            winner=winner,
            confidence=confidence,
            reasoning_text=text,
            recommend_production=recommend_production,
            score_delta=score_delta,
            parse_warnings=warnings,
        )
