"""Keyword-table obligation extraction and classification.

KeywordTextClassifier is the default TextClassifier: it finds obligation
sentences with two regular-expression families and infers category,
control type, difficulty and evidence kinds from keyword tables. The first
matching table row wins.
"""

import re

from aumos_compliance_learning.core.domain import RequirementTraits

MIN_REQUIREMENT_LENGTH = 20

_OBLIGATION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"[^.]*\b(?:shall|must|required to|obligated to|needs to)\b[^.]+\.", re.IGNORECASE),
    re.compile(r"[^.]*\b(?:ensure|maintain|implement|establish|provide)\b[^.]+\.", re.IGNORECASE),
)

_CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("people", ("staff", "training", "personnel", "employee")),
    ("physical", ("physical", "premises", "access control", "facility")),
    ("technological", ("system", "software", "technical", "encrypt", "network")),
)

_CONTROL_TYPE_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("preventive", ("prevent", "prohibit", "restrict", "block")),
    ("detective", ("detect", "monitor", "identify", "log", "audit")),
    ("corrective", ("correct", "remediat", "restor", "recover")),
)

_DIFFICULTY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("very_high", ("complex", "comprehensive", "enterprise-wide")),
    ("high", ("system", "technical", "architecture")),
    ("medium", ("process", "procedure", "policy")),
)

_EVIDENCE_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("policy_document", ("document", "policy", "procedure")),
    ("audit_log", ("log", "record", "audit")),
    ("test_report", ("test", "assess", "evaluat")),
    ("screenshot", ("screen", "configur", "setting")),
    ("certificate", ("train", "certif")),
)


def _first_match(text: str, table: tuple[tuple[str, tuple[str, ...]], ...], default: str) -> str:
    for label, keywords in table:
        if any(keyword in text for keyword in keywords):
            return label
    return default


class KeywordTextClassifier:
    """Regex extraction and keyword-table classification of obligation text."""

    def extract_requirements(self, text: str) -> list[str]:
        """Find obligation sentences, de-duplicated, in pattern then document order.

        Args:
            text: Section text.

        Returns:
            Sentences longer than MIN_REQUIREMENT_LENGTH characters.
        """
        requirements: list[str] = []
        for pattern in _OBLIGATION_PATTERNS:
            for match in pattern.findall(text):
                cleaned = match.strip()
                if len(cleaned) > MIN_REQUIREMENT_LENGTH and cleaned not in requirements:
                    requirements.append(cleaned)
        return requirements

    def classify(self, requirement: str) -> RequirementTraits:
        """Infer control traits from keywords in the requirement text."""
        lower = requirement.lower()
        evidence_types = tuple(label for label, keywords in _EVIDENCE_KEYWORDS if any(k in lower for k in keywords))
        return RequirementTraits(
            category=_first_match(lower, _CATEGORY_KEYWORDS, "organizational"),
            control_type=_first_match(lower, _CONTROL_TYPE_KEYWORDS, "deterrent"),
            difficulty=_first_match(lower, _DIFFICULTY_KEYWORDS, "low"),
            evidence_types=evidence_types or ("policy_document",),
        )
