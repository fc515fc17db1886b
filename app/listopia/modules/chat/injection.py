"""
Heuristic prompt-injection screen for chat input.

Each matching injection pattern adds 2 to the risk score, each suspicious
(obfuscation) pattern adds 1, and structural checks add 1-2. Scores of 0-2 are
"low", 3-5 "medium", 6+ "high".
"""
from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field

INJECTION_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "prompt_rewriting": [
        re.compile(r"ignore\s+(?:previous|earlier|prior|above)\s+(?:instructions|prompts?|directives)", re.I),
        re.compile(r"forget\s+(?:previous|earlier|everything|above)", re.I),
        re.compile(r"start\s+over", re.I),
        re.compile(r"new\s+(?:conversation|chat|session)", re.I),
        re.compile(r"disregard\s+(?:previous|above)", re.I),
    ],
    "role_switching": [
        re.compile(r"^(?:you\s+)?are\s+now", re.I | re.M),
        re.compile(r"act\s+as\s+(?:a\s+)?(?:an\s+)?", re.I),
        re.compile(r"pretend\s+(?:you\s+)?are\s+(?:a\s+)?(?:an\s+)?", re.I),
        re.compile(r"assume\s+(?:the\s+)?(?:role|persona)\s+of", re.I),
        re.compile(r"be\s+the\s+", re.I),
    ],
    "context_escape": [
        re.compile(r"outside\s+(?:the\s+)?system", re.I),
        re.compile(r"bypass(?:ing|ed)?\s+(?:the\s+)?(?:system\s+)?(?:prompt|guidelines)", re.I),
        re.compile(r"disregard\s+(?:the\s+)?system\s+prompt", re.I),
        re.compile(r"ignore\s+(?:the\s+)?guidelines?", re.I),
        re.compile(r"override\s+(?:system|safety)", re.I),
        re.compile(r"no\s+longer\s+subject\s+to", re.I),
    ],
    "jailbreak_keywords": [
        re.compile(r"unrestricted", re.I),
        re.compile(r"without\s+(?:limitations|restrictions|constraints)", re.I),
        re.compile(r"anything\s+goes", re.I),
        re.compile(r"no\s+filter", re.I),
        re.compile(r"no\s+restrictions?", re.I),
        re.compile(r"don't\s+refuse", re.I),
        re.compile(r"must\s+(?:always\s+)?comply", re.I),
    ],
    "prompt_injection_meta": [
        re.compile(r"\[(?:system|instruction|prompt|command|SYSTEM|INSTRUCTION)\]"),
        re.compile(r"```prompt", re.I),
        re.compile(r"<<<SYSTEM>>>", re.I),
        re.compile(r"\{START_JAILBREAK\}", re.I),
    ],
}

SUSPICIOUS_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "base64_encoded": [
        re.compile(r"^[A-Za-z0-9+/]{20,}={0,2}$", re.M),
        re.compile(r"base64", re.I),
    ],
    "html_entities": [
        re.compile(r"&#\d{4,5};"),
        re.compile(r"&#x[0-9a-f]{4,}", re.I),
        re.compile(r"&[a-z]+;", re.I),
    ],
    "unicode_tricks": [
        re.compile(r"[\u0400-\u04FF\u0500-\u052F]"),  # Cyrillic
        re.compile(r"[\u0600-\u06FF\u0750-\u077F]"),  # Arabic
        re.compile(r"[\u0900-\u097F]"),  # Devanagari
    ],
    "command_injection": [
        re.compile(r"`.*`"),
        re.compile(r"\$\{.*\}"),
        re.compile(r"\$\(.*\)"),
        re.compile(r"<%.*%>"),
    ],
}

SUSPENSION_KEYWORDS = frozenset(
    ["ignore", "forget", "disregard", "bypass", "override", "system", "prompt", "instructions"]
)
DELIMITERS = ("\n---", "====", "----")
_HEADER_RE = re.compile(r"^#+", re.M)


@dataclass
class InjectionResult:
    detected: bool = False
    risk_level: str = "low"
    risk_score: int = 0
    patterns: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "detected": self.detected,
            "risk_level": self.risk_level,
            "risk_score": self.risk_score,
            "patterns": list(self.patterns),
        }


def risk_level_for(score: int) -> str:
    if score >= 6:
        return "high"
    if score >= 3:
        return "medium"
    return "low"


def detect(message: str | None) -> InjectionResult:
    text = (message or "").strip()
    if not text:
        return InjectionResult()

    patterns: list[str] = []
    score = 0

    for category, regexes in INJECTION_PATTERNS.items():
        for rx in regexes:
            if rx.search(text):
                patterns.append(f"{category}: {rx.pattern[:41]}")
                score += 2

    for category, regexes in SUSPICIOUS_PATTERNS.items():
        for rx in regexes:
            if rx.search(text):
                patterns.append(f"suspicious_{category}")
                score += 1

    # Several delimited sections read like a smuggled second prompt.
    if sum(text.count(d) for d in DELIMITERS) >= 2:
        patterns.append("multiple_prompt_sections")
        score += 1
    if len(text) > 5000 and len(_HEADER_RE.findall(text)) >= 3:
        patterns.append("suspicious_structure_length")
        score += 1

    lines = text.split("\n")
    if len(lines) > 1 and max(Counter(lines).values()) >= 5:
        patterns.append("repetition_attack")
        score += 2

    words = text.lower().split()
    if len(words) > 20:
        counts = Counter(words)
        if any(counts[w] >= 10 for w in SUSPENSION_KEYWORDS):
            patterns.append("keyword_repetition_attack")
            score += 1

    level = risk_level_for(score)
    return InjectionResult(detected=level != "low", risk_level=level, risk_score=score, patterns=patterns)
