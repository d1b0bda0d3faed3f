"""Pluggable text classifiers that find candidate canon-rule matches.

A classifier only reports *which* rules the text appears to break. How
strongly each match is enforced is decided by the evaluator from the rule's
lock level.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from models.canon import CanonRule
from models.context import GenerationContext
from models.enums import CharacterStatus, RuleCategory, RuleType
from tools.agent_sdk_client import AgentSDKClient

logger = logging.getLogger(__name__)

# Phrases that show a character acting in the present scene
_ALIVE_VERBS = (
    "said", "says", "walked", "walks", "looked", "looks", "smiled", "smiles",
    "laughed", "laughs", "replied", "replies", "nodded", "nods", "whispered",
)

# Qualifiers that make a reference to a destroyed element historical
_HISTORICAL_QUALIFIERS = ("former", "ruins of", "remains of", "memory of", "the late")
_HISTORICAL_RE = re.compile(
    r"(?<!\w)(?:%s)\s*$" % "|".join(re.escape(q) for q in _HISTORICAL_QUALIFIERS)
)

_EXCERPT_BEFORE = 50
_EXCERPT_AFTER = 100


@dataclass(frozen=True)
class RuleMatch:
    """Evidence that ``text`` conflicts with the rule ``rule_id``."""
    rule_id: int
    description: str = ""
    matched_example: Optional[str] = None
    excerpt: str = ""


@runtime_checkable
class CanonClassifier(Protocol):
    async def find_matches(self, context: GenerationContext, text: str) -> list[RuleMatch]:
        ...


def _normalize(text: str) -> str:
    return " ".join((text or "").strip().lower().split())


class _Passage:
    """Candidate text in normalized form, mapped back to the author's wording.

    Matching runs on ``normalized`` (lower-cased, whitespace collapsed);
    excerpts are cut from ``original`` so they quote the passage as written.
    """

    def __init__(self, text: str):
        self.original = text or ""
        chars: list[str] = []
        offsets: list[int] = []
        gap = None
        for i, ch in enumerate(self.original):
            if ch.isspace():
                if chars and gap is None:
                    gap = i
                continue
            if gap is not None:
                chars.append(" ")
                offsets.append(gap)
                gap = None
            lowered = ch.lower()
            chars.append(lowered)
            offsets.extend([i] * len(lowered))
        self.normalized = "".join(chars)
        self._offsets = offsets

    def excerpt(self, index: int) -> str:
        start = self._offsets[index] if index < len(self._offsets) else len(self.original)
        return self.original[max(0, start - _EXCERPT_BEFORE):start + _EXCERPT_AFTER]


def _find_phrase(text: str, phrase: str) -> int:
    """Index of ``phrase`` in normalized ``text`` on word boundaries, or -1."""
    phrase = _normalize(phrase).strip(" .!?;:,\"'")
    if len(phrase) < 2:
        return -1
    match = re.search(rf"(?<!\w){re.escape(phrase)}(?!\w)", text)
    return match.start() if match else -1


def _default_description(rule: CanonRule) -> str:
    return rule.violation_message or f"Content conflicts with canon rule '{rule.rule_name}'"


class KeywordCanonClassifier:
    """Deterministic phrase heuristics over the compiled context.

    Per rule, in order, the first hit wins:

    * any ``invalid_examples`` phrase appearing in the text;
    * ``character`` rules: a deceased character written as acting
      ("<name> said", "<name> walked", ...);
    * ``world``/``system`` rules: a destroyed element named without a
      historical qualifier ("former", "ruins of", ...).

    ``may`` rules are permissive and never match.
    """

    async def find_matches(self, context: GenerationContext, text: str) -> list[RuleMatch]:
        return self.match_sync(context, text)

    def match_sync(self, context: GenerationContext, text: str) -> list[RuleMatch]:
        passage = _Passage(text)
        matches = []
        for rule in context.canon_rules:
            if rule.rule_type is RuleType.MAY:
                continue
            match = (
                self._match_examples(rule, passage)
                or self._match_deceased(rule, context, passage)
                or self._match_destroyed(rule, context, passage)
            )
            if match:
                matches.append(match)
        return matches

    def _match_examples(self, rule: CanonRule, passage: _Passage) -> Optional[RuleMatch]:
        for example in rule.invalid_examples:
            index = _find_phrase(passage.normalized, example)
            if index >= 0:
                return RuleMatch(
                    rule_id=rule.id,
                    description=_default_description(rule),
                    matched_example=example,
                    excerpt=passage.excerpt(index),
                )
        return None

    def _match_deceased(
        self, rule: CanonRule, context: GenerationContext, passage: _Passage
    ) -> Optional[RuleMatch]:
        if rule.rule_category is not RuleCategory.CHARACTER:
            return None
        for character in context.active_characters:
            if character.status is not CharacterStatus.DECEASED:
                continue
            if rule.applies_to_entity_ids and character.id not in rule.applies_to_entity_ids:
                continue
            for verb in _ALIVE_VERBS:
                index = _find_phrase(passage.normalized, f"{character.name} {verb}")
                if index >= 0:
                    return RuleMatch(
                        rule_id=rule.id,
                        description=f"Character '{character.name}' is deceased but appears alive in the content",
                        excerpt=passage.excerpt(index),
                    )
        return None

    def _match_destroyed(
        self, rule: CanonRule, context: GenerationContext, passage: _Passage
    ) -> Optional[RuleMatch]:
        if rule.rule_category not in (RuleCategory.WORLD, RuleCategory.SYSTEM):
            return None
        text = passage.normalized
        for element in context.destroyed_elements:
            if rule.applies_to_entity_ids and element.id not in rule.applies_to_entity_ids:
                continue
            name = _normalize(element.name)
            for found in re.finditer(rf"(?<!\w){re.escape(name)}(?!\w)", text):
                if _HISTORICAL_RE.search(text, max(0, found.start() - 40), found.start()):
                    continue
                return RuleMatch(
                    rule_id=rule.id,
                    description=(
                        f"World element '{element.name}' was destroyed in book "
                        f"{element.destroyed_in_book} but is referenced as present"
                    ),
                    excerpt=passage.excerpt(found.start()),
                )
        return None


_LLM_SYSTEM_PROMPT = """\
You are a continuity editor for a multi-book fiction series.
You receive the series' canon rules and a candidate passage.
Report only rules the passage clearly breaks. Do not report style issues.
Reply with JSON only:
{"violations": [{"rule_id": <int>, "excerpt": "<quoted passage text>", "matched_example": "<invalid example or null>", "explanation": "<one sentence>"}]}
Return {"violations": []} when nothing is broken."""


class LLMCanonClassifier:
    """Delegates rule matching to a language model via :class:`AgentSDKClient`."""

    def __init__(self, client: AgentSDKClient, model: Optional[str] = None):
        self.client = client
        self.model = model

    def build_prompt(self, context: GenerationContext, rules: list[CanonRule], text: str) -> str:
        rule_payload = [
            {
                "rule_id": r.id,
                "name": r.rule_name,
                "type": r.rule_type.value,
                "description": r.rule_description,
                "valid_examples": r.valid_examples,
                "invalid_examples": r.invalid_examples,
            }
            for r in rules
        ]
        characters = [
            {"name": c.name, "status": c.status.value} for c in context.active_characters
        ]
        return (
            f"Book {context.target_book}.\n"
            f"Characters: {json.dumps(characters, ensure_ascii=False)}\n"
            f"Canon rules: {json.dumps(rule_payload, ensure_ascii=False)}\n\n"
            f"Passage:\n{text}"
        )

    async def find_matches(self, context: GenerationContext, text: str) -> list[RuleMatch]:
        rules = [r for r in context.canon_rules if r.rule_type is not RuleType.MAY]
        if not rules or not text.strip():
            return []

        data = await self.client.chat_json(
            _LLM_SYSTEM_PROMPT, self.build_prompt(context, rules, text), model=self.model
        )
        known_ids = {r.id for r in rules}
        matches = []
        for entry in data.get("violations") or []:
            if not isinstance(entry, dict):
                continue
            rule_id = entry.get("rule_id")
            if rule_id not in known_ids:
                logger.debug("LLM classifier reported unknown rule id %r", rule_id)
                continue
            matches.append(RuleMatch(
                rule_id=rule_id,
                description=str(entry.get("explanation") or ""),
                matched_example=entry.get("matched_example") or None,
                excerpt=str(entry.get("excerpt") or ""),
            ))
        return matches


class CompositeClassifier:
    """Runs classifiers in order; the first match reported for a rule wins."""

    def __init__(self, classifiers: list[CanonClassifier]):
        self.classifiers = list(classifiers)

    async def find_matches(self, context: GenerationContext, text: str) -> list[RuleMatch]:
        seen: set[int] = set()
        merged = []
        for classifier in self.classifiers:
            for match in await classifier.find_matches(context, text):
                if match.rule_id not in seen:
                    seen.add(match.rule_id)
                    merged.append(match)
        return merged
