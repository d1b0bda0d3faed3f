"""Canon consistency evaluation of candidate text."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from config.exceptions import EvaluationTimeout, OverrideRejected, ValidationError
from config.settings import Settings
from engine.classifiers import CanonClassifier, KeywordCanonClassifier, RuleMatch
from models.canon import CanonRule, CanonViolation, Violation, ViolationOverride
from models.context import GenerationContext
from models.enums import CanonLockLevel, RuleType, Severity

# Named explicitly so canon checks land in their own log file
logger = logging.getLogger("engine.evaluator")

UNVERIFIED_WARNING = "could not fully verify canon consistency"


@dataclass
class EvaluationReport:
    """Outcome of one evaluation.

    ``violations`` is ordered by the rules' order in the context. When the
    classifier timed out, ``violations`` is empty, ``timed_out`` is set and
    the hard and immutable rules that went unchecked are listed in
    ``unverified_rules``.
    """
    violations: list[Violation] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    timed_out: bool = False
    unverified_rules: list[CanonRule] = field(default_factory=list)
    recorded: list[CanonViolation] = field(default_factory=list)  # Set when persisted

    @property
    def is_clean(self) -> bool:
        return not self.violations and not self.timed_out

    @property
    def blocking(self) -> list[Violation]:
        return [v for v in self.violations if v.blocks_acceptance]

    @property
    def has_fatal(self) -> bool:
        return any(v.severity is Severity.FATAL for v in self.violations)


class CanonEvaluator:
    """Checks candidate text against the canon rules of a compiled context.

    The classifier decides which rules appear broken; the evaluator maps
    each match to a severity from the rule's lock level and enforces the
    override policy.
    """

    def __init__(
        self,
        classifier: Optional[CanonClassifier] = None,
        settings: Optional[Settings] = None,
    ):
        self.classifier = classifier or KeywordCanonClassifier()
        self.settings = settings or Settings()

    async def classify(
        self, context: GenerationContext, text: str, timeout: Optional[float] = None
    ) -> list[RuleMatch]:
        """Run the classifier under a deadline.

        Raises:
            EvaluationTimeout: If the classifier does not finish in time.
        """
        deadline = timeout if timeout is not None else self.settings.canon_check_timeout_seconds
        try:
            return await asyncio.wait_for(self.classifier.find_matches(context, text), deadline)
        except asyncio.TimeoutError:
            raise EvaluationTimeout(deadline) from None

    async def evaluate(
        self, context: GenerationContext, text: str, timeout: Optional[float] = None
    ) -> EvaluationReport:
        try:
            matches = await self.classify(context, text, timeout)
        except EvaluationTimeout as e:
            unverified = [
                r for r in context.canon_rules
                if r.lock_level in (CanonLockLevel.HARD, CanonLockLevel.IMMUTABLE)
            ]
            logger.warning(
                "Canon check series=%d book=%d: %s; %d hard rules unverified",
                context.series_id, context.target_book, e, len(unverified),
            )
            return EvaluationReport(
                warnings=[UNVERIFIED_WARNING], timed_out=True, unverified_rules=unverified
            )

        violations = self._to_violations(context, matches)
        if violations:
            logger.info(
                "Canon check series=%d book=%d: %d violations (%s)",
                context.series_id, context.target_book, len(violations),
                ", ".join(f"{v.rule.rule_name}={v.severity.value}" for v in violations),
            )
        else:
            logger.debug(
                "Canon check series=%d book=%d: clean", context.series_id, context.target_book
            )
        return EvaluationReport(violations=violations)

    def _to_violations(self, context: GenerationContext, matches: list[RuleMatch]) -> list[Violation]:
        by_rule: dict[int, RuleMatch] = {}
        for match in matches:
            if context.rule_by_id(match.rule_id) is None:
                logger.debug("Dropping match for rule %r outside the context", match.rule_id)
                continue
            by_rule.setdefault(match.rule_id, match)

        violations = []
        for rule in context.canon_rules:
            match = by_rule.get(rule.id)
            if match is None or rule.rule_type is RuleType.MAY:
                continue
            violations.append(Violation(
                rule=rule,
                severity=rule.severity,
                description=match.description or rule.violation_message or rule.rule_description,
                matched_example=match.matched_example,
                excerpt=match.excerpt,
            ))
        return violations

    def override(self, violation: Violation, justification: str = "") -> ViolationOverride:
        """Record an author decision to accept content despite ``violation``.

        Raises:
            OverrideRejected: For immutable (fatal) violations.
            ValidationError: When a hard (blocking) violation lacks a justification.
        """
        justification = (justification or "").strip()
        if violation.severity is Severity.FATAL:
            raise OverrideRejected(
                f"Rule '{violation.rule.rule_name}' is immutable and cannot be overridden"
            )
        if violation.severity is Severity.BLOCKING and not justification:
            raise ValidationError(
                f"Overriding hard rule '{violation.rule.rule_name}' requires a justification",
                field="justification",
            )
        logger.info(
            "Override accepted for rule %r (%s)", violation.rule.rule_name, violation.severity.value
        )
        return ViolationOverride(
            rule_id=violation.rule.id, severity=violation.severity, justification=justification
        )


def is_acceptable(report: EvaluationReport, overrides: Iterable[ViolationOverride] = ()) -> bool:
    """Whether content may be accepted given the author's overrides.

    Info-level violations never block. Warnings and blocking violations
    need a matching override. Fatal violations are never acceptable.
    """
    overridden = {o.rule_id for o in overrides}
    for violation in report.violations:
        if violation.severity is Severity.INFO:
            continue
        if violation.severity is Severity.FATAL:
            return False
        if violation.rule.id not in overridden:
            return False
    return True


async def evaluate_canon(
    context: GenerationContext,
    text: str,
    classifier: Optional[CanonClassifier] = None,
    settings: Optional[Settings] = None,
    timeout: Optional[float] = None,
) -> EvaluationReport:
    """Evaluate ``text`` against ``context`` with a one-off evaluator."""
    return await CanonEvaluator(classifier, settings).evaluate(context, text, timeout)
