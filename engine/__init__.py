"""Engine package: scope resolution, context compilation and canon evaluation."""

from engine.arc_status import allowed_transitions, can_transition, check_transition
from engine.classifiers import (
    CanonClassifier,
    CompositeClassifier,
    KeywordCanonClassifier,
    LLMCanonClassifier,
    RuleMatch,
)
from engine.compiler import ContextCompiler, compile_context, render_context
from engine.evaluator import CanonEvaluator, EvaluationReport, evaluate_canon, is_acceptable
from engine.scope import ScopeResolver, ScopedEntities, resolve_scope, validate_target_book
from engine.service import NarrativeEngine, build_classifier

__all__ = [
    "allowed_transitions",
    "can_transition",
    "check_transition",
    "CanonClassifier",
    "CompositeClassifier",
    "KeywordCanonClassifier",
    "LLMCanonClassifier",
    "RuleMatch",
    "ContextCompiler",
    "compile_context",
    "render_context",
    "CanonEvaluator",
    "EvaluationReport",
    "evaluate_canon",
    "is_acceptable",
    "ScopeResolver",
    "ScopedEntities",
    "resolve_scope",
    "validate_target_book",
    "NarrativeEngine",
    "build_classifier",
]
