"""End-to-end tests for the NarrativeEngine facade."""

import pytest

from config.exceptions import (
    ConcurrentModificationError, EntityNotFoundError, InvalidScopeError, InvalidTransitionError,
    LockedAttributeError, OverrideRejected, SeriesNotFoundError, ValidationError,
)
from engine.classifiers import CompositeClassifier, KeywordCanonClassifier, LLMCanonClassifier
from engine.evaluator import CanonEvaluator
from engine.service import NarrativeEngine, build_classifier
from models.enums import (
    ArcStatus, BookStatus, CanonLockLevel, CharacterRole, CharacterStatus, RelationshipType,
    ResolutionStatus, RuleCategory, RuleType, Severity, TimelineEventType, WorldElementType,
)


class TestSeriesOperations:
    def test_create_and_get(self, engine, sample_series):
        loaded = engine.get_series(sample_series.id)
        assert loaded.title == "The Ember Crown"
        assert loaded.themes == ["sacrifice", "legacy"]

    def test_unknown_attribute_rejected(self, engine):
        with pytest.raises(ValidationError) as exc:
            engine.create_series("a", "T", "g", subtitle="nope")
        assert exc.value.field == "subtitle"

    def test_get_missing(self, engine):
        with pytest.raises(SeriesNotFoundError):
            engine.get_series(999)

    def test_archive_hides_from_listing(self, engine, sample_series):
        engine.archive_series(sample_series.id)
        assert engine.list_author_series("author-1") == []
        assert len(engine.list_author_series("author-1", include_archived=True)) == 1

    def test_author_cannot_change(self, engine, sample_series):
        with pytest.raises(ValidationError) as exc:
            engine.update_series(sample_series.id, {"author_id": "thief"})
        assert exc.value.field == "author_id"

    def test_overview(self, engine, aria_world):
        sid = aria_world["series"].id
        b1 = engine.create_book(sid, 1, "Ashes")
        engine.update_book_progress(b1.id, word_count=90000, chapter_count=30)
        engine.create_narrative_arc(sid, "Betrayal", starts_in_book=2, ends_in_book=4)
        engine.create_narrative_arc(sid, "Old war", arc_status=ArcStatus.RESOLVED)

        overview = engine.get_series_overview(sid)
        assert overview.character_count == 2
        assert overview.active_arc_count == 1
        assert overview.rule_count == 1
        assert overview.total_word_count == 90000
        assert overview.pending_violations == 0


class TestBookOperations:
    def test_progress(self, engine, sample_series):
        book = engine.create_book(sample_series.id, 1, "Ashes")
        updated = engine.update_book_progress(book.id, word_count=1200, status=BookStatus.DRAFTING)
        assert updated.word_count == 1200
        assert updated.chapter_count == 0
        assert updated.status == BookStatus.DRAFTING
        assert engine.get_series_books(sample_series.id)[0].word_count == 1200

    def test_negative_progress_rejected(self, engine, sample_series):
        book = engine.create_book(sample_series.id, 1, "Ashes")
        with pytest.raises(ValidationError, match="word_count"):
            engine.update_book_progress(book.id, word_count=-1)

    def test_progress_on_missing_book(self, engine):
        with pytest.raises(EntityNotFoundError):
            engine.update_book_progress(404, word_count=1)

    def test_renumber_into_taken_slot(self, engine, sample_series):
        engine.create_book(sample_series.id, 1, "Ashes")
        second = engine.create_book(sample_series.id, 2, "Embers")
        with pytest.raises(ValidationError, match="already has a book 1"):
            engine.renumber_book(second.id, 1)
        assert engine.renumber_book(second.id, 3).book_number == 3


class TestEntityValidation:
    @pytest.mark.parametrize("create", [
        lambda e, sid: e.create_character(sid, "Aria", first_appears_book=0),
        lambda e, sid: e.create_world_element(sid, "Vael", "geography", introduced_in_book=0),
        lambda e, sid: e.create_narrative_arc(sid, "Betrayal", starts_in_book=0),
        lambda e, sid: e.create_canon_rule(sid, "R", "D", applies_from_book=0),
    ])
    def test_book_numbers_below_one_rejected(self, engine, sample_series, create):
        with pytest.raises(ValidationError):
            create(engine, sample_series.id)

    def test_rule_window_must_not_be_inverted(self, engine, sample_series):
        with pytest.raises(ValidationError) as exc:
            engine.create_canon_rule(
                sample_series.id, "R", "D", applies_from_book=4, applies_until_book=2,
            )
        assert exc.value.field == "applies_until_book"

    def test_unknown_series(self, engine):
        with pytest.raises(SeriesNotFoundError):
            engine.create_character(999, "Ghost")


class TestCharacterUpdates:
    def test_plain_update(self, engine, sample_series):
        c = engine.create_character(sample_series.id, "Aria")
        updated = engine.update_character(c.id, {"dialogue_style": "Terse", "aliases": ["Ash"]})
        assert updated.dialogue_style == "Terse"
        assert updated.aliases == {"Ash"}
        assert updated.version == 2

    def test_locked_attribute_needs_override(self, engine, sample_series):
        c = engine.create_character(sample_series.id, "Aria", locked_attributes={"name", "role"})
        with pytest.raises(LockedAttributeError) as exc:
            engine.update_character(c.id, {"name": "Arya", "dialogue_style": "Terse"})
        assert exc.value.attributes == ["name"]
        assert engine.get_character(c.id).dialogue_style == ""

        updated = engine.update_character(c.id, {"name": "Arya"}, override=True)
        assert updated.name == "Arya"

    def test_unchanged_locked_value_is_allowed(self, engine, sample_series):
        c = engine.create_character(
            sample_series.id, "Aria", role=CharacterRole.PROTAGONIST, locked_attributes={"role"},
        )
        updated = engine.update_character(c.id, {"role": "protagonist", "dialogue_style": "Warm"})
        assert updated.dialogue_style == "Warm"

    def test_immutable_character_rejects_edits(self, engine, sample_series):
        c = engine.create_character(sample_series.id, "Aria", canon_lock_level=CanonLockLevel.IMMUTABLE)
        with pytest.raises(OverrideRejected):
            engine.update_character(c.id, {"dialogue_style": "Terse"}, override=True)

    def test_unknown_field(self, engine, sample_series):
        c = engine.create_character(sample_series.id, "Aria")
        with pytest.raises(ValidationError):
            engine.update_character(c.id, {"version": 7})

    def test_concurrent_writers(self, engine, sample_series):
        c = engine.create_character(sample_series.id, "Aria")
        stale = engine.get_character(c.id)
        engine.update_character(c.id, {"dialogue_style": "Terse"})
        stale.dialogue_style = "Ornate"
        with pytest.raises(ConcurrentModificationError):
            engine.db.update_character(stale)


class TestWorldAndRules:
    def test_world_filters(self, engine, sample_series):
        sid = sample_series.id
        engine.create_world_element(sid, "Vael", WorldElementType.GEOGRAPHY)
        engine.create_world_element(sid, "Ember", "magic_system")
        engine.create_world_element(sid, "Guild", "political", is_active=False)

        assert [e.name for e in engine.get_world_elements(sid, "magic_system")] == ["Ember"]
        assert [e.name for e in engine.get_world_elements(sid, active_only=True)] == ["Vael", "Ember"]
        with pytest.raises(ValidationError):
            engine.get_world_elements(sid, "moon")

    def test_destroying_an_element(self, engine, sample_series):
        e = engine.create_world_element(sample_series.id, "Old Keep", "geography")
        updated = engine.update_world_element(e.id, {"destroyed_in_book": 2})
        assert updated.is_active is False
        ctx = engine.compile_generation_context(sample_series.id, 3)
        assert [d.name for d in ctx.destroyed_elements] == ["Old Keep"]

    def test_get_canon_rules_by_book(self, engine, sample_series):
        sid = sample_series.id
        engine.create_canon_rule(sid, "Always", "Holds everywhere")
        window = engine.create_canon_rule(sid, "Window", "2 to 4", applies_from_book=2, applies_until_book=4)
        retired = engine.create_canon_rule(sid, "Retired", "Dropped")
        engine.update_canon_rule(retired.id, {"is_active": False})

        assert [r.rule_name for r in engine.get_canon_rules(sid)] == ["Always", "Window"]
        for book in (1, 5):
            assert [r.rule_name for r in engine.get_canon_rules(sid, book)] == ["Always"]
        for book in (2, 3, 4):
            assert window.id in [r.id for r in engine.get_canon_rules(sid, book)]
        with pytest.raises(InvalidScopeError):
            engine.get_canon_rules(sid, 0)

    @pytest.mark.parametrize("updates", [
        {"lock_level": "suggestion"},
        {"is_active": False},
        {"applies_until_book": 1},
        {"invalid_examples": []},
        {"rule_description": "Softer wording"},
    ])
    def test_immutable_rule_cannot_be_edited(self, engine, sample_series, updates):
        rule = engine.create_canon_rule(
            sample_series.id, "Crown", "Only one crown exists.",
            lock_level=CanonLockLevel.IMMUTABLE, invalid_examples=["second crown"],
        )
        with pytest.raises(OverrideRejected):
            engine.update_canon_rule(rule.id, updates)

        stored = engine.db.get_rule(rule.id)
        assert stored.lock_level is CanonLockLevel.IMMUTABLE
        assert stored.is_active is True
        assert stored.invalid_examples == ["second crown"]
        assert stored.version == 1

    def test_hard_rule_can_be_edited(self, engine, sample_series):
        rule = engine.create_canon_rule(sample_series.id, "Truce", "The truce holds.")
        updated = engine.update_canon_rule(rule.id, {"lock_level": "soft"})
        assert updated.lock_level is CanonLockLevel.SOFT
        assert updated.version == 2


class TestRelationships:
    @pytest.fixture
    def cast(self, engine, sample_series):
        sid = sample_series.id
        return {
            "sid": sid,
            "aria": engine.create_character(sid, "Aria"),
            "bram": engine.create_character(sid, "Bram"),
            "cael": engine.create_character(sid, "Cael"),
        }

    def test_reversed_ids_keep_each_side(self, engine, cast):
        rel = engine.set_character_relationship(
            cast["sid"], cast["bram"].id, cast["aria"].id,
            type_a_to_b="rival", type_b_to_a="ally", intensity_a_to_b=9,
        )
        assert rel.character_a_id == cast["aria"].id
        assert rel.view_from(cast["bram"].id) == (RelationshipType.RIVAL, 9)
        assert rel.view_from(cast["aria"].id) == (RelationshipType.ALLY, 5)

    def test_second_call_edits_the_same_pair(self, engine, cast):
        first = engine.set_character_relationship(
            cast["sid"], cast["aria"].id, cast["bram"].id, type_a_to_b="ally", current_dynamic="Trusting",
        )
        second = engine.set_character_relationship(
            cast["sid"], cast["bram"].id, cast["aria"].id, type_a_to_b="enemy",
        )
        assert second.id == first.id
        assert second.version == 2
        assert second.type_b_to_a == RelationshipType.ENEMY
        assert second.type_a_to_b == RelationshipType.ALLY
        assert second.current_dynamic == "Trusting"
        assert len(engine.get_series_relationships(cast["sid"])) == 1

    def test_immutable_relationship_cannot_be_edited(self, engine, cast):
        engine.set_character_relationship(
            cast["sid"], cast["aria"].id, cast["bram"].id, type_a_to_b="family",
            canon_lock_level=CanonLockLevel.IMMUTABLE,
        )
        with pytest.raises(OverrideRejected):
            engine.set_character_relationship(
                cast["sid"], cast["aria"].id, cast["bram"].id, canon_lock_level="soft",
            )
        stored = engine.get_series_relationships(cast["sid"])[0]
        assert stored.canon_lock_level is CanonLockLevel.IMMUTABLE
        assert stored.version == 1

    def test_unknown_field_rejected(self, engine, cast):
        with pytest.raises(ValidationError, match="Unknown CharacterRelationship fields"):
            engine.set_character_relationship(cast["sid"], cast["aria"].id, cast["bram"].id, mood="sour")

    def test_character_relationships_pair_the_other_side(self, engine, cast):
        engine.set_character_relationship(cast["sid"], cast["aria"].id, cast["bram"].id)
        engine.set_character_relationship(cast["sid"], cast["cael"].id, cast["aria"].id)
        engine.set_character_relationship(cast["sid"], cast["bram"].id, cast["cael"].id)

        pairs = engine.get_character_relationships(cast["aria"].id)

        assert [other.name for other, _ in pairs] == ["Bram", "Cael"]

    def test_character_relationships_of_missing_character(self, engine):
        with pytest.raises(EntityNotFoundError):
            engine.get_character_relationships(404)

    def test_series_relationships_by_book(self, engine, cast):
        engine.set_character_relationship(
            cast["sid"], cast["aria"].id, cast["bram"].id, ended_in_book=1, ending_reason="Betrayal",
        )
        engine.set_character_relationship(cast["sid"], cast["aria"].id, cast["cael"].id, started_in_book=2)
        assert len(engine.get_series_relationships(cast["sid"], book_number=1)) == 1
        in_book_two = engine.get_series_relationships(cast["sid"], book_number=2)
        assert [r.character_b_id for r in in_book_two] == [cast["cael"].id]
        with pytest.raises(InvalidScopeError):
            engine.get_series_relationships(cast["sid"], book_number=0)


class TestTimeline:
    def test_timeline_in_sequence_order(self, engine, sample_series):
        sid = sample_series.id
        engine.create_timeline_event(sid, "Coronation", sequence_number=3)
        engine.create_timeline_event(sid, "Founding", sequence_number=1, event_type=TimelineEventType.HISTORICAL)
        engine.create_timeline_event(sid, "False memory", sequence_number=2, is_canon=False)
        assert [e.event_name for e in engine.get_timeline(sid)] == ["Founding", "Coronation"]

    def test_timeline_by_book(self, engine, sample_series):
        sid = sample_series.id
        engine.create_timeline_event(sid, "Siege", sequence_number=1)
        engine.create_timeline_event(sid, "Hidden heir", sequence_number=2, first_mentioned_book=3)
        assert [e.event_name for e in engine.get_timeline(sid, book_number=2)] == ["Siege"]
        assert len(engine.get_timeline(sid, book_number=3)) == 2

    def test_update_event(self, engine, sample_series):
        event = engine.create_timeline_event(sample_series.id, "Siege")
        updated = engine.update_timeline_event(event.id, {"consequences": ["The wall fell"]})
        assert updated.consequences == ["The wall fell"]
        assert updated.version == 2

    def test_immutable_event_cannot_be_edited(self, engine, sample_series):
        event = engine.create_timeline_event(
            sample_series.id, "Founding", canon_lock_level=CanonLockLevel.IMMUTABLE,
        )
        with pytest.raises(OverrideRejected):
            engine.update_timeline_event(event.id, {"is_canon": False})

    def test_update_missing_event(self, engine):
        with pytest.raises(EntityNotFoundError):
            engine.update_timeline_event(404, {"event_name": "Nothing"})


class TestArcProgress:
    def test_lifecycle(self, engine, sample_series):
        arc = engine.create_narrative_arc(sample_series.id, "Betrayal")
        arc = engine.update_arc_progress(arc.id, status=ArcStatus.RISING, completion_percentage=30)
        assert arc.arc_status == ArcStatus.RISING
        assert arc.completion_percentage == 30
        arc = engine.update_arc_progress(arc.id, status="resolved", resolution_point="Forgiven")
        assert arc.arc_status == ArcStatus.RESOLVED
        assert arc.resolution_point == "Forgiven"

        with pytest.raises(InvalidTransitionError):
            engine.update_arc_progress(arc.id, status=ArcStatus.CLIMAX)

    def test_completion_range(self, engine, sample_series):
        arc = engine.create_narrative_arc(sample_series.id, "Betrayal")
        with pytest.raises(ValidationError, match="completion_percentage"):
            engine.update_arc_progress(arc.id, completion_percentage=150)

    def test_status_filter(self, engine, sample_series):
        sid = sample_series.id
        engine.create_narrative_arc(sid, "A")
        b = engine.create_narrative_arc(sid, "B")
        engine.update_arc_progress(b.id, status=ArcStatus.ABANDONED)
        assert [a.arc_name for a in engine.get_narrative_arcs(sid, ["abandoned"])] == ["B"]
        assert len(engine.get_narrative_arcs(sid)) == 2


class TestScenarios:
    def test_character_first_appearing_in_book_three(self, engine, sample_series):
        sid = sample_series.id
        engine.create_character(sid, "Cael", first_appears_book=3)

        def names(book):
            return [c.name for c in engine.compile_generation_context(sid, book).active_characters]

        assert names(2) == []
        assert names(3) == ["Cael"]
        assert names(10) == ["Cael"]

    def test_rule_window_two_to_four(self, engine, sample_series):
        sid = sample_series.id
        engine.create_canon_rule(sid, "Truce", "The truce holds", applies_from_book=2, applies_until_book=4)
        present = [
            b for b in range(1, 6)
            if engine.compile_generation_context(sid, b).canon_rules
        ]
        assert present == [2, 3, 4]

    def test_betrayal_arc(self, engine, sample_series):
        sid = sample_series.id
        engine.create_narrative_arc(sid, "Betrayal", starts_in_book=2, ends_in_book=4)
        present = [
            b for b in range(1, 6)
            if engine.compile_generation_context(sid, b).active_arcs
        ]
        assert present == [2, 3, 4]

    def test_compile_is_idempotent(self, engine, aria_world):
        sid = aria_world["series"].id
        assert engine.compile_generation_context(sid, 2) == engine.compile_generation_context(sid, 2)

    @pytest.mark.asyncio
    async def test_no_resurrection(self, engine, sample_series):
        sid = sample_series.id
        engine.create_character(sid, "Aria", role=CharacterRole.PROTAGONIST)
        rule = engine.create_canon_rule(
            sid, "No resurrection", "The dead stay dead.",
            rule_category=RuleCategory.CHARACTER, rule_type=RuleType.MUST_NOT,
            lock_level=CanonLockLevel.HARD,
            invalid_examples=["came back to life", "returned from the dead"],
        )

        ctx = engine.compile_generation_context(sid, 5)
        assert [c.name for c in ctx.active_characters] == ["Aria"]
        assert [r.id for r in ctx.canon_rules] == [rule.id]

        text = "Aria had died at the siege, yet in the spring she came back to life."
        report = await engine.evaluate_canon(ctx, text)
        assert len(report.violations) == 1
        violation = report.violations[0]
        assert violation.rule.id == rule.id
        assert violation.severity == Severity.BLOCKING
        assert violation.blocks_acceptance

    @pytest.mark.asyncio
    async def test_deceased_character_heuristic(self, engine, aria_world):
        sid = aria_world["series"].id
        ctx = engine.compile_generation_context(sid, 2)
        report = await engine.evaluate_canon(ctx, "Bram looked up. Aria smiled at him.")
        assert [v.rule.rule_name for v in report.violations] == ["No resurrection"]

    @pytest.mark.asyncio
    async def test_rule_outside_book_is_not_checked(self, engine, aria_world):
        sid = aria_world["series"].id
        ctx = engine.compile_generation_context(sid, 1)
        report = await engine.evaluate_canon(ctx, "Aria came back to life.")
        assert report.violations == []


class TestViolationWorkflow:
    @pytest.mark.asyncio
    async def test_record_and_override(self, engine, aria_world):
        sid = aria_world["series"].id
        ctx = engine.compile_generation_context(sid, 2)
        report = await engine.evaluate_canon(ctx, "Aria came back to life.", record=True)
        assert len(report.recorded) == 1
        logged = engine.get_violations(sid, pending_only=True)
        assert [v.id for v in logged] == [report.recorded[0].id]
        assert logged[0].severity == Severity.BLOCKING
        assert logged[0].book_number == 2

        with pytest.raises(ValidationError) as exc:
            engine.resolve_violation(logged[0].id, ResolutionStatus.OVERRIDDEN)
        assert exc.value.field == "reason"

        closed = engine.resolve_violation(logged[0].id, "overridden", "Flashback scene")
        assert closed.resolution_status == ResolutionStatus.OVERRIDDEN
        assert engine.get_violations(sid, pending_only=True) == []
        assert engine.get_series_overview(sid).pending_violations == 0

    @pytest.mark.asyncio
    async def test_immutable_violation_cannot_be_overridden(self, engine, sample_series):
        sid = sample_series.id
        engine.create_canon_rule(
            sid, "Sun is cold", "The sun gives no warmth.", lock_level=CanonLockLevel.IMMUTABLE,
            invalid_examples=["warm sunlight"],
        )
        ctx = engine.compile_generation_context(sid, 1)
        report = await engine.evaluate_canon(ctx, "She basked in warm sunlight.", record=True)
        assert report.has_fatal
        with pytest.raises(OverrideRejected):
            engine.resolve_violation(report.recorded[0].id, ResolutionStatus.OVERRIDDEN, "Please")
        closed = engine.resolve_violation(report.recorded[0].id, ResolutionStatus.RESOLVED)
        assert closed.resolution_status == ResolutionStatus.RESOLVED

    def test_cannot_reopen(self, engine):
        with pytest.raises(ValidationError):
            engine.resolve_violation(1, ResolutionStatus.PENDING)

    def test_resolve_missing(self, engine):
        with pytest.raises(EntityNotFoundError):
            engine.resolve_violation(999, ResolutionStatus.RESOLVED)


class TestClassifierWiring:
    def test_keyword_by_default(self, settings):
        assert isinstance(build_classifier(settings), KeywordCanonClassifier)

    def test_llm_added_when_enabled(self, settings):
        settings.llm_canon_check_enabled = True
        classifier = build_classifier(settings)
        assert isinstance(classifier, CompositeClassifier)
        assert isinstance(classifier.classifiers[0], KeywordCanonClassifier)
        assert isinstance(classifier.classifiers[1], LLMCanonClassifier)

    def test_custom_evaluator(self, db, settings):
        evaluator = CanonEvaluator(settings=settings)
        assert NarrativeEngine(db, settings, evaluator).evaluator is evaluator
