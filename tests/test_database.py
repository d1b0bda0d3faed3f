"""Tests for the SQLite entity stores."""

import threading
from dataclasses import replace

import pytest

from config.exceptions import (
    ConcurrentModificationError, EntityNotFoundError, SeriesNotFoundError, ValidationError,
)
from models.arc import NarrativeArc
from models.canon import CanonRule, Violation
from models.character import Character, CorePersonality
from models.enums import (
    ArcStatus, CharacterStatus, RelationshipType, ResolutionStatus, Severity, WorldElementType,
)
from models.relationship import CharacterRelationship
from models.series import Book, Series
from models.timeline import TimelineEvent
from models.world import WorldElement


@pytest.fixture
def series(db):
    return db.create_series(Series(author_id="author-1", title="Ember", genre="fantasy"))


class TestSeriesStore:
    def test_create_assigns_id(self, db, series):
        assert series.id > 0
        assert db.get_series(series.id).title == "Ember"

    def test_get_missing_returns_none(self, db):
        assert db.get_series(9999) is None

    def test_list_by_author_hides_archived(self, db, series):
        other = db.create_series(Series(author_id="author-1", title="Ash", genre="fantasy"))
        db.create_series(Series(author_id="author-2", title="Frost", genre="fantasy"))
        other.is_archived = True
        db.update_series(other)

        titles = [s.title for s in db.list_series("author-1")]
        assert titles == ["Ember"]
        titles = [s.title for s in db.list_series("author-1", include_archived=True)]
        assert titles == ["Ember", "Ash"]

    def test_update_missing_series_raises(self, db):
        with pytest.raises(SeriesNotFoundError):
            db.update_series(Series(id=42, author_id="a", title="T", genre="g"))

    def test_themes_round_trip_in_order(self, db):
        created = db.create_series(
            Series(author_id="a", title="T", genre="g", themes=["legacy", "sacrifice"])
        )
        assert db.get_series(created.id).themes == ["legacy", "sacrifice"]


class TestBookStore:
    def test_duplicate_book_number_rejected(self, db, series):
        db.create_book(Book(series_id=series.id, book_number=1, title="One"))
        with pytest.raises(ValidationError) as exc:
            db.create_book(Book(series_id=series.id, book_number=1, title="Again"))
        assert exc.value.field == "book_number"

    def test_unknown_series_rejected(self, db):
        with pytest.raises(SeriesNotFoundError):
            db.create_book(Book(series_id=999, book_number=1, title="Orphan"))

    def test_books_in_insertion_order(self, db, series):
        db.create_book(Book(series_id=series.id, book_number=2, title="Two"))
        db.create_book(Book(series_id=series.id, book_number=1, title="One"))
        assert [b.title for b in db.get_books(series.id)] == ["Two", "One"]

    def test_renumber_unreferenced_book(self, db, series):
        book = db.create_book(Book(series_id=series.id, book_number=5, title="Five"))
        renumbered = db.renumber_book(book.id, 6)
        assert renumbered.book_number == 6

    def test_renumber_referenced_book_rejected(self, db, series):
        book = db.create_book(Book(series_id=series.id, book_number=3, title="Three"))
        db.create_character(Character(series_id=series.id, name="Cael", first_appears_book=3))
        with pytest.raises(ValidationError, match="referenced"):
            db.renumber_book(book.id, 4)

    def test_renumber_missing_book(self, db):
        with pytest.raises(EntityNotFoundError):
            db.renumber_book(999, 2)


class TestCharacterStore:
    def test_round_trip(self, db, series):
        created = db.create_character(Character(
            series_id=series.id, name="Aria", aliases={"Ash", "The Queen"},
            core_personality=CorePersonality(traits={"brave"}, fears={"fire"}),
            locked_attributes={"name"},
        ))
        loaded = db.get_character(created.id)
        assert loaded.aliases == {"Ash", "The Queen"}
        assert loaded.core_personality.traits == {"brave"}
        assert loaded.locked_attributes == {"name"}
        assert loaded.version == 1

    def test_unknown_series(self, db):
        with pytest.raises(SeriesNotFoundError):
            db.create_character(Character(series_id=77, name="Ghost"))

    def test_update_bumps_version(self, db, series):
        c = db.create_character(Character(series_id=series.id, name="Aria"))
        c.status = CharacterStatus.DECEASED
        updated = db.update_character(c)
        assert updated.version == 2
        assert updated.status == CharacterStatus.DECEASED

    def test_stale_version_rejected(self, db, series):
        c = db.create_character(Character(series_id=series.id, name="Aria"))
        first = db.get_character(c.id)
        second = db.get_character(c.id)

        first.dialogue_style = "Clipped"
        db.update_character(first)

        second.dialogue_style = "Ornate"
        with pytest.raises(ConcurrentModificationError):
            db.update_character(second)
        assert db.get_character(c.id).dialogue_style == "Clipped"

    def test_update_missing_character(self, db, series):
        with pytest.raises(EntityNotFoundError):
            db.update_character(Character(id=404, series_id=series.id, name="Nobody"))


class TestWorldStore:
    def test_filters(self, db, series):
        db.create_world_element(WorldElement(series_id=series.id, name="Vael", element_type="geography"))
        db.create_world_element(WorldElement(
            series_id=series.id, name="Old Keep", element_type="geography", destroyed_in_book=1,
        ))
        db.create_world_element(WorldElement(series_id=series.id, name="Ember", element_type="magic_system"))

        geography = db.get_world_elements(series.id, WorldElementType.GEOGRAPHY)
        assert [e.name for e in geography] == ["Vael", "Old Keep"]
        active = db.get_world_elements(series.id, active_only=True)
        assert [e.name for e in active] == ["Vael", "Ember"]


class TestArcStore:
    def test_status_filter(self, db, series):
        a = db.create_arc(NarrativeArc(series_id=series.id, arc_name="Betrayal"))
        db.create_arc(NarrativeArc(series_id=series.id, arc_name="Romance", arc_status="rising"))
        arcs = db.get_arcs(series.id, [ArcStatus.RISING])
        assert [x.arc_name for x in arcs] == ["Romance"]
        assert db.get_arc(a.id).arc_status == ArcStatus.SETUP


class TestRelationshipStore:
    def test_round_trip_and_lookup(self, db, series):
        aria = db.create_character(Character(series_id=series.id, name="Aria"))
        bram = db.create_character(Character(series_id=series.id, name="Bram"))
        created = db.create_relationship(CharacterRelationship(
            series_id=series.id, character_a_id=bram.id, character_b_id=aria.id,
            type_a_to_b="rival", tension_points=["the crown"],
        ))
        assert created.character_a_id == aria.id
        assert created.type_b_to_a == RelationshipType.RIVAL
        assert created.tension_points == ["the crown"]
        with db.snapshot() as snap:
            assert snap.find_relationship(series.id, bram.id, aria.id).id == created.id
            assert snap.find_relationship(series.id, aria.id, 999) is None

    def test_pair_is_unique(self, db, series):
        aria = db.create_character(Character(series_id=series.id, name="Aria"))
        bram = db.create_character(Character(series_id=series.id, name="Bram"))
        db.create_relationship(CharacterRelationship(
            series_id=series.id, character_a_id=aria.id, character_b_id=bram.id))
        with pytest.raises(ValidationError, match="already have a relationship"):
            db.create_relationship(CharacterRelationship(
                series_id=series.id, character_a_id=bram.id, character_b_id=aria.id))

    def test_character_from_another_series_rejected(self, db, series):
        other = db.create_series(Series(author_id="author-2", title="Frost", genre="fantasy"))
        aria = db.create_character(Character(series_id=series.id, name="Aria"))
        stranger = db.create_character(Character(series_id=other.id, name="Stranger"))
        with pytest.raises(EntityNotFoundError):
            db.create_relationship(CharacterRelationship(
                series_id=series.id, character_a_id=aria.id, character_b_id=stranger.id))

    def test_stale_version_rejected(self, db, series):
        aria = db.create_character(Character(series_id=series.id, name="Aria"))
        bram = db.create_character(Character(series_id=series.id, name="Bram"))
        rel = db.create_relationship(CharacterRelationship(
            series_id=series.id, character_a_id=aria.id, character_b_id=bram.id))
        db.update_relationship(replace(rel, current_dynamic="wary"))
        with pytest.raises(ConcurrentModificationError):
            db.update_relationship(replace(rel, current_dynamic="warm"))

    def test_start_book_pins_renumbering(self, db, series):
        book = db.create_book(Book(series_id=series.id, book_number=4, title="Four"))
        aria = db.create_character(Character(series_id=series.id, name="Aria"))
        bram = db.create_character(Character(series_id=series.id, name="Bram"))
        db.create_relationship(CharacterRelationship(
            series_id=series.id, character_a_id=aria.id, character_b_id=bram.id, started_in_book=4))
        with pytest.raises(ValidationError, match="referenced"):
            db.renumber_book(book.id, 5)


class TestTimelineStore:
    def test_events_in_sequence_order(self, db, series):
        db.create_event(TimelineEvent(series_id=series.id, event_name="Coronation", sequence_number=5))
        db.create_event(TimelineEvent(series_id=series.id, event_name="Founding", sequence_number=1))
        db.create_event(TimelineEvent(series_id=series.id, event_name="Siege", sequence_number=5))
        assert [e.event_name for e in db.get_events(series.id)] == ["Founding", "Coronation", "Siege"]

    def test_round_trip(self, db, series):
        aria = db.create_character(Character(series_id=series.id, name="Aria"))
        created = db.create_event(TimelineEvent(
            series_id=series.id, event_name="Fall of the Keep", event_type="historical",
            referenced_in_books=[2, 1], involved_characters=[aria.id],
            involved_locations={"Old Keep"}, is_canon=False,
        ))
        loaded = db.get_event(created.id)
        assert loaded.referenced_in_books == [1, 2]
        assert loaded.involved_characters == [aria.id]
        assert loaded.involved_locations == {"Old Keep"}
        assert loaded.is_canon is False

    def test_unknown_character_rejected(self, db, series):
        with pytest.raises(EntityNotFoundError):
            db.create_event(TimelineEvent(series_id=series.id, event_name="Siege", involved_characters=[42]))

    def test_update_bumps_version(self, db, series):
        event = db.create_event(TimelineEvent(series_id=series.id, event_name="Siege"))
        updated = db.update_event(replace(event, sequence_number=3))
        assert updated.version == 2
        assert updated.sequence_number == 3


class TestSnapshot:
    def test_snapshot_does_not_see_later_writes(self, db, series):
        db.create_character(Character(series_id=series.id, name="Aria"))
        with db.snapshot() as snap:
            before = snap.get_characters(series.id)
            # Write from another thread/connection while the snapshot is open
            t = threading.Thread(
                target=db.create_character,
                args=(Character(series_id=series.id, name="Bram"),),
            )
            t.start()
            t.join()
            during = snap.get_characters(series.id)
        assert [c.name for c in before] == ["Aria"]
        assert [c.name for c in during] == ["Aria"]
        assert [c.name for c in db.get_characters(series.id)] == ["Aria", "Bram"]


class TestViolationLog:
    def _rule(self, db, series):
        return db.create_rule(CanonRule(
            series_id=series.id, rule_name="No resurrection", rule_description="Dead stay dead",
        ))

    def test_record_and_resolve(self, db, series):
        rule = self._rule(db, series)
        recorded = db.record_violations(series.id, 2, [
            Violation(rule=rule, severity=Severity.BLOCKING, description="Aria returns", excerpt="..."),
        ])
        assert len(recorded) == 1
        assert recorded[0].resolution_status == ResolutionStatus.PENDING
        assert recorded[0].rule_id == rule.id

        pending = db.get_violations(series.id, pending_only=True)
        assert [v.id for v in pending] == [recorded[0].id]

        resolved = db.resolve_violation(recorded[0].id, ResolutionStatus.OVERRIDDEN, "Dream sequence")
        assert resolved.override_reason == "Dream sequence"
        assert resolved.resolved_at is not None
        assert db.get_violations(series.id, pending_only=True) == []

    def test_record_nothing(self, db, series):
        assert db.record_violations(series.id, 1, []) == []

    def test_resolve_missing(self, db):
        with pytest.raises(EntityNotFoundError):
            db.resolve_violation(12345, ResolutionStatus.RESOLVED)


class TestBackup:
    def test_backup_copies_file(self, db, series, tmp_path):
        target = db.backup_database(tmp_path / "backups" / "copy.db")
        assert target.exists()
        assert target.stat().st_size > 0
