import pytest
from pipemap.core.bus import SAVE_SUCCEEDED
from pipemap.core.errors import EditStateError, VertexOperationError
from pipemap.gis_core.coordinates import parse_geometry
from pipemap.models import FeatureKind, GeometryValidationError, LineString, Polygon
from pipemap.services.editing import MapEditingSession


SQUARE = [[0.0, 0.0], [4.0, 0.0], [4.0, 4.0], [0.0, 4.0], [0.0, 0.0]]


@pytest.fixture()
def session(store, connectivity, bus, config, scheduler):
    s = MapEditingSession(store, connectivity=connectivity, bus=bus, config=config, scheduler=scheduler)
    yield s
    s.close()


def _written(store):
    return [parse_geometry(c["updates"]["geometry"]) for c in store.calls]


def test_accepted_move_is_queued_and_saved(session, store, scheduler, events):
    session.enter_edit("z1", FeatureKind.ZONE, Polygon(coordinates=[SQUARE]))
    outcome = session.move_vertex("z1", 1, [-1.0, 4.0])

    assert outcome.accepted
    assert outcome.geometry.coordinates[0] == [[0.0, 0.0], [4.0, -1.0], [4.0, 4.0], [0.0, 4.0], [0.0, 0.0]]
    assert session.auto_saver.has_pending_changes("z1")

    scheduler.advance(2.0)
    assert _written(store) == [outcome.geometry]
    assert events == [(SAVE_SUCCEEDED, {"feature_id": "z1", "feature_kind": "zone"})]


def test_rejected_move_reverts_and_queues_nothing(session, store, scheduler):
    session.enter_edit("z1", FeatureKind.ZONE, Polygon(coordinates=[SQUARE]))
    outcome = session.move_vertex("z1", 3, [2.0, 6.0])

    assert not outcome.accepted
    assert outcome.validation.errors == [GeometryValidationError.SELF_INTERSECTION]
    assert outcome.messages == ["edges cannot cross"]
    assert outcome.geometry.coordinates[0] == SQUARE
    assert session.describe("z1").geometry.coordinates[0] == SQUARE
    assert not session.auto_saver.has_pending_changes("z1")

    scheduler.advance(10.0)
    assert store.calls == []


def test_handles_follow_accepted_edits(session):
    session.enter_edit("z1", FeatureKind.ZONE, Polygon(coordinates=[SQUARE]))
    outcome = session.add_vertex("z1", [-0.5, 2.0])
    assert [h.index for h in outcome.handles] == [0, 1, 2, 3, 4]
    assert not any(h.is_dragging for h in session.describe("z1").handles)


def test_remove_below_minimum_surfaces_error(session):
    triangle = [[0.0, 0.0], [4.0, 0.0], [2.0, 3.0], [0.0, 0.0]]
    session.enter_edit("z1", FeatureKind.ZONE, Polygon(coordinates=[triangle]))
    with pytest.raises(VertexOperationError):
        session.remove_vertex("z1", 1)
    assert session.describe("z1").geometry.coordinates[0] == triangle


def test_edits_without_edit_mode_are_rejected(session):
    with pytest.raises(EditStateError):
        session.move_vertex("p1", 0, [0.0, 0.0])


def test_commit_writes_immediately(session, store, scheduler):
    session.enter_edit("p1", FeatureKind.PIPELINE, LineString(coordinates=[[0, 0], [10, 0]]))
    session.add_vertex("p1", [3.0, 7.0])
    committed = session.commit("p1")

    assert _written(store) == [committed]
    assert not session.is_editing("p1")
    scheduler.advance(10.0)
    assert len(store.calls) == 1


def test_cancel_before_save_drops_pending_write(session, store, scheduler):
    session.enter_edit("z1", FeatureKind.ZONE, Polygon(coordinates=[SQUARE]))
    session.move_vertex("z1", 1, [-1.0, 4.0])
    restored = session.cancel("z1")

    assert restored.coordinates[0] == SQUARE
    scheduler.advance(10.0)
    assert store.calls == []


def test_cancel_after_autosave_restores_original_in_store(session, store, scheduler):
    session.enter_edit("z1", FeatureKind.ZONE, Polygon(coordinates=[SQUARE]))
    session.move_vertex("z1", 1, [-1.0, 4.0])
    scheduler.advance(2.0)
    assert len(store.calls) == 1

    session.cancel("z1")
    scheduler.advance(2.0)
    assert _written(store)[-1].coordinates[0] == SQUARE


def test_offline_pipeline_edit_waits_for_reconnect(session, store, scheduler, connectivity):
    geometry = LineString(coordinates=[[0, 0], [1, 1]])
    session.auto_saver.queue_save("p1", FeatureKind.PIPELINE, geometry)
    connectivity.set_online(False)
    scheduler.advance(5.0)
    assert store.calls == []

    connectivity.set_online(True)
    assert _written(store) == [geometry]


def test_independent_features_edit_concurrently(session, store, scheduler):
    session.enter_edit("z1", FeatureKind.ZONE, Polygon(coordinates=[SQUARE]))
    session.enter_edit("p1", FeatureKind.PIPELINE, LineString(coordinates=[[0, 0], [1, 1]]))
    session.move_vertex("z1", 2, [5.0, 5.0])
    session.move_vertex("p1", 1, [2.0, 2.0])

    scheduler.advance(2.0)
    assert sorted(c["id"] for c in store.calls) == ["p1", "z1"]


def test_moved_handle_reports_dragging_during_the_gesture(session):
    session.enter_edit("z1", FeatureKind.ZONE, Polygon(coordinates=[SQUARE]))
    outcome = session.move_vertex("z1", 1, [-1.0, 4.0])

    assert [h.is_dragging for h in outcome.handles] == [False, True, False, False]
    assert outcome.handles[1].position == [-1.0, 4.0]
    assert not any(h.is_dragging for h in session.describe("z1").handles)
