"""Unit tests for trip lifecycle and boarding state rules (State Pattern)."""

from datetime import datetime, timedelta, timezone

import pytest

from schoolbus.domain.entities import Location, Trip, WeatherSnapshot
from schoolbus.domain.enums import BOARDING_TRANSITIONS, BoardingState, TripStatus
from schoolbus.domain.errors import InvalidStateTransition
from schoolbus.domain.weather import icon_for, normalize_condition


class TestTripStateMachine:
    def test_initial_status_is_not_started(self):
        assert Trip().status == TripStatus.NOT_STARTED

    # ── Valid transitions ─────────────────────────────────────────

    def test_not_started_to_in_progress(self):
        trip = Trip()
        trip.transition_to(TripStatus.IN_PROGRESS)
        assert trip.is_active

    def test_in_progress_to_completed(self):
        trip = Trip(status=TripStatus.IN_PROGRESS)
        trip.transition_to(TripStatus.COMPLETED)
        assert trip.is_terminal

    def test_in_progress_to_cancelled(self):
        trip = Trip(status=TripStatus.IN_PROGRESS)
        trip.transition_to(TripStatus.CANCELLED)
        assert trip.status == TripStatus.CANCELLED

    # ── Invalid transitions ───────────────────────────────────────

    def test_not_started_cannot_complete(self):
        with pytest.raises(InvalidStateTransition):
            Trip().transition_to(TripStatus.COMPLETED)

    @pytest.mark.parametrize("terminal", [TripStatus.COMPLETED, TripStatus.CANCELLED])
    def test_no_exit_from_terminal(self, terminal):
        trip = Trip(status=terminal)
        for target in TripStatus:
            with pytest.raises(InvalidStateTransition):
                trip.transition_to(target)


class TestBoardingState:
    def test_missing_student_is_waiting(self):
        assert Trip().boarding_state("s1") == BoardingState.WAITING

    def test_forward_only(self):
        assert BOARDING_TRANSITIONS[BoardingState.WAITING] == {BoardingState.ONBOARD}
        assert BOARDING_TRANSITIONS[BoardingState.ONBOARD] == {BoardingState.EXITED}
        assert not BOARDING_TRANSITIONS[BoardingState.EXITED]

    def test_onboard_and_exited_are_disjoint(self):
        trip = Trip(boarding={"s1": BoardingState.ONBOARD, "s2": BoardingState.EXITED})
        assert trip.students_onboard == {"s1"}
        assert trip.students_exited == {"s2"}
        assert not trip.students_onboard & trip.students_exited


class TestTripDocument:
    def test_document_shape(self):
        now = datetime(2026, 3, 1, 7, 30, tzinfo=timezone.utc)
        trip = Trip(
            id="t1",
            driver_id="driver1",
            route_id="route1",
            admin_id="admin1",
            status=TripStatus.IN_PROGRESS,
            start_time=now,
            current_location=Location(40.0, -73.0),
            location_updated_at=now,
            boarding={"s2": BoardingState.EXITED, "s1": BoardingState.ONBOARD},
            version=4,
        )
        doc = trip.to_document()
        assert doc["students_onboard"] == ["s1"]
        assert doc["students_exited"] == ["s2"]
        assert doc["status"] == "IN_PROGRESS"

        assert doc["current_location"] == {"latitude": 40.0, "longitude": -73.0}
        assert doc["start_time"] == now.isoformat()
        assert doc["version"] == 4


class TestWeatherRules:
    @pytest.mark.parametrize(
        "raw, code",
        [
            ("Thunder showers", "thunderstorm"),
            ("Light rain", "rain"),
            ("Snow flurries", "snow"),
            ("Patchy fog", "mist"),
            ("Mostly cloudy", "clouds"),
            ("Sunny", "clear"),
            ("", "clear"),
            (None, "clear"),
        ],
    )
    def test_normalize_condition(self, raw, code):
        assert normalize_condition(raw) == code

    def test_icon_for_unknown_falls_back_to_clear(self):
        assert icon_for("volcano") == icon_for("clear")

    def test_snapshot_refresh_due_after_interval(self):
        at = datetime(2026, 3, 1, 7, 0, tzinfo=timezone.utc)
        snap = WeatherSnapshot(20.0, "clear", "Sunny", "01d", None, None, at)
        assert not snap.is_due(at + timedelta(minutes=14), timedelta(minutes=15))
        assert snap.is_due(at + timedelta(minutes=15), timedelta(minutes=15))
