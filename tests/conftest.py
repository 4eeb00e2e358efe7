from __future__ import annotations

import pytest

from factories import make_departure, make_tour
from reservations.models import Tour
from reservations.recorder import BookingRecorder
from reservations.storage import InMemoryBookingStorage


@pytest.fixture
def storage() -> InMemoryBookingStorage:
    return InMemoryBookingStorage()


@pytest.fixture
def tour(storage: InMemoryBookingStorage) -> Tour:
    tour = make_tour(departures=[make_departure("dep-1", 60, spots=5), make_departure("dep-2", 90, spots=1)])
    storage.save_tour(tour)
    return tour


@pytest.fixture
def recorder(storage: InMemoryBookingStorage) -> BookingRecorder:
    return BookingRecorder(storage=storage)
