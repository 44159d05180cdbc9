from datetime import date, datetime, time, timedelta

import pytest

from db_adapter import get_db_connection, init_schema
from engine import TournamentEngine
from models import Gender

SETTINGS = {
    "DEFAULT_K_FACTOR": 32,
    "CANCELLATION_WINDOW_DAYS": 5,
    "DEFAULT_GROUP_SIZE": 4,
    "DEFAULT_ADVANCING_PER_GROUP": 2,
}

EVENT_DATE = date(2025, 7, 1)


class FakeClock:
    def __init__(self, today):
        self.current = today
        self._ticks = 0

    def today(self):
        return self.current

    def now(self):
        self._ticks += 1
        return datetime.combine(self.current, time(9)) + timedelta(seconds=self._ticks)


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "tournaments.db")
    db = get_db_connection(database_url="", sqlite_path=path)
    init_schema(db)
    db.close()
    return path


@pytest.fixture
def clock():
    return FakeClock(date(2025, 6, 1))


@pytest.fixture
def engine(db_path, clock):
    return TournamentEngine(
        lambda: get_db_connection(database_url="", sqlite_path=db_path),
        settings=dict(SETTINGS),
        today=clock.today,
        now=clock.now,
    )


@pytest.fixture
def closed_category(engine):
    """Build a category with one registered player per rating, registration closed."""

    def build(format, ratings, **options):
        options.setdefault("event_date", EVENT_DATE)
        category = engine.create_category("Open Singles", format, **options)
        player_ids = []
        for idx, rating in enumerate(ratings, start=1):
            player = engine.create_player(f"Player {idx}", Gender.MALE, rating=rating)
            engine.register(category.id, player.id)
            player_ids.append(player.id)
        engine.close_registration(category.id)
        return category.id, player_ids

    return build
