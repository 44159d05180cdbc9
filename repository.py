"""
Row <-> record mapping and index-addressed writes.

Every write here touches only the rows it names. Callers wrap a whole
transition in db.transaction() so the unit commits or rolls back together.
"""

import json
from datetime import date, datetime

from errors import MatchNotFound, NotFound
from models import (
    CategoryStatus,
    Gender,
    Group,
    Match,
    MatchStage,
    MatchStatus,
    Player,
    RatingHistoryRecord,
    Registration,
    SetScore,
    TournamentCategory,
    TournamentFormat,
)

CATEGORY_COLUMNS = (
    "name",
    "format",
    "status",
    "gender",
    "age_min",
    "age_max",
    "rating_min",
    "rating_max",
    "capacity",
    "k_factor",
    "players_per_group",
    "advancing_per_group",
    "event_date",
)

MATCH_COLUMNS = (
    "category_id",
    "stage",
    "round",
    "position",
    "player1_id",
    "player2_id",
    "status",
    "set_scores",
    "player1_sets",
    "player2_sets",
    "winner_id",
    "group_id",
    "player1_rating_before",
    "player2_rating_before",
    "player1_rating_after",
    "player2_rating_after",
    "completed_at",
)


def _as_date(value):
    if value is None or isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, datetime):
        return value.date()
    return date.fromisoformat(str(value)[:10])


def _as_datetime(value):
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _db_value(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value


# --- Players ---


def _player_from_row(row):
    return Player(
        id=row["id"],
        name=row["name"],
        gender=Gender(row["gender"]),
        birth_date=_as_date(row["birth_date"]),
        rating=row["rating"],
    )


def create_player(db, player):
    player.id = db.insert(
        "INSERT INTO players (name, gender, birth_date, rating) VALUES (%s, %s, %s, %s)",
        (
            player.name,
            _db_value(player.gender),
            _db_value(player.birth_date),
            player.rating,
        ),
    )
    return player


def get_player(db, player_id, lock=False):
    row = db.fetchone(
        "SELECT * FROM players WHERE id = %s" + (db.for_update if lock else ""),
        (player_id,),
    )
    if not row:
        raise NotFound(f"Player {player_id} not found.")
    return _player_from_row(row)


def get_players(db, player_ids, lock=False):
    """Load players by id, locking rows in ascending id order when asked."""
    players = {}
    for player_id in sorted(set(player_ids)):
        players[player_id] = get_player(db, player_id, lock=lock)
    return players


def update_player_rating(db, player_id, rating):
    db.execute("UPDATE players SET rating = %s WHERE id = %s", (rating, player_id))


# --- Categories ---


def _category_from_row(row, registrations):
    return TournamentCategory(
        id=row["id"],
        name=row["name"],
        format=TournamentFormat(row["format"]),
        status=CategoryStatus(row["status"]),
        gender=Gender(row["gender"]),
        age_min=row["age_min"],
        age_max=row["age_max"],
        rating_min=row["rating_min"],
        rating_max=row["rating_max"],
        capacity=row["capacity"],
        k_factor=row["k_factor"],
        players_per_group=row["players_per_group"],
        advancing_per_group=row["advancing_per_group"],
        event_date=_as_date(row["event_date"]),
        registrations=registrations,
    )


def create_category(db, category):
    columns = ", ".join(CATEGORY_COLUMNS)
    placeholders = ", ".join(["%s"] * len(CATEGORY_COLUMNS))
    category.id = db.insert(
        f"INSERT INTO categories ({columns}) VALUES ({placeholders})",
        tuple(_db_value(getattr(category, column)) for column in CATEGORY_COLUMNS),
    )
    return category


def list_registrations(db, category_id):
    rows = db.fetchall(
        """
        SELECT player_id, registered_at FROM registrations
        WHERE category_id = %s
        ORDER BY registered_at, id
        """,
        (category_id,),
    )
    return [
        Registration(
            player_id=row["player_id"],
            registered_at=_as_datetime(row["registered_at"]),
        )
        for row in rows
    ]


def get_category(db, category_id, lock=False):
    row = db.fetchone(
        "SELECT * FROM categories WHERE id = %s" + (db.for_update if lock else ""),
        (category_id,),
    )
    if not row:
        raise NotFound(f"Category {category_id} not found.")
    return _category_from_row(row, list_registrations(db, category_id))


def update_category(db, category):
    assignments = ", ".join(f"{column} = %s" for column in CATEGORY_COLUMNS)
    db.execute(
        f"UPDATE categories SET {assignments} WHERE id = %s",
        tuple(_db_value(getattr(category, column)) for column in CATEGORY_COLUMNS)
        + (category.id,),
    )


def delete_category(db, category_id):
    cursor = db.execute("DELETE FROM categories WHERE id = %s", (category_id,))
    if cursor.rowcount == 0:
        raise NotFound(f"Category {category_id} not found.")


def add_registration(db, category_id, registration):
    db.execute(
        "INSERT INTO registrations (category_id, player_id, registered_at) VALUES (%s, %s, %s)",
        (
            category_id,
            registration.player_id,
            _db_value(registration.registered_at),
        ),
    )


def remove_registration(db, category_id, player_id):
    db.execute(
        "DELETE FROM registrations WHERE category_id = %s AND player_id = %s",
        (category_id, player_id),
    )


# --- Groups ---


def list_groups(db, category_id):
    group_rows = db.fetchall(
        "SELECT id, category_id, name FROM category_groups WHERE category_id = %s ORDER BY id",
        (category_id,),
    )
    groups = []
    for row in group_rows:
        members = db.fetchall(
            "SELECT player_id FROM group_members WHERE group_id = %s ORDER BY seat",
            (row["id"],),
        )
        groups.append(
            Group(
                id=row["id"],
                category_id=row["category_id"],
                name=row["name"],
                player_ids=[member["player_id"] for member in members],
            )
        )
    return groups


def insert_groups(db, category_id, groups):
    for group in groups:
        group.category_id = category_id
        group.id = db.insert(
            "INSERT INTO category_groups (category_id, name) VALUES (%s, %s)",
            (category_id, group.name),
        )
        for seat, player_id in enumerate(group.player_ids, start=1):
            db.execute(
                "INSERT INTO group_members (group_id, player_id, seat) VALUES (%s, %s, %s)",
                (group.id, player_id, seat),
            )
    return groups


# --- Matches ---


def _match_from_row(row):
    raw_scores = row["set_scores"]
    set_scores = [SetScore(p1=s["p1"], p2=s["p2"]) for s in json.loads(raw_scores)] if raw_scores else []
    return Match(
        id=row["id"],
        category_id=row["category_id"],
        stage=MatchStage(row["stage"]),
        round=row["round"],
        position=row["position"],
        player1_id=row["player1_id"],
        player2_id=row["player2_id"],
        status=MatchStatus(row["status"]),
        set_scores=set_scores,
        player1_sets=row["player1_sets"],
        player2_sets=row["player2_sets"],
        winner_id=row["winner_id"],
        group_id=row["group_id"],
        player1_rating_before=row["player1_rating_before"],
        player2_rating_before=row["player2_rating_before"],
        player1_rating_after=row["player1_rating_after"],
        player2_rating_after=row["player2_rating_after"],
        completed_at=_as_datetime(row["completed_at"]),
    )


def _match_values(match):
    values = []
    for column in MATCH_COLUMNS:
        value = getattr(match, column)
        if column == "set_scores":
            value = json.dumps([{"p1": s.p1, "p2": s.p2} for s in value]) if value else None
        values.append(_db_value(value))
    return tuple(values)


def list_matches(db, category_id, stage=None):
    query = "SELECT * FROM matches WHERE category_id = %s"
    params = [category_id]
    if stage is not None:
        query += " AND stage = %s"
        params.append(_db_value(stage))
    query += " ORDER BY stage DESC, group_id, round, position, id"
    return [_match_from_row(row) for row in db.fetchall(query, tuple(params))]


def get_match(db, match_id):
    row = db.fetchone("SELECT * FROM matches WHERE id = %s", (match_id,))
    if not row:
        raise MatchNotFound(f"Match {match_id} not found.")
    return _match_from_row(row)


def insert_matches(db, category_id, matches, groups=None):
    """Insert new matches, resolving group_index against freshly stored groups."""
    columns = ", ".join(MATCH_COLUMNS)
    placeholders = ", ".join(["%s"] * len(MATCH_COLUMNS))
    for match in matches:
        match.category_id = category_id
        if match.group_index is not None and groups is not None:
            match.group_id = groups[match.group_index].id
        match.id = db.insert(
            f"INSERT INTO matches ({columns}) VALUES ({placeholders})",
            _match_values(match),
        )
    return matches


def update_match(db, match):
    assignments = ", ".join(f"{column} = %s" for column in MATCH_COLUMNS)
    db.execute(
        f"UPDATE matches SET {assignments} WHERE id = %s",
        _match_values(match) + (match.id,),
    )


def delete_matches(db, category_id, stage=None):
    if stage is None:
        db.execute("DELETE FROM matches WHERE category_id = %s", (category_id,))
        return
    db.execute(
        "DELETE FROM matches WHERE category_id = %s AND stage = %s",
        (category_id, _db_value(stage)),
    )


def completed_matches_for_player(db, player_id):
    rows = db.fetchall(
        """
        SELECT * FROM matches
        WHERE status = %s AND (player1_id = %s OR player2_id = %s)
        ORDER BY completed_at, id
        """,
        (MatchStatus.COMPLETED.value, player_id, player_id),
    )
    return [_match_from_row(row) for row in rows]


# --- Rating history ---


def append_rating_history(db, record):
    record.id = db.insert(
        """
        INSERT INTO rating_history (
            player_id, match_id, category_id,
            rating_before, rating_after, delta, recorded_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        """,
        (
            record.player_id,
            record.match_id,
            record.category_id,
            record.rating_before,
            record.rating_after,
            record.delta,
            _db_value(record.recorded_at),
        ),
    )
    return record


def rating_history_for(db, player_id):
    rows = db.fetchall(
        "SELECT * FROM rating_history WHERE player_id = %s ORDER BY recorded_at, id",
        (player_id,),
    )
    return [
        RatingHistoryRecord(
            id=row["id"],
            player_id=row["player_id"],
            match_id=row["match_id"],
            category_id=row["category_id"],
            rating_before=row["rating_before"],
            rating_after=row["rating_after"],
            delta=row["delta"],
            recorded_at=_as_datetime(row["recorded_at"]),
        )
        for row in rows
    ]
