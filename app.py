import logging
import sqlite3
from datetime import date

import psycopg2
from flask import Blueprint, Flask, current_app, jsonify, request

import config
from db_adapter import get_db_connection, init_schema
from engine import TournamentEngine
from errors import TournamentError
from models import Gender, TournamentFormat, to_dict

CATEGORY_OPTIONS = (
    "gender",
    "age_min",
    "age_max",
    "rating_min",
    "rating_max",
    "capacity",
    "k_factor",
    "players_per_group",
    "advancing_per_group",
)

bp = Blueprint("tournaments", __name__)


def get_engine():
    return current_app.extensions["tournament_engine"]


def _payload():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return {}
    return data


def _parse_date(value, field_name):
    if value in (None, ""):
        return None
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise TournamentError(f"{field_name} must be an ISO date (YYYY-MM-DD).")


def _parse_enum(enum_type, value, field_name):
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise TournamentError(f"{field_name} must be one of: {allowed}.")


def _optional_int(data, field_name):
    value = data.get(field_name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise TournamentError(f"{field_name} must be an integer.")
    return value


# --- Players ---


@bp.route("/players", methods=["POST"])
def create_player():
    data = _payload()
    player = get_engine().create_player(
        name=data.get("name"),
        gender=_parse_enum(Gender, data.get("gender"), "gender"),
        birth_date=_parse_date(data.get("birth_date"), "birth_date"),
        rating=_optional_int(data, "rating"),
    )
    return jsonify(to_dict(player)), 201


@bp.route("/players/<int:player_id>")
def get_player(player_id):
    return jsonify(to_dict(get_engine().get_player(player_id)))


@bp.route("/players/<int:player_id>/rating-history")
def rating_history(player_id):
    return jsonify(to_dict(get_engine().get_rating_history(player_id)))


@bp.route("/players/<int:player_id>/stats")
def player_stats(player_id):
    return jsonify(get_engine().get_player_stats(player_id))


# --- Categories ---


@bp.route("/categories", methods=["POST"])
def create_category():
    data = _payload()
    options = {}
    for field_name in CATEGORY_OPTIONS:
        if field_name == "gender":
            if data.get("gender") is not None:
                options["gender"] = _parse_enum(Gender, data["gender"], "gender")
            continue
        value = _optional_int(data, field_name)
        if value is not None:
            options[field_name] = value
    options["event_date"] = _parse_date(data.get("event_date"), "event_date")

    category = get_engine().create_category(
        name=data.get("name"),
        format=_parse_enum(TournamentFormat, data.get("format"), "format"),
        **options,
    )
    return jsonify(to_dict(category)), 201


@bp.route("/categories/<int:category_id>")
def get_category(category_id):
    return jsonify(to_dict(get_engine().get_category(category_id)))


@bp.route("/categories/<int:category_id>", methods=["DELETE"])
def delete_category(category_id):
    get_engine().delete_category(category_id)
    return "", 204


@bp.route("/categories/<int:category_id>/registrations", methods=["POST"])
def register(category_id):
    player_id = _optional_int(_payload(), "player_id")
    if player_id is None:
        raise TournamentError("player_id is required.")
    category = get_engine().register(category_id, player_id)
    return jsonify(to_dict(category))


@bp.route(
    "/categories/<int:category_id>/registrations/<int:player_id>", methods=["DELETE"]
)
def cancel_registration(category_id, player_id):
    category = get_engine().cancel_registration(category_id, player_id)
    return jsonify(to_dict(category))


@bp.route("/categories/<int:category_id>/close", methods=["POST"])
def close_registration(category_id):
    return jsonify(to_dict(get_engine().close_registration(category_id)))


@bp.route("/categories/<int:category_id>/reopen", methods=["POST"])
def reopen_registration(category_id):
    return jsonify(to_dict(get_engine().reopen_registration(category_id)))


@bp.route("/categories/<int:category_id>/start", methods=["POST"])
def start_category(category_id):
    data = _payload()
    group_config = {
        "players_per_group": _optional_int(data, "players_per_group"),
        "num_advancing": _optional_int(data, "num_advancing"),
    }
    category = get_engine().start_category(category_id, group_config)
    return jsonify(to_dict(category))


# --- Matches ---


@bp.route("/categories/<int:category_id>/matches")
def list_matches(category_id):
    return jsonify(to_dict(get_engine().list_matches(category_id)))


@bp.route(
    "/categories/<int:category_id>/matches/<int:match_id>/result", methods=["POST"]
)
def submit_result(category_id, match_id):
    set_scores = _payload().get("set_scores")
    if not isinstance(set_scores, list):
        raise TournamentError("set_scores must be a list of {p1, p2} objects.")
    category = get_engine().submit_result(category_id, match_id, set_scores)
    return jsonify(to_dict(category))


@bp.route("/categories/<int:category_id>/groups")
def list_groups(category_id):
    return jsonify(to_dict(get_engine().list_groups(category_id)))


@bp.route("/categories/<int:category_id>/standings")
def group_standings(category_id):
    tables = get_engine().get_group_standings(category_id)
    return jsonify(
        [
            {"group": to_dict(table["group"]), "standings": table["standings"]}
            for table in tables
        ]
    )


@bp.route("/categories/<int:category_id>/bracket")
def bracket(category_id):
    rounds = get_engine().get_bracket(category_id)
    return jsonify(
        [
            {
                "round_number": round_info["round_number"],
                "label": round_info["label"],
                "matches": to_dict(round_info["matches"]),
            }
            for round_info in rounds
        ]
    )


@bp.route("/categories/<int:category_id>/champion")
def champion(category_id):
    return jsonify({"champion_id": get_engine().get_champion(category_id)})


# --- Errors ---


@bp.app_errorhandler(TournamentError)
def handle_tournament_error(error):
    current_app.logger.warning("%s: %s", error.kind, error.message)
    return jsonify({"error": error.message, "kind": error.kind}), error.status_code


@bp.app_errorhandler(sqlite3.Error)
@bp.app_errorhandler(psycopg2.Error)
def handle_db_error(error):
    current_app.logger.error("Database Error: %s", error)
    return (
        jsonify(
            {
                "error": "A database error occurred. Please try again later.",
                "kind": "StorageError",
            }
        ),
        500,
    )


def create_app(test_config=None):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_mapping(config.load_config())
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(level=app.config.get("LOG_LEVEL", logging.INFO))

    database_url = app.config.get("DATABASE_URL")
    sqlite_path = app.config.get("SQLITE_PATH")

    def connect():
        return get_db_connection(database_url=database_url or "", sqlite_path=sqlite_path)

    db = connect()
    try:
        init_schema(db)
    finally:
        db.close()

    app.extensions["tournament_engine"] = TournamentEngine(
        connect,
        settings={
            "DEFAULT_K_FACTOR": app.config["DEFAULT_K_FACTOR"],
            "CANCELLATION_WINDOW_DAYS": app.config["CANCELLATION_WINDOW_DAYS"],
            "DEFAULT_GROUP_SIZE": app.config["DEFAULT_GROUP_SIZE"],
            "DEFAULT_ADVANCING_PER_GROUP": app.config["DEFAULT_ADVANCING_PER_GROUP"],
        },
        today=app.config.get("TODAY"),
        now=app.config.get("NOW"),
    )
    app.register_blueprint(bp)
    return app


if __name__ == "__main__":
    create_app().run(debug=True)
