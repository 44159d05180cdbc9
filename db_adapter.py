"""
Database adapter to support both SQLite (local dev, tests) and PostgreSQL (production)
"""

import logging
import sqlite3
from contextlib import contextmanager

import config

logger = logging.getLogger(__name__)

POSTGRES = "postgres"
SQLITE = "sqlite"


class Database:
    """Wrapper that lets the engine write one SQL dialect for both backends.

    Queries use psycopg2's %s placeholders; they are rewritten to ? for SQLite.
    Both connections run in autocommit mode and transaction() issues the
    BEGIN/COMMIT itself, so reads outside a transaction never hold locks.
    """

    def __init__(self, conn, dialect):
        self.conn = conn
        self.dialect = dialect
        self.in_transaction = False

    @property
    def is_postgres(self):
        return self.dialect == POSTGRES

    @property
    def for_update(self):
        # SQLite has no row locks; BEGIN IMMEDIATE already holds the write lock
        return " FOR UPDATE" if self.is_postgres else ""

    def _translate(self, query):
        if self.is_postgres:
            return query
        return query.replace("%s", "?")

    def execute(self, query, params=None):
        cursor = self.conn.cursor()
        if params:
            cursor.execute(self._translate(query), params)
        else:
            cursor.execute(self._translate(query))
        return cursor

    def fetchone(self, query, params=None):
        return self.execute(query, params).fetchone()

    def fetchall(self, query, params=None):
        return self.execute(query, params).fetchall()

    def insert(self, query, params=None):
        """Run an INSERT ... RETURNING id and hand back the new id."""
        # drain the cursor so SQLite finishes the statement before COMMIT
        rows = self.execute(query + " RETURNING id", params).fetchall()
        return rows[0]["id"]

    @contextmanager
    def transaction(self):
        """Run the block as one atomic unit; any exception rolls it all back."""
        if self.in_transaction:
            yield self
            return
        self.execute("BEGIN" if self.is_postgres else "BEGIN IMMEDIATE")
        self.in_transaction = True
        try:
            yield self
        except BaseException:
            self.in_transaction = False
            self.execute("ROLLBACK")
            raise
        self.in_transaction = False
        self.execute("COMMIT")

    def close(self):
        self.conn.close()


def dict_factory(cursor, row):
    """Convert SQLite rows to dicts, matching psycopg2's RealDictCursor"""
    return {k[0]: row[i] for i, k in enumerate(cursor.description)}


def get_db_connection(database_url=None, sqlite_path=None):
    """Get a database connection (SQLite or PostgreSQL)"""
    if database_url is None:
        database_url = config.database_url()

    if database_url:
        import psycopg2
        import psycopg2.extras

        conn = psycopg2.connect(
            database_url, cursor_factory=psycopg2.extras.RealDictCursor
        )
        conn.autocommit = True
        return Database(conn, POSTGRES)

    if sqlite_path is None:
        sqlite_path = config.load_config()["SQLITE_PATH"]
    conn = sqlite3.connect(
        sqlite_path, timeout=30, isolation_level=None, check_same_thread=False
    )
    conn.row_factory = dict_factory
    conn.execute("PRAGMA foreign_keys = ON")
    return Database(conn, SQLITE)


def init_schema(db):
    """Initialize database schema (works for both SQLite and PostgreSQL)"""
    id_column = (
        "id SERIAL PRIMARY KEY"
        if db.is_postgres
        else "id INTEGER PRIMARY KEY AUTOINCREMENT"
    )

    with db.transaction():
        db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS players (
                {id_column},
                name TEXT NOT NULL,
                gender TEXT NOT NULL,
                birth_date DATE,
                rating INTEGER NOT NULL DEFAULT {config.INITIAL_RATING},
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

        db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS categories (
                {id_column},
                name TEXT NOT NULL,
                format TEXT NOT NULL,
                status TEXT NOT NULL,
                gender TEXT NOT NULL DEFAULT 'MIXED',
                age_min INTEGER,
                age_max INTEGER,
                rating_min INTEGER,
                rating_max INTEGER,
                capacity INTEGER NOT NULL,
                k_factor INTEGER,
                players_per_group INTEGER,
                advancing_per_group INTEGER,
                event_date DATE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

        db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS registrations (
                {id_column},
                category_id INTEGER NOT NULL,
                player_id INTEGER NOT NULL,
                registered_at TIMESTAMP NOT NULL,
                UNIQUE (category_id, player_id),
                FOREIGN KEY (category_id) REFERENCES categories (id) ON DELETE CASCADE,
                FOREIGN KEY (player_id) REFERENCES players (id) ON DELETE CASCADE
            )
            """
        )

        db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS category_groups (
                {id_column},
                category_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                FOREIGN KEY (category_id) REFERENCES categories (id) ON DELETE CASCADE
            )
            """
        )

        db.execute(
            """
            CREATE TABLE IF NOT EXISTS group_members (
                group_id INTEGER NOT NULL,
                player_id INTEGER NOT NULL,
                seat INTEGER NOT NULL,
                PRIMARY KEY (group_id, player_id),
                FOREIGN KEY (group_id) REFERENCES category_groups (id) ON DELETE CASCADE
            )
            """
        )

        db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS matches (
                {id_column},
                category_id INTEGER NOT NULL,
                stage TEXT NOT NULL,
                round INTEGER NOT NULL,
                position INTEGER NOT NULL,
                player1_id INTEGER,
                player2_id INTEGER,
                status TEXT NOT NULL DEFAULT 'SCHEDULED',
                set_scores TEXT,
                player1_sets INTEGER,
                player2_sets INTEGER,
                winner_id INTEGER,
                group_id INTEGER,
                player1_rating_before INTEGER,
                player2_rating_before INTEGER,
                player1_rating_after INTEGER,
                player2_rating_after INTEGER,
                completed_at TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (category_id) REFERENCES categories (id) ON DELETE CASCADE,
                FOREIGN KEY (group_id) REFERENCES category_groups (id) ON DELETE CASCADE
            )
            """
        )

        # match_id and category_id are weak references: the ledger outlives
        # the matches it describes
        db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS rating_history (
                {id_column},
                player_id INTEGER NOT NULL,
                match_id INTEGER NOT NULL,
                category_id INTEGER NOT NULL,
                rating_before INTEGER NOT NULL,
                rating_after INTEGER NOT NULL,
                delta INTEGER NOT NULL,
                recorded_at TIMESTAMP NOT NULL
            )
            """
        )

        db.execute(
            "CREATE INDEX IF NOT EXISTS idx_matches_category ON matches(category_id, stage)"
        )
        db.execute(
            "CREATE INDEX IF NOT EXISTS idx_matches_slot ON matches(category_id, round, position)"
        )
        db.execute(
            "CREATE INDEX IF NOT EXISTS idx_registrations_category ON registrations(category_id)"
        )
        db.execute(
            "CREATE INDEX IF NOT EXISTS idx_rating_history_player ON rating_history(player_id)"
        )

    logger.debug("Schema ready (%s)", db.dialect)
