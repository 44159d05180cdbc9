"""
Tournament progression: registration, category start, result entry, promotion.

Every mutating call loads its category as one unit inside a single database
transaction and holds the category's in-process lock while it runs. Players
whose ratings change are locked after the category, in ascending id order.
"""

import functools
import logging
import math
import threading
from contextlib import ExitStack, contextmanager
from datetime import date, datetime

import config
import repository
from bracket import (
    bracket_rounds,
    build_knockout_bracket,
    final_round,
    next_slot,
    placeholder_bracket,
)
from eligibility import is_eligible
from errors import (
    CapacityExceeded,
    DeadlinePassed,
    InsufficientPlayers,
    InsufficientQualifiers,
    InvalidScore,
    InvalidState,
    MatchNotFound,
    NotEligible,
    NotFound,
    TournamentError,
)
from groups import build_groups, group_standings, select_qualifiers
from models import (
    CategoryStatus,
    Gender,
    MatchStage,
    MatchStatus,
    Player,
    RatingHistoryRecord,
    Registration,
    SetScore,
    TournamentCategory,
    TournamentFormat,
)
from rating import apply_result

logger = logging.getLogger(__name__)

# (current status, event) -> status after the event
TRANSITIONS = {
    (CategoryStatus.REGISTRATION, "register"): CategoryStatus.REGISTRATION,
    (CategoryStatus.REGISTRATION, "cancel"): CategoryStatus.REGISTRATION,
    (CategoryStatus.REGISTRATION_CLOSED, "cancel"): CategoryStatus.REGISTRATION_CLOSED,
    (CategoryStatus.REGISTRATION, "close"): CategoryStatus.REGISTRATION_CLOSED,
    (CategoryStatus.REGISTRATION_CLOSED, "reopen"): CategoryStatus.REGISTRATION,
    (CategoryStatus.REGISTRATION_CLOSED, "start_knockout"): CategoryStatus.IN_PROGRESS,
    (CategoryStatus.REGISTRATION_CLOSED, "start_groups"): CategoryStatus.GROUP_STAGE,
    (CategoryStatus.GROUP_STAGE, "group_result"): CategoryStatus.GROUP_STAGE,
    (CategoryStatus.GROUP_STAGE, "promote"): CategoryStatus.IN_PROGRESS,
    (CategoryStatus.GROUP_STAGE, "finish_round_robin"): CategoryStatus.COMPLETED,
    (CategoryStatus.IN_PROGRESS, "knockout_result"): CategoryStatus.IN_PROGRESS,
    (CategoryStatus.IN_PROGRESS, "finish"): CategoryStatus.COMPLETED,
}

START_EVENTS = {
    TournamentFormat.SINGLE_ELIMINATION: "start_knockout",
    TournamentFormat.GROUPS_THEN_ELIMINATION: "start_groups",
    TournamentFormat.ROUND_ROBIN: "start_groups",
}


def next_status(status, event):
    """Status reached by applying event, or None if the event is not allowed."""
    return TRANSITIONS.get((status, event))


def _operation(func):
    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except TournamentError as exc:
            logger.warning("%s rejected: %s", func.__name__, exc.message)
            raise

    return wrapper


class LockRegistry:
    """Process-local mutexes keyed by category id and by player id.

    An entry lives only while some caller holds or waits on it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    def __len__(self):
        with self._guard:
            return len(self._locks)

    @contextmanager
    def _held(self, key):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def category(self, category_id):
        return self._held(("category", category_id))

    @contextmanager
    def players(self, player_ids):
        with ExitStack() as stack:
            for player_id in sorted(set(player_ids)):
                stack.enter_context(self._held(("player", player_id)))
            yield


def parse_set_scores(raw_scores):
    """Normalize set scores to SetScore records, rejecting anything unplayable."""
    if not raw_scores:
        raise InvalidScore("At least one set score is required.")
    if len(raw_scores) > config.MAX_SETS:
        raise InvalidScore(f"A match has at most {config.MAX_SETS} sets.")

    scores = []
    for number, item in enumerate(raw_scores, start=1):
        try:
            if isinstance(item, SetScore):
                p1, p2 = item.p1, item.p2
            elif isinstance(item, dict):
                p1, p2 = item["p1"], item["p2"]
            else:
                p1, p2 = item
        except (KeyError, TypeError, ValueError):
            raise InvalidScore(f"Set {number} is malformed.")

        for points in (p1, p2):
            if isinstance(points, bool) or not isinstance(points, int):
                raise InvalidScore(f"Set {number} scores must be whole numbers.")
            if points < 0 or points > config.MAX_SET_POINTS:
                raise InvalidScore(
                    f"Set {number} scores must be between 0 and {config.MAX_SET_POINTS}."
                )
        if p1 == p2:
            raise InvalidScore(f"Set {number} cannot end in a tie.")
        scores.append(SetScore(p1=p1, p2=p2))
    return scores


def count_sets(scores):
    p1_sets = sum(1 for score in scores if score.p1 > score.p2)
    return p1_sets, len(scores) - p1_sets


class TournamentEngine:
    """
    The operations organizers and players drive a category through.

    connect is a zero-argument callable returning a db_adapter.Database; the
    engine opens one connection per call and closes it afterwards. today and now
    are injectable clocks.
    """

    def __init__(self, connect, settings=None, today=None, now=None):
        self._connect = connect
        self.settings = settings if settings is not None else config.load_config()
        self._today = today or date.today
        self._now = now or datetime.now
        self.locks = LockRegistry()

    @contextmanager
    def _session(self):
        db = self._connect()
        try:
            yield db
        finally:
            db.close()

    def _apply(self, category, event, error=InvalidState):
        target = next_status(category.status, event)
        if target is None:
            raise error(
                f"Cannot {event.replace('_', ' ')} while category is {category.status.value}."
            )
        category.status = target
        return target

    # --- Administrative records ---

    def create_player(self, name, gender, birth_date=None, rating=None):
        if not name or not str(name).strip():
            raise TournamentError("Player name is required.")
        gender = Gender(gender)
        if gender == Gender.MIXED:
            raise TournamentError("MIXED is a category gender; a player is MALE or FEMALE.")
        player = Player(
            id=None,
            name=str(name).strip(),
            gender=gender,
            birth_date=birth_date,
            rating=config.INITIAL_RATING if rating is None else rating,
        )
        with self._session() as db:
            with db.transaction():
                repository.create_player(db, player)
        logger.info("Created player %s (%s)", player.id, player.name)
        return player

    def create_category(self, name, format, **options):
        if not name or not str(name).strip():
            raise TournamentError("Category name is required.")
        category = TournamentCategory(
            id=None, name=str(name).strip(), format=TournamentFormat(format), **options
        )
        category.gender = Gender(category.gender)
        if category.capacity < config.MIN_PLAYERS:
            raise TournamentError(f"Capacity must be at least {config.MIN_PLAYERS}.")
        if category.k_factor is not None and category.k_factor <= 0:
            raise TournamentError("k-factor must be positive.")
        with self._session() as db:
            with db.transaction():
                repository.create_category(db, category)
        logger.info("Created category %s (%s)", category.id, category.format.value)
        return category

    @_operation
    def delete_category(self, category_id):
        with self._session() as db, self.locks.category(category_id):
            with db.transaction():
                repository.delete_category(db, category_id)
        logger.info("Deleted category %s", category_id)

    # --- Registration ---

    @_operation
    def register(self, category_id, player_id):
        with self._session() as db, self.locks.category(category_id):
            with db.transaction():
                category = repository.get_category(db, category_id, lock=True)
                self._apply(category, "register")
                if category.is_registered(player_id):
                    return category

                player = repository.get_player(db, player_id)
                if not is_eligible(player, category, self._today()):
                    raise NotEligible(
                        f"{player.name} is not eligible for {category.name}."
                    )
                if len(category.registrations) >= category.capacity:
                    raise CapacityExceeded(f"{category.name} is full.")

                registration = Registration(player_id=player_id, registered_at=self._now())
                repository.add_registration(db, category_id, registration)
                category.registrations.append(registration)

        logger.info("Player %s registered for category %s", player_id, category_id)
        return category

    @_operation
    def cancel_registration(self, category_id, player_id):
        with self._session() as db, self.locks.category(category_id):
            with db.transaction():
                category = repository.get_category(db, category_id, lock=True)
                self._apply(category, "cancel", error=DeadlinePassed)
                if category.event_date is not None:
                    days_left = (category.event_date - self._today()).days
                    if days_left <= self.settings["CANCELLATION_WINDOW_DAYS"]:
                        raise DeadlinePassed(
                            f"Registrations can no longer be cancelled ({days_left} days left)."
                        )
                if not category.is_registered(player_id):
                    return category

                repository.remove_registration(db, category_id, player_id)
                category.registrations = [
                    reg for reg in category.registrations if reg.player_id != player_id
                ]

        logger.info("Player %s cancelled registration for category %s", player_id, category_id)
        return category

    @_operation
    def close_registration(self, category_id):
        return self._simple_transition(category_id, "close")

    @_operation
    def reopen_registration(self, category_id):
        return self._simple_transition(category_id, "reopen")

    def _simple_transition(self, category_id, event):
        with self._session() as db, self.locks.category(category_id):
            with db.transaction():
                category = repository.get_category(db, category_id, lock=True)
                self._apply(category, event)
                repository.update_category(db, category)
        logger.info("Category %s is now %s", category_id, category.status.value)
        return category

    # --- Start ---

    def _seed(self, db, player_ids):
        """Players ordered by rating, best first; equal ratings keep registration order."""
        players = repository.get_players(db, player_ids)
        return sorted(player_ids, key=lambda player_id: -players[player_id].rating)

    @_operation
    def start_category(self, category_id, group_config=None):
        group_config = group_config or {}
        with self._session() as db, self.locks.category(category_id):
            with db.transaction():
                category = repository.get_category(db, category_id, lock=True)
                event = START_EVENTS[category.format]
                if next_status(category.status, event) is None:
                    raise InvalidState(
                        f"Category can only start from {CategoryStatus.REGISTRATION_CLOSED.value}, "
                        f"it is {category.status.value}."
                    )
                num_players = len(category.registrations)
                if num_players < config.MIN_PLAYERS:
                    raise InsufficientPlayers(
                        f"At least {config.MIN_PLAYERS} players are needed to start, "
                        f"{num_players} registered."
                    )

                seeds = self._seed(db, category.player_ids)
                if category.format == TournamentFormat.SINGLE_ELIMINATION:
                    matches = build_knockout_bracket(seeds, category.id)
                    repository.insert_matches(db, category.id, matches)
                elif category.format == TournamentFormat.ROUND_ROBIN:
                    groups, matches = build_groups(seeds, num_players, category.id)
                    repository.insert_groups(db, category.id, groups)
                    repository.insert_matches(db, category.id, matches, groups)
                else:
                    self._start_groups(db, category, seeds, group_config)

                self._apply(category, event)
                repository.update_category(db, category)

        logger.info(
            "Started category %s (%s) with %d players",
            category_id,
            category.format.value,
            num_players,
        )
        return category

    def _start_groups(self, db, category, seeds, group_config):
        group_size = (
            group_config.get("players_per_group")
            or category.players_per_group
            or self.settings["DEFAULT_GROUP_SIZE"]
        )
        advancing = (
            group_config.get("num_advancing")
            or category.advancing_per_group
            or self.settings["DEFAULT_ADVANCING_PER_GROUP"]
        )
        if group_size < 2:
            raise TournamentError("Groups need at least 2 players.")
        if advancing < 1:
            raise TournamentError("At least one player per group must advance.")

        num_groups = math.ceil(len(seeds) / group_size)
        num_qualifiers = min(len(seeds), num_groups * advancing)
        if num_qualifiers < 2:
            raise InsufficientQualifiers(
                f"Only {num_qualifiers} qualifier(s); a knockout needs at least 2."
            )

        groups, matches = build_groups(seeds, group_size, category.id)
        repository.insert_groups(db, category.id, groups)
        repository.insert_matches(db, category.id, matches, groups)
        repository.insert_matches(
            db, category.id, placeholder_bracket(num_qualifiers, category.id)
        )
        category.players_per_group = group_size
        category.advancing_per_group = advancing

    # --- Results ---

    @_operation
    def submit_result(self, category_id, match_id, set_scores):
        scores = parse_set_scores(set_scores)
        p1_sets, p2_sets = count_sets(scores)
        if p1_sets == p2_sets:
            raise InvalidScore("A match cannot end level on sets.")

        with self._session() as db, self.locks.category(category_id):
            with db.transaction():
                category = repository.get_category(db, category_id, lock=True)
                match = repository.get_match(db, match_id)
                if match.category_id != category.id:
                    raise MatchNotFound(
                        f"Match {match_id} does not belong to category {category_id}."
                    )
                event = "group_result" if match.stage == MatchStage.GROUP else "knockout_result"
                self._apply(category, event)
                if not match.has_both_players:
                    raise InvalidState("Both players must be known before a result is entered.")

                winner_id = match.player1_id if p1_sets > p2_sets else match.player2_id
                if match.stage == MatchStage.KNOCKOUT:
                    knockout = repository.list_matches(db, category.id, MatchStage.KNOCKOUT)
                    self._check_correction(match, winner_id, knockout)

                with self.locks.players([match.player1_id, match.player2_id]):
                    self._record_result(db, category, match, scores, p1_sets, p2_sets, winner_id)

                    if match.stage == MatchStage.KNOCKOUT:
                        self._advance(db, category, match, knockout)
                    else:
                        self._after_group_result(db, category)

                repository.update_category(db, category)
                category = repository.get_category(db, category_id)

        logger.info(
            "Result for match %s in category %s: %d-%d, winner %s",
            match_id,
            category_id,
            p1_sets,
            p2_sets,
            winner_id,
        )
        return category

    def _check_correction(self, match, winner_id, knockout):
        if not match.is_completed or match.winner_id == winner_id:
            return
        next_round, next_position, _ = next_slot(match)
        for candidate in knockout:
            if (
                candidate.round == next_round
                and candidate.position == next_position
                and candidate.is_completed
            ):
                raise InvalidState(
                    "The winner cannot change once the following match has been played."
                )

    def _record_result(self, db, category, match, scores, p1_sets, p2_sets, winner_id):
        players = repository.get_players(
            db, [match.player1_id, match.player2_id], lock=True
        )
        p1 = players[match.player1_id]
        p2 = players[match.player2_id]

        if match.is_completed:
            # correction: recompute from the first snapshot, undo the old delta
            before1, before2 = match.player1_rating_before, match.player2_rating_before
            live1 = p1.rating - (match.player1_rating_after - before1)
            live2 = p2.rating - (match.player2_rating_after - before2)
        else:
            before1, before2 = p1.rating, p2.rating
            live1, live2 = p1.rating, p2.rating

        k_factor = category.k_factor or self.settings["DEFAULT_K_FACTOR"]
        after1, after2 = apply_result(
            before1, before2, winner_id == match.player1_id, k_factor
        )
        new1 = live1 + (after1 - before1)
        new2 = live2 + (after2 - before2)
        now = self._now()

        for player, new_rating in ((p1, new1), (p2, new2)):
            repository.append_rating_history(
                db,
                RatingHistoryRecord(
                    id=None,
                    player_id=player.id,
                    match_id=match.id,
                    category_id=category.id,
                    rating_before=player.rating,
                    rating_after=new_rating,
                    delta=new_rating - player.rating,
                    recorded_at=now,
                ),
            )
            repository.update_player_rating(db, player.id, new_rating)

        match.set_scores = scores
        match.player1_sets = p1_sets
        match.player2_sets = p2_sets
        match.winner_id = winner_id
        match.status = MatchStatus.COMPLETED
        match.player1_rating_before = before1
        match.player2_rating_before = before2
        match.player1_rating_after = after1
        match.player2_rating_after = after2
        match.completed_at = now
        repository.update_match(db, match)

    def _advance(self, db, category, match, knockout):
        if match.round == final_round(knockout):
            self._apply(category, "finish")
            logger.info("Category %s completed, champion %s", category.id, match.winner_id)
            return

        next_round, next_position, side = next_slot(match)
        for candidate in knockout:
            if candidate.round == next_round and candidate.position == next_position:
                if side == 1:
                    candidate.player1_id = match.winner_id
                else:
                    candidate.player2_id = match.winner_id
                repository.update_match(db, candidate)
                return
        raise InvalidState(
            f"Bracket has no match at round {next_round}, position {next_position}."
        )

    def _after_group_result(self, db, category):
        group_matches = repository.list_matches(db, category.id, MatchStage.GROUP)
        if not all(match.is_completed for match in group_matches):
            return

        if category.format == TournamentFormat.ROUND_ROBIN:
            self._apply(category, "finish_round_robin")
            logger.info("Round robin %s completed", category.id)
            return
        self._promote(db, category, group_matches)

    def _promote(self, db, category, group_matches):
        """Build the knockout bracket from group qualifiers, reseeded by live rating."""
        groups = repository.list_groups(db, category.id)
        advancing = category.advancing_per_group or self.settings["DEFAULT_ADVANCING_PER_GROUP"]
        qualifiers = select_qualifiers(groups, group_matches, advancing)
        if len(qualifiers) < config.MIN_PLAYERS:
            raise InsufficientQualifiers(
                f"Only {len(qualifiers)} qualifier(s); a knockout needs at least 2."
            )

        pool = self._seed(db, qualifiers)
        bracket = build_knockout_bracket(pool, category.id)
        repository.delete_matches(db, category.id, MatchStage.KNOCKOUT)
        repository.insert_matches(db, category.id, bracket)
        self._apply(category, "promote")
        logger.info(
            "Group stage of category %s finished, %d qualifiers advance",
            category.id,
            len(pool),
        )

    # --- Readers ---

    def get_category(self, category_id):
        with self._session() as db:
            return repository.get_category(db, category_id)

    def list_matches(self, category_id):
        with self._session() as db:
            repository.get_category(db, category_id)
            return repository.list_matches(db, category_id)

    def list_groups(self, category_id):
        with self._session() as db:
            repository.get_category(db, category_id)
            return repository.list_groups(db, category_id)

    def get_player(self, player_id):
        with self._session() as db:
            return repository.get_player(db, player_id)

    def get_rating_history(self, player_id):
        with self._session() as db:
            repository.get_player(db, player_id)
            return repository.rating_history_for(db, player_id)

    def get_group_standings(self, category_id):
        with self._session() as db:
            repository.get_category(db, category_id)
            groups = repository.list_groups(db, category_id)
            matches = repository.list_matches(db, category_id, MatchStage.GROUP)
        return [
            {"group": group, "standings": group_standings(group, matches)}
            for group in groups
        ]

    def get_bracket(self, category_id):
        with self._session() as db:
            repository.get_category(db, category_id)
            matches = repository.list_matches(db, category_id, MatchStage.KNOCKOUT)
        return bracket_rounds(matches)

    def get_player_stats(self, player_id):
        with self._session() as db:
            player = repository.get_player(db, player_id)
            matches = repository.completed_matches_for_player(db, player_id)
        wins = sum(1 for match in matches if match.winner_id == player_id)
        return {
            "player_id": player_id,
            "name": player.name,
            "rating": player.rating,
            "wins": wins,
            "losses": len(matches) - wins,
            "total_matches": len(matches),
        }

    def get_champion(self, category_id):
        """Winner of a completed category, or None while it is still running."""
        with self._session() as db:
            category = repository.get_category(db, category_id)
            if category.status != CategoryStatus.COMPLETED:
                return None
            if category.format == TournamentFormat.ROUND_ROBIN:
                groups = repository.list_groups(db, category_id)
                matches = repository.list_matches(db, category_id, MatchStage.GROUP)
                if not groups:
                    return None
                return group_standings(groups[0], matches)[0]["player_id"]
            knockout = repository.list_matches(db, category_id, MatchStage.KNOCKOUT)

        last = final_round(knockout)
        finals = [m for m in knockout if m.round == last and m.is_completed]
        if not finals:
            raise NotFound(f"Category {category_id} has no completed final.")
        return finals[0].winner_id
