from datetime import date

from eligibility import age_on, is_eligible
from models import Gender, Player, TournamentCategory, TournamentFormat

TODAY = date(2025, 6, 1)


def _category(**options):
    return TournamentCategory(
        id=1, name="Veterans", format=TournamentFormat.SINGLE_ELIMINATION, **options
    )


def _player(**options):
    options.setdefault("gender", Gender.FEMALE)
    return Player(id=1, name="Ana", **options)


def test_age_counts_birthdays():
    assert age_on(date(2000, 6, 1), TODAY) == 25
    assert age_on(date(2000, 6, 2), TODAY) == 24


def test_mixed_category_accepts_any_gender():
    category = _category()
    assert is_eligible(_player(gender=Gender.MALE), category, TODAY)
    assert is_eligible(_player(gender=Gender.FEMALE), category, TODAY)


def test_gender_must_match():
    category = _category(gender=Gender.FEMALE)
    assert is_eligible(_player(), category, TODAY)
    assert not is_eligible(_player(gender=Gender.MALE), category, TODAY)


def test_age_bounds_are_inclusive():
    category = _category(age_min=18, age_max=40)
    assert is_eligible(_player(birth_date=date(2007, 6, 1)), category, TODAY)
    assert not is_eligible(_player(birth_date=date(2007, 6, 2)), category, TODAY)
    assert is_eligible(_player(birth_date=date(1984, 6, 2)), category, TODAY)
    assert not is_eligible(_player(birth_date=date(1984, 6, 1)), category, TODAY)


def test_missing_birth_date_only_matters_with_age_bounds():
    assert is_eligible(_player(), _category(), TODAY)
    assert not is_eligible(_player(), _category(age_max=40), TODAY)


def test_rating_bounds_are_inclusive():
    category = _category(rating_min=1000, rating_max=1200)
    assert is_eligible(_player(rating=1000), category, TODAY)
    assert is_eligible(_player(rating=1200), category, TODAY)
    assert not is_eligible(_player(rating=999), category, TODAY)
    assert not is_eligible(_player(rating=1201), category, TODAY)
