from datetime import date

from models import Gender


def age_on(birth_date, today):
    """Whole years between birth_date and today."""
    years = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        years -= 1
    return years


def is_eligible(player, category, today=None):
    """Check the category's gender, age and rating window for a player.

    Bounds are inclusive and ignored when unset. A player without a birth date
    only fails when the category actually restricts age.
    """
    if today is None:
        today = date.today()

    if category.gender != Gender.MIXED and player.gender != category.gender:
        return False

    if category.age_min is not None or category.age_max is not None:
        if player.birth_date is None:
            return False
        age = age_on(player.birth_date, today)
        if category.age_min is not None and age < category.age_min:
            return False
        if category.age_max is not None and age > category.age_max:
            return False

    if category.rating_min is not None and player.rating < category.rating_min:
        return False
    if category.rating_max is not None and player.rating > category.rating_max:
        return False
    return True
