"""SM-2 style spaced repetition for lesson reviews."""

DAY_MS = 24 * 60 * 60 * 1000


def sm2_update(
    quality: int,
    reviews: int,
    ease_factor: float,
    interval: float,
) -> dict:
    """Calculate the next review parameters for a lesson.

    Args:
        quality: Rating 0-5 (0=forgot, 3=okay, 5=perfect)
        reviews: Number of reviews recorded so far (0 for a new lesson)
        ease_factor: Current ease factor (minimum 1.3)
        interval: Current interval in days

    Returns:
        Dict with updated interval, reviews, ease_factor.
    """
    if reviews == 0:
        # First review: half a day when it didn't stick
        return {
            "interval": 1 if quality >= 3 else 0.5,
            "reviews": 1,
            "ease_factor": 2.5,
        }

    new_ef = ease_factor + (0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02))
    new_ef = max(1.3, new_ef)

    if quality < 3:
        new_interval = 1
    elif reviews == 1:
        new_interval = 3
    else:
        new_interval = int(interval * new_ef + 0.5)

    return {
        "interval": new_interval,
        "reviews": reviews + 1,
        "ease_factor": new_ef,
    }


def next_review_at(now_ms: int, interval_days: float) -> int:
    return int(now_ms + interval_days * DAY_MS)
