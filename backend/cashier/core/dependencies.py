from cashier.models.shared import Clock, utc_now


def get_clock() -> Clock:
    """Clock used by request handlers; tests override it to control time."""
    return utc_now
