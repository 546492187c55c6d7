def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a short human readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Human readable duration (e.g., "< 1s", "42s", "3m 12s", "1h 05m")
    """
    if seconds is None or seconds < 1:
        return "< 1s"

    total = int(seconds)
    if total < 60:
        return f"{total}s"

    minutes, secs = divmod(total, 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"

    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes:02d}m"


def estimate_remaining(elapsed: float, processed: int, total: int) -> float:
    """Estimate seconds left from the average time per processed item."""
    if processed <= 0 or processed >= total:
        return 0.0
    return (total - processed) * (elapsed / processed)
