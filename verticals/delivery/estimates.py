"""Human-readable delivery windows."""

DEFAULT_COUNTRY = "US"
DEFAULT_ESTIMATE = "5-7 business days"


def format_delivery_estimate(min_days: int, max_days: int) -> str:
    """Render a window such as ``"3-5 business days"``.

    Callers guarantee ``0 <= min_days <= max_days``; nothing is validated here.
    """
    if min_days == max_days:
        unit = "day" if min_days <= 1 else "days"
        return f"{min_days} business {unit}"
    return f"{min_days}-{max_days} business days"
