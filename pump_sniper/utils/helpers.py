from datetime import datetime, time as dt_time


def sane_reserves(token_reserves: int, sol_reserves: int) -> bool:
    return 0 < token_reserves < 10**30 and 0 < sol_reserves < 10**20


def parse_hhmm(value: str) -> dt_time:
    """Parse 'HH:MM' into a time; raises ValueError on anything else."""
    hours, minutes = value.strip().split(":")
    return dt_time(int(hours), int(minutes))


def is_working_time(start: str, end: str, now: datetime) -> bool:
    """True when now (UTC) falls inside [start, end], both ends inclusive.

    A window whose end is before its start wraps past midnight.
    """
    start_t = parse_hhmm(start)
    end_t = parse_hhmm(end)
    current = dt_time(now.hour, now.minute)
    if start_t <= end_t:
        return start_t <= current <= end_t
    return current >= start_t or current <= end_t


def short_mint(mint: str, size: int = 8) -> str:
    return mint[:size] if mint else "?"


def format_elapsed(seconds: float) -> str:
    seconds = max(int(seconds), 0)
    if seconds < 60:
        return f"{seconds}s"
    minutes, sec = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m{sec:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes:02d}m"
