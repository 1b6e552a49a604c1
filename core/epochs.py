# core/epochs.py
from typing import Dict, List, Any

EPOCH_COUNT = 4

# Reward share per epoch, each one 0.75 of the previous
EPOCH_DISTRIBUTIONS = [
    {"number": 1, "percentage": 36.57, "distribution": 3657},
    {"number": 2, "percentage": 27.43, "distribution": 2743},
    {"number": 3, "percentage": 20.58, "distribution": 2058},
    {"number": 4, "percentage": 15.42, "distribution": 1542},
]


def _check_epoch(epoch_number: int) -> None:
    if not 1 <= epoch_number <= EPOCH_COUNT:
        raise ValueError(f"Epoch must be between 1 and {EPOCH_COUNT}, got {epoch_number}")


def epoch_duration(start: int, end: int) -> int:
    """Length in seconds of one epoch of a poll running from start to end."""
    if end <= start:
        raise ValueError(f"Poll end ({end}) must be after its start ({start})")
    return (end - start) // EPOCH_COUNT


def epoch_start(start: int, end: int, epoch_number: int) -> int:
    _check_epoch(epoch_number)
    return start + (epoch_number - 1) * epoch_duration(start, end)


def epoch_end(start: int, end: int, epoch_number: int) -> int:
    _check_epoch(epoch_number)
    return start + epoch_number * epoch_duration(start, end)


def current_epoch(start: int, end: int, now: float) -> int:
    """Epoch a poll is in at `now`, clamped to 1..EPOCH_COUNT."""
    if now < start:
        return 1
    if now >= end:
        return EPOCH_COUNT

    duration = epoch_duration(start, end)
    if duration == 0:
        return EPOCH_COUNT
    elapsed = now - start
    return min(EPOCH_COUNT, max(1, int(elapsed // duration) + 1))


def epoch_progress(start: int, end: int, epoch_number: int, now: float) -> float:
    """Percentage (0-100) of the given epoch that has elapsed at `now`."""
    window_start = epoch_start(start, end, epoch_number)
    window_end = epoch_end(start, end, epoch_number)

    if now < window_start:
        return 0.0
    if now >= window_end:
        return 100.0
    return min(100.0, max(0.0, (now - window_start) / (window_end - window_start) * 100))


def seconds_until(timestamp: int, now: float) -> int:
    return max(0, int(timestamp - now))


def epoch_schedule(start: int, end: int, now: float) -> List[Dict[str, Any]]:
    """Window, reward share and state of every epoch of a poll."""
    schedule = []
    for share in EPOCH_DISTRIBUTIONS:
        number = share["number"]
        window_start = epoch_start(start, end, number)
        window_end = epoch_end(start, end, number)

        if now < window_start:
            state = "upcoming"
        elif now >= window_end:
            state = "ended"
        else:
            state = "active"

        schedule.append({
            "number": number,
            "percentage": share["percentage"],
            "distribution": share["distribution"],
            "start_time": window_start,
            "end_time": window_end,
            "progress": round(epoch_progress(start, end, number, now), 2),
            "state": state,
        })
    return schedule
