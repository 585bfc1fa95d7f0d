from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from utils.hashing import short_hash


@dataclass
class DeviceSummary:
    device_hash: str
    short_hash: str
    attempts: int = 0
    saved_scores: int = 0
    best_score: int = 0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    emails: Dict[str, int] = field(default_factory=dict)


@dataclass
class QuizAnalytics:
    total_attempts: int
    saved_scores: int
    completed_attempts: int
    unique_devices: int
    unique_emails: int
    completion_rate: float
    average_score: float
    devices: List[DeviceSummary]


def _percent(part: int, whole: int) -> float:
    return part * 100 / whole if whole else 0.0


def aggregate_quiz_analytics(attempts: Iterable, score_entries: Iterable) -> QuizAnalytics:
    """
    Summarise one quiz's attempt and saved-score history.

    completion_rate is saved scores over attempts (percent). average_score only
    counts attempts that were submitted.
    """
    attempts = list(attempts)
    score_entries = list(score_entries)

    finished = [a for a in attempts if a.finished_at is not None]
    average = sum(a.score or 0 for a in finished) / len(finished) if finished else 0.0

    devices: Dict[str, DeviceSummary] = {}
    for attempt in attempts:
        summary = devices.get(attempt.device_hash)
        if summary is None:
            summary = DeviceSummary(device_hash=attempt.device_hash, short_hash=short_hash(attempt.device_hash))
            devices[attempt.device_hash] = summary

        summary.attempts += 1
        summary.best_score = max(summary.best_score, attempt.score or 0)
        seen = attempt.created_at
        if summary.first_seen is None or seen < summary.first_seen:
            summary.first_seen = seen
        if summary.last_seen is None or seen > summary.last_seen:
            summary.last_seen = seen

    emails_by_device: Dict[str, Counter] = {}
    for entry in score_entries:
        if not entry.device_hash:
            continue
        summary = devices.get(entry.device_hash)
        if summary is None:
            summary = DeviceSummary(device_hash=entry.device_hash, short_hash=short_hash(entry.device_hash))
            devices[entry.device_hash] = summary
        summary.saved_scores += 1
        if entry.email:
            emails_by_device.setdefault(entry.device_hash, Counter())[entry.email] += 1

    for device_hash, counter in emails_by_device.items():
        devices[device_hash].emails = dict(counter)

    ordered = sorted(devices.values(), key=lambda d: d.last_seen or datetime.min, reverse=True)

    return QuizAnalytics(
        total_attempts=len(attempts),
        saved_scores=len(score_entries),
        completed_attempts=len(finished),
        unique_devices=len({a.device_hash for a in attempts}),
        unique_emails=len({e.email_hash for e in score_entries if e.email_hash}),
        completion_rate=_percent(len(score_entries), len(attempts)),
        average_score=average,
        devices=ordered,
    )
