"""
Scheduling conflict detection and side-by-side layout of overlapping lessons.
"""
from datetime import time
from typing import Dict, Iterable, List, NamedTuple, Union

from .models import Lesson, LessonStatus

DEFAULT_DURATION = 30


class LayoutSlot(NamedTuple):
    column_index: int
    total_columns: int


def time_to_minutes(value: Union[time, str]) -> int:
    """Minutes from midnight for a ``time`` or an "HH:MM" string."""
    if isinstance(value, str):
        hours, minutes = value.split(":")[:2]
        return int(hours) * 60 + int(minutes)
    return value.hour * 60 + value.minute


def _interval(lesson):
    start = time_to_minutes(lesson.time)
    return start, start + (lesson.duration or DEFAULT_DURATION)


def detect_conflicts(candidate, existing_lessons: Iterable[Lesson]) -> List[Lesson]:
    """
    Return the scheduled lessons on the candidate's date whose time range
    intersects the candidate's. The candidate itself (same id) is ignored.
    Ranges are half-open, so back-to-back lessons do not conflict.
    """
    new_start, new_end = _interval(candidate)
    candidate_id = getattr(candidate, "id", None)

    conflicts = []
    for lesson in existing_lessons:
        if lesson.date != candidate.date:
            continue
        if lesson.status != LessonStatus.SCHEDULED:
            continue
        if candidate_id is not None and lesson.id == candidate_id:
            continue
        start, end = _interval(lesson)
        if new_start < end and start < new_end:
            conflicts.append(lesson)
    return conflicts


def compute_overlap_layout(day_lessons: Iterable[Lesson]) -> Dict[int, LayoutSlot]:
    """
    Assign a column to every lesson of a single day so overlapping lessons
    can be drawn side by side.

    Lessons are swept in start order (longer first on ties) into clusters of
    transitively overlapping lessons; each lesson's column is its position in
    the cluster and the cluster size is the column count. This greedy packing
    can use more columns than strictly needed.
    """
    ordered = sorted(day_lessons, key=lambda l: (_interval(l)[0], -(l.duration or DEFAULT_DURATION)))
    if not ordered:
        return {}

    clusters = []
    current = [ordered[0]]
    cluster_end = _interval(ordered[0])[1]
    for lesson in ordered[1:]:
        start, end = _interval(lesson)
        if start < cluster_end:
            current.append(lesson)
            cluster_end = max(cluster_end, end)
        else:
            clusters.append(current)
            current = [lesson]
            cluster_end = end
    clusters.append(current)

    layout = {}
    for cluster in clusters:
        for column, lesson in enumerate(cluster):
            layout[lesson.id] = LayoutSlot(column, len(cluster))
    return layout
