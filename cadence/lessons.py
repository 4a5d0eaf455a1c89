"""
Lesson store: pure functions over the lessons collection.

Every function takes the current list and returns a new one; the caller
owns the collection and persists whatever comes back. Nothing here checks
for conflicts (see ``conflicts.detect_conflicts``, which is advisory).
"""
import logging
from datetime import date, datetime, time
from typing import Iterable, List, Optional

from .errors import RecordNotFound
from .models import Attendance, Lesson, LessonStatus, next_id

logger = logging.getLogger(__name__)


def _fields(data) -> dict:
    if hasattr(data, "model_dump"):
        return data.model_dump()
    return dict(data)


def _find(lessons: List[Lesson], lesson_id: int) -> Lesson:
    for lesson in lessons:
        if lesson.id == lesson_id:
            return lesson
    raise RecordNotFound(f"Lesson {lesson_id} not found")


def add_lesson(lessons: List[Lesson], data) -> List[Lesson]:
    """Add a single scheduled lesson; it gets the next sequential id."""
    fields = _fields(data)
    fields.pop("id", None)
    fields["status"] = LessonStatus.SCHEDULED
    lesson = Lesson(id=next_id(lessons), **fields)
    logger.info("Lesson %s scheduled for student %s on %s", lesson.id, lesson.student_id, lesson.date)
    return [*lessons, lesson]


def add_recurring_lessons(lessons: List[Lesson], dates: Iterable[date], data) -> List[Lesson]:
    """
    Add one lesson per date, all sharing the other fields of ``data``.
    Ids are sequential and each lesson is numbered within the series.
    """
    dates = list(dates)
    fields = _fields(data)
    for key in ("id", "date", "session_number", "total_sessions"):
        fields.pop(key, None)
    fields["status"] = LessonStatus.SCHEDULED

    first_id = next_id(lessons)
    new_lessons = [
        Lesson(
            id=first_id + index,
            date=day,
            session_number=index + 1,
            total_sessions=len(dates),
            **fields,
        )
        for index, day in enumerate(dates)
    ]
    logger.info("Scheduled %d recurring lessons for student %s", len(new_lessons), fields.get("student_id"))
    return [*lessons, *new_lessons]


def update_lesson(lessons: List[Lesson], lesson_id: int, changes) -> List[Lesson]:
    """Merge ``changes`` into the lesson with ``lesson_id``."""
    current = _find(lessons, lesson_id)
    changes = {k: v for k, v in _fields(changes).items() if k != "id"}
    updated = Lesson.model_validate({**current.model_dump(), **changes})
    if updated.status != LessonStatus.COMPLETED and updated.completed_at is not None:
        updated = updated.model_copy(update={"completed_at": None})
    return [updated if lesson.id == lesson_id else lesson for lesson in lessons]


def delete_lesson(lessons: List[Lesson], lesson_id: int) -> List[Lesson]:
    _find(lessons, lesson_id)
    return [lesson for lesson in lessons if lesson.id != lesson_id]


def complete_lesson(
    lessons: List[Lesson],
    lesson_id: int,
    attendance: Attendance = Attendance.PRESENT,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[Lesson]:
    changes = {
        "status": LessonStatus.COMPLETED,
        "attendance": attendance,
        "completed_at": now or datetime.now(),
    }
    if notes is not None:
        changes["notes"] = notes
    return update_lesson(lessons, lesson_id, changes)


def cancel_lesson(lessons: List[Lesson], lesson_id: int) -> List[Lesson]:
    return update_lesson(lessons, lesson_id, {"status": LessonStatus.CANCELLED})


def reschedule_lesson(lessons: List[Lesson], lesson_id: int, new_date: date, new_time: time) -> List[Lesson]:
    """Move a lesson to another slot; it becomes scheduled again."""
    return update_lesson(
        lessons,
        lesson_id,
        {"date": new_date, "time": new_time, "status": LessonStatus.SCHEDULED, "attendance": None},
    )


# ── Queries ──────────────────────────────────────────────────────────────
def get_lessons_for_date(lessons: Iterable[Lesson], day: date) -> List[Lesson]:
    return [lesson for lesson in lessons if lesson.date == day]


def get_lessons_for_student(lessons: Iterable[Lesson], student_id: int) -> List[Lesson]:
    return [lesson for lesson in lessons if lesson.student_id == student_id]


def get_lessons_in_range(
    lessons: Iterable[Lesson],
    start: date,
    end: date,
    student_id: Optional[int] = None,
) -> List[Lesson]:
    """Lessons dated within [start, end], oldest first."""
    found = [
        lesson for lesson in lessons
        if start <= lesson.date <= end and (student_id is None or lesson.student_id == student_id)
    ]
    return sorted(found, key=lambda l: (l.date, l.time))
