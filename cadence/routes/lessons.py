import datetime as dt
from typing import List, Optional

from fastapi import APIRouter, Depends

from ..conflicts import compute_overlap_layout, detect_conflicts
from ..database import STORAGE_KEYS, KeyValueStore
from ..errors import RecordNotFound
from ..formatting import format_time_12h
from ..lessons import (
    add_lesson,
    add_recurring_lessons,
    cancel_lesson,
    complete_lesson,
    delete_lesson,
    get_lessons_for_date,
    get_lessons_for_student,
    reschedule_lesson,
    update_lesson,
)
from ..models import Lesson
from ..recurrence import expand, require_dates
from ..schemas import (
    LayoutEntry,
    LessonCandidate,
    LessonComplete,
    LessonCreate,
    LessonReschedule,
    LessonsCreated,
    LessonUpdate,
    RecurrencePreview,
    RecurrencePreviewRequest,
    RecurringLessonCreate,
)
from ..students import get_student_by_id
from . import get_store

router = APIRouter(prefix="/lessons", tags=["Lessons"])


def _check_student(store: KeyValueStore, student_id: int):
    if get_student_by_id(store.students(), student_id) is None:
        raise RecordNotFound(f"Student {student_id} not found")


def _lesson(lessons: List[Lesson], lesson_id: int) -> Lesson:
    return next(l for l in lessons if l.id == lesson_id)


@router.get("", response_model=List[Lesson])
def list_lessons(date: Optional[dt.date] = None, student_id: Optional[int] = None, store: KeyValueStore = Depends(get_store)):
    lessons = store.lessons()
    if date is not None:
        lessons = get_lessons_for_date(lessons, date)
    if student_id is not None:
        lessons = get_lessons_for_student(lessons, student_id)
    return lessons


@router.post("", response_model=LessonsCreated)
def create_lesson(payload: LessonCreate, store: KeyValueStore = Depends(get_store)):
    _check_student(store, payload.student_id)
    existing = store.lessons()
    lessons = add_lesson(existing, payload)
    new_lesson = lessons[-1]
    store.save(STORAGE_KEYS.LESSONS, lessons)
    store.session.commit()
    return LessonsCreated(lessons=[new_lesson], conflicts=detect_conflicts(new_lesson, existing))


@router.post("/recurring", response_model=LessonsCreated)
def create_recurring_lessons(payload: RecurringLessonCreate, store: KeyValueStore = Depends(get_store)):
    _check_student(store, payload.student_id)
    dates = require_dates(
        payload.date, payload.frequency, payload.repeat_weekdays,
        payload.end_rule, payload.count, payload.end_date,
    )
    template = LessonCreate(**payload.model_dump(include=set(LessonCreate.model_fields)))
    existing = store.lessons()
    lessons = add_recurring_lessons(existing, dates, template)
    created = lessons[len(existing):]
    store.save(STORAGE_KEYS.LESSONS, lessons)
    store.session.commit()

    conflicts = {}
    for lesson in created:
        for clash in detect_conflicts(lesson, existing):
            conflicts[clash.id] = clash
    return LessonsCreated(lessons=created, conflicts=list(conflicts.values()))


@router.post("/recurring/preview", response_model=RecurrencePreview)
def preview_recurring_lessons(payload: RecurrencePreviewRequest):
    dates = expand(
        payload.start_date, payload.frequency, payload.repeat_weekdays,
        payload.end_rule, payload.count, payload.end_date,
    )
    return RecurrencePreview(dates=dates, count=len(dates))


@router.post("/conflicts", response_model=List[Lesson])
def find_conflicts(candidate: LessonCandidate, store: KeyValueStore = Depends(get_store)):
    return detect_conflicts(candidate, store.lessons())


@router.get("/layout", response_model=List[LayoutEntry])
def day_layout(date: dt.date, store: KeyValueStore = Depends(get_store)):
    lessons = get_lessons_for_date(store.lessons(), date)
    times = {lesson.id: lesson.time for lesson in lessons}
    layout = compute_overlap_layout(lessons)
    return [
        LayoutEntry(
            lesson_id=lesson_id,
            time_label=format_time_12h(times[lesson_id]),
            column_index=slot.column_index,
            total_columns=slot.total_columns,
        )
        for lesson_id, slot in layout.items()
    ]


@router.patch("/{lesson_id}", response_model=Lesson)
def edit_lesson(lesson_id: int, payload: LessonUpdate, store: KeyValueStore = Depends(get_store)):
    lessons = update_lesson(store.lessons(), lesson_id, payload.model_dump(exclude_unset=True))
    store.save(STORAGE_KEYS.LESSONS, lessons)
    store.session.commit()
    return _lesson(lessons, lesson_id)


@router.post("/{lesson_id}/complete", response_model=Lesson)
def mark_complete(lesson_id: int, payload: LessonComplete, store: KeyValueStore = Depends(get_store)):
    lessons = complete_lesson(store.lessons(), lesson_id, payload.attendance, payload.notes)
    store.save(STORAGE_KEYS.LESSONS, lessons)
    store.session.commit()
    return _lesson(lessons, lesson_id)


@router.post("/{lesson_id}/cancel", response_model=Lesson)
def mark_cancelled(lesson_id: int, store: KeyValueStore = Depends(get_store)):
    lessons = cancel_lesson(store.lessons(), lesson_id)
    store.save(STORAGE_KEYS.LESSONS, lessons)
    store.session.commit()
    return _lesson(lessons, lesson_id)


@router.post("/{lesson_id}/reschedule", response_model=LessonsCreated)
def move_lesson(lesson_id: int, payload: LessonReschedule, store: KeyValueStore = Depends(get_store)):
    lessons = reschedule_lesson(store.lessons(), lesson_id, payload.date, payload.time)
    store.save(STORAGE_KEYS.LESSONS, lessons)
    store.session.commit()
    moved = _lesson(lessons, lesson_id)
    return LessonsCreated(lessons=[moved], conflicts=detect_conflicts(moved, lessons))


@router.delete("/{lesson_id}")
def remove_lesson(lesson_id: int, store: KeyValueStore = Depends(get_store)):
    store.save(STORAGE_KEYS.LESSONS, delete_lesson(store.lessons(), lesson_id))
    store.session.commit()
    return {"deleted": True}
