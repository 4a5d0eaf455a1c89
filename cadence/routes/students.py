from typing import List, Optional

from fastapi import APIRouter, Depends

from ..billing import check_overdue_invoices, get_student_balance
from ..database import STORAGE_KEYS, KeyValueStore
from ..errors import RecordNotFound
from ..lessons import get_lessons_for_student
from ..models import Lesson, LessonStatus, Student
from ..schemas import StudentCreate, StudentUpdate
from ..students import add_student, delete_student, get_student_by_id, search_students, update_student
from . import get_store

router = APIRouter(prefix="/students", tags=["Students"])


def _get(store: KeyValueStore, student_id: int) -> Student:
    student = get_student_by_id(store.students(), student_id)
    if student is None:
        raise RecordNotFound(f"Student {student_id} not found")
    return student


@router.post("", response_model=Student)
def create_student(payload: StudentCreate, store: KeyValueStore = Depends(get_store)):
    students = add_student(store.students(), payload)
    store.save(STORAGE_KEYS.STUDENTS, students)
    store.session.commit()
    return students[-1]


@router.get("", response_model=List[Student])
def list_students(q: Optional[str] = None, store: KeyValueStore = Depends(get_store)):
    return search_students(store.students(), q)


@router.get("/{student_id}", response_model=Student)
def read_student(student_id: int, store: KeyValueStore = Depends(get_store)):
    return _get(store, student_id)


@router.patch("/{student_id}", response_model=Student)
def edit_student(student_id: int, payload: StudentUpdate, store: KeyValueStore = Depends(get_store)):
    students = update_student(store.students(), student_id, payload.model_dump(exclude_unset=True))
    store.save(STORAGE_KEYS.STUDENTS, students)
    store.session.commit()
    return get_student_by_id(students, student_id)


@router.delete("/{student_id}")
def remove_student(student_id: int, store: KeyValueStore = Depends(get_store)):
    """
    Delete the student and their still-scheduled lessons. Completed lessons,
    invoices and payments stay for the records.
    """
    students = delete_student(store.students(), student_id)
    lessons = store.lessons()
    kept = [l for l in lessons if not (l.student_id == student_id and l.status == LessonStatus.SCHEDULED)]
    store.save(STORAGE_KEYS.STUDENTS, students)
    store.save(STORAGE_KEYS.LESSONS, kept)
    store.session.commit()
    return {"deleted": True, "removed_lessons": len(lessons) - len(kept)}


@router.get("/{student_id}/lessons", response_model=List[Lesson])
def student_lessons(student_id: int, store: KeyValueStore = Depends(get_store)):
    _get(store, student_id)
    return get_lessons_for_student(store.lessons(), student_id)


@router.get("/{student_id}/balance")
def student_balance(student_id: int, store: KeyValueStore = Depends(get_store)):
    _get(store, student_id)
    invoices = check_overdue_invoices(store.invoices())
    return {"student_id": student_id, "balance": get_student_balance(invoices, student_id)}
