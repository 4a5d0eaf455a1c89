"""
Student roster: same list-in / list-out style as the lesson store.
"""
import logging
from typing import Iterable, List, Optional

from .errors import RecordNotFound
from .models import Student, next_id

logger = logging.getLogger(__name__)


def add_student(students: List[Student], data) -> List[Student]:
    fields = data.model_dump() if hasattr(data, "model_dump") else dict(data)
    fields.pop("id", None)
    student = Student(id=next_id(students), **fields)
    logger.info("Student %s (%s) added", student.id, student.name)
    return [*students, student]


def update_student(students: List[Student], student_id: int, changes: dict) -> List[Student]:
    current = get_student_by_id(students, student_id)
    if current is None:
        raise RecordNotFound(f"Student {student_id} not found")
    changes = {k: v for k, v in changes.items() if k != "id"}
    updated = Student.model_validate({**current.model_dump(), **changes})
    return [updated if s.id == student_id else s for s in students]


def delete_student(students: List[Student], student_id: int) -> List[Student]:
    """
    Remove a student from the roster. Lessons, invoices and payments that
    reference the student are left alone.
    """
    if get_student_by_id(students, student_id) is None:
        raise RecordNotFound(f"Student {student_id} not found")
    logger.info("Student %s deleted", student_id)
    return [s for s in students if s.id != student_id]


def get_student_by_id(students: Iterable[Student], student_id: int) -> Optional[Student]:
    return next((s for s in students if s.id == student_id), None)


def search_students(students: List[Student], query: Optional[str]) -> List[Student]:
    """Case-insensitive match on the student's or the parent's name."""
    if not query:
        return students
    needle = query.lower()
    return [
        s for s in students
        if needle in s.name.lower() or (s.parent_name and needle in s.parent_name.lower())
    ]
