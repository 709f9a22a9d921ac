"""
Classroom World - Classroom Signals
Read-only lookups into the surrounding classroom app: class days,
attendance entries, assignments, submissions and enrollments.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, date
from typing import Optional, List, Dict, Set, Iterable, Tuple

from .database import Database, db
from .models import DueAssignment, Submission


class ClassroomSignals(ABC):

    @abstractmethod
    async def scheduled_class_days(
        self,
        classroom_id: str,
        start: Optional[date],
        end: date
    ) -> List[date]:
        """Class days in ``[start, end]`` ascending; no lower bound when ``start`` is None."""

    @abstractmethod
    async def attended_days(
        self,
        user_id: str,
        classroom_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> Set[date]:
        """Distinct days the student has an entry for."""

    @abstractmethod
    async def due_assignments(
        self,
        classroom_id: str,
        start_at: datetime,
        end_at: datetime
    ) -> List[DueAssignment]:
        """Assignments due in ``[start_at, end_at)``."""

    @abstractmethod
    async def submissions(self, user_id: str, assignment_ids: List[str]) -> List[Submission]:
        ...

    @abstractmethod
    async def enrolled_classrooms(self, user_id: str) -> List[str]:
        ...


# ============================================
# POSTGRES
# ============================================

class PostgresClassroomSignals(ClassroomSignals):
    """Reads the classroom app's own tables."""

    def __init__(self, database: Database = db):
        self.db = database

    async def scheduled_class_days(self, classroom_id, start, end):
        if start is None:
            rows = await self.db.fetch(
                """SELECT date FROM class_days
                   WHERE classroom_id = $1 AND is_class_day = true AND date <= $2
                   ORDER BY date""",
                classroom_id, end
            )
        else:
            rows = await self.db.fetch(
                """SELECT date FROM class_days
                   WHERE classroom_id = $1 AND is_class_day = true
                     AND date >= $2 AND date <= $3
                   ORDER BY date""",
                classroom_id, start, end
            )
        return [row["date"] for row in rows]

    async def attended_days(self, user_id, classroom_id, start=None, end=None):
        query = "SELECT DISTINCT date FROM entries WHERE student_id = $1 AND classroom_id = $2"
        args = [user_id, classroom_id]
        if start is not None:
            args.append(start)
            query += f" AND date >= ${len(args)}"
        if end is not None:
            args.append(end)
            query += f" AND date <= ${len(args)}"
        rows = await self.db.fetch(query, *args)
        return {row["date"] for row in rows}

    async def due_assignments(self, classroom_id, start_at, end_at):
        rows = await self.db.fetch(
            """SELECT id::text AS id, due_at FROM assignments
               WHERE classroom_id = $1 AND due_at >= $2 AND due_at < $3""",
            classroom_id, start_at, end_at
        )
        return [DueAssignment.model_validate(row) for row in rows]

    async def submissions(self, user_id, assignment_ids):
        if not assignment_ids:
            return []
        rows = await self.db.fetch(
            """SELECT assignment_id::text AS assignment_id, is_submitted, submitted_at
               FROM assignment_docs
               WHERE student_id = $1 AND assignment_id::text = ANY($2::text[])""",
            user_id, list(assignment_ids)
        )
        return [Submission.model_validate(row) for row in rows]

    async def enrolled_classrooms(self, user_id):
        rows = await self.db.fetch(
            "SELECT classroom_id::text AS classroom_id FROM classroom_enrollments WHERE student_id = $1",
            user_id
        )
        return [row["classroom_id"] for row in rows]


# ============================================
# IN-MEMORY
# ============================================

class MemoryClassroomSignals(ClassroomSignals):
    """Fixture-friendly signals held in plain dictionaries."""

    def __init__(self):
        self.class_days: Dict[str, Set[date]] = defaultdict(set)
        self.entries: Dict[Tuple[str, str], Set[date]] = defaultdict(set)
        self.assignments: Dict[str, List[DueAssignment]] = defaultdict(list)
        self.docs: Dict[Tuple[str, str], Submission] = {}
        self.enrollments: Dict[str, List[str]] = defaultdict(list)

    # Seeding helpers

    def add_class_days(self, classroom_id: str, days: Iterable[date]) -> None:
        self.class_days[classroom_id].update(days)

    def add_entries(self, user_id: str, classroom_id: str, days: Iterable[date]) -> None:
        self.entries[(user_id, classroom_id)].update(days)

    def add_assignment(self, classroom_id: str, assignment_id: str, due_at: datetime) -> None:
        self.assignments[classroom_id].append(DueAssignment(id=assignment_id, due_at=due_at))

    def submit(self, user_id: str, assignment_id: str, submitted_at: Optional[datetime]) -> None:
        self.docs[(user_id, assignment_id)] = Submission(
            assignment_id=assignment_id,
            is_submitted=submitted_at is not None,
            submitted_at=submitted_at,
        )

    def enroll(self, user_id: str, classroom_id: str) -> None:
        if classroom_id not in self.enrollments[user_id]:
            self.enrollments[user_id].append(classroom_id)

    # ClassroomSignals

    async def scheduled_class_days(self, classroom_id, start, end):
        return sorted(
            day for day in self.class_days[classroom_id]
            if (start is None or day >= start) and day <= end
        )

    async def attended_days(self, user_id, classroom_id, start=None, end=None):
        return {
            day for day in self.entries[(user_id, classroom_id)]
            if (start is None or day >= start) and (end is None or day <= end)
        }

    async def due_assignments(self, classroom_id, start_at, end_at):
        return [a for a in self.assignments[classroom_id] if start_at <= a.due_at < end_at]

    async def submissions(self, user_id, assignment_ids):
        return [
            self.docs[(user_id, assignment_id)]
            for assignment_id in assignment_ids
            if (user_id, assignment_id) in self.docs
        ]

    async def enrolled_classrooms(self, user_id):
        return list(self.enrollments[user_id])
