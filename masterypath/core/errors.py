"""
Domain errors raised by the mastery engine.

Only conditions the caller must act on are raised. Recoverable situations
(bad BKT parameters, first exposure to a KC, cyclic prerequisites, an empty
roster, "nothing left to learn") are reported through return values instead.
"""


class MasteryPathError(Exception):
    """Base class for all engine errors."""


class UnknownStudentError(MasteryPathError, KeyError):
    def __init__(self, student_id: str):
        super().__init__(f"Student '{student_id}' not found")
        self.student_id = student_id

    def __str__(self) -> str:
        return self.args[0]


class UnknownKnowledgeComponentError(MasteryPathError, KeyError):
    def __init__(self, kc_id: str):
        super().__init__(f"Knowledge component '{kc_id}' not found")
        self.kc_id = kc_id

    def __str__(self) -> str:
        return self.args[0]


class DuplicateCurriculumCodeError(MasteryPathError, ValueError):
    """Two knowledge components claim the same curriculum code."""


class InvalidTransitionError(MasteryPathError, ValueError):
    """A path entry was asked to move backwards (e.g. completed → pending)."""


class OutOfOrderResponseError(MasteryPathError):
    """
    A response is older than the last one applied for the same
    (student, KC) pair. BKT is a sequential filter, so applying it would
    corrupt the estimate.
    """

    def __init__(self, student_id: str, kc_id: str, timestamp, last_applied):
        super().__init__(
            f"Response for ({student_id}, {kc_id}) at {timestamp.isoformat()} "
            f"is older than the last applied response at {last_applied.isoformat()}"
        )
        self.student_id = student_id
        self.kc_id = kc_id
        self.timestamp = timestamp
        self.last_applied = last_applied
