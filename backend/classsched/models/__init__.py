from classsched.models.activity_log import ActivityLog  # noqa: F401
from classsched.models.batch import Batch  # noqa: F401
from classsched.models.classroom import Classroom  # noqa: F401
from classsched.models.faculty import Faculty  # noqa: F401
from classsched.models.faculty_subject import FacultySubject  # noqa: F401
from classsched.models.leave_request import LeaveRequest, LeaveStatus  # noqa: F401
from classsched.models.subject import Subject  # noqa: F401
from classsched.models.substitution_offer import (  # noqa: F401
    SubstitutionOffer,
    SubstitutionOfferStatus,
)
from classsched.models.timetable import (  # noqa: F401
    EDITABLE_TIMETABLE_STATUSES,
    GENERATABLE_TIMETABLE_STATUSES,
    Timetable,
    TimetableStatus,
)
from classsched.models.timetable_entry import SessionType, TimetableEntry, Weekday  # noqa: F401
from classsched.models.user import User, UserRole  # noqa: F401
