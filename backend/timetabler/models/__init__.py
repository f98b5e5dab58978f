from timetabler.models.academic_structure import (  # noqa: F401
    AcademicPeriod,
    Career,
    Cycle,
    Modality,
    StudentGroup,
)
from timetabler.models.class_session import ClassSession, ClassSessionHour  # noqa: F401
from timetabler.models.course import Course, KnowledgeArea  # noqa: F401
from timetabler.models.learning_space import LearningSpace, Specialty, TeachingType  # noqa: F401
from timetabler.models.teacher import Teacher  # noqa: F401
from timetabler.models.time_slot import TeachingHour, TimeSlot  # noqa: F401
