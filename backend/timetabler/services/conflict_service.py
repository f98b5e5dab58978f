from collections import defaultdict
from typing import Dict, List, Sequence

from timetabler.schemas.calendar import minutes_to_time
from timetabler.schemas.schedule_generation import GeneratedSession, ScheduleConflict
from timetabler.services.scheduling_types import parse_hour_label


class ConflictService:
    def __init__(self, sessions: Sequence[GeneratedSession]):
        self.sessions: List[GeneratedSession] = list(sessions)

    def detect_conflicts(self) -> List[ScheduleConflict]:
        conflicts: List[ScheduleConflict] = []

        # Bucket by day, then compare pairwise inside each day
        sessions_by_day: Dict[str, List[GeneratedSession]] = defaultdict(list)
        for session in self.sessions:
            if session.teaching_hours:
                sessions_by_day[session.day_of_week].append(session)

        for day, day_sessions in sessions_by_day.items():
            n = len(day_sessions)
            for i in range(n):
                s1 = day_sessions[i]
                start1, end1 = self._bounds(s1)
                for j in range(i + 1, n):
                    s2 = day_sessions[j]
                    start2, end2 = self._bounds(s2)
                    if max(start1, start2) >= min(end1, end2):
                        continue
                    time_range = f"{minutes_to_time(max(start1, start2))}-{minutes_to_time(min(end1, end2))}"

                    if s1.teacher_id == s2.teacher_id:
                        conflicts.append(ScheduleConflict(
                            conflict_type="TEACHER_CONFLICT",
                            severity="CRITICAL",
                            description=f"Teacher {s1.teacher_name} teaches {s1.course_name} ({s1.group_name}) "
                                        f"and {s2.course_name} ({s2.group_name}) at the same time",
                            affected_entities=[s1.teacher_name, s1.group_name, s2.group_name],
                            day_of_week=day,
                            time_range=time_range,
                            suggested_solutions=self.suggest_solutions("TEACHER_CONFLICT"),
                        ))
                    if s1.learning_space_id == s2.learning_space_id:
                        conflicts.append(ScheduleConflict(
                            conflict_type="SPACE_CONFLICT",
                            severity="HIGH",
                            description=f"Learning space {s1.learning_space_name} is booked by "
                                        f"{s1.group_name} and {s2.group_name} at the same time",
                            affected_entities=[s1.learning_space_name, s1.group_name, s2.group_name],
                            day_of_week=day,
                            time_range=time_range,
                            suggested_solutions=self.suggest_solutions("SPACE_CONFLICT"),
                        ))
                    if s1.group_id == s2.group_id:
                        conflicts.append(ScheduleConflict(
                            conflict_type="GROUP_CONFLICT",
                            severity="HIGH",
                            description=f"Group {s1.group_name} has {s1.course_name} and {s2.course_name} "
                                        f"at the same time",
                            affected_entities=[s1.group_name, s1.course_name, s2.course_name],
                            day_of_week=day,
                            time_range=time_range,
                            suggested_solutions=self.suggest_solutions("GROUP_CONFLICT"),
                        ))

        return conflicts

    @staticmethod
    def _bounds(session: GeneratedSession) -> tuple:
        start, _ = parse_hour_label(session.teaching_hours[0])
        _, end = parse_hour_label(session.teaching_hours[-1])
        return start, end

    @staticmethod
    def suggest_solutions(conflict_type: str) -> List[str]:
        if conflict_type == "TEACHER_CONFLICT":
            return ["Assign another teacher with the same knowledge area", "Move one session to a free time slot"]
        if conflict_type == "SPACE_CONFLICT":
            return ["Move one session to another learning space", "Move one session to a free time slot"]
        return ["Move one of the sessions to a different time slot"]
