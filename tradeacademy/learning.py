"""
Learning Service

Enrollment, lesson completion, quizzes, course ratings, module ordering and
prerequisites, and assignment submissions. Course progress is the share of
completed lessons; reaching 100% completes the enrollment, earns the
certificate and feeds the ``course_completion`` achievement. Module and lesson
progress are read from the same per-lesson records.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from tradeacademy.models import (
    AchievementCriteria, Assignment, Course, CourseModule, CourseRating,
    Enrollment, EnrollmentStatus, GradingType, Lesson, LessonProgress,
    PublishStatus, Submission, SubmissionStatus, User, db, utcnow
)
from tradeacademy.utils.exceptions import (
    AuthorizationError, BusinessLogicError, ConflictError, NotFoundError,
    ValidationError
)
from tradeacademy.utils.logger import get_logger

logger = get_logger(__name__)


def score_answers(answers: List[Any], expected: List[Any]) -> float:
    """Percentage of positions where ``answers`` matches ``expected``."""
    if not expected:
        return 0.0
    correct = sum(
        1 for index, answer in enumerate(expected)
        if index < len(answers) and answers[index] == answer
    )
    return round(correct / len(expected) * 100, 2)


class LearningService:

    def __init__(self, achievements=None, notifier=None):
        self.achievements = achievements
        self.notifier = notifier

    # Lookups

    def get_course(self, course_id) -> Course:
        course = db.session.get(Course, course_id)
        if course is None:
            raise NotFoundError("Course")
        return course

    def get_lesson(self, lesson_id) -> Lesson:
        lesson = db.session.get(Lesson, lesson_id)
        if lesson is None:
            raise NotFoundError("Lesson")
        return lesson

    def get_enrollment(self, user: User, course_id) -> Enrollment:
        enrollment = Enrollment.query.filter_by(user_id=user.id, course_id=course_id).first()
        if enrollment is None:
            raise NotFoundError("Enrollment")
        return enrollment

    def _require_enrollment(self, user: User, course_id) -> Enrollment:
        enrollment = Enrollment.query.filter_by(user_id=user.id, course_id=course_id).first()
        if enrollment is None:
            raise AuthorizationError("You must be enrolled in this course")
        return enrollment

    # Courses

    def enroll(self, user: User, course_id) -> Enrollment:
        course = self.get_course(course_id)
        if course.status != PublishStatus.PUBLISHED:
            raise BusinessLogicError(
                "Course is not open for enrollment", code="COURSE_NOT_PUBLISHED"
            )
        if Enrollment.query.filter_by(user_id=user.id, course_id=course.id).first():
            raise ConflictError("You are already enrolled in this course", code="ALREADY_ENROLLED")

        enrollment = Enrollment(
            user=user,
            course=course,
            overall_progress=0,
            status=EnrollmentStatus.NOT_STARTED,
        )
        db.session.add(enrollment)
        db.session.commit()

        logger.info(f"User {user.id} enrolled in course {course.id}")
        return enrollment

    def rate_course(self, user: User, course_id, rating: int, review: Optional[str] = None) -> Course:
        course = self.get_course(course_id)
        self._require_enrollment(user, course.id)

        existing = next((r for r in course.ratings if r.user_id == user.id), None)
        if existing is not None:
            existing.rating = rating
            existing.review = review
        else:
            course.ratings.append(CourseRating(user_id=user.id, rating=rating, review=review))

        course.recalculate_rating()
        db.session.commit()
        return course

    def reorder_modules(self, course_id, module_ids: List[str]) -> List[CourseModule]:
        course = self.get_course(course_id)
        modules = {str(m.id): m for m in course.modules}
        unknown = [m for m in module_ids if str(m) not in modules]
        if unknown or len(set(map(str, module_ids))) != len(modules):
            raise ValidationError(
                "Module order must list every module of the course exactly once",
                field="module_ids",
                details={"unknown": [str(m) for m in unknown]},
            )
        for position, module_id in enumerate(module_ids, start=1):
            modules[str(module_id)].order = position
        db.session.commit()
        return sorted(modules.values(), key=lambda m: m.order)

    def reorder_lessons(self, module_id, lesson_ids: List[str]) -> List[Lesson]:
        module = self.get_module(module_id)
        lessons = {str(lesson.id): lesson for lesson in module.lessons}
        if set(map(str, lesson_ids)) != set(lessons) or len(lesson_ids) != len(lessons):
            raise ValidationError(
                "Lesson order must list every lesson of the module exactly once",
                field="lesson_ids",
            )
        for position, lesson_id in enumerate(lesson_ids, start=1):
            lessons[str(lesson_id)].order = position
        db.session.commit()
        return sorted(lessons.values(), key=lambda lesson: lesson.order)

    def get_module(self, module_id) -> CourseModule:
        module = db.session.get(CourseModule, module_id)
        if module is None:
            raise NotFoundError("Module")
        return module

    def set_prerequisites(self, module: CourseModule, prerequisite_ids: List[Any]) -> None:
        """Replace the modules that must be finished before ``module``; they must share its course."""
        siblings = {str(m.id): m for m in self.get_course(module.course_id).modules}
        wanted = list(dict.fromkeys(str(i) for i in prerequisite_ids))
        invalid = [i for i in wanted if i not in siblings or i == str(module.id)]
        if invalid:
            raise ValidationError(
                "Prerequisites must be other modules of the same course",
                field="prerequisite_ids",
                details={"invalid": invalid},
            )

        # Reject cycles: no chosen prerequisite may itself depend on this module
        pending = [siblings[i] for i in wanted]
        seen = set()
        while pending:
            current = pending.pop()
            if current.id == module.id:
                raise ValidationError(
                    "Prerequisites cannot form a cycle", field="prerequisite_ids"
                )
            if current.id not in seen:
                seen.add(current.id)
                pending.extend(current.prerequisites)

        module.prerequisites = [siblings[i] for i in wanted]

    # Progress

    def _progress_by_lesson(self, user: User, course_id) -> Dict[Any, LessonProgress]:
        enrollment = Enrollment.query.filter_by(user_id=user.id, course_id=course_id).first()
        if enrollment is None:
            return {}
        return {p.lesson_id: p for p in enrollment.lesson_progress}

    @staticmethod
    def _module_counts(module: CourseModule, progress: Dict[Any, LessonProgress]) -> Dict[str, Any]:
        total = len(module.lessons)
        completed = in_progress = 0
        for lesson in module.lessons:
            record = progress.get(lesson.id)
            if record is None:
                continue
            if record.completed:
                completed += 1
            else:
                in_progress += 1
        return {
            "total_lessons": total,
            "completed_lessons": completed,
            "in_progress_lessons": in_progress,
            "percentage_complete": round(completed / total * 100, 2) if total else 0.0,
        }

    def module_progress(self, user: User, module_id) -> Dict[str, Any]:
        module = self.get_module(module_id)
        progress = self._progress_by_lesson(user, module.course_id)
        return {
            "module_id": str(module.id),
            "title": module.title,
            "progress": self._module_counts(module, progress),
        }

    def prerequisite_status(self, user: User, module_id) -> Dict[str, Any]:
        """
        Completion of each prerequisite module. A prerequisite without
        lessons counts as complete.
        """
        module = self.get_module(module_id)
        progress = self._progress_by_lesson(user, module.course_id)

        prerequisites = []
        for prerequisite in module.prerequisites:
            counts = self._module_counts(prerequisite, progress)
            done = counts["completed_lessons"] == counts["total_lessons"]
            prerequisites.append({
                "module_id": str(prerequisite.id),
                "title": prerequisite.title,
                "completed": done,
                "progress": counts["percentage_complete"] if counts["total_lessons"] else 100.0,
            })

        return {
            "module_id": str(module.id),
            "prerequisites_met": all(p["completed"] for p in prerequisites),
            "prerequisites": prerequisites,
        }

    def lesson_progress(self, user: User, lesson_id) -> Dict[str, Any]:
        lesson = self.get_lesson(lesson_id)
        record = self._progress_by_lesson(user, lesson.module.course_id).get(lesson.id)
        if record is None:
            return {
                "lesson_id": str(lesson.id),
                "completed": False,
                "completed_at": None,
                "attempts": 0,
                "best_score": 0,
                "time_spent": 0,
                "last_accessed": None,
            }
        return {
            "lesson_id": str(lesson.id),
            "completed": record.completed,
            "completed_at": record.completed_at.isoformat() if record.completed_at else None,
            "attempts": record.attempts or 0,
            "best_score": record.quiz_score or 0,
            "time_spent": record.time_spent or 0,
            "last_accessed": record.last_accessed.isoformat() if record.last_accessed else None,
        }

    # Lessons

    def _lesson_progress(self, enrollment: Enrollment, lesson: Lesson) -> LessonProgress:
        for progress in enrollment.lesson_progress:
            if progress.lesson_id == lesson.id:
                return progress
        progress = LessonProgress(lesson_id=lesson.id, completed=False, time_spent=0, attempts=0)
        enrollment.lesson_progress.append(progress)
        return progress

    def complete_lesson(self, user: User, lesson_id, time_spent: int = 0,
                        score: Optional[float] = None) -> Enrollment:
        """
        Mark a lesson complete once its completion criteria are met.

        ``read`` and ``watch`` lessons need ``time_spent`` (seconds) to cover
        the lesson duration (minutes); ``quiz`` and ``exercise`` lessons need
        a score of at least ``minimum_score``.
        """
        lesson = self.get_lesson(lesson_id)
        enrollment = self._require_enrollment(user, lesson.module.course_id)

        if lesson.completion_type in ("quiz", "exercise"):
            met = score is not None and score >= lesson.minimum_score
        else:
            met = time_spent >= (lesson.duration or 0) * 60
        if not met:
            raise BusinessLogicError(
                "Completion criteria not met",
                code="COMPLETION_CRITERIA_NOT_MET",
                details={"completion_type": lesson.completion_type},
            )

        now = utcnow()
        progress = self._lesson_progress(enrollment, lesson)
        progress.time_spent = (progress.time_spent or 0) + time_spent
        progress.last_accessed = now
        if score is not None:
            progress.quiz_score = max(score, progress.quiz_score or 0)
        if not progress.completed:
            progress.completed = True
            progress.completed_at = now

        return self._save_progress(user, enrollment, now)

    def submit_quiz(self, user: User, lesson_id, answers: List[Any]) -> Dict[str, Any]:
        lesson = self.get_lesson(lesson_id)
        if not lesson.quiz:
            raise BusinessLogicError(
                "This lesson does not contain a quiz", code="NO_QUIZ"
            )
        enrollment = self._require_enrollment(user, lesson.module.course_id)

        score = score_answers(answers, [q.get("correct_answer") for q in lesson.quiz])
        passed = score >= lesson.minimum_score

        now = utcnow()
        progress = self._lesson_progress(enrollment, lesson)
        progress.attempts = (progress.attempts or 0) + 1
        progress.quiz_score = max(score, progress.quiz_score or 0)
        progress.last_accessed = now
        if passed and not progress.completed:
            progress.completed = True
            progress.completed_at = now

        scores = [p.quiz_score for p in enrollment.lesson_progress if p.quiz_score is not None]
        enrollment.quiz_average = round(sum(scores) / len(scores), 2)
        enrollment.quiz_highest = max(scores)
        enrollment.quiz_lowest = min(scores)

        completed = []
        if self.achievements is not None:
            completed = self.achievements.record_event(
                user, AchievementCriteria.QUIZ_SCORE, score, commit=False, now=now
            )
            completed = [p for p in completed if p.completed_at == now]

        self._save_progress(user, enrollment, now)
        if completed:
            self.achievements.announce_completed(user, completed)

        return {
            "score": score,
            "passed": passed,
            "minimum_score": lesson.minimum_score,
            "attempts": progress.attempts,
        }

    def _save_progress(self, user: User, enrollment: Enrollment, now: datetime) -> Enrollment:
        lessons = enrollment.course.lessons()
        done = {p.lesson_id for p in enrollment.lesson_progress if p.completed}
        total = len(lessons)
        finished = sum(1 for lesson in lessons if lesson.id in done)

        enrollment.overall_progress = round(finished / total * 100, 2) if total else 0
        enrollment.last_accessed = now

        just_completed = False
        if total and finished == total:
            if enrollment.status != EnrollmentStatus.COMPLETED:
                enrollment.status = EnrollmentStatus.COMPLETED
                enrollment.completed_at = now
                enrollment.certificate_earned = True
                just_completed = True
        elif enrollment.lesson_progress:
            enrollment.status = EnrollmentStatus.IN_PROGRESS

        completed_achievements = []
        if just_completed and self.achievements is not None:
            db.session.flush()
            completed_courses = Enrollment.query.filter_by(
                user_id=user.id, status=EnrollmentStatus.COMPLETED
            ).count()
            touched = self.achievements.record_event(
                user, AchievementCriteria.COURSE_COMPLETION, completed_courses,
                commit=False, now=now,
            )
            completed_achievements = [p for p in touched if p.completed_at == now]

        db.session.commit()

        if just_completed:
            logger.info(f"User {user.id} completed course {enrollment.course_id}")
            if self.notifier is not None:
                self.notifier.send_course_completion(user, enrollment.course, enrollment)
            if completed_achievements:
                self.achievements.announce_completed(user, completed_achievements)

        return enrollment

    # Assignments

    def get_assignment(self, assignment_id) -> Assignment:
        assignment = db.session.get(Assignment, assignment_id)
        if assignment is None:
            raise NotFoundError("Assignment")
        return assignment

    def submit_assignment(self, user: User, assignment_id, content: Dict[str, Any],
                          now: Optional[datetime] = None) -> Submission:
        assignment = self.get_assignment(assignment_id)
        if assignment.status != PublishStatus.PUBLISHED:
            raise BusinessLogicError(
                "Assignment is not accepting submissions", code="ASSIGNMENT_CLOSED"
            )
        self._require_enrollment(user, assignment.course_id)

        attempts = Submission.query.filter_by(
            assignment_id=assignment.id, user_id=user.id
        ).count()
        if attempts >= assignment.max_attempts:
            raise BusinessLogicError(
                "Maximum attempts reached for this assignment",
                code="MAX_ATTEMPTS_REACHED",
                details={"max_attempts": assignment.max_attempts},
            )

        now = now or utcnow()
        submission = Submission(
            assignment=assignment,
            user_id=user.id,
            content=content,
            status=SubmissionStatus.SUBMITTED,
            submitted_at=now,
            is_late=bool(assignment.due_date and now > assignment.due_date),
            attempt=attempts + 1,
            max_score=assignment.points,
            flags=[],
        )
        db.session.add(submission)

        if assignment.grading_type == GradingType.AUTOMATIC:
            percentage = score_answers(content.get("answers") or [], assignment.answer_key or [])
            submission.score = round(percentage / 100 * assignment.points, 2)
            submission.status = SubmissionStatus.GRADED
            submission.graded_at = now

        db.session.commit()
        logger.info(
            f"Submission {submission.id} for assignment {assignment.id}",
            extra={"attempt": submission.attempt, "late": submission.is_late},
        )
        return submission

    def grade_submission(self, grader: User, submission_id, score: float,
                         feedback: Optional[str] = None) -> Submission:
        submission = db.session.get(Submission, submission_id)
        if submission is None:
            raise NotFoundError("Submission")
        if score < 0 or score > submission.max_score:
            raise ValidationError(
                f"Score must be between 0 and {submission.max_score}", field="score"
            )

        submission.score = score
        submission.feedback = feedback
        submission.status = SubmissionStatus.GRADED
        submission.graded_by_id = grader.id
        submission.graded_at = utcnow()
        db.session.commit()
        return submission

    def request_regrade(self, user: User, submission_id, reason: str) -> Submission:
        submission = db.session.get(Submission, submission_id)
        if submission is None:
            raise NotFoundError("Submission")
        if submission.user_id != user.id:
            raise AuthorizationError("You can only request a regrade of your own submissions")

        flag = {"type": "regrade_requested", "description": reason, "date": utcnow().isoformat()}
        submission.flags = [*(submission.flags or []), flag]
        db.session.commit()
        return submission

    def submissions_for(self, assignment_id) -> List[Submission]:
        self.get_assignment(assignment_id)
        return (
            Submission.query.filter_by(assignment_id=assignment_id)
            .order_by(Submission.submitted_at.desc())
            .all()
        )

    def submissions_of(self, user: User) -> List[Submission]:
        return (
            Submission.query.filter_by(user_id=user.id)
            .order_by(Submission.submitted_at.desc())
            .all()
        )
