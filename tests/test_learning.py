"""Tests for enrollment, lesson progress, quizzes and assignments."""

from datetime import timedelta

import pytest

from tradeacademy.learning import score_answers
from tradeacademy.models import (
    Achievement, AchievementCriteria, Assignment, Course, CourseModule, EnrollmentStatus,
    GradingType, Lesson, Level, ProgressStatus, PublishStatus, RewardType, SubmissionStatus,
    db, utcnow
)
from tradeacademy.utils.exceptions import (
    AuthorizationError, BusinessLogicError, ConflictError, ValidationError
)

pytestmark = pytest.mark.unit


@pytest.fixture
def learning(services):
    return services.learning


def _lessons(course):
    return course.modules[0].lessons


class TestScoreAnswers:

    def test_partial_credit(self):
        assert score_answers(["a", "x", "c"], ["a", "b", "c"]) == 66.67

    def test_missing_answers_count_as_wrong(self):
        assert score_answers(["a"], ["a", "b"]) == 50.0

    def test_empty_key(self):
        assert score_answers(["a"], []) == 0.0


class TestEnrollment:

    def test_enroll_once(self, learning, user, course):
        enrollment = learning.enroll(user, course.id)

        assert enrollment.status == EnrollmentStatus.NOT_STARTED
        assert enrollment.overall_progress == 0

        with pytest.raises(ConflictError):
            learning.enroll(user, course.id)

    def test_draft_course_is_closed(self, learning, user, instructor):
        draft = Course(
            title="Draft", description="Not ready", instructor_id=instructor.id,
            level=Level.ADVANCED, category="options",
        )
        db.session.add(draft)
        db.session.commit()

        with pytest.raises(BusinessLogicError) as exc_info:
            learning.enroll(user, draft.id)
        assert exc_info.value.code == "COURSE_NOT_PUBLISHED"

    def test_rating_requires_enrollment_and_replaces_previous(self, learning, user, other_user, course):
        with pytest.raises(AuthorizationError):
            learning.rate_course(user, course.id, 5)

        learning.enroll(user, course.id)
        learning.enroll(other_user, course.id)
        learning.rate_course(user, course.id, 5)
        learning.rate_course(other_user, course.id, 2)
        learning.rate_course(user, course.id, 4, "Updated")

        assert course.ratings_count == 2
        assert course.average_rating == 3.0


class TestLessonProgress:

    def test_reading_lesson_needs_enough_time(self, learning, user, course):
        learning.enroll(user, course.id)
        reading = _lessons(course)[0]

        with pytest.raises(BusinessLogicError) as exc_info:
            learning.complete_lesson(user, reading.id, time_spent=60)
        assert exc_info.value.code == "COMPLETION_CRITERIA_NOT_MET"

        enrollment = learning.complete_lesson(user, reading.id, time_spent=300)
        assert enrollment.overall_progress == 50.0
        assert enrollment.status == EnrollmentStatus.IN_PROGRESS

    def test_quiz_lesson_needs_minimum_score(self, learning, user, course):
        learning.enroll(user, course.id)
        quiz_lesson = _lessons(course)[1]

        with pytest.raises(BusinessLogicError):
            learning.complete_lesson(user, quiz_lesson.id, score=40)

        enrollment = learning.complete_lesson(user, quiz_lesson.id, score=50)
        assert enrollment.overall_progress == 50.0

    def test_completing_requires_enrollment(self, learning, user, course):
        with pytest.raises(AuthorizationError):
            learning.complete_lesson(user, _lessons(course)[0].id, time_spent=300)

    def test_submit_quiz_tracks_attempts_and_scores(self, learning, user, course):
        learning.enroll(user, course.id)
        quiz_lesson = _lessons(course)[1]

        first = learning.submit_quiz(user, quiz_lesson.id, ["no", "no"])
        assert first == {"score": 0.0, "passed": False, "minimum_score": 50, "attempts": 1}

        second = learning.submit_quiz(user, quiz_lesson.id, ["yes", "yes"])
        assert second["passed"] is True
        assert second["attempts"] == 2

        enrollment = learning.get_enrollment(user, course.id)
        assert enrollment.quiz_highest == 100.0
        assert enrollment.overall_progress == 50.0

    def test_lesson_without_quiz(self, learning, user, course):
        learning.enroll(user, course.id)

        with pytest.raises(BusinessLogicError) as exc_info:
            learning.submit_quiz(user, _lessons(course)[0].id, ["yes"])
        assert exc_info.value.code == "NO_QUIZ"

    def test_finishing_every_lesson_completes_the_course(self, learning, user, course, notifier):
        achievement = Achievement(
            name="Graduate",
            description="Complete a course",
            criteria_type=AchievementCriteria.COURSE_COMPLETION,
            threshold=1,
            reward_type=RewardType.XP,
            reward_value="250",
        )
        db.session.add(achievement)
        db.session.commit()

        learning.enroll(user, course.id)
        reading, quiz_lesson = _lessons(course)
        learning.complete_lesson(user, reading.id, time_spent=300)
        learning.submit_quiz(user, quiz_lesson.id, ["yes", "yes"])

        enrollment = learning.get_enrollment(user, course.id)
        assert enrollment.overall_progress == 100.0
        assert enrollment.status == EnrollmentStatus.COMPLETED
        assert enrollment.certificate_earned is True
        assert enrollment.completed_at is not None

        progress = learning.achievements.get_progress(user, achievement.id)
        assert progress.status == ProgressStatus.COMPLETED
        notifier.send_course_completion.assert_called_once()
        notifier.send_achievement_completed.assert_called_once()


class TestReordering:

    def test_reorder_lessons(self, learning, course):
        module = course.modules[0]
        first, second = module.lessons

        lessons = learning.reorder_lessons(module.id, [second.id, first.id])

        assert [lesson.id for lesson in lessons] == [second.id, first.id]
        assert second.order == 1 and first.order == 2

    def test_reorder_must_list_every_lesson(self, learning, course):
        module = course.modules[0]

        with pytest.raises(ValidationError):
            learning.reorder_lessons(module.id, [module.lessons[0].id])


class TestModuleProgress:

    @pytest.fixture
    def advanced(self, course):
        module = CourseModule(title="Advanced", description="Next steps", order=2)
        module.lessons = [
            Lesson(title="Stops", description="Stop orders", order=1, duration=1, completion_type="read"),
        ]
        course.modules.append(module)
        db.session.commit()
        return module

    def test_progress_without_enrollment_is_empty(self, learning, user, course):
        result = learning.module_progress(user, course.modules[0].id)

        assert result["progress"] == {
            "total_lessons": 2,
            "completed_lessons": 0,
            "in_progress_lessons": 0,
            "percentage_complete": 0.0,
        }
        assert learning.lesson_progress(user, _lessons(course)[0].id)["completed"] is False

    def test_module_and_lesson_progress(self, learning, user, course):
        learning.enroll(user, course.id)
        reading, quiz_lesson = _lessons(course)
        learning.complete_lesson(user, reading.id, time_spent=300)
        learning.submit_quiz(user, quiz_lesson.id, ["no", "no"])
        learning.submit_quiz(user, quiz_lesson.id, ["yes", "no"])

        progress = learning.module_progress(user, course.modules[0].id)["progress"]
        assert progress["completed_lessons"] == 2
        assert progress["in_progress_lessons"] == 0
        assert progress["percentage_complete"] == 100.0

        quiz = learning.lesson_progress(user, quiz_lesson.id)
        assert quiz["completed"] is True
        assert quiz["attempts"] == 2
        assert quiz["best_score"] == 50.0
        assert quiz["completed_at"] is not None

    def test_failed_quiz_counts_as_in_progress(self, learning, user, course):
        learning.enroll(user, course.id)
        learning.submit_quiz(user, _lessons(course)[1].id, ["no", "no"])

        progress = learning.module_progress(user, course.modules[0].id)["progress"]
        assert progress["completed_lessons"] == 0
        assert progress["in_progress_lessons"] == 1

    def test_prerequisite_status(self, learning, user, course, advanced):
        basics = course.modules[0]
        learning.set_prerequisites(advanced, [basics.id])
        db.session.commit()
        learning.enroll(user, course.id)
        learning.complete_lesson(user, _lessons(course)[0].id, time_spent=300)

        status = learning.prerequisite_status(user, advanced.id)
        assert status["prerequisites_met"] is False
        assert status["prerequisites"] == [
            {"module_id": str(basics.id), "title": basics.title, "completed": False, "progress": 50.0}
        ]

        learning.complete_lesson(user, _lessons(course)[1].id, score=100)
        assert learning.prerequisite_status(user, advanced.id)["prerequisites_met"] is True

    def test_module_without_prerequisites(self, learning, user, course):
        status = learning.prerequisite_status(user, course.modules[0].id)

        assert status["prerequisites_met"] is True
        assert status["prerequisites"] == []

    def test_prerequisites_must_be_siblings_without_cycles(self, learning, course, advanced, instructor):
        basics = course.modules[0]
        learning.set_prerequisites(advanced, [basics.id])
        db.session.commit()

        with pytest.raises(ValidationError):
            learning.set_prerequisites(basics, [basics.id])
        with pytest.raises(ValidationError) as exc_info:
            learning.set_prerequisites(basics, [advanced.id])
        assert "cycle" in exc_info.value.message

        other = Course(
            title="Other", description="Elsewhere", instructor_id=instructor.id,
            level=Level.BEGINNER, category="basics",
        )
        other.modules = [CourseModule(title="Foreign", description="x", order=1)]
        db.session.add(other)
        db.session.commit()
        with pytest.raises(ValidationError):
            learning.set_prerequisites(advanced, [other.modules[0].id])
        assert [m.id for m in advanced.prerequisites] == [basics.id]


class TestAssignments:

    @pytest.fixture
    def assignment(self, course):
        assignment = Assignment(
            course_id=course.id,
            title="Chart reading",
            description="Identify the trend",
            type="quiz",
            points=20,
            max_attempts=2,
            status=PublishStatus.PUBLISHED,
            grading_type=GradingType.AUTOMATIC,
            answer_key=["up", "down"],
        )
        db.session.add(assignment)
        db.session.commit()
        return assignment

    def test_automatic_grading(self, learning, user, course, assignment):
        learning.enroll(user, course.id)

        submission = learning.submit_assignment(user, assignment.id, {"answers": ["up", "up"]})

        assert submission.status == SubmissionStatus.GRADED
        assert submission.score == 10.0
        assert submission.attempt == 1
        assert submission.is_late is False

    def test_attempt_limit(self, learning, user, course, assignment):
        learning.enroll(user, course.id)
        learning.submit_assignment(user, assignment.id, {"answers": []})
        learning.submit_assignment(user, assignment.id, {"answers": []})

        with pytest.raises(BusinessLogicError) as exc_info:
            learning.submit_assignment(user, assignment.id, {"answers": []})
        assert exc_info.value.code == "MAX_ATTEMPTS_REACHED"

    def test_late_submission_is_flagged(self, learning, user, course, assignment):
        assignment.due_date = utcnow() - timedelta(days=1)
        db.session.commit()
        learning.enroll(user, course.id)

        submission = learning.submit_assignment(user, assignment.id, {"answers": []})

        assert submission.is_late is True

    def test_unpublished_assignment_is_closed(self, learning, user, course, assignment):
        assignment.status = PublishStatus.DRAFT
        db.session.commit()
        learning.enroll(user, course.id)

        with pytest.raises(BusinessLogicError) as exc_info:
            learning.submit_assignment(user, assignment.id, {"answers": []})
        assert exc_info.value.code == "ASSIGNMENT_CLOSED"

    def test_manual_grading_and_regrade(self, learning, user, other_user, instructor, course, assignment):
        assignment.grading_type = GradingType.MANUAL
        db.session.commit()
        learning.enroll(user, course.id)
        submission = learning.submit_assignment(user, assignment.id, {"text": "Uptrend"})
        assert submission.status == SubmissionStatus.SUBMITTED

        with pytest.raises(ValidationError):
            learning.grade_submission(instructor, submission.id, 25)

        learning.grade_submission(instructor, submission.id, 18, "Good")
        assert submission.score == 18
        assert submission.graded_by_id == instructor.id

        with pytest.raises(AuthorizationError):
            learning.request_regrade(other_user, submission.id, "Please")

        learning.request_regrade(user, submission.id, "Second look please")
        assert submission.flags[0]["type"] == "regrade_requested"
