"""
TradeAcademy - Courses, Modules and Lessons API

Catalogue management for instructors, enrollment, ratings and lesson
progress for students.
"""

from flask import Blueprint, jsonify, request
from flask_jwt_extended import current_user, get_current_user, jwt_required, verify_jwt_in_request

from tradeacademy.api import apply_changes, load_json, success
from tradeacademy.models import Course, CourseModule, Lesson, PublishStatus, UserRole, db
from tradeacademy.schemas import (
    CourseSchema, LessonCompleteSchema, LessonReorderSchema, LessonSchema,
    ModuleReorderSchema, ModuleSchema, QuizSubmissionSchema, RatingSchema
)
from tradeacademy.services import get_services
from tradeacademy.utils.auth import is_owner_or_staff, roles_required
from tradeacademy.utils.exceptions import AuthorizationError, NotFoundError
from tradeacademy.utils.logger import get_logger
from tradeacademy.utils.query import paginate

courses_bp = Blueprint("courses", __name__)
modules_bp = Blueprint("modules", __name__)
lessons_bp = Blueprint("lessons", __name__)
logger = get_logger(__name__)

EDITOR_ROLES = (UserRole.INSTRUCTOR.value, UserRole.ADMIN.value)


def _viewer_is_staff() -> bool:
    verify_jwt_in_request(optional=True)
    viewer = get_current_user()
    return viewer is not None and viewer.has_role(*EDITOR_ROLES)


def _require_editor(course: Course) -> None:
    if not is_owner_or_staff(course.instructor_id, UserRole.ADMIN.value):
        raise AuthorizationError("Only the course instructor can change this course")


def _get(model, object_id, name: str):
    instance = db.session.get(model, object_id)
    if instance is None:
        raise NotFoundError(name)
    return instance


def _course_detail(course: Course):
    data = course.to_dict()
    data["instructor"] = course.instructor.to_public_dict()
    data["modules"] = [
        {**module.to_dict(), "lessons": [lesson.to_dict() for lesson in module.lessons]}
        for module in course.modules
    ]
    return data


# Courses

@courses_bp.route("", methods=["GET"])
def list_courses():
    """
    Course catalogue.

    Students see published courses only; instructors and admins see every
    status and may filter on it.
    """
    query = Course.query
    if not _viewer_is_staff():
        query = query.filter(Course.status == PublishStatus.PUBLISHED)
    return jsonify(paginate(query, Course, request.args)), 200


@courses_bp.route("/<uuid:course_id>", methods=["GET"])
def get_course(course_id):
    course = _get(Course, course_id, "Course")
    if course.status != PublishStatus.PUBLISHED and not _viewer_is_staff():
        raise NotFoundError("Course")
    return jsonify(success(_course_detail(course))), 200


@courses_bp.route("", methods=["POST"])
@roles_required(*EDITOR_ROLES)
def create_course():
    data = load_json(CourseSchema())
    course = Course(instructor_id=current_user.id, **data)
    db.session.add(course)
    db.session.commit()
    logger.info(f"Course created: {course.title}", extra={"course_id": str(course.id)})
    return jsonify(success(course.to_dict())), 201


@courses_bp.route("/<uuid:course_id>", methods=["PATCH"])
@roles_required(*EDITOR_ROLES)
def update_course(course_id):
    course = _get(Course, course_id, "Course")
    _require_editor(course)
    apply_changes(course, load_json(CourseSchema(), partial=True))
    db.session.commit()
    return jsonify(success(course.to_dict())), 200


@courses_bp.route("/<uuid:course_id>", methods=["DELETE"])
@roles_required(*EDITOR_ROLES)
def delete_course(course_id):
    course = _get(Course, course_id, "Course")
    _require_editor(course)
    db.session.delete(course)
    db.session.commit()
    return "", 204


@courses_bp.route("/<uuid:course_id>/enroll", methods=["POST"])
@jwt_required()
def enroll(course_id):
    enrollment = get_services().learning.enroll(current_user, course_id)
    return jsonify(
        success(enrollment.to_dict(), message="Successfully enrolled in course")
    ), 201


@courses_bp.route("/<uuid:course_id>/rate", methods=["POST"])
@jwt_required()
def rate(course_id):
    """
    Rate a course the user is enrolled in; rating again replaces the old one.

    Expects:
    {
        "rating": 1-5,
        "review": "optional text"
    }
    """
    data = load_json(RatingSchema())
    course = get_services().learning.rate_course(
        current_user, course_id, data["rating"], data.get("review")
    )
    return jsonify(
        success(
            {"average_rating": course.average_rating, "ratings_count": course.ratings_count},
            message="Rating submitted successfully",
        )
    ), 200


@courses_bp.route("/<uuid:course_id>/progress", methods=["GET"])
@jwt_required()
def course_progress(course_id):
    enrollment = get_services().learning.get_enrollment(current_user, course_id)
    return jsonify(success(enrollment.to_dict())), 200


# Modules

@modules_bp.route("", methods=["GET"])
def list_modules():
    return jsonify(paginate(CourseModule.query, CourseModule, request.args, default_sort="order")), 200


@modules_bp.route("/<uuid:module_id>", methods=["GET"])
def get_module(module_id):
    module = _get(CourseModule, module_id, "Module")
    data = module.to_dict()
    data["lessons"] = [lesson.to_dict() for lesson in module.lessons]
    return jsonify(success(data)), 200


@modules_bp.route("", methods=["POST"])
@roles_required(*EDITOR_ROLES)
def create_module():
    data = load_json(ModuleSchema())
    _require_editor(_get(Course, data["course_id"], "Course"))
    prerequisite_ids = data.pop("prerequisite_ids", None)
    module = CourseModule(**data)
    if prerequisite_ids:
        get_services().learning.set_prerequisites(module, prerequisite_ids)
    db.session.add(module)
    db.session.commit()
    return jsonify(success(module.to_dict())), 201


@modules_bp.route("/<uuid:module_id>", methods=["PATCH"])
@roles_required(*EDITOR_ROLES)
def update_module(module_id):
    module = _get(CourseModule, module_id, "Module")
    _require_editor(module.course)
    data = load_json(ModuleSchema(), partial=True)
    data.pop("course_id", None)
    prerequisite_ids = data.pop("prerequisite_ids", None)
    if prerequisite_ids is not None:
        get_services().learning.set_prerequisites(module, prerequisite_ids)
    apply_changes(module, data)
    db.session.commit()
    return jsonify(success(module.to_dict())), 200


@modules_bp.route("/<uuid:module_id>", methods=["DELETE"])
@roles_required(*EDITOR_ROLES)
def delete_module(module_id):
    module = _get(CourseModule, module_id, "Module")
    _require_editor(module.course)
    db.session.delete(module)
    db.session.commit()
    return "", 204


@modules_bp.route("/<uuid:module_id>/progress", methods=["GET"])
@jwt_required()
def module_progress(module_id):
    return jsonify(success(get_services().learning.module_progress(current_user, module_id))), 200


@modules_bp.route("/<uuid:module_id>/prerequisites", methods=["GET"])
@jwt_required()
def prerequisite_status(module_id):
    """Whether the caller has finished every module required before this one."""
    status = get_services().learning.prerequisite_status(current_user, module_id)
    return jsonify(success(status)), 200


@modules_bp.route("/reorder", methods=["POST"])
@roles_required(*EDITOR_ROLES)
def reorder_modules():
    """
    Expects:
    {
        "course_id": "uuid",
        "module_ids": ["uuid", ...]   // new order, first is 1
    }
    """
    data = load_json(ModuleReorderSchema())
    learning = get_services().learning
    _require_editor(learning.get_course(data["course_id"]))
    modules = learning.reorder_modules(data["course_id"], data["module_ids"])
    return jsonify(
        success([m.to_dict(["title", "order"]) for m in modules], message="Modules reordered successfully")
    ), 200


# Lessons

@lessons_bp.route("", methods=["GET"])
def list_lessons():
    return jsonify(paginate(Lesson.query, Lesson, request.args, default_sort="order")), 200


@lessons_bp.route("/<uuid:lesson_id>", methods=["GET"])
def get_lesson(lesson_id):
    lesson = _get(Lesson, lesson_id, "Lesson")
    return jsonify(success(lesson.to_dict())), 200


@lessons_bp.route("", methods=["POST"])
@roles_required(*EDITOR_ROLES)
def create_lesson():
    data = load_json(LessonSchema())
    module = _get(CourseModule, data["module_id"], "Module")
    _require_editor(module.course)
    lesson = Lesson(**data)
    db.session.add(lesson)
    db.session.commit()
    return jsonify(success(lesson.to_dict(reveal_answers=True))), 201


@lessons_bp.route("/<uuid:lesson_id>", methods=["PATCH"])
@roles_required(*EDITOR_ROLES)
def update_lesson(lesson_id):
    lesson = _get(Lesson, lesson_id, "Lesson")
    _require_editor(lesson.module.course)
    data = load_json(LessonSchema(), partial=True)
    data.pop("module_id", None)
    apply_changes(lesson, data)
    db.session.commit()
    return jsonify(success(lesson.to_dict(reveal_answers=True))), 200


@lessons_bp.route("/<uuid:lesson_id>", methods=["DELETE"])
@roles_required(*EDITOR_ROLES)
def delete_lesson(lesson_id):
    lesson = _get(Lesson, lesson_id, "Lesson")
    _require_editor(lesson.module.course)
    db.session.delete(lesson)
    db.session.commit()
    return "", 204


@lessons_bp.route("/reorder", methods=["POST"])
@roles_required(*EDITOR_ROLES)
def reorder_lessons():
    data = load_json(LessonReorderSchema())
    module = _get(CourseModule, data["module_id"], "Module")
    _require_editor(module.course)
    lessons = get_services().learning.reorder_lessons(module.id, data["lesson_ids"])
    return jsonify(
        success([lesson.to_dict(["title", "order"]) for lesson in lessons],
                message="Lessons reordered successfully")
    ), 200


@lessons_bp.route("/<uuid:lesson_id>/progress", methods=["GET"])
@jwt_required()
def lesson_progress(lesson_id):
    return jsonify(success(get_services().learning.lesson_progress(current_user, lesson_id))), 200


@lessons_bp.route("/<uuid:lesson_id>/complete", methods=["POST"])
@jwt_required()
def complete_lesson(lesson_id):
    """
    Mark a lesson complete.

    Expects:
    {
        "time_spent": 600,   // seconds
        "score": 90          // quiz and exercise lessons
    }
    """
    data = load_json(LessonCompleteSchema())
    enrollment = get_services().learning.complete_lesson(
        current_user, lesson_id, data["time_spent"], data.get("score")
    )
    return jsonify(success(enrollment.to_dict(), message="Lesson marked as complete")), 200


@lessons_bp.route("/<uuid:lesson_id>/quiz", methods=["POST"])
@jwt_required()
def submit_quiz(lesson_id):
    """
    Expects:
    {
        "answers": [1, "b", ...]   // one per question, in order
    }
    """
    data = load_json(QuizSubmissionSchema())
    result = get_services().learning.submit_quiz(current_user, lesson_id, data["answers"])
    return jsonify(success(result)), 200
