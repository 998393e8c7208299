"""API tests for courses, modules, lessons and assignments."""

import pytest

from tradeacademy.models import Course, Level, PublishStatus, User, UserRole, db

pytestmark = pytest.mark.api


def _course_payload(**overrides):
    payload = {
        "title": "Options 101",
        "description": "Calls and puts",
        "level": "intermediate",
        "category": "options",
    }
    payload.update(overrides)
    return payload


class TestCourseCatalogue:

    def test_students_only_see_published_courses(self, client, course, instructor, auth_headers):
        db.session.add(
            Course(
                title="Hidden draft", description="WIP", instructor_id=instructor.id,
                level=Level.ADVANCED, category="options",
            )
        )
        db.session.commit()

        body = client.get("/api/courses", headers=auth_headers).get_json()
        assert body["total"] == 1
        assert body["data"][0]["title"] == "Trading Basics"

    def test_staff_can_filter_drafts(self, client, course, instructor_headers):
        client.post("/api/courses", json=_course_payload(), headers=instructor_headers)

        body = client.get("/api/courses?status=draft", headers=instructor_headers).get_json()
        assert body["total"] == 1
        assert body["data"][0]["title"] == "Options 101"

    def test_pagination_and_field_selection(self, client, course, instructor_headers):
        for n in range(3):
            client.post(
                "/api/courses",
                json=_course_payload(title=f"Course {n}", status="published"),
                headers=instructor_headers,
            )

        body = client.get("/api/courses?page=2&limit=2&sort=title&fields=title").get_json()

        assert body["page"] == 2
        assert body["limit"] == 2
        assert body["total"] == 4
        assert body["results"] == 2
        assert set(body["data"][0]) == {"id", "title"}

    def test_unknown_filter_is_rejected(self, client):
        response = client.get("/api/courses?colour=red")

        assert response.status_code == 400

    def test_range_filter(self, client, course, instructor_headers):
        client.post(
            "/api/courses",
            json=_course_payload(price=49.0, status="published"),
            headers=instructor_headers,
        )

        body = client.get("/api/courses?price[gte]=10").get_json()
        assert [c["title"] for c in body["data"]] == ["Options 101"]

    def test_course_detail_hides_quiz_answers(self, client, course):
        body = client.get(f"/api/courses/{course.id}").get_json()

        lessons = body["data"]["modules"][0]["lessons"]
        assert len(lessons) == 2
        assert all("correct_answer" not in q for q in lessons[1]["quiz"])
        assert body["data"]["instructor"]["name"] == "Ina Instructor"


class TestCourseManagement:

    def test_students_cannot_create_courses(self, client, auth_headers):
        response = client.post("/api/courses", json=_course_payload(), headers=auth_headers)

        assert response.status_code == 403

    def test_only_owner_or_admin_can_edit(self, client, course, make_headers, admin_headers):
        rival = User(email="rival@example.com", name="Rival", role=UserRole.INSTRUCTOR)
        rival.set_password("password123")
        db.session.add(rival)
        db.session.commit()

        denied = client.patch(
            f"/api/courses/{course.id}", json={"title": "Mine now"}, headers=make_headers(rival)
        )
        assert denied.status_code == 403

        allowed = client.patch(
            f"/api/courses/{course.id}", json={"featured": True}, headers=admin_headers
        )
        assert allowed.status_code == 200
        assert allowed.get_json()["data"]["featured"] is True

    def test_module_and_lesson_crud(self, client, course, instructor_headers):
        module = client.post(
            "/api/modules",
            json={"course_id": str(course.id), "title": "Risk", "description": "Sizing", "order": 2},
            headers=instructor_headers,
        )
        assert module.status_code == 201
        module_id = module.get_json()["data"]["id"]

        lesson = client.post(
            "/api/lessons",
            json={
                "module_id": module_id,
                "title": "Position sizing",
                "description": "How much to risk",
                "order": 1,
                "completion_type": "quiz",
                "quiz": [{"question": "Risk per trade?", "options": ["1%", "50%"], "correct_answer": "1%"}],
            },
            headers=instructor_headers,
        )
        assert lesson.status_code == 201
        assert lesson.get_json()["data"]["quiz"][0]["correct_answer"] == "1%"

        lesson_id = lesson.get_json()["data"]["id"]
        public = client.get(f"/api/lessons/{lesson_id}").get_json()
        assert "correct_answer" not in public["data"]["quiz"][0]

        assert client.delete(f"/api/modules/{module_id}", headers=instructor_headers).status_code == 204
        assert client.get(f"/api/lessons/{lesson_id}").status_code == 404

    def test_reorder_modules(self, client, course, instructor_headers):
        second = client.post(
            "/api/modules",
            json={"course_id": str(course.id), "title": "Advanced", "description": "More", "order": 2},
            headers=instructor_headers,
        ).get_json()["data"]["id"]
        first = str(course.modules[0].id)

        response = client.post(
            "/api/modules/reorder",
            json={"course_id": str(course.id), "module_ids": [second, first]},
            headers=instructor_headers,
        )

        assert response.status_code == 200
        assert [m["id"] for m in response.get_json()["data"]] == [second, first]

        incomplete = client.post(
            "/api/modules/reorder",
            json={"course_id": str(course.id), "module_ids": [second]},
            headers=instructor_headers,
        )
        assert incomplete.status_code == 400


class TestStudentProgress:

    def test_enroll_rate_and_complete(self, client, course, auth_headers):
        enrolled = client.post(f"/api/courses/{course.id}/enroll", headers=auth_headers)
        assert enrolled.status_code == 201

        again = client.post(f"/api/courses/{course.id}/enroll", headers=auth_headers)
        assert again.status_code == 409

        rated = client.post(f"/api/courses/{course.id}/rate", json={"rating": 4}, headers=auth_headers)
        assert rated.get_json()["data"] == {"average_rating": 4.0, "ratings_count": 1}

        bad_rating = client.post(f"/api/courses/{course.id}/rate", json={"rating": 6}, headers=auth_headers)
        assert bad_rating.status_code == 400

        reading, quiz_lesson = course.modules[0].lessons
        done = client.post(
            f"/api/lessons/{reading.id}/complete", json={"time_spent": 300}, headers=auth_headers
        )
        assert done.get_json()["data"]["overall_progress"] == 50.0

        quiz = client.post(
            f"/api/lessons/{quiz_lesson.id}/quiz", json={"answers": ["yes", "yes"]}, headers=auth_headers
        )
        assert quiz.get_json()["data"]["passed"] is True

        progress = client.get(f"/api/courses/{course.id}/progress", headers=auth_headers).get_json()
        assert progress["data"]["status"] == "completed"
        assert progress["data"]["certificate_earned"] is True

    def test_module_lesson_and_prerequisite_progress(self, client, course, auth_headers, instructor_headers):
        basics = course.modules[0]
        created = client.post(
            "/api/modules",
            json={
                "course_id": str(course.id),
                "title": "Advanced",
                "description": "After the basics",
                "order": 2,
                "prerequisite_ids": [str(basics.id)],
            },
            headers=instructor_headers,
        )
        assert created.status_code == 201
        advanced_id = created.get_json()["data"]["id"]
        assert created.get_json()["data"]["prerequisites"] == [str(basics.id)]

        client.post(f"/api/courses/{course.id}/enroll", headers=auth_headers)
        reading = basics.lessons[0]
        client.post(f"/api/lessons/{reading.id}/complete", json={"time_spent": 300}, headers=auth_headers)

        module = client.get(f"/api/modules/{basics.id}/progress", headers=auth_headers).get_json()
        assert module["data"]["progress"]["completed_lessons"] == 1
        assert module["data"]["progress"]["percentage_complete"] == 50.0

        lesson = client.get(f"/api/lessons/{reading.id}/progress", headers=auth_headers).get_json()
        assert lesson["data"]["completed"] is True
        assert lesson["data"]["time_spent"] == 300

        status = client.get(f"/api/modules/{advanced_id}/prerequisites", headers=auth_headers).get_json()
        assert status["data"]["prerequisites_met"] is False
        assert status["data"]["prerequisites"][0]["progress"] == 50.0

    def test_progress_requires_token_and_known_module(self, client, course, auth_headers):
        module_id = course.modules[0].id

        assert client.get(f"/api/modules/{module_id}/progress").status_code == 401
        missing = client.get(
            "/api/modules/00000000-0000-0000-0000-000000000000/progress", headers=auth_headers
        )
        assert missing.status_code == 404

    def test_cyclic_prerequisites_are_rejected(self, client, course, instructor_headers):
        basics = str(course.modules[0].id)
        advanced = client.post(
            "/api/modules",
            json={"course_id": str(course.id), "title": "Advanced", "description": "More",
                  "order": 2, "prerequisite_ids": [basics]},
            headers=instructor_headers,
        ).get_json()["data"]["id"]

        response = client.patch(
            f"/api/modules/{basics}", json={"prerequisite_ids": [advanced]}, headers=instructor_headers
        )

        assert response.status_code == 400
        assert response.get_json()["error"]["code"] == "VALIDATION_ERROR"

    def test_draft_course_is_hidden_and_closed(self, client, course, auth_headers):
        course.status = PublishStatus.DRAFT
        db.session.commit()

        assert client.get(f"/api/courses/{course.id}").status_code == 404
        response = client.post(f"/api/courses/{course.id}/enroll", headers=auth_headers)
        assert response.get_json()["error"]["code"] == "COURSE_NOT_PUBLISHED"


class TestAssignmentsAPI:

    @pytest.fixture
    def assignment_id(self, client, course, instructor_headers):
        response = client.post(
            "/api/assignments",
            json={
                "course_id": str(course.id),
                "title": "Trend quiz",
                "description": "Two questions",
                "type": "quiz",
                "points": 10,
                "max_attempts": 1,
                "status": "published",
                "grading_type": "automatic",
                "answer_key": ["up", "down"],
            },
            headers=instructor_headers,
        )
        assert response.status_code == 201
        assert "answer_key" not in response.get_json()["data"]
        return response.get_json()["data"]["id"]

    def test_submit_and_review(self, client, course, assignment_id, auth_headers, instructor_headers):
        client.post(f"/api/courses/{course.id}/enroll", headers=auth_headers)

        submitted = client.post(
            f"/api/assignments/{assignment_id}/submit",
            json={"content": {"answers": ["up", "down"]}},
            headers=auth_headers,
        )
        assert submitted.status_code == 201
        assert submitted.get_json()["data"]["score"] == 10.0

        second = client.post(
            f"/api/assignments/{assignment_id}/submit",
            json={"content": {"answers": []}},
            headers=auth_headers,
        )
        assert second.get_json()["error"]["code"] == "MAX_ATTEMPTS_REACHED"

        mine = client.get("/api/assignments/submissions/me", headers=auth_headers).get_json()
        assert mine["results"] == 1
        assert mine["data"][0]["assignment"]["title"] == "Trend quiz"

        listed = client.get(f"/api/assignments/{assignment_id}/submissions", headers=instructor_headers)
        assert listed.get_json()["results"] == 1

        forbidden = client.get(f"/api/assignments/{assignment_id}/submissions", headers=auth_headers)
        assert forbidden.status_code == 403

    def test_grade_and_regrade(self, client, course, assignment_id, auth_headers, instructor_headers):
        client.patch(
            f"/api/assignments/{assignment_id}",
            json={"grading_type": "manual"},
            headers=instructor_headers,
        )
        client.post(f"/api/courses/{course.id}/enroll", headers=auth_headers)
        submission_id = client.post(
            f"/api/assignments/{assignment_id}/submit",
            json={"content": {"text": "Trend is up"}},
            headers=auth_headers,
        ).get_json()["data"]["id"]

        graded = client.post(
            f"/api/assignments/submissions/{submission_id}/grade",
            json={"score": 8, "feedback": "Solid"},
            headers=instructor_headers,
        )
        assert graded.status_code == 200
        assert graded.get_json()["data"]["status"] == "graded"

        regrade = client.post(
            f"/api/assignments/submissions/{submission_id}/regrade",
            json={"reason": "I explained the volume too"},
            headers=auth_headers,
        )
        assert regrade.status_code == 200
        assert regrade.get_json()["data"]["flags"][0]["type"] == "regrade_requested"

    def test_submission_requires_enrollment(self, client, assignment_id, auth_headers):
        response = client.post(
            f"/api/assignments/{assignment_id}/submit",
            json={"content": {"answers": []}},
            headers=auth_headers,
        )

        assert response.status_code == 403
