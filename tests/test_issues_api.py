"""
Issue lifecycle over HTTP
=========================

Submission validation, claim/annotate/resolve transitions and the
notifications they produce.
"""

import os

from areassist import models
from areassist.config import get_settings

from conftest import VALID_ISSUE, auth_headers, jpeg


def _notifications_for(db, user_id):
    db.expire_all()
    return db.query(models.Notification).filter(models.Notification.user_id == user_id).all()


class TestSubmission:

    def test_valid_submission_creates_pending_issue(self, client, citizen):
        response = client.post("/issues", data=VALID_ISSUE, files=jpeg(), headers=auth_headers(citizen))
        assert response.status_code == 201
        issue = response.json()["issue"]
        assert issue["status"] == "Pending"
        assert issue["user_id"] == citizen.id
        assert issue["title"] == VALID_ISSUE["title"]
        assert issue["image_url"].startswith("/uploads/")
        assert issue["image_verification"]["status"] == "skipped"

    def test_uploaded_image_is_served(self, client, issue):
        response = client.get(issue["image_url"])
        assert response.status_code == 200

    def test_legacy_upload_path(self, client, citizen):
        response = client.post("/issues/upload", data=VALID_ISSUE, files=jpeg(), headers=auth_headers(citizen))
        assert response.status_code == 201

    def test_every_violation_reported_and_nothing_created(self, client, citizen, db):
        uploads_before = set(os.listdir(get_settings().upload_dir))
        response = client.post(
            "/issues",
            data={"title": "Bad", "description": "too short", "category": "", "location": "  "},
            headers=auth_headers(citizen),
        )
        assert response.status_code == 400
        body = response.json()
        assert set(body["fields"]) == {"title", "description", "category", "location", "image"}
        assert len(body["details"]) == 5
        assert db.query(models.Issue).count() == 0
        assert set(os.listdir(get_settings().upload_dir)) == uploads_before

    def test_image_url_alone_is_not_enough(self, client, citizen, db):
        data = dict(VALID_ISSUE, image_url="https://example.com/pothole.jpg")
        response = client.post("/issues", data=data, headers=auth_headers(citizen))
        assert response.status_code == 400
        assert response.json()["fields"] == ["image"]
        assert db.query(models.Issue).count() == 0

    def test_non_image_upload_rejected(self, client, citizen, db):
        files = {"image": ("notes.txt", b"hello there", "text/plain")}
        response = client.post("/issues", data=VALID_ISSUE, files=files, headers=auth_headers(citizen))
        assert response.status_code == 400
        assert response.json()["fields"] == ["image"]

    def test_bad_coordinates_rejected(self, client, citizen):
        data = dict(VALID_ISSUE, latitude="north", longitude="200")
        response = client.post("/issues", data=data, files=jpeg(), headers=auth_headers(citizen))
        assert response.status_code == 400
        assert set(response.json()["fields"]) == {"latitude", "longitude"}

    def test_coordinates_stored(self, client, citizen):
        data = dict(VALID_ISSUE, latitude="13.0827", longitude="80.2707")
        response = client.post("/issues", data=data, files=jpeg(), headers=auth_headers(citizen))
        issue = response.json()["issue"]
        assert issue["latitude"] == 13.0827
        assert issue["longitude"] == 80.2707

    def test_requires_login(self, client):
        response = client.post("/issues", data=VALID_ISSUE, files=jpeg())
        assert response.status_code == 401


class TestQueries:

    def test_list_by_reporter(self, client, issue, citizen, make_user):
        other = make_user("citizen")
        client.post("/issues", data=VALID_ISSUE, files=jpeg(), headers=auth_headers(other))

        mine = client.get("/issues", params={"userId": citizen.id}).json()
        assert [i["id"] for i in mine] == [issue["id"]]
        assert len(client.get("/issues").json()) == 2

    def test_get_missing_issue(self, client):
        response = client.get("/issues/999")
        assert response.status_code == 404
        assert "not found" in response.json()["error"]

    def test_district_stats(self, client, issue):
        stats = client.get("/issues/district-stats").json()
        assert stats == [{"district": "Chennai", "total": 1, "pending": 1, "in_progress": 0, "resolved": 0}]

    def test_available_issues_match_volunteer_district(self, client, citizen, volunteer, issue):
        elsewhere = dict(VALID_ISSUE, location="Madurai")
        client.post("/issues", data=elsewhere, files=jpeg(), headers=auth_headers(citizen))

        response = client.get("/volunteers/available-issues", headers=auth_headers(volunteer))
        assert response.status_code == 200
        assert [i["id"] for i in response.json()["issues"]] == [issue["id"]]


class TestVolunteerGate:

    def test_citizen_cannot_claim(self, client, citizen, issue):
        response = client.put(f"/issues/{issue['id']}", json={"status": "In Progress"}, headers=auth_headers(citizen))
        assert response.status_code == 403

    def test_incomplete_volunteer_cannot_claim(self, client, make_user, issue):
        newcomer = make_user("volunteer", profile_completed=False)
        response = client.put(f"/issues/{issue['id']}", json={"status": "In Progress"}, headers=auth_headers(newcomer))
        assert response.status_code == 403
        assert "profile" in response.json()["error"]

    def test_incomplete_volunteer_cannot_resolve(self, client, make_user, issue):
        newcomer = make_user("volunteer", profile_completed=False)
        response = client.post(f"/issues/{issue['id']}/resolve", files=jpeg(), headers=auth_headers(newcomer))
        assert response.status_code == 403


class TestTransitions:

    def test_claim_moves_to_in_progress(self, client, volunteer, issue):
        response = client.put(f"/issues/{issue['id']}", json={"status": "In Progress"}, headers=auth_headers(volunteer))
        assert response.status_code == 200
        updated = response.json()["issue"]
        assert updated["status"] == "In Progress"
        assert updated["assigned_volunteer_id"] == volunteer.id

    def test_status_update_cannot_resolve(self, client, volunteer, issue):
        response = client.put(f"/issues/{issue['id']}", json={"status": "Resolved"}, headers=auth_headers(volunteer))
        assert response.status_code == 400
        assert response.json()["fields"] == ["status"]

    def test_unknown_status_rejected(self, client, volunteer, issue):
        response = client.put(f"/issues/{issue['id']}", json={"status": "Closed"}, headers=auth_headers(volunteer))
        assert response.status_code == 400
        assert response.json()["fields"] == ["status"]

    def test_annotate_back_to_pending_notifies_reporter(self, client, db, citizen, volunteer, issue):
        client.put(f"/issues/{issue['id']}", json={"status": "In Progress"}, headers=auth_headers(volunteer))

        response = client.post(
            f"/issues/{issue['id']}/note",
            json={"note": "need clearer address", "keepInProgress": False},
            headers=auth_headers(volunteer),
        )
        assert response.status_code == 200
        updated = response.json()["issue"]
        assert updated["status"] == "Pending"
        assert updated["volunteer_note"] == "need clearer address"

        sent = _notifications_for(db, citizen.id)
        assert len(sent) == 1
        assert sent[0].message == "need clearer address"
        assert sent[0].volunteer_id == volunteer.id
        assert sent[0].issue_id == issue["id"]

    def test_annotate_keeping_in_progress_with_status_field(self, client, volunteer, issue):
        response = client.post(
            f"/issues/{issue['id']}/note",
            json={"note": "parts ordered, back on Monday", "status": "In Progress"},
            headers=auth_headers(volunteer),
        )
        assert response.json()["issue"]["status"] == "In Progress"

    def test_resolve_without_image_fails(self, client, db, citizen, volunteer, issue):
        response = client.post(f"/issues/{issue['id']}/resolve", headers=auth_headers(volunteer))
        assert response.status_code == 400
        assert response.json()["fields"] == ["image"]
        assert client.get(f"/issues/{issue['id']}").json()["status"] == "Pending"
        assert _notifications_for(db, citizen.id) == []

    def test_resolve_with_image(self, client, db, citizen, volunteer, issue):
        response = client.post(f"/issues/{issue['id']}/resolve", files=jpeg("after.jpg"), headers=auth_headers(volunteer))
        assert response.status_code == 200
        body = response.json()
        assert body["issue"]["status"] == "Resolved"
        assert body["issue"]["resolved_at"] is not None
        assert body["issue"]["resolved_by"] == volunteer.id
        assert body["resolved_image_url"].startswith("/uploads/")

        sent = _notifications_for(db, citizen.id)
        assert len(sent) == 1
        assert sent[0].type == "resolved"

    def test_resolved_is_terminal_for_volunteers(self, client, db, citizen, volunteer, issue):
        client.post(f"/issues/{issue['id']}/resolve", files=jpeg(), headers=auth_headers(volunteer))

        again = client.post(f"/issues/{issue['id']}/resolve", files=jpeg(), headers=auth_headers(volunteer))
        note = client.post(f"/issues/{issue['id']}/note", json={"note": "reopen please"}, headers=auth_headers(volunteer))
        claim = client.put(f"/issues/{issue['id']}", json={"status": "Pending"}, headers=auth_headers(volunteer))

        assert again.status_code == 409
        assert note.status_code == 409
        assert claim.status_code == 409
        assert client.get(f"/issues/{issue['id']}").json()["status"] == "Resolved"
        assert len(_notifications_for(db, citizen.id)) == 1

    def test_admin_reopen(self, client, db, citizen, volunteer, admin, issue):
        client.post(f"/issues/{issue['id']}/resolve", files=jpeg(), headers=auth_headers(volunteer))

        response = client.post(
            f"/admin/issues/{issue['id']}/reopen",
            json={"reason": "Light is still out"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 200
        reopened = response.json()["issue"]
        assert reopened["status"] == "Pending"
        assert reopened["reopen_count"] == 1
        assert reopened["reopened_at"] is not None
        assert reopened["resolved_at"] is None
        assert reopened["resolved_by"] is None
        assert reopened["resolved_image_url"] is None

        types = sorted(n.type for n in _notifications_for(db, citizen.id))
        assert types == ["reopened", "resolved"]

    def test_reopen_requires_resolved_issue(self, client, admin, issue):
        response = client.post(f"/admin/issues/{issue['id']}/reopen", headers=auth_headers(admin))
        assert response.status_code == 409

    def test_profile_stats_follow_transitions(self, client, citizen, volunteer, issue):
        client.post(f"/issues/{issue['id']}/resolve", files=jpeg(), headers=auth_headers(volunteer))

        citizen_stats = client.get("/auth/profile/stats", headers=auth_headers(citizen)).json()
        volunteer_stats = client.get("/auth/profile/stats", headers=auth_headers(volunteer)).json()
        assert citizen_stats["reported"] == 1
        assert citizen_stats["resolved"] == 1
        assert volunteer_stats["resolved_by_me"] == 1
