"""
Notification dispatcher: per-recipient listing, read state and deletion.
"""

import pytest

from areassist import models, notifications
from areassist.errors import NotFoundError

from conftest import auth_headers


@pytest.fixture
def stored_issue(db, citizen):
    row = models.Issue(
        title="Overflowing bin near the market",
        description="The public bin has not been emptied for four days now.",
        category="Garbage",
        location="Chennai",
        image_url="/uploads/bin.jpg",
        user_id=citizen.id,
        status=models.IssueStatus.PENDING.value,
    )
    db.add(row)
    db.commit()
    return row


def _send(db, user, issue, count):
    for n in range(count):
        notifications.create_notification(
            db, recipient_id=user.id, issue_id=issue.id, title=f"Update {n}", message="A volunteer left a note",
        )
    db.commit()


@pytest.mark.parametrize("count", [0, 3])
def test_mark_all_read_clears_unread_count(db, citizen, stored_issue, count):
    _send(db, citizen, stored_issue, count)
    assert notifications.unread_count(db, citizen.id) == count

    assert notifications.mark_all_read(db, citizen.id) == count
    assert notifications.unread_count(db, citizen.id) == 0


def test_mark_all_read_only_touches_own_rows(db, citizen, make_user, stored_issue):
    neighbour = make_user("citizen")
    _send(db, citizen, stored_issue, 2)
    _send(db, neighbour, stored_issue, 1)

    notifications.mark_all_read(db, citizen.id)
    assert notifications.unread_count(db, neighbour.id) == 1


def test_mark_read_is_idempotent(db, citizen, stored_issue):
    _send(db, citizen, stored_issue, 2)
    first = notifications.list_for_user(db, citizen.id)[0]

    notifications.mark_read(db, citizen.id, first.id)
    notifications.mark_read(db, citizen.id, first.id)

    assert first.is_read is True
    assert notifications.unread_count(db, citizen.id) == 1


def test_delete_reports_whether_it_was_unread(db, citizen, stored_issue):
    _send(db, citizen, stored_issue, 2)
    read, unread = notifications.list_for_user(db, citizen.id)
    notifications.mark_read(db, citizen.id, read.id)

    assert notifications.delete_notification(db, citizen.id, read.id) is False
    assert notifications.delete_notification(db, citizen.id, unread.id) is True
    assert notifications.list_for_user(db, citizen.id) == []


def test_other_users_rows_are_not_found(db, citizen, make_user, stored_issue):
    intruder = make_user("citizen")
    _send(db, citizen, stored_issue, 1)
    target = notifications.list_for_user(db, citizen.id)[0]

    with pytest.raises(NotFoundError):
        notifications.mark_read(db, intruder.id, target.id)
    with pytest.raises(NotFoundError):
        notifications.delete_notification(db, intruder.id, target.id)
    assert notifications.unread_count(db, citizen.id) == 1


def test_create_does_not_commit(db, citizen, stored_issue):
    notifications.create_notification(db, citizen.id, stored_issue.id, "Pending", "Not yet committed")
    db.rollback()
    assert notifications.list_for_user(db, citizen.id) == []


class TestNotificationRoutes:

    def test_inbox_flow(self, client, db, citizen, stored_issue):
        _send(db, citizen, stored_issue, 3)
        headers = auth_headers(citizen)

        inbox = client.get("/notifications", headers=headers).json()
        assert len(inbox) == 3
        assert client.get("/notifications/unread-count", headers=headers).json() == {"count": 3}

        marked = client.put(f"/notifications/{inbox[0]['id']}/read", headers=headers).json()
        assert marked["notification"]["is_read"] is True
        assert marked["count"] == 2

        deleted = client.delete(f"/notifications/{inbox[1]['id']}", headers=headers).json()
        assert deleted["was_unread"] is True
        assert deleted["count"] == 1

        cleared = client.put("/notifications/read-all", headers=headers).json()
        assert cleared == {"updated": 1, "count": 0}

    def test_foreign_notification_is_404(self, client, db, citizen, make_user, stored_issue):
        _send(db, citizen, stored_issue, 1)
        target = notifications.list_for_user(db, citizen.id)[0]
        intruder = make_user("citizen")

        response = client.put(f"/notifications/{target.id}/read", headers=auth_headers(intruder))
        assert response.status_code == 404

    def test_inbox_requires_login(self, client):
        assert client.get("/notifications").status_code == 401
