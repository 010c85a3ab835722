"""
Tests — Daily pills, check-ins, score and leaderboard.
"""

from datetime import date
from types import SimpleNamespace

import pytest

from oris.core.exceptions import ConflictError, ValidationError
from oris.models import db
from oris.models.daily import Checkin, Pill
from oris.services import daily_service

DAY = date(2024, 6, 15)


@pytest.fixture()
def pills():
    rows = [Pill(title=f"Pill {i}", description="Drink water", points=i * 10) for i in range(1, 7)]
    db.session.add_all(rows)
    db.session.commit()
    return rows


class TestSelection:

    def test_same_user_and_day_is_stable(self):
        catalogue = [SimpleNamespace(id=i) for i in range(1, 11)]
        first = daily_service.select_daily_pills(7, DAY, catalogue)
        second = daily_service.select_daily_pills(7, DAY, list(reversed(catalogue)))
        assert [p.id for p in first] == [p.id for p in second]
        assert len(first) == 3

    def test_subset_of_catalogue_without_duplicates(self):
        catalogue = [SimpleNamespace(id=i) for i in range(1, 11)]
        chosen = daily_service.select_daily_pills(7, DAY, catalogue, k=5)
        ids = [p.id for p in chosen]
        assert len(set(ids)) == 5
        assert set(ids) <= set(range(1, 11))

    def test_small_catalogue(self):
        catalogue = [SimpleNamespace(id=1), SimpleNamespace(id=2)]
        assert len(daily_service.select_daily_pills(1, DAY, catalogue)) == 2

    def test_varies_across_days(self):
        catalogue = [SimpleNamespace(id=i) for i in range(1, 21)]
        selections = {
            tuple(p.id for p in daily_service.select_daily_pills(7, date(2024, 6, d), catalogue))
            for d in range(1, 11)
        }
        assert len(selections) > 1


class TestCheckin:

    def test_points_come_from_catalogue(self, user, pills):
        today = daily_service.get_daily_pills(user.id, DAY)
        tasks = [
            {"id": today[0].id, "completed": True, "points": 9999},
            {"id": today[1].id, "completed": False},
        ]
        checkin, refreshed = daily_service.complete_checkin(user.id, tasks, day=DAY)

        assert checkin.points_earned == today[0].points
        assert refreshed.score == today[0].points

    def test_second_checkin_same_day(self, user, pills):
        today = daily_service.get_daily_pills(user.id, DAY)
        tasks = [{"id": today[0].id, "completed": True}]
        daily_service.complete_checkin(user.id, tasks, day=DAY)
        with pytest.raises(ConflictError):
            daily_service.complete_checkin(user.id, tasks, day=DAY)
        assert Checkin.query.count() == 1

    def test_pill_outside_todays_selection(self, user, pills):
        today_ids = {p.id for p in daily_service.get_daily_pills(user.id, DAY)}
        foreign = next(p for p in pills if p.id not in today_ids)
        with pytest.raises(ValidationError) as exc:
            daily_service.complete_checkin(user.id, [{"id": foreign.id, "completed": True}], day=DAY)
        assert "tasks[0].id" in exc.value.details

    def test_completed_must_be_bool(self, user, pills):
        pill = daily_service.get_daily_pills(user.id, DAY)[0]
        with pytest.raises(ValidationError) as exc:
            daily_service.complete_checkin(user.id, [{"id": pill.id, "completed": "yes"}], day=DAY)
        assert "tasks[0].completed" in exc.value.details

    def test_tasks_must_be_list(self, user):
        with pytest.raises(ValidationError):
            daily_service.complete_checkin(user.id, {"id": 1}, day=DAY)


class TestRanking:

    def test_rank_counts_strictly_higher_scores(self, user, other_user, make_user):
        user.score = 50
        other_user.score = 80
        make_user(name="Hugo Tie", email="hugo@example.com", score=50)
        db.session.commit()

        assert daily_service.score_and_rank(user.id) == {"score": 50, "rank": 2}
        assert daily_service.score_and_rank(other_user.id)["rank"] == 1

    def test_leaderboard_order(self, user, other_user):
        user.score = 10
        other_user.score = 30
        db.session.commit()
        board = daily_service.leaderboard()
        assert [row["id"] for row in board] == [other_user.id, user.id]


class TestDailyAPI:

    def test_tasks_then_checkin(self, client, auth_headers, pills):
        body = client.get("/api/v1/daily/tasks", headers=auth_headers).get_json()
        assert body["checked_in"] is False
        assert len(body["tasks"]) == 3

        first = body["tasks"][0]
        res = client.post(
            "/api/v1/daily/checkin",
            json={"tasks": [{"id": first["id"], "completed": True}]},
            headers=auth_headers,
        )
        assert res.status_code == 201
        assert res.get_json()["points_earned"] == first["points"]

        body = client.get("/api/v1/daily/tasks", headers=auth_headers).get_json()
        assert body["checked_in"] is True
        assert [t["completed"] for t in body["tasks"]] == [True, False, False]

    def test_duplicate_checkin_is_409(self, client, auth_headers, pills):
        task_id = client.get("/api/v1/daily/tasks", headers=auth_headers).get_json()["tasks"][0]["id"]
        payload = {"tasks": [{"id": task_id, "completed": True}]}
        client.post("/api/v1/daily/checkin", json=payload, headers=auth_headers)
        res = client.post("/api/v1/daily/checkin", json=payload, headers=auth_headers)
        assert res.status_code == 409

    def test_score_history_leaderboard(self, client, auth_headers, user):
        assert client.get("/api/v1/daily/score", headers=auth_headers).get_json() == {"score": 0, "rank": 1}
        assert client.get("/api/v1/daily/checkin/history", headers=auth_headers).get_json() == []
        board = client.get("/api/v1/daily/leaderboard", headers=auth_headers).get_json()
        assert board[0]["id"] == user.id
