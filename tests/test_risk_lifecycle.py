"""
ORIS Backend
Tests — Risk lifecycle engine.

Coverage:
  - RiskReport creation, validation and the creation audit entry
  - ActionPlan creation and the Open → InTreatment transition
  - Completion cascade (last plan resolves the risk) and its failure path
  - Manual status override, deletion guard
  - Status / last-history-entry invariant across every operation
  - HTTP surface: auth, validation envelope, filters
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from unittest.mock import patch

import pytest

from oris.core.exceptions import (
    NotFoundError,
    PermissionDenied,
    ReferentialIntegrityError,
    ValidationError,
)
from oris.models import db
from oris.models.notification import Notification
from oris.models.risk import (
    ActionPlan,
    ActionPlanHistoryLog,
    ActionPlanStatus,
    RiskHistoryLog,
    RiskPriority,
    RiskReport,
    RiskStatus,
)
from oris.services import risk_lifecycle


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def _risk_data(**overrides):
    data = {
        "title": "Loose cable in corridor",
        "description": "Exposed power cable near the main stairs",
        "category": "Infraestrutura",
        "location": "Block A",
        "priority": "Alta",
    }
    data.update(overrides)
    return data


def _plan_data(risk, responsible, **overrides):
    data = {
        "risk_id": risk.id,
        "responsible": responsible.id,
        "description": "Secure the cable with a floor channel",
        "deadline": (date.today() + timedelta(days=7)).isoformat(),
    }
    data.update(overrides)
    return data


def _assert_invariants(entity):
    db.session.refresh(entity)
    assert entity.history_logs, "history must never be empty"
    assert entity.status == entity.history_logs[-1].status
    if isinstance(entity, RiskReport):
        assert entity.history_logs[0].status == RiskStatus.OPEN


# ═══════════════════════════════════════════════════════════════════════════
#  create_risk
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateRisk:

    def test_creates_open_with_single_audit_entry(self, user):
        risk = risk_lifecycle.create_risk(_risk_data(), user.id)

        assert risk.status == RiskStatus.OPEN
        assert len(risk.history_logs) == 1
        log = risk.history_logs[0]
        assert log.status == RiskStatus.OPEN
        assert log.updated_by == user.id
        assert log.comment == "created"
        _assert_invariants(risk)

    def test_accepts_english_member_names(self, user):
        risk = risk_lifecycle.create_risk(
            _risk_data(category="ENVIRONMENTAL", priority="medium"), user.id,
        )
        assert risk.priority == RiskPriority.MEDIUM
        assert risk.to_dict()["category"] == "Ambiental"

    @pytest.mark.parametrize("field,value", [
        ("title", "Shrt"),
        ("title", "x" * 101),
        ("description", "too short"),
        ("category", "Volcanic"),
        ("priority", "Urgent"),
        ("location", "   "),
    ])
    def test_rejects_invalid_fields_before_persisting(self, user, field, value):
        with pytest.raises(ValidationError) as exc:
            risk_lifecycle.create_risk(_risk_data(**{field: value}), user.id)
        assert field in exc.value.details
        assert RiskReport.query.count() == 0

    def test_missing_fields_reported_together(self, user):
        with pytest.raises(ValidationError) as exc:
            risk_lifecycle.create_risk({}, user.id)
        assert {"title", "description", "category", "location", "priority"} <= set(exc.value.details)

    def test_assigned_to_must_exist(self, user):
        with pytest.raises(ValidationError) as exc:
            risk_lifecycle.create_risk(_risk_data(assigned_to=9999), user.id)
        assert "assigned_to" in exc.value.details

    def test_too_many_evidence_files(self, user):
        files = [{"url": f"http://x/{i}", "name": f"{i}.png", "type": "image/png"} for i in range(6)]
        with pytest.raises(ValidationError):
            risk_lifecycle.create_risk(_risk_data(), user.id, evidence_files=files)

    def test_critical_risk_notifies_every_admin(self, user, admin, make_user):
        second_admin = make_user(name="Dora Admin", email="dora@example.com", role="admin")
        risk = risk_lifecycle.create_risk(_risk_data(priority="Crítica"), user.id)

        notifs = Notification.query.filter_by(event="newCriticalRisk").all()
        assert {n.recipient_id for n in notifs} == {admin.id, second_admin.id}
        assert all(n.entity_id == risk.id for n in notifs)

    def test_non_critical_risk_notifies_nobody(self, user, admin):
        risk_lifecycle.create_risk(_risk_data(priority="Baixa"), user.id)
        assert Notification.query.count() == 0

    def test_notification_failure_does_not_fail_creation(self, user, admin):
        with patch("oris.services.notification.Notification", side_effect=RuntimeError("room down")):
            risk = risk_lifecycle.create_risk(_risk_data(priority="Crítica"), user.id)
        assert db.session.get(RiskReport, risk.id) is not None
        assert Notification.query.count() == 0


# ═══════════════════════════════════════════════════════════════════════════
#  create_action_plan
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateActionPlan:

    def test_scenario_a_first_plan_moves_risk_to_in_treatment(self, user, other_user):
        risk = risk_lifecycle.create_risk(_risk_data(priority="Alta"), user.id)
        assert risk.status == RiskStatus.OPEN
        assert len(risk.history_logs) == 1

        risk_lifecycle.create_action_plan(_plan_data(risk, other_user), user.id)

        db.session.refresh(risk)
        assert risk.status == RiskStatus.IN_TREATMENT
        assert len(risk.history_logs) == 2
        entry = risk.history_logs[1]
        assert entry.updated_by == user.id
        assert entry.comment == "auto-transitioned on first action plan"
        _assert_invariants(risk)

    def test_second_plan_does_not_duplicate_transition(self, user, other_user):
        risk = risk_lifecycle.create_risk(_risk_data(), user.id)
        risk_lifecycle.create_action_plan(_plan_data(risk, other_user), user.id)
        risk_lifecycle.create_action_plan(_plan_data(risk, other_user), user.id)

        db.session.refresh(risk)
        assert risk.status == RiskStatus.IN_TREATMENT
        assert len(risk.history_logs) == 2

    def test_creation_entry_attributed_to_responsible(self, user, other_user):
        risk = risk_lifecycle.create_risk(_risk_data(), user.id)
        plan = risk_lifecycle.create_action_plan(_plan_data(risk, other_user), user.id)

        assert plan.status == ActionPlanStatus.PENDING
        assert len(plan.history_logs) == 1
        assert plan.history_logs[0].updated_by == other_user.id
        assert plan.history_logs[0].comment == "created"

    def test_unknown_risk_is_not_found(self, user):
        data = {
            "risk_id": 424242,
            "responsible": user.id,
            "description": "Secure the cable with a floor channel",
            "deadline": date.today().isoformat(),
        }
        with pytest.raises(NotFoundError):
            risk_lifecycle.create_action_plan(data, user.id)
        assert ActionPlan.query.count() == 0

    def test_cancelled_risk_is_not_reopened(self, user, other_user):
        risk = risk_lifecycle.create_risk(_risk_data(), user.id)
        risk_lifecycle.update_risk_status(risk.id, "Cancelado", "duplicate report", user.id)
        risk_lifecycle.create_action_plan(_plan_data(risk, other_user), user.id)

        db.session.refresh(risk)
        assert risk.status == RiskStatus.CANCELLED

    @pytest.mark.parametrize("field,value", [
        ("deadline", "next week"),
        ("description", "short"),
        ("responsible", 9999),
    ])
    def test_invalid_fields(self, user, field, value):
        risk = risk_lifecycle.create_risk(_risk_data(), user.id)
        data = _plan_data(risk, user)
        data[field] = value
        with pytest.raises(ValidationError) as exc:
            risk_lifecycle.create_action_plan(data, user.id)
        assert field in exc.value.details
        assert ActionPlan.query.count() == 0
        db.session.refresh(risk)
        assert risk.status == RiskStatus.OPEN


# ═══════════════════════════════════════════════════════════════════════════
#  Completion cascade
# ═══════════════════════════════════════════════════════════════════════════

class TestCompletionCascade:

    def _risk_with_plans(self, user, responsible, count=2):
        risk = risk_lifecycle.create_risk(_risk_data(), user.id)
        plans = [
            risk_lifecycle.create_action_plan(_plan_data(risk, responsible), user.id)
            for _ in range(count)
        ]
        return risk, plans

    def test_scenario_b_last_completion_resolves_risk(self, user, other_user):
        risk, (first, second) = self._risk_with_plans(user, other_user)

        risk_lifecycle.update_action_plan_status(first.id, "Concluído", None, other_user.id)
        db.session.refresh(risk)
        assert risk.status == RiskStatus.IN_TREATMENT
        logs_before = len(risk.history_logs)

        risk_lifecycle.update_action_plan_status(second.id, "COMPLETED", "done", other_user.id)
        db.session.refresh(risk)
        assert risk.status == RiskStatus.RESOLVED
        assert len(risk.history_logs) == logs_before + 1
        synthetic = risk.history_logs[-1]
        assert synthetic.updated_by == other_user.id
        assert synthetic.comment == "auto-resolved after all action plans completed"
        _assert_invariants(risk)
        _assert_invariants(second)

    def test_in_progress_sibling_blocks_resolution(self, user, other_user):
        risk, (first, second) = self._risk_with_plans(user, other_user)
        risk_lifecycle.update_action_plan_status(second.id, "Em Andamento", None, user.id)
        risk_lifecycle.update_action_plan_status(first.id, "Concluído", None, user.id)

        db.session.refresh(risk)
        assert risk.status == RiskStatus.IN_TREATMENT

    def test_same_status_is_plain_update(self, user, other_user):
        _, (plan,) = self._risk_with_plans(user, other_user, count=1)
        risk_lifecycle.update_action_plan_status(plan.id, "Pendente", "still waiting", user.id)

        db.session.refresh(plan)
        assert len(plan.history_logs) == 1

    def test_default_comment_names_new_status(self, user, other_user):
        _, (plan,) = self._risk_with_plans(user, other_user, count=1)
        risk_lifecycle.update_action_plan_status(plan.id, "Em Andamento", None, user.id)

        db.session.refresh(plan)
        assert plan.history_logs[-1].comment == "Status changed to Em Andamento"
        assert plan.history_logs[-1].updated_by == user.id

    def test_short_comment_rejected(self, user, other_user):
        _, (plan,) = self._risk_with_plans(user, other_user, count=1)
        with pytest.raises(ValidationError) as exc:
            risk_lifecycle.update_action_plan_status(plan.id, "Concluído", "ok", user.id)
        assert "comment" in exc.value.details
        db.session.refresh(plan)
        assert plan.status == ActionPlanStatus.PENDING

    def test_cascade_failure_keeps_completed_plan(self, user, other_user, caplog):
        risk, (plan,) = self._risk_with_plans(user, other_user, count=1)

        with patch.object(risk_lifecycle, "_resolve_parent_risk", side_effect=RuntimeError("db gone")):
            with caplog.at_level(logging.ERROR, logger="oris.services.risk_lifecycle"):
                result = risk_lifecycle.update_action_plan_status(plan.id, "Concluído", None, user.id)

        assert result.status == ActionPlanStatus.COMPLETED
        db.session.refresh(risk)
        assert risk.status == RiskStatus.IN_TREATMENT
        assert db.session.get(ActionPlan, plan.id).status == ActionPlanStatus.COMPLETED
        record = next(r for r in caplog.records if "ascade" in r.getMessage())
        assert (record.risk_id, record.action_plan_id) == (risk.id, plan.id)

    def test_manual_resolve_does_not_touch_plans(self, user, other_user):
        risk, plans = self._risk_with_plans(user, other_user)
        risk_lifecycle.update_risk_status(risk.id, "Resolvido", "handled offline", user.id)

        for plan in plans:
            db.session.refresh(plan)
            assert plan.status == ActionPlanStatus.PENDING
        _assert_invariants(risk)


# ═══════════════════════════════════════════════════════════════════════════
#  update_risk / update_risk_status / update_action_plan
# ═══════════════════════════════════════════════════════════════════════════

class TestUpdates:

    def test_update_risk_status_same_status_adds_nothing(self, user):
        risk = risk_lifecycle.create_risk(_risk_data(), user.id)
        risk_lifecycle.update_risk_status(risk.id, "Aberto", None, user.id)
        db.session.refresh(risk)
        assert len(risk.history_logs) == 1

    def test_update_risk_status_invalid_enum(self, user):
        risk = risk_lifecycle.create_risk(_risk_data(), user.id)
        with pytest.raises(ValidationError):
            risk_lifecycle.update_risk_status(risk.id, "Closed", None, user.id)

    def test_update_risk_status_unknown_risk(self, user):
        with pytest.raises(NotFoundError):
            risk_lifecycle.update_risk_status(999, "Resolvido", None, user.id)

    def test_reclassified_critical_notifies_admins(self, user, admin):
        risk = risk_lifecycle.create_risk(_risk_data(priority="Baixa"), user.id)
        risk_lifecycle.update_risk(risk.id, {"priority": "CRITICAL"}, user.id)

        notif = Notification.query.filter_by(event="riskReclassifiedAsCritical").one()
        assert notif.recipient_id == admin.id

    def test_status_change_notifies_assignee(self, user, other_user):
        risk = risk_lifecycle.create_risk(_risk_data(assigned_to=other_user.id), user.id)
        risk_lifecycle.update_risk(risk.id, {"status": "Em Tratamento", "comment": "crew on site"}, user.id)

        notif = Notification.query.filter_by(event="riskStatusChanged").one()
        assert notif.recipient_id == other_user.id
        assert notif.payload["previous_status"] == "Aberto"
        db.session.refresh(risk)
        assert risk.history_logs[-1].comment == "crew on site"
        _assert_invariants(risk)

    def test_update_risk_appends_evidence(self, user):
        first = {"url": "http://x/1.png", "name": "1.png", "type": "image/png"}
        second = {"url": "http://x/2.png", "name": "2.png", "type": "image/png"}
        risk = risk_lifecycle.create_risk(_risk_data(), user.id, evidence_files=[first])
        risk_lifecycle.update_risk(risk.id, {"title": "Loose cable fixed?"}, user.id, evidence_files=[second])

        db.session.refresh(risk)
        assert risk.evidence_files == [first, second]
        assert risk.title == "Loose cable fixed?"

    def test_action_plan_risk_id_is_immutable(self, user, other_user):
        risk = risk_lifecycle.create_risk(_risk_data(), user.id)
        other_risk = risk_lifecycle.create_risk(_risk_data(title="Wet floor in kitchen"), user.id)
        plan = risk_lifecycle.create_action_plan(_plan_data(risk, other_user), user.id)

        with pytest.raises(ValidationError) as exc:
            risk_lifecycle.update_action_plan(plan.id, {"risk_id": other_risk.id}, user.id)
        assert "risk_id" in exc.value.details
        db.session.refresh(plan)
        assert plan.risk_id == risk.id

    def test_update_action_plan_fields_and_status(self, user, other_user):
        risk = risk_lifecycle.create_risk(_risk_data(), user.id)
        plan = risk_lifecycle.create_action_plan(_plan_data(risk, other_user), user.id)
        new_deadline = date.today() + timedelta(days=30)

        risk_lifecycle.update_action_plan(
            plan.id,
            {"deadline": new_deadline.isoformat(), "status": "Concluído", "responsible": user.id},
            user.id,
        )
        db.session.refresh(plan)
        db.session.refresh(risk)
        assert plan.deadline == new_deadline
        assert plan.responsible_id == user.id
        assert plan.status == ActionPlanStatus.COMPLETED
        assert risk.status == RiskStatus.RESOLVED

    def test_history_rows_are_append_only(self, user):
        risk = risk_lifecycle.create_risk(_risk_data(), user.id)
        log = risk.history_logs[0]
        log.comment = "rewritten"
        with pytest.raises(RuntimeError):
            db.session.commit()
        db.session.rollback()

    def test_plan_history_rows_are_append_only(self, user):
        risk = risk_lifecycle.create_risk(_risk_data(), user.id)
        plan = risk_lifecycle.create_action_plan(_plan_data(risk, user), user.id)
        log = db.session.get(ActionPlanHistoryLog, plan.history_logs[0].id)
        log.comment = "rewritten"
        with pytest.raises(RuntimeError):
            db.session.commit()
        db.session.rollback()


# ═══════════════════════════════════════════════════════════════════════════
#  delete_risk
# ═══════════════════════════════════════════════════════════════════════════

class TestDeleteRisk:

    def test_scenario_c_delete_with_plan_is_rejected(self, user, admin, other_user):
        risk = risk_lifecycle.create_risk(_risk_data(), user.id)
        plan = risk_lifecycle.create_action_plan(_plan_data(risk, other_user), user.id)
        before = (risk.status, len(risk.history_logs), plan.status, len(plan.history_logs))

        with pytest.raises(ReferentialIntegrityError) as exc:
            risk_lifecycle.delete_risk(risk.id, admin.id, is_admin=True)
        assert exc.value.count == 1

        db.session.refresh(risk)
        db.session.refresh(plan)
        assert (risk.status, len(risk.history_logs), plan.status, len(plan.history_logs)) == before

    def test_delete_without_plans_removes_history(self, user, admin):
        risk = risk_lifecycle.create_risk(_risk_data(), user.id)
        risk_id = risk.id
        risk_lifecycle.delete_risk(risk_id, admin.id, is_admin=True)

        assert db.session.get(RiskReport, risk_id) is None
        assert RiskHistoryLog.query.filter_by(risk_id=risk_id).count() == 0

    def test_non_admin_cannot_delete(self, user):
        risk = risk_lifecycle.create_risk(_risk_data(), user.id)
        with pytest.raises(PermissionDenied):
            risk_lifecycle.delete_risk(risk.id, user.id, is_admin=False)
        assert db.session.get(RiskReport, risk.id) is not None


# ═══════════════════════════════════════════════════════════════════════════
#  Queries
# ═══════════════════════════════════════════════════════════════════════════

class TestQueries:

    def test_list_risks_filters(self, user, other_user):
        risk_lifecycle.create_risk(_risk_data(priority="Baixa", location="Block A"), user.id)
        risk_lifecycle.create_risk(_risk_data(priority="Alta", location="Block B"), other_user.id)

        assert risk_lifecycle.list_risks({"priority": "Alta"}).count() == 1
        assert risk_lifecycle.list_risks({"location": "Block A"}).count() == 1
        assert risk_lifecycle.list_risks({"reporter": str(other_user.id)}).count() == 1
        assert risk_lifecycle.list_risks({"status": "Aberto"}).count() == 2

    def test_list_risks_invalid_filter(self):
        with pytest.raises(ValidationError):
            risk_lifecycle.list_risks({"status": "Nope"})

    def test_list_risks_sorting(self, user):
        risk_lifecycle.create_risk(_risk_data(title="Bravo hazard"), user.id)
        risk_lifecycle.create_risk(_risk_data(title="Alpha hazard"), user.id)

        titles = [r.title for r in risk_lifecycle.list_risks({"sort_by": "title", "sort_order": "asc"})]
        assert titles == ["Alpha hazard", "Bravo hazard"]

    def test_list_action_plans_deadline_window(self, user):
        risk = risk_lifecycle.create_risk(_risk_data(), user.id)
        soon = date.today() + timedelta(days=2)
        later = date.today() + timedelta(days=40)
        risk_lifecycle.create_action_plan(_plan_data(risk, user, deadline=soon.isoformat()), user.id)
        risk_lifecycle.create_action_plan(_plan_data(risk, user, deadline=later.isoformat()), user.id)

        q = risk_lifecycle.list_action_plans({"deadline_end": (date.today() + timedelta(days=7)).isoformat()})
        assert [p.deadline for p in q] == [soon]
        assert risk_lifecycle.list_action_plans({"risk_id": risk.id}).count() == 2


# ═══════════════════════════════════════════════════════════════════════════
#  HTTP surface
# ═══════════════════════════════════════════════════════════════════════════

class TestRiskAPI:

    def test_requires_authentication(self, client):
        res = client.get("/api/v1/risks")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_create_and_get(self, client, auth_headers):
        res = client.post("/api/v1/risks", json=_risk_data(), headers=auth_headers)
        assert res.status_code == 201
        body = res.get_json()
        assert body["status"] == "Aberto"
        assert len(body["history_logs"]) == 1

        res = client.get(f"/api/v1/risks/{body['id']}", headers=auth_headers)
        assert res.status_code == 200
        assert res.get_json()["action_plans"] == []

    def test_validation_error_envelope(self, client, auth_headers):
        res = client.post("/api/v1/risks", json=_risk_data(title="x"), headers=auth_headers)
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert "title" in body["details"]

    def test_unknown_risk_is_404(self, client, auth_headers):
        res = client.get("/api/v1/risks/999", headers=auth_headers)
        assert res.status_code == 404

    def test_delete_requires_admin(self, client, auth_headers, user):
        risk = risk_lifecycle.create_risk(_risk_data(), user.id)
        res = client.delete(f"/api/v1/risks/{risk.id}", headers=auth_headers)
        assert res.status_code == 403

    def test_delete_with_plans_is_409(self, client, admin_headers, user):
        risk = risk_lifecycle.create_risk(_risk_data(), user.id)
        risk_lifecycle.create_action_plan(_plan_data(risk, user), user.id)
        res = client.delete(f"/api/v1/risks/{risk.id}", headers=admin_headers)
        assert res.status_code == 409
        assert res.get_json()["details"] == {"dependent": "ActionPlan", "count": 1}

    def test_plan_flow_over_http(self, client, auth_headers, user):
        risk_id = client.post("/api/v1/risks", json=_risk_data(), headers=auth_headers).get_json()["id"]
        res = client.post(
            "/api/v1/action-plans",
            json={
                "riskId": risk_id,
                "responsible": user.id,
                "description": "Secure the cable with a floor channel",
                "deadline": (date.today() + timedelta(days=7)).isoformat(),
            },
            headers=auth_headers,
        )
        assert res.status_code == 201
        plan_id = res.get_json()["id"]

        res = client.patch(
            f"/api/v1/action-plans/{plan_id}/status",
            json={"status": "Concluído", "comment": "cable secured"},
            headers=auth_headers,
        )
        assert res.status_code == 200
        assert res.get_json()["status"] == "Concluído"

        risk = client.get(f"/api/v1/risks/{risk_id}", headers=auth_headers).get_json()
        assert risk["status"] == "Resolvido"
        assert [h["status"] for h in risk["history_logs"]] == ["Aberto", "Em Tratamento", "Resolvido"]

    def test_list_paginates(self, client, auth_headers, user):
        for i in range(3):
            risk_lifecycle.create_risk(_risk_data(title=f"Hazard number {i}"), user.id)
        res = client.get("/api/v1/risks?limit=2", headers=auth_headers)
        body = res.get_json()
        assert body["total"] == 3
        assert len(body["items"]) == 2
