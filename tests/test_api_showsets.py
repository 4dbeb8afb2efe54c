"""
ShowSet API tests.

Covers: CRUD endpoints, identity headers, stage transition endpoints,
error kind -> HTTP status mapping, ETag / If-Match concurrency, activity
and available-actions, plus the health endpoints.
"""

import pytest

BASE = "/api/v1/showsets"

ADMIN = {"X-User-Id": "u-admin", "X-User-Role": "admin", "X-User-Name": "Ada Admin"}
MODELLER = {"X-User-Id": "u-3d", "X-User-Role": "3d_modeller"}
DRAFTER = {"X-User-Id": "u-2d", "X-User-Role": "2d_drafter"}
ENGINEER = {"X-User-Id": "u-eng", "X-User-Role": "engineer"}
CUSTOMER = {"X-User-Id": "u-cust", "X-User-Role": "customer_reviewer"}
COORDINATOR = {"X-User-Id": "u-bim", "X-User-Role": "bim_coordinator"}
VIEWER = {"X-User-Id": "u-view", "X-User-Role": "view_only"}


# ═════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════

def _create(client, showset_id="SS-07-01", **kw):
    body = {"showSetId": showset_id, "area": "311"}
    body.update(kw)
    rv = client.post(BASE, json=body, headers=ADMIN)
    assert rv.status_code == 201, rv.get_json()
    return rv.get_json()


def _post(client, path, headers, **body):
    return client.post(f"{BASE}/SS-07-01{path}", json=body, headers=headers)


def _advance(client, *steps):
    """Run (path, headers) steps that must all succeed; returns the last body."""
    data = None
    for path, headers in steps:
        rv = _post(client, path, headers)
        assert rv.status_code == 200, (path, rv.get_json())
        data = rv.get_json()
    return data


THROUGH_INTEGRATED = (
    ("/stages/screen/start", MODELLER),
    ("/stages/screen/finish", MODELLER),
    ("/stages/structure/start", MODELLER),
    ("/stages/structure/finish", MODELLER),
    ("/stages/integrated/start", MODELLER),
    ("/stages/integrated/finish", MODELLER),
)


# ═════════════════════════════════════════════════════════════════════════
# CRUD
# ═════════════════════════════════════════════════════════════════════════

class TestShowSetCrud:
    def test_create_and_get(self, client):
        created = _create(client)
        assert created["scene"] == "SC07"
        rv = client.get(f"{BASE}/SS-07-01")
        assert rv.status_code == 200
        assert rv.headers["ETag"] == '"1"'
        assert rv.get_json()["stages"]["screen"]["status"] == "not_started"

    def test_create_requires_identity(self, client):
        rv = client.post(BASE, json={"showSetId": "SS-07-01", "area": "311"})
        assert rv.status_code == 401
        assert rv.get_json()["code"] == "UNAUTHENTICATED"

    def test_create_requires_admin(self, client):
        rv = client.post(BASE, json={"showSetId": "SS-07-01", "area": "311"}, headers=MODELLER)
        assert rv.status_code == 403
        assert rv.get_json()["code"] == "FORBIDDEN"

    def test_create_missing_id(self, client):
        rv = client.post(BASE, json={"area": "311"}, headers=ADMIN)
        assert rv.status_code == 400
        assert rv.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_create_invalid(self, client):
        rv = client.post(BASE, json={"showSetId": "bad", "area": "311"}, headers=ADMIN)
        assert rv.status_code == 400
        assert "showSetId" in rv.get_json()["details"]

    def test_create_duplicate(self, client):
        _create(client)
        rv = client.post(BASE, json={"showSetId": "SS-07-01", "area": "311"}, headers=ADMIN)
        assert rv.status_code == 409

    def test_list(self, client):
        _create(client, "SS-07-01")
        _create(client, "SS-09-01", area="312")
        rv = client.get(f"{BASE}?area=312")
        body = rv.get_json()
        assert body["total"] == 1
        assert body["items"][0]["showSetId"] == "SS-09-01"

    def test_get_missing(self, client):
        rv = client.get(f"{BASE}/SS-99-99")
        assert rv.status_code == 404
        assert rv.get_json()["code"] == "NOT_FOUND"

    def test_update_with_if_match(self, client):
        _create(client)
        rv = client.put(f"{BASE}/SS-07-01", json={"area": "312"},
                        headers={**ADMIN, "If-Match": '"1"'})
        assert rv.status_code == 200
        assert rv.get_json()["area"] == "312"
        assert rv.headers["ETag"] == '"2"'

    def test_update_stale_if_match(self, client):
        _create(client)
        rv = client.put(f"{BASE}/SS-07-01", json={"area": "312"},
                        headers={**ADMIN, "If-Match": '"4"'})
        assert rv.status_code == 409
        assert rv.get_json()["details"]["field"] == "row_version"

    def test_malformed_if_match(self, client):
        _create(client)
        rv = client.put(f"{BASE}/SS-07-01", json={"area": "312"},
                        headers={**ADMIN, "If-Match": "abc"})
        assert rv.status_code == 400

    def test_delete(self, client):
        _create(client)
        rv = client.delete(f"{BASE}/SS-07-01", headers=ADMIN)
        assert rv.status_code == 200
        assert rv.get_json() == {"deleted": "SS-07-01"}
        assert client.get(f"{BASE}/SS-07-01").status_code == 404

    def test_update_links(self, client):
        _create(client)
        rv = client.put(f"{BASE}/SS-07-01/links", headers={**COORDINATOR, "If-Match": '"1"'},
                        json={"modelUrl": "https://acc.example.com/m/1"})
        assert rv.status_code == 200
        assert rv.get_json()["links"] == {"modelUrl": "https://acc.example.com/m/1",
                                          "drawingsUrl": None}
        assert rv.headers["ETag"] == '"2"'
        activity = client.get(f"{BASE}/SS-07-01/activity").get_json()["items"]
        assert activity[0]["action"] == "link_update"

    def test_update_links_forbidden(self, client):
        _create(client)
        rv = client.put(f"{BASE}/SS-07-01/links", headers=MODELLER,
                        json={"modelUrl": "https://acc.example.com/m/1"})
        assert rv.status_code == 403
        assert rv.get_json()["code"] == "FORBIDDEN"

    def test_update_links_invalid(self, client):
        _create(client)
        rv = client.put(f"{BASE}/SS-07-01/links", headers=ADMIN, json={"drawingsUrl": "nope"})
        assert rv.status_code == 400
        assert "drawingsUrl" in rv.get_json()["details"]


# ═════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════

class TestTransitions:
    def test_start_and_finish(self, client):
        _create(client)
        data = _advance(client, *THROUGH_INTEGRATED)
        stages = data["showSet"]["stages"]
        assert stages["screen"]["status"] == "complete"
        assert stages["structure"]["status"] == "complete"
        assert stages["integrated"]["status"] == "engineer_review"
        assert data["effects"][0]["kind"] == "status_change"

    def test_full_review_chain(self, client):
        _create(client)
        _advance(client, *THROUGH_INTEGRATED)
        rv = _post(client, "/stages/integrated/approve", ENGINEER, decision="complete")
        assert rv.get_json()["showSet"]["stages"]["integrated"]["status"] == "complete"
        _advance(client, ("/stages/inBim360/start", COORDINATOR),
                 ("/stages/inBim360/finish", COORDINATOR))
        rv = _post(client, "/stages/inBim360/approve", CUSTOMER, decision="complete")
        assert rv.status_code == 200
        _advance(client, ("/stages/drawing2d/start", DRAFTER), ("/stages/drawing2d/finish", DRAFTER))
        rv = _post(client, "/stages/drawing2d/approve", ENGINEER, decision="complete")
        assert rv.get_json()["showSet"]["stages"]["drawing2d"]["status"] == "client_review"
        rv = _post(client, "/stages/drawing2d/approve", CUSTOMER, decision="complete")
        assert rv.get_json()["showSet"]["stages"]["drawing2d"]["status"] == "complete"

    def test_rejection_and_restart_bumps_revit(self, client):
        _create(client)
        _advance(client, *THROUGH_INTEGRATED)
        rv = _post(client, "/stages/integrated/approve", ENGINEER,
                   decision="revision_required", revisionNote="fix clipping")
        integrated = rv.get_json()["showSet"]["stages"]["integrated"]
        assert integrated["status"] == "revision_required"
        assert integrated["revisionNote"] == "fix clipping"
        assert integrated["revisionNoteBy"] == "u-eng"
        rv = _post(client, "/stages/integrated/start", MODELLER)
        body = rv.get_json()
        assert body["showSet"]["revitVersion"] == 2
        assert body["showSet"]["versionHistory"][0]["trigger"] == "revision_cycle"

    def test_skip_version_increment(self, client):
        _create(client)
        _advance(client, *THROUGH_INTEGRATED)
        _post(client, "/stages/integrated/approve", ENGINEER,
              decision="revision_required", revisionNote="x")
        rv = _post(client, "/stages/integrated/start", MODELLER, skipVersionIncrement=True)
        assert rv.get_json()["showSet"]["revitVersion"] == 1

    def test_upstream_revision(self, client):
        _create(client)
        _advance(client, ("/stages/screen/start", MODELLER), ("/stages/screen/finish", MODELLER),
                 ("/stages/structure/start", MODELLER))
        rv = _post(client, "/request-revision", MODELLER, currentStage="structure",
                   targetStages=["screen"], revisionNote="redo layout", revisionNoteLang="zh-TW")
        assert rv.status_code == 200
        body = rv.get_json()
        assert body["showSet"]["stages"]["screen"]["status"] == "revision_required"
        assert body["showSet"]["stages"]["structure"]["status"] == "revision_required"
        assert body["effects"][0]["details"]["language"] == "zh-TW"

    def test_recall(self, client):
        _create(client)
        _advance(client, *THROUGH_INTEGRATED)
        rv = _post(client, "/stages/integrated/recall", MODELLER, targetStage="structure")
        assert rv.status_code == 200
        stages = rv.get_json()["showSet"]["stages"]
        assert stages["structure"]["status"] == "in_progress"
        assert stages["integrated"]["status"] == "revision_required"

    def test_finish_working_context(self, client):
        _create(client)
        _advance(client, ("/stages/screen/start", MODELLER))
        rv = _post(client, "/finish", MODELLER, workingStages=["screen", "structure"])
        assert rv.status_code == 200
        assert rv.get_json()["showSet"]["stages"]["screen"]["status"] == "complete"

    def test_finish_without_mark_complete(self, client):
        _create(client)
        _advance(client, ("/stages/screen/start", MODELLER))
        rv = _post(client, "/stages/screen/finish", MODELLER, markComplete=False)
        body = rv.get_json()
        assert body["showSet"]["stages"]["screen"]["status"] == "in_progress"
        assert body["effects"][0]["kind"] == "work_paused"

    def test_assign_and_override(self, client):
        _create(client)
        rv = _post(client, "/stages/screen/assign", MODELLER, assignee="u-3d")
        assert rv.get_json()["showSet"]["stages"]["screen"]["assignedTo"] == "u-3d"
        rv = _post(client, "/stages/screen/override", ADMIN, status="on_hold")
        assert rv.get_json()["showSet"]["stages"]["screen"]["status"] == "on_hold"

    def test_set_version(self, client):
        _create(client)
        rv = client.put(f"{BASE}/SS-07-01/version", headers=ADMIN,
                        json={"versionType": "drawingVersion", "targetVersion": 3,
                              "reason": {"en": "Client rebase", "zh": "客户重设"}})
        assert rv.status_code == 200
        body = rv.get_json()["showSet"]
        assert body["drawingVersion"] == 3
        assert body["versionHistory"][0]["reason"]["zh"] == "客户重设"

    def test_set_version_flagged_user(self, client):
        _create(client)
        rv = client.put(f"{BASE}/SS-07-01/version",
                        headers={**DRAFTER, "X-Can-Edit-Versions": "true"},
                        json={"versionType": "drawingVersion", "reason": "resubmission"})
        assert rv.status_code == 200
        assert rv.get_json()["showSet"]["drawingVersion"] == 2

    def test_lock_unlock_cycle(self, client):
        _create(client)
        _advance(client, ("/stages/screen/start", MODELLER), ("/stages/screen/finish", MODELLER))
        assert _post(client, "/lock", ADMIN, reason="frozen").status_code == 200
        rv = _post(client, "/stages/structure/start", MODELLER)
        assert rv.status_code == 423
        assert rv.get_json()["code"] == "LOCKED"
        rv = _post(client, "/unlock", ADMIN, stagesToReset=["screen"], reason="redo")
        assert rv.status_code == 200
        assert rv.get_json()["showSet"]["stages"]["screen"]["status"] == "revision_required"
        assert rv.get_json()["showSet"]["lockedAt"] is None


# ═════════════════════════════════════════════════════════════════════════
# Error mapping
# ═════════════════════════════════════════════════════════════════════════

class TestErrorMapping:
    @pytest.fixture(autouse=True)
    def _showset(self, client):
        _create(client)

    def test_forbidden(self, client):
        rv = _post(client, "/stages/screen/start", DRAFTER)
        assert rv.status_code == 403
        body = rv.get_json()
        assert body["code"] == "FORBIDDEN"
        assert body["details"]["stage"] == "screen"

    def test_invalid_status_for_role(self, client):
        rv = _post(client, "/stages/screen/start", ENGINEER)
        assert rv.status_code == 403
        assert rv.get_json()["code"] == "INVALID_STATUS_FOR_ROLE"

    def test_invalid_transition(self, client):
        rv = _post(client, "/stages/structure/start", MODELLER)
        assert rv.status_code == 409
        body = rv.get_json()
        assert body["code"] == "INVALID_TRANSITION"
        assert body["details"]["blockedBy"] == ["screen"]

    def test_missing_revision_note(self, client):
        _advance(client, *THROUGH_INTEGRATED)
        rv = _post(client, "/stages/integrated/approve", ENGINEER, decision="revision_required")
        assert rv.status_code == 400
        assert rv.get_json()["code"] == "MISSING_REVISION_NOTE"

    def test_version_not_monotonic(self, client):
        rv = client.put(f"{BASE}/SS-07-01/version", headers=ADMIN,
                        json={"versionType": "screenVersion", "targetVersion": 1})
        assert rv.status_code == 422
        assert rv.get_json()["code"] == "VERSION_NOT_MONOTONIC"

    def test_set_version_forbidden(self, client):
        rv = client.put(f"{BASE}/SS-07-01/version", headers=MODELLER,
                        json={"versionType": "screenVersion"})
        assert rv.status_code == 403

    def test_unknown_version_type(self, client):
        rv = client.put(f"{BASE}/SS-07-01/version", headers=ADMIN, json={"versionType": "paint"})
        assert rv.status_code == 400

    def test_unknown_stage(self, client):
        rv = _post(client, "/stages/lighting/start", ADMIN)
        assert rv.status_code == 400
        assert "stage" in rv.get_json()["details"]

    def test_unknown_decision(self, client):
        rv = _post(client, "/stages/integrated/approve", ENGINEER, decision="maybe")
        assert rv.status_code == 400

    def test_unsupported_language(self, client):
        rv = _post(client, "/request-revision", MODELLER, currentStage="structure",
                   targetStages=["screen"], revisionNote="x", revisionNoteLang="fr")
        assert rv.status_code == 400

    @pytest.mark.parametrize("path,body", [
        ("/request-revision", {"currentStage": "structure", "targetStages": ["screen"],
                               "revisionNote": 5}),
        ("/stages/integrated/approve", {"decision": "revision_required",
                                        "revisionNote": ["fix", "clipping"]}),
        ("/stages/integrated/recall", {"targetStage": "integrated", "startWork": False,
                                       "revisionNote": {"en": "redo"}}),
        ("/stages/screen/override", {"status": "on_hold", "revisionNote": 7}),
        ("/lock", {"reason": 12}),
        ("/unlock", {"reason": True}),
    ])
    def test_non_string_text_rejected(self, client, path, body):
        rv = client.post(f"{BASE}/SS-07-01{path}", json=body, headers=ADMIN)
        assert rv.status_code == 400
        assert rv.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_non_string_version_reason_rejected(self, client):
        rv = client.put(f"{BASE}/SS-07-01/version", headers=ADMIN,
                        json={"versionType": "screenVersion", "reason": 3})
        assert rv.status_code == 400

    @pytest.mark.parametrize("body", [{}, {"reason": "   "}, {"stagesToReset": []}])
    def test_unlock_requires_reason(self, client, body):
        assert _post(client, "/lock", ADMIN, reason="frozen").status_code == 200
        rv = client.post(f"{BASE}/SS-07-01/unlock", json=body, headers=ADMIN)
        assert rv.status_code == 400
        assert rv.get_json()["code"] == "ERR_VALIDATION_REQUIRED"
        assert client.get(f"{BASE}/SS-07-01").get_json()["lockedAt"] is not None

    def test_recall_without_starting_work_needs_note(self, client):
        _advance(client, *THROUGH_INTEGRATED)
        rv = _post(client, "/stages/integrated/recall", MODELLER, targetStage="integrated",
                   startWork=False)
        assert rv.status_code == 400
        assert rv.get_json()["code"] == "MISSING_REVISION_NOTE"

    def test_engineer_cannot_recall(self, client):
        _advance(client, *THROUGH_INTEGRATED)
        rv = _post(client, "/stages/integrated/recall", ENGINEER, targetStage="screen",
                   startWork=False, revisionNote="redo")
        assert rv.status_code == 403
        assert rv.get_json()["code"] == "INVALID_STATUS_FOR_ROLE"

    def test_stale_if_match_on_transition(self, client):
        rv = client.post(f"{BASE}/SS-07-01/stages/screen/start",
                         headers={**MODELLER, "If-Match": '"9"'})
        assert rv.status_code == 409
        assert rv.get_json()["code"] == "CONFLICT"

    def test_if_match_wildcard(self, client):
        rv = client.post(f"{BASE}/SS-07-01/stages/screen/start",
                         headers={**MODELLER, "If-Match": "*"})
        assert rv.status_code == 200
        assert rv.headers["ETag"] == '"2"'

    def test_view_only(self, client):
        rv = _post(client, "/stages/screen/assign", VIEWER, assignee="u-1")
        assert rv.status_code == 403

    def test_missing_identity_on_transition(self, client):
        rv = client.post(f"{BASE}/SS-07-01/stages/screen/start", json={})
        assert rv.status_code == 401

    def test_unknown_role_is_read_only(self, client):
        rv = _post(client, "/stages/screen/start", {"X-User-Id": "u-x", "X-User-Role": "intern"})
        assert rv.status_code == 403


# ═════════════════════════════════════════════════════════════════════════
# Activity & available actions
# ═════════════════════════════════════════════════════════════════════════

class TestActivityAndActions:
    def test_activity_trail(self, client):
        _create(client)
        _advance(client, ("/stages/screen/start", MODELLER))
        rv = client.get(f"{BASE}/SS-07-01/activity")
        body = rv.get_json()
        assert body["total"] == 2
        assert [i["action"] for i in body["items"]] == ["status_change", "showset_created"]

    def test_available_actions(self, client):
        _create(client)
        rv = client.get(f"{BASE}/SS-07-01/available-actions", headers=MODELLER)
        assert rv.status_code == 200
        body = rv.get_json()
        assert body["currentStage"] == "screen"
        assert body["rowVersion"] == 1
        assert "start" in body["stages"]["screen"]

    def test_available_actions_requires_identity(self, client):
        _create(client)
        assert client.get(f"{BASE}/SS-07-01/available-actions").status_code == 401


class TestHealth:
    def test_short_health(self, client):
        rv = client.get("/api/v1/health")
        assert rv.status_code == 200
        assert rv.get_json()["status"] == "ok"

    def test_live(self, client):
        rv = client.get("/api/v1/health/live")
        assert rv.status_code == 200
        body = rv.get_json()
        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["workflow"]["variant"] == "standard"

    def test_request_id_header(self, client):
        rv = client.get("/api/v1/health/ready", headers={"X-Request-ID": "abc123"})
        assert rv.headers["X-Request-ID"] == "abc123"
