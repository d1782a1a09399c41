import pytest

from conftest import JPEG, FakeLLMService, auth
from fixit.database import models
from fixit.llm_service import get_llm_service
from main import app


def proof(name="proof.jpg"):
    return {"image": (name, JPEG, "image/jpeg")}


@pytest.fixture
async def people(make_user):
    return {
        "reporter": await make_user("Reporter"),
        "worker": await make_user("Worker", role="government", department="roads"),
        "stranger": await make_user("Stranger"),
        "admin": await make_user("Admin", role="admin"),
    }


async def test_full_lifecycle(client, people, make_issue, fetch, notifications_for, image_store):
    reporter, worker = people["reporter"], people["worker"]
    issue = await make_issue(reporter, worker)

    started = await client.put(f"/api/issues/{issue.id}/start-work", files=proof(), headers=auth(worker))
    assert started.status_code == 200
    assert started.json()["status"] == "in_progress"
    assert started.json()["workStartedImage"] == "https://img.test/work/1.jpg"

    resolved = await client.put(f"/api/issues/{issue.id}/resolve", files=proof(), headers=auth(worker))
    assert resolved.status_code == 200
    body = resolved.json()
    assert body["status"] == "resolved"
    assert body["resolutionStatus"] == "pending_review"
    assert body["resolutionImage"] == "https://img.test/resolutions/2.jpg"
    # No image model: 85 plus 5 each for the report photo and the work photo
    assert body["aiResolutionScore"] == 95

    approved = await client.put(f"/api/issues/{issue.id}/approve-fix", json={"note": "Fixed well"}, headers=auth(reporter))
    assert approved.status_code == 200
    assert approved.json()["status"] == "closed"
    assert approved.json()["resolutionStatus"] == "verified"
    assert [entry["status"] for entry in approved.json()["statusLogs"]] == [
        "reported",
        "in_progress",
        "resolved",
        "closed",
    ]
    assert approved.json()["statusLogs"][-1]["note"] == "Fixed well"

    assert [folder for folder, _, _ in image_store.uploads] == ["work", "resolutions"]
    assert (await fetch(models.User, reporter.id)).impact_score == 30
    assert [n.title for n in await notifications_for(reporter.id)] == ["Work Started", "Issue Resolved"]
    assert [n.title for n in await notifications_for(worker.id)] == ["Fix Verified"]


async def test_resolution_score_from_model(client, people, make_issue):
    app.dependency_overrides[get_llm_service] = lambda: FakeLLMService(confidence=42)
    issue = await make_issue(people["reporter"], people["worker"], status="in_progress")

    response = await client.put(f"/api/issues/{issue.id}/resolve", files=proof(), headers=auth(people["worker"]))

    assert response.json()["aiResolutionScore"] == 42


async def test_reject_reopens_issue(client, people, make_issue, notifications_for):
    issue = await make_issue(people["reporter"], people["worker"], status="resolved")

    response = await client.put(
        f"/api/issues/{issue.id}/reject-fix", json={"note": "Still broken"}, headers=auth(people["reporter"])
    )

    assert response.status_code == 200
    assert response.json()["status"] == "in_progress"
    assert response.json()["resolutionStatus"] == "rejected"
    [notice] = await notifications_for(people["worker"].id)
    assert notice.type == "alert"


async def test_approve_without_body(client, people, make_issue):
    issue = await make_issue(people["reporter"], people["worker"], status="resolved")

    response = await client.put(f"/api/issues/{issue.id}/approve-fix", headers=auth(people["reporter"]))

    assert response.status_code == 200
    assert response.json()["status"] == "closed"


async def test_second_approval_is_rejected_without_points(client, people, make_issue, fetch):
    issue = await make_issue(people["reporter"], people["worker"], status="resolved")
    url = f"/api/issues/{issue.id}/approve-fix"

    await client.put(url, headers=auth(people["reporter"]))
    again = await client.put(url, headers=auth(people["reporter"]))

    assert again.status_code == 400
    assert again.json()["code"] == "INVALID_TRANSITION"
    assert (await fetch(models.User, people["reporter"].id)).impact_score == 10


async def test_permission_checked_before_proof_image(client, people, make_issue, image_store):
    issue = await make_issue(people["reporter"], people["worker"])

    response = await client.put(f"/api/issues/{issue.id}/start-work", headers=auth(people["stranger"]))

    assert response.status_code == 403
    assert image_store.uploads == []


async def test_start_work_requires_proof_image(client, people, make_issue, fetch):
    issue = await make_issue(people["reporter"], people["worker"])

    response = await client.put(f"/api/issues/{issue.id}/start-work", headers=auth(people["worker"]))

    assert response.status_code == 400
    assert response.json()["detail"] == "Proof image required"
    assert (await fetch(models.Issue, issue.id)).status == "reported"


async def test_wrong_state_is_rejected_before_upload(client, people, make_issue, image_store):
    issue = await make_issue(people["reporter"], people["worker"])

    response = await client.put(f"/api/issues/{issue.id}/resolve", files=proof(), headers=auth(people["worker"]))

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_TRANSITION"
    assert image_store.uploads == []


async def test_worker_cannot_approve_and_reporter_cannot_start(client, people, make_issue):
    resolved = await make_issue(people["reporter"], people["worker"], status="resolved")
    reported = await make_issue(people["reporter"], people["worker"])

    approve = await client.put(f"/api/issues/{resolved.id}/approve-fix", headers=auth(people["worker"]))
    start = await client.put(f"/api/issues/{reported.id}/start-work", files=proof(), headers=auth(people["reporter"]))

    assert approve.status_code == 403
    assert start.status_code == 403


async def test_admin_may_drive_any_edge(client, people, make_issue):
    issue = await make_issue(people["reporter"], people["worker"])

    response = await client.put(f"/api/issues/{issue.id}/start-work", files=proof(), headers=auth(people["admin"]))

    assert response.status_code == 200
    assert response.json()["status"] == "in_progress"


async def test_unauthenticated_transition(client, people, make_issue):
    issue = await make_issue(people["reporter"], people["worker"])

    missing = await client.put(f"/api/issues/{issue.id}/start-work", files=proof())
    invalid = await client.put(
        f"/api/issues/{issue.id}/start-work", files=proof(), headers={"Authorization": "Bearer invalid-token"}
    )

    assert missing.status_code == 401
    assert invalid.status_code == 401
    assert invalid.json()["detail"] == "Invalid token."
