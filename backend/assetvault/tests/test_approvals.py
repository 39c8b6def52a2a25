import itertools
import threading

import pytest

from assetvault import models
from assetvault.audit import AuditLedger
from assetvault.errors import InvalidStateTransition, PermissionDenied, ValidationError
from assetvault.models import AssetStatus, AuditAction, UploadChannel, UserRole, VisibilityLevel
from assetvault.services.approvals import ApprovalWorkflow
from assetvault.visibility import VisibilityEngine
from .conftest import TestingSessionLocal, auth_headers, create_asset, create_company, create_user


def _workflow(db) -> ApprovalWorkflow:
    return ApprovalWorkflow(db, AuditLedger(db), VisibilityEngine(db))


def _audit_actions(db, asset_id) -> list[str]:
    return [
        entry.action
        for entry in db.query(models.AuditLog)
        .filter(models.AuditLog.resource_id == str(asset_id))
        .order_by(models.AuditLog.created_at)
    ]


def _run(workflow, action, admin, asset_id):
    if action == "approve":
        return workflow.approve(admin, asset_id, VisibilityLevel.PUBLIC)
    return workflow.reject(admin, asset_id, "Off brand")


@pytest.mark.parametrize(
    "status,action", list(itertools.product(AssetStatus, ("approve", "reject")))
)
def test_review_transitions_only_from_pending(db, status, action):
    owner = create_user(db)
    admin = create_user(db, UserRole.ADMIN)
    asset = create_asset(db, owner, status=status)
    workflow = _workflow(db)

    if status == AssetStatus.PENDING_REVIEW:
        result = _run(workflow, action, admin, asset.id)
        expected = AssetStatus.APPROVED if action == "approve" else AssetStatus.REJECTED
        assert result.status == expected.value
        return

    with pytest.raises(InvalidStateTransition) as exc:
        _run(workflow, action, admin, asset.id)
    assert exc.value.current_status == status.value
    db.refresh(asset)
    assert asset.status == status.value
    assert _audit_actions(db, asset.id) == []


@pytest.mark.parametrize("action", ["approve", "reject"])
def test_non_admin_denied_before_state_is_checked(db, action):
    owner = create_user(db)
    specialist = create_user(db, UserRole.SEO_SPECIALIST)
    draft = create_asset(db, owner, status=AssetStatus.DRAFT)
    with pytest.raises(PermissionDenied):
        _run(_workflow(db), action, specialist, draft.id)
    with pytest.raises(PermissionDenied):
        _run(_workflow(db), action, owner, draft.id)


@pytest.mark.parametrize("reason", ["", "   ", "\n\t", None])
def test_reject_requires_reason(db, reason):
    owner = create_user(db)
    admin = create_user(db, UserRole.ADMIN)
    asset = create_asset(db, owner, status=AssetStatus.PENDING_REVIEW)
    with pytest.raises(ValidationError):
        _workflow(db).reject(admin, asset.id, reason)
    db.refresh(asset)
    assert asset.status == AssetStatus.PENDING_REVIEW.value
    assert asset.rejection_reason is None
    assert _audit_actions(db, asset.id) == []


def test_reject_stores_stripped_reason_and_audits(db):
    owner = create_user(db)
    admin = create_user(db, UserRole.ADMIN)
    asset = create_asset(db, owner, status=AssetStatus.PENDING_REVIEW)
    rejected = _workflow(db).reject(admin, asset.id, "  low resolution  ")
    assert rejected.rejection_reason == "low resolution"
    assert rejected.rejected_by_id == admin.id
    entry = db.query(models.AuditLog).filter_by(action=AuditAction.REJECT.value).one()
    assert entry.details["reason"] == "low resolution"
    assert entry.details["previous_status"] == "PENDING_REVIEW"


def test_approve_requires_visibility_and_role_qualifier(db):
    owner = create_user(db)
    admin = create_user(db, UserRole.ADMIN)
    asset = create_asset(db, owner, status=AssetStatus.PENDING_REVIEW)
    workflow = _workflow(db)

    with pytest.raises(ValidationError) as missing:
        workflow.approve(admin, asset.id, None)
    assert missing.value.field == "visibility"
    with pytest.raises(ValidationError):
        workflow.approve(admin, asset.id, "EVERYONE")
    with pytest.raises(ValidationError) as no_role:
        workflow.approve(admin, asset.id, VisibilityLevel.ROLE_SCOPED)
    assert no_role.value.field == "allowed_role"

    approved = workflow.approve(
        admin, asset.id, VisibilityLevel.ROLE_SCOPED, UserRole.SEO_SPECIALIST
    )
    assert approved.visibility == "ROLE_SCOPED"
    assert approved.allowed_role == "SEO_SPECIALIST"


def test_allowed_role_discarded_for_other_levels(db):
    owner = create_user(db)
    admin = create_user(db, UserRole.ADMIN)
    asset = create_asset(db, owner, status=AssetStatus.PENDING_REVIEW)
    approved = _workflow(db).approve(admin, asset.id, "PUBLIC", "SEO_SPECIALIST")
    assert approved.allowed_role is None


def test_approve_audits_approval_and_visibility_change(db):
    owner = create_user(db)
    admin = create_user(db, UserRole.ADMIN)
    asset = create_asset(db, owner, status=AssetStatus.PENDING_REVIEW)
    approved = _workflow(db).approve(admin, asset.id, VisibilityLevel.COMPANY_SCOPED)

    assert approved.approved_by_id == admin.id
    assert approved.approved_at is not None
    assert sorted(_audit_actions(db, asset.id)) == ["APPROVE", "VISIBILITY_CHANGE"]
    entry = db.query(models.AuditLog).filter_by(action="APPROVE").one()
    assert entry.details["visibility"] == "COMPANY_SCOPED"
    assert entry.details["new_status"] == "APPROVED"
    history = db.query(models.AssetApproval).filter_by(asset_id=asset.id).all()
    assert [row.action for row in history] == ["APPROVE"]


def test_change_visibility_only_on_approved(db):
    owner = create_user(db)
    admin = create_user(db, UserRole.ADMIN)
    workflow = _workflow(db)
    for status in (AssetStatus.DRAFT, AssetStatus.PENDING_REVIEW, AssetStatus.REJECTED):
        asset = create_asset(db, owner, status=status)
        with pytest.raises(InvalidStateTransition) as exc:
            workflow.change_visibility(admin, asset.id, VisibilityLevel.PUBLIC)
        assert exc.value.current_status == status.value

    approved = create_asset(
        db, owner, status=AssetStatus.APPROVED, visibility=VisibilityLevel.ADMIN_ONLY
    )
    with pytest.raises(PermissionDenied):
        workflow.change_visibility(owner, approved.id, VisibilityLevel.PUBLIC)

    changed = workflow.change_visibility(admin, approved.id, VisibilityLevel.PUBLIC)
    assert changed.status == "APPROVED"
    assert changed.visibility == "PUBLIC"
    entry = db.query(models.AuditLog).filter_by(action="VISIBILITY_CHANGE").one()
    assert entry.details["previous_visibility"] == "ADMIN_ONLY"
    assert entry.details["new_visibility"] == "PUBLIC"


def test_submit_rules(db):
    owner = create_user(db)
    other = create_user(db)
    workflow = _workflow(db)

    draft = create_asset(db, owner)
    with pytest.raises(PermissionDenied):
        workflow.submit(other, draft.id)
    submitted = workflow.submit(owner, draft.id)
    assert submitted.status == "PENDING_REVIEW"
    assert submitted.submitted_at is not None
    with pytest.raises(InvalidStateTransition):
        workflow.submit(owner, draft.id)

    private = create_asset(db, owner, upload_channel=UploadChannel.PRIVATE)
    with pytest.raises(InvalidStateTransition):
        workflow.submit(owner, private.id)


def test_rejected_asset_is_never_reapproved_directly(db):
    owner = create_user(db)
    admin = create_user(db, UserRole.ADMIN)
    asset = create_asset(db, owner, status=AssetStatus.REJECTED)
    with pytest.raises(InvalidStateTransition):
        _workflow(db).approve(admin, asset.id, VisibilityLevel.PUBLIC)
    with pytest.raises(InvalidStateTransition):
        _workflow(db).submit(owner, asset.id)


def test_approve_clears_prior_rejection(db):
    owner = create_user(db)
    admin = create_user(db, UserRole.ADMIN)
    asset = create_asset(db, owner, status=AssetStatus.PENDING_REVIEW)
    workflow = _workflow(db)

    rejected = workflow.reject(admin, asset.id, "low resolution")
    assert rejected.rejection_reason == "low resolution"

    with pytest.raises(ValidationError):
        workflow.revise(owner, asset.id, rejected.storage_locator)
    with pytest.raises(PermissionDenied):
        workflow.revise(admin, asset.id, "s3://assets/replacement")

    revised = workflow.revise(owner, asset.id, "s3://assets/replacement")
    assert revised.status == "DRAFT"
    assert revised.rejection_reason is None
    assert revised.rejected_at is None
    assert revised.rejected_by_id is None
    workflow.submit(owner, asset.id)
    approved = workflow.approve(admin, asset.id, VisibilityLevel.PUBLIC)

    assert approved.status == "APPROVED"
    assert approved.rejection_reason is None
    assert approved.rejected_at is None
    update = db.query(models.AuditLog).filter_by(action="UPDATE").one()
    assert update.details["previous_rejection_reason"] == "low resolution"


def test_pending_queue_is_admin_only(db):
    owner = create_user(db)
    admin = create_user(db, UserRole.ADMIN)
    create_asset(db, owner, status=AssetStatus.PENDING_REVIEW)
    create_asset(db, owner, status=AssetStatus.DRAFT)
    workflow = _workflow(db)
    page = workflow.pending(admin)
    assert page.total == 1
    with pytest.raises(PermissionDenied):
        workflow.pending(owner)


def test_company_scoped_scenario(client, db):
    acme = create_company(db, "Acme")
    globex = create_company(db, "Globex")
    u1 = create_user(db, company=acme)
    u2 = create_user(db, UserRole.SEO_SPECIALIST, company=acme)
    u3 = create_user(db, company=globex)
    admin = create_user(db, UserRole.ADMIN)

    created = client.post(
        "/api/assets",
        json={"title": "Hero image", "asset_type": "IMAGE", "storage_locator": "s3://bucket/hero.png"},
        headers=auth_headers(u1),
    )
    assert created.status_code == 201, created.text
    asset = created.json()
    assert asset["status"] == "DRAFT"

    submitted = client.post(f"/api/assets/{asset['id']}/submit", headers=auth_headers(u1))
    assert submitted.json()["status"] == "PENDING_REVIEW"

    assert client.get(f"/api/assets/{asset['id']}", headers=auth_headers(u2)).status_code == 404

    approved = client.post(
        f"/api/assets/{asset['id']}/approve",
        json={"visibility": "COMPANY_SCOPED"},
        headers=auth_headers(admin),
    )
    assert approved.status_code == 200, approved.text
    assert approved.json()["status"] == "APPROVED"

    assert client.get(f"/api/assets/{asset['id']}", headers=auth_headers(u2)).status_code == 200
    assert client.get(f"/api/assets/{asset['id']}", headers=auth_headers(u3)).status_code == 404


def test_rejection_scenario(client, db):
    acme = create_company(db, "Acme")
    u1 = create_user(db, company=acme)
    u2 = create_user(db, company=acme)
    u3 = create_user(db)
    admin = create_user(db, UserRole.ADMIN)
    asset = create_asset(
        db, u1, status=AssetStatus.PENDING_REVIEW, visibility=VisibilityLevel.COMPANY_SCOPED
    )

    resp = client.post(
        f"/api/assets/{asset.id}/reject",
        json={"reason": "low resolution"},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["rejection_reason"] == "low resolution"

    assert client.get(f"/api/assets/{asset.id}", headers=auth_headers(u1)).status_code == 200
    assert client.get(f"/api/assets/{asset.id}", headers=auth_headers(u2)).status_code == 404
    assert client.get(f"/api/assets/{asset.id}", headers=auth_headers(u3)).status_code == 404


def test_transition_error_responses(client, db):
    owner = create_user(db)
    admin = create_user(db, UserRole.ADMIN)
    draft = create_asset(db, owner)

    denied = client.post(
        f"/api/assets/{draft.id}/approve", json={"visibility": "PUBLIC"}, headers=auth_headers(owner)
    )
    assert denied.status_code == 403
    assert denied.json() == {"detail": "Admin privileges required", "error": "permission_denied"}

    conflict = client.post(
        f"/api/assets/{draft.id}/approve", json={"visibility": "PUBLIC"}, headers=auth_headers(admin)
    )
    assert conflict.status_code == 409
    assert conflict.json()["current_status"] == "DRAFT"

    pending = create_asset(db, owner, status=AssetStatus.PENDING_REVIEW)
    blank = client.post(
        f"/api/assets/{pending.id}/reject", json={"reason": " "}, headers=auth_headers(admin)
    )
    assert blank.status_code == 400
    no_visibility = client.post(
        f"/api/assets/{pending.id}/approve", json={}, headers=auth_headers(admin)
    )
    assert no_visibility.status_code == 400
    assert no_visibility.json()["field"] == "visibility"

    patch = client.patch(
        f"/api/assets/{pending.id}/visibility", json={"visibility": "PUBLIC"}, headers=auth_headers(admin)
    )
    assert patch.status_code == 409


def test_concurrent_approvals_only_one_wins(db):
    owner = create_user(db)
    admin = create_user(db, UserRole.ADMIN)
    asset = create_asset(db, owner, status=AssetStatus.PENDING_REVIEW)

    first = TestingSessionLocal()
    second = TestingSessionLocal()
    try:
        admin_a = first.get(models.User, admin.id)
        admin_b = second.get(models.User, admin.id)
        # both reviewers load the pending asset before either decides
        assert first.get(models.Asset, asset.id).status == "PENDING_REVIEW"
        assert second.get(models.Asset, asset.id).status == "PENDING_REVIEW"

        _workflow(first).approve(admin_a, asset.id, VisibilityLevel.PUBLIC)
        with pytest.raises(InvalidStateTransition) as exc:
            _workflow(second).approve(admin_b, asset.id, VisibilityLevel.COMPANY_SCOPED)
        assert exc.value.current_status == "APPROVED"
    finally:
        first.close()
        second.close()

    db.expire_all()
    stored = db.get(models.Asset, asset.id)
    assert stored.visibility == "PUBLIC"
    approvals = db.query(models.AuditLog).filter_by(action="APPROVE").count()
    assert approvals == 1


def test_concurrent_approvals_from_two_threads(db):
    owner = create_user(db)
    admin = create_user(db, UserRole.ADMIN)
    asset = create_asset(db, owner, status=AssetStatus.PENDING_REVIEW)
    barrier = threading.Barrier(2)
    results = []

    def review(visibility):
        session = TestingSessionLocal()
        try:
            reviewer = session.get(models.User, admin.id)
            barrier.wait(timeout=10)
            _workflow(session).approve(reviewer, asset.id, visibility)
            results.append("ok")
        except InvalidStateTransition as exc:
            results.append(exc.current_status)
        finally:
            session.close()

    threads = [
        threading.Thread(target=review, args=(VisibilityLevel.PUBLIC,)),
        threading.Thread(target=review, args=(VisibilityLevel.COMPANY_SCOPED,)),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(results) == ["APPROVED", "ok"]
    db.expire_all()
    assert db.query(models.AuditLog).filter_by(action="APPROVE").count() == 1
    assert db.query(models.AssetApproval).filter_by(asset_id=asset.id).count() == 1


def test_revisions_keep_previous_content(client, db):
    owner = create_user(db)
    admin = create_user(db, UserRole.ADMIN)
    outsider = create_user(db)
    asset = create_asset(
        db, owner, status=AssetStatus.PENDING_REVIEW, storage_locator="s3://assets/v1", file_size=100
    )
    workflow = _workflow(db)

    workflow.reject(admin, asset.id, "wrong logo")
    workflow.revise(owner, asset.id, "s3://assets/v2", file_size=200)
    workflow.submit(owner, asset.id)
    workflow.reject(admin, asset.id, "still wrong")
    revised = workflow.revise(owner, asset.id, "s3://assets/v3")

    assert revised.storage_locator == "s3://assets/v3"
    assert revised.file_size is None
    versions = workflow.versions(owner, asset.id)
    assert [(v.version_number, v.storage_locator, v.file_size) for v in versions] == [
        (1, "s3://assets/v1", 100),
        (2, "s3://assets/v2", 200),
    ]
    updates = db.query(models.AuditLog).filter_by(action="UPDATE").all()
    updates.sort(key=lambda u: u.details["version_number"])
    assert [u.details["previous_storage_locator"] for u in updates] == [
        "s3://assets/v1",
        "s3://assets/v2",
    ]

    listed = client.get(f"/api/assets/{asset.id}/versions", headers=auth_headers(owner))
    assert listed.status_code == 200, listed.text
    assert [v["version_number"] for v in listed.json()] == [1, 2]
    hidden = client.get(f"/api/assets/{asset.id}/versions", headers=auth_headers(outsider))
    assert hidden.status_code == 404
