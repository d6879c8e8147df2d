"""Workflow engine against the in-memory store and the static template catalog."""
from datetime import datetime, timedelta

import pytest

from app.qms.errors import Conflict, NotFound, NotificationFailure, ValidationError
from app.qms.modules.documents.models import (
    APPROVAL_APPROVED,
    APPROVAL_PENDING,
    APPROVAL_REJECTED,
    APPROVED,
    COMPLETED,
    DRAFT,
    EDIT_MODE,
    IN_REVIEW,
    REJECTED,
    SIGNED,
)
from app.qms.modules.documents.store import DocumentFilter, InMemoryDocumentStore
from app.qms.modules.documents.workflow import Actor, WorkflowEngine, is_editable, is_locked, pending_settled
from app.qms.modules.notifications.service import KIND_APPROVED, KIND_ASSIGNMENT, KIND_REJECTED, Notifier
from app.qms.modules.templates.catalog import BUILTIN_TEMPLATES
from app.qms.modules.templates.service import CatalogTemplateRegistry

AUTHOR = Actor(user_id=1, name="Alex Author")
REVIEWER = Actor(user_id=2, name="Jane Doe")


class RecordingNotifier(Notifier):
    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent = []

    def notify(self, user_id, message):
        if user_id in self.fail_for:
            raise NotificationFailure(f"inbox unavailable for {user_id}")
        self.sent.append((user_id, message))


class StepClock:
    def __init__(self):
        self.now = datetime(2026, 3, 2, 9, 0, 0)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


def _engine(notifier=None, templates=None):
    counter = iter(range(1, 10_000))
    return WorkflowEngine(
        InMemoryDocumentStore(),
        templates or CatalogTemplateRegistry(),
        notifier=notifier or RecordingNotifier(),
        clock=StepClock(),
        id_factory=lambda: f"doc_{next(counter):04d}",
    )


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def engine(notifier):
    return _engine(notifier)


def _in_review(engine, reviewers=(REVIEWER.user_id,)):
    doc = engine.create_from_template("tmpl-coa", "Batch 100 COA", AUTHOR)
    engine.save_content(doc.id, {"conclusion": {"overallResult": "Pass"}}, AUTHOR)
    engine.assign(doc.id, list(reviewers), AUTHOR)
    return engine.get(doc.id)


def _snapshot(doc):
    return (doc.status, doc.workflow_status, doc.version, doc.digital_signature, doc.approved_at, len(doc.approvals))


def test_create_from_template_copies_default_content(engine):
    doc = engine.create_from_template("tmpl-coa", "  Batch 100 COA ", AUTHOR, product_id=7)

    assert doc.id == "doc_0001"
    assert doc.title == "Batch 100 COA"
    assert doc.status == EDIT_MODE
    assert doc.workflow_status == DRAFT
    assert doc.version == 1
    assert doc.template_type == "COA"
    assert doc.product_id == 7
    assert doc.owner_user_id == AUTHOR.user_id
    assert doc.digital_signature is None and doc.approved_at is None

    coa = next(d for d in BUILTIN_TEMPLATES if d["id"] == "tmpl-coa")
    assert doc.content == coa["content"]

    # The document owns its copy; editing it never leaks into the template.
    doc.content["batchInfo"]["lotNumber"] = "L-100"
    assert engine.templates.get("tmpl-coa").content["batchInfo"]["lotNumber"] == ""


def test_create_from_unknown_template_is_not_found_and_creates_nothing(engine):
    with pytest.raises(NotFound):
        engine.create_from_template("tmpl-nope", "Ghost", AUTHOR)
    assert engine.list() == []


def test_create_requires_title(engine):
    with pytest.raises(ValidationError):
        engine.create_from_template("tmpl-coa", "   ", AUTHOR)
    assert engine.list() == []


def test_create_from_inactive_template_is_rejected():
    retired = dict(next(d for d in BUILTIN_TEMPLATES if d["id"] == "tmpl-coc"), is_active=False)
    engine = _engine(templates=CatalogTemplateRegistry(definitions=(retired,)))
    with pytest.raises(ValidationError):
        engine.create_from_template("tmpl-coc", "Old COC", AUTHOR)


def test_scenario_approve(engine, notifier):
    doc = _in_review(engine)
    assert doc.workflow_status == IN_REVIEW
    assert doc.assigned_user_ids == [REVIEWER.user_id]
    assert doc.content == {"conclusion": {"overallResult": "Pass"}}

    result = engine.decide(doc.id, "approve", REVIEWER, signature="Jane Doe")

    doc = result.document
    assert doc.status == SIGNED
    assert doc.workflow_status == APPROVED
    assert doc.digital_signature == "Jane Doe"
    assert doc.approved_at is not None
    assert is_locked(doc)
    assert result.owner_notified is True

    approved = [a for a in doc.approvals if a.status == APPROVAL_APPROVED]
    assert len(approved) == 1
    assert approved[0].approver_id == REVIEWER.user_id
    assert approved[0].signature == "Jane Doe"

    kinds = [(uid, m.kind) for uid, m in notifier.sent]
    assert (REVIEWER.user_id, KIND_ASSIGNMENT) in kinds
    assert (AUTHOR.user_id, KIND_APPROVED) in kinds


def test_scenario_reject_returns_document_to_editor(engine, notifier):
    doc = _in_review(engine)

    result = engine.decide(doc.id, "reject", REVIEWER, comments="Missing lot number")

    doc = result.document
    assert doc.workflow_status == REJECTED
    assert doc.status == EDIT_MODE
    assert doc.version == 1
    assert is_editable(doc)
    rejected = [a for a in doc.approvals if a.status == APPROVAL_REJECTED]
    assert rejected[0].comments == "Missing lot number"
    assert (AUTHOR.user_id, KIND_REJECTED) in [(uid, m.kind) for uid, m in notifier.sent]

    saved = engine.save_content(doc.id, {"batchInfo": {"lotNumber": "L-100"}}, AUTHOR)
    assert saved.content == {"batchInfo": {"lotNumber": "L-100"}}


@pytest.mark.parametrize("signature", [None, "", "   "])
def test_approve_without_signature_fails_and_changes_nothing(engine, signature):
    doc = _in_review(engine)
    before = _snapshot(doc)

    with pytest.raises(ValidationError):
        engine.decide(doc.id, "approve", REVIEWER, signature=signature)

    assert _snapshot(engine.get(doc.id)) == before


@pytest.mark.parametrize("comments", [None, "", "  \n "])
def test_reject_without_comments_fails_and_changes_nothing(engine, comments):
    doc = _in_review(engine)
    before = _snapshot(doc)

    with pytest.raises(ValidationError):
        engine.decide(doc.id, "reject", REVIEWER, comments=comments)

    assert _snapshot(engine.get(doc.id)) == before


def test_missing_signature_is_validation_even_on_locked_document(engine):
    doc = _in_review(engine)
    engine.decide(doc.id, "approve", REVIEWER, signature="Jane Doe")
    with pytest.raises(ValidationError):
        engine.decide(doc.id, "approve", REVIEWER, signature="")


def test_approved_document_rejects_further_decisions(engine):
    doc = _in_review(engine)
    engine.decide(doc.id, "approve", REVIEWER, signature="Jane Doe")
    before = _snapshot(engine.get(doc.id))

    with pytest.raises(Conflict):
        engine.decide(doc.id, "approve", REVIEWER, signature="Jane Doe")
    with pytest.raises(Conflict):
        engine.decide(doc.id, "reject", REVIEWER, comments="Too late")

    assert _snapshot(engine.get(doc.id)) == before


def test_complete_then_reapprove_is_conflict(engine):
    doc = _in_review(engine)
    engine.decide(doc.id, "approve", REVIEWER, signature="Jane Doe")

    doc = engine.complete(doc.id, AUTHOR)
    assert doc.workflow_status == COMPLETED
    assert doc.status == SIGNED
    assert is_locked(doc)

    with pytest.raises(Conflict):
        engine.decide(doc.id, "approve", REVIEWER, signature="Jane Doe")
    with pytest.raises(Conflict):
        engine.complete(doc.id, AUTHOR)


def test_complete_requires_approval(engine):
    doc = _in_review(engine)
    with pytest.raises(Conflict):
        engine.complete(doc.id, AUTHOR)


def test_decide_requires_document_in_review(engine):
    doc = engine.create_from_template("tmpl-coa", "Draft COA", AUTHOR)
    with pytest.raises(Conflict):
        engine.decide(doc.id, "approve", REVIEWER, signature="Jane Doe")
    with pytest.raises(Conflict):
        engine.decide(doc.id, "reject", REVIEWER, comments="Not ready")


def test_decide_rejects_unknown_action(engine):
    doc = _in_review(engine)
    with pytest.raises(ValidationError):
        engine.decide(doc.id, "publish", REVIEWER)


def test_edit_action_changes_nothing_and_reopens_editor(engine):
    doc = _in_review(engine)
    before = _snapshot(doc)

    result = engine.decide(doc.id, "edit", REVIEWER)

    assert result.action == "edit"
    assert result.reopen_editor is True
    assert _snapshot(engine.get(doc.id)) == before

    engine.decide(doc.id, "approve", REVIEWER, signature="Jane Doe")
    assert engine.decide(doc.id, "edit", REVIEWER).reopen_editor is False


def test_version_is_non_decreasing_across_saves(engine):
    doc = engine.create_from_template("tmpl-bom", "BOM for BFCAPSADEK", AUTHOR)
    seen = [doc.version]
    for i, new_version in enumerate([False, True, False, True, True, False]):
        doc = engine.save_content(
            doc.id,
            {"totalWeight": f"{i} kg"},
            AUTHOR,
            as_new_version=new_version,
            comments=f"pass {i}",
        )
        seen.append(doc.version)

    assert seen == sorted(seen)
    assert doc.version == 4
    assert [v.version for v in doc.versions] == [2, 3, 4]
    assert doc.versions[0].editor_name == AUTHOR.name
    assert doc.versions[0].comments == "pass 1"
    assert doc.versions[-1].content == {"totalWeight": "4 kg"}


def test_save_is_conflict_unless_editable(engine):
    doc = _in_review(engine)
    with pytest.raises(Conflict):
        engine.save_content(doc.id, {"testedBy": "QC"}, AUTHOR)

    engine.decide(doc.id, "approve", REVIEWER, signature="Jane Doe")
    with pytest.raises(Conflict):
        engine.save_content(doc.id, {"testedBy": "QC"}, AUTHOR, as_new_version=True)
    assert engine.get(doc.id).version == 1


def test_save_with_stale_base_version_is_conflict(engine):
    doc = engine.create_from_template("tmpl-coa", "Batch 101 COA", AUTHOR)
    engine.save_content(doc.id, {"testedBy": "A"}, AUTHOR, as_new_version=True, base_version=1)

    with pytest.raises(Conflict) as exc:
        engine.save_content(doc.id, {"testedBy": "B"}, AUTHOR, base_version=1)

    assert exc.value.details["current_version"] == 2
    assert engine.get(doc.id).content == {"testedBy": "A"}


@pytest.mark.parametrize(
    "content",
    [
        ["not", "a", "mapping"],
        {"unknownSection": {}},
        {"specifications": "should be a list"},
        {"testedBy": True},
    ],
)
def test_save_validates_content_against_template_type(engine, content):
    doc = engine.create_from_template("tmpl-coa", "Batch 102 COA", AUTHOR)
    with pytest.raises(ValidationError):
        engine.save_content(doc.id, content, AUTHOR)
    assert engine.get(doc.id).content["testedBy"] == ""


def test_assign_with_no_reviewers_keeps_workflow_status(engine, notifier):
    doc = engine.create_from_template("tmpl-coa", "Batch 103 COA", AUTHOR)

    result = engine.assign(doc.id, [], AUTHOR, product_id=12)

    assert result.document.workflow_status == DRAFT
    assert result.document.product_id == 12
    assert result.document.assigned_user_ids == []
    assert notifier.sent == []

    rejected = _in_review(engine)
    engine.decide(rejected.id, "reject", REVIEWER, comments="Redo")
    assert engine.assign(rejected.id, [], AUTHOR).document.workflow_status == REJECTED


def test_assign_dedupes_reviewers_and_records_pending_approvals(engine, notifier):
    doc = engine.create_from_template("tmpl-coa", "Batch 104 COA", AUTHOR)

    result = engine.assign(doc.id, [3, 2, 3, "2", 5], AUTHOR)

    assert result.document.assigned_user_ids == [3, 2, 5]
    assert result.notified == [3, 2, 5]
    assert result.failed == []
    assert [uid for uid, _m in notifier.sent] == [3, 2, 5]
    pending = [a.approver_id for a in result.document.approvals if a.status == APPROVAL_PENDING]
    assert pending == [3, 2, 5]


def test_reassign_replaces_reviewers(engine):
    doc = _in_review(engine, reviewers=(2, 3))
    doc = engine.assign(doc.id, [4], AUTHOR).document
    assert doc.assigned_user_ids == [4]


def test_assign_survives_failed_notifications():
    notifier = RecordingNotifier(fail_for={3})
    engine = _engine(notifier)
    doc = engine.create_from_template("tmpl-coa", "Batch 105 COA", AUTHOR)

    result = engine.assign(doc.id, [2, 3, 4], AUTHOR)

    assert result.notified == [2, 4]
    assert result.failed == [3]
    assert engine.get(doc.id).workflow_status == IN_REVIEW
    assert engine.get(doc.id).assigned_user_ids == [2, 3, 4]


def test_owner_notification_failure_does_not_undo_approval():
    notifier = RecordingNotifier(fail_for={AUTHOR.user_id})
    engine = _engine(notifier)
    doc = _in_review(engine)

    result = engine.decide(doc.id, "approve", REVIEWER, signature="Jane Doe")

    assert result.owner_notified is False
    assert engine.get(doc.id).workflow_status == APPROVED


def test_locked_document_only_accepts_association_changes(engine):
    doc = _in_review(engine)
    engine.decide(doc.id, "approve", REVIEWER, signature="Jane Doe")

    with pytest.raises(Conflict):
        engine.assign(doc.id, [4], AUTHOR)

    result = engine.assign(doc.id, [], AUTHOR, supplier_id=9)
    assert result.document.supplier_id == 9
    assert result.document.workflow_status == APPROVED


def test_delete_then_get_is_not_found(engine):
    doc = _in_review(engine)
    engine.delete(doc.id, AUTHOR)

    with pytest.raises(NotFound):
        engine.get(doc.id)
    with pytest.raises(NotFound):
        engine.delete(doc.id, AUTHOR)
    assert engine.list() == []


def test_list_filters(engine):
    a = engine.create_from_template("tmpl-coa", "A", AUTHOR, product_id=1)
    b = engine.create_from_template("tmpl-coc", "B", AUTHOR, supplier_id=4)
    c = engine.create_from_template("tmpl-psf", "C", Actor(user_id=9, name="Other"))
    engine.assign(c.id, [REVIEWER.user_id], AUTHOR)

    assert [d.id for d in engine.list(DocumentFilter(product_id=1))] == [a.id]
    assert [d.id for d in engine.list(DocumentFilter(supplier_id=4))] == [b.id]
    assert {d.id for d in engine.list(DocumentFilter(unassigned=True))} == {b.id, c.id}
    assert [d.id for d in engine.list(DocumentFilter(assigned_user_id=REVIEWER.user_id))] == [c.id]
    assert [d.id for d in engine.list(DocumentFilter(owner_user_id=9))] == [c.id]
    assert [d.id for d in engine.list(DocumentFilter(workflow_status=IN_REVIEW))] == [c.id]
    # Most recently touched first.
    assert [d.id for d in engine.list()] == [c.id, b.id, a.id]


def test_decision_settles_open_review_requests(engine):
    doc = _in_review(engine, reviewers=(2, 3))
    assert pending_settled(doc.approvals) == [False, False]

    doc = engine.decide(doc.id, "reject", REVIEWER, comments="Missing lot number").document
    assert [a.status for a in doc.approvals] == [APPROVAL_PENDING, APPROVAL_PENDING, APPROVAL_REJECTED]
    assert pending_settled(doc.approvals) == [True, True, True]

    doc = engine.assign(doc.id, [4], AUTHOR).document
    assert pending_settled(doc.approvals) == [True, True, True, False]
