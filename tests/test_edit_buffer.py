import pytest

from app.qms.errors import Conflict, ValidationError
from app.qms.modules.documents.edit_buffer import PendingEditBuffer, set_path
from app.qms.modules.documents.store import InMemoryDocumentStore
from app.qms.modules.documents.workflow import Actor, WorkflowEngine
from app.qms.modules.templates.service import CatalogTemplateRegistry

AUTHOR = Actor(user_id=1, name="Alex Author")


class FakeClock:
    def __init__(self):
        self.t = 100.0

    def __call__(self):
        return self.t

    def advance(self, seconds):
        self.t += seconds


@pytest.fixture()
def engine():
    return WorkflowEngine(InMemoryDocumentStore(), CatalogTemplateRegistry())


@pytest.fixture()
def doc(engine):
    return engine.create_from_template("tmpl-coa", "Batch 200 COA", AUTHOR)


def test_set_path_creates_missing_mappings_and_indexes_lists():
    tree = {"specifications": [{"result": ""}]}
    set_path(tree, "batchInfo.lotNumber", "L-7")
    set_path(tree, "specifications.0.result", "Conforms")
    set_path(tree, "specifications.1", {"parameter": "Moisture"})

    assert tree["batchInfo"] == {"lotNumber": "L-7"}
    assert tree["specifications"] == [{"result": "Conforms"}, {"parameter": "Moisture"}]


@pytest.mark.parametrize(
    "path",
    ["", "specifications.5.result", "specifications.x", "title.inner"],
)
def test_set_path_rejects_bad_paths(path):
    tree = {"specifications": [], "title": "COA"}
    with pytest.raises(ValidationError):
        set_path(tree, path, "v")


def test_flush_merges_staged_edits_in_one_save(engine, doc):
    clock = FakeClock()
    buf = PendingEditBuffer(engine, doc.id, AUTHOR, debounce_seconds=1.5, clock=clock)
    calls = []
    save = engine.save_content

    def counting_save(*args, **kwargs):
        calls.append(kwargs)
        return save(*args, **kwargs)

    engine.save_content = counting_save

    buf.stage("batchInfo.lotNumber", "L-200")
    buf.stage("batchInfo.lotNumber", "L-201")
    buf.stage("conclusion.overallResult", "Pass")
    assert buf.pending == 3

    saved = buf.flush()

    assert len(calls) == 1
    assert calls[0]["base_version"] == 1
    assert buf.pending == 0
    assert saved.content["batchInfo"]["lotNumber"] == "L-201"
    # Untouched fields of the same section survive the merge.
    assert saved.content["batchInfo"]["batchNumber"] == ""
    assert saved.content["conclusion"] == {"overallResult": "Pass", "statement": ""}


def test_debounce_window(engine, doc):
    clock = FakeClock()
    buf = PendingEditBuffer(engine, doc.id, AUTHOR, debounce_seconds=1.5, clock=clock)
    assert buf.is_due() is False

    buf.stage("testedBy", "QC Analyst")
    clock.advance(1.0)
    assert buf.is_due() is False
    assert buf.flush_if_due() is None

    buf.stage("reviewedBy", "QC Lead")
    clock.advance(1.0)
    # The window restarts with every staged edit.
    assert buf.is_due() is False

    clock.advance(0.5)
    saved = buf.flush_if_due()
    assert saved is not None
    assert saved.content["testedBy"] == "QC Analyst"
    assert saved.content["reviewedBy"] == "QC Lead"
    assert buf.is_due() is False


def test_flush_with_nothing_staged_is_a_no_op(engine, doc):
    buf = PendingEditBuffer(engine, doc.id, AUTHOR, clock=FakeClock())
    assert buf.flush() is None
    assert engine.get(doc.id).version == 1


def test_flush_as_new_version(engine, doc):
    buf = PendingEditBuffer(engine, doc.id, AUTHOR, clock=FakeClock())
    buf.stage("approvedBy", "QA Manager")

    saved = buf.flush(as_new_version=True, comments="Sign-off names")

    assert saved.version == 2
    assert saved.versions[-1].comments == "Sign-off names"


def test_failed_flush_keeps_staged_edits(engine, doc):
    engine.assign(doc.id, [2], AUTHOR)
    buf = PendingEditBuffer(engine, doc.id, AUTHOR, clock=FakeClock())
    buf.stage("testedBy", "QC Analyst")
    buf.stage("reviewedBy", "QC Lead")

    with pytest.raises(Conflict):
        buf.flush()

    assert buf.pending == 2


def test_invalid_staged_path_fails_without_saving(engine, doc):
    buf = PendingEditBuffer(engine, doc.id, AUTHOR, clock=FakeClock())
    buf.stage("testedBy.name", "QC Analyst")

    with pytest.raises(ValidationError):
        buf.flush()

    assert engine.get(doc.id).content["testedBy"] == ""


def test_debounce_window_from_app_config(engine, doc):
    buf = PendingEditBuffer.from_config(engine, doc.id, AUTHOR, {"EDIT_DEBOUNCE_SECONDS": 0.25})
    assert buf.debounce_seconds == 0.25
    assert PendingEditBuffer.from_config(engine, doc.id, AUTHOR, {}).debounce_seconds == 1.5
