"""
Per-type content variants for template-backed documents.

A document's ``content`` is a JSON tree whose shape depends on the template
type it was created from. Each type gets an explicit ``ContentSchema`` naming
its top-level sections and the JSON kinds each section may hold; the schema is
looked up by the document's ``template_type`` tag before any content is saved.

Validation is deliberately shallow: sections must be known and of the right
kind, but nested fields inside a section are free-form (the form layer owns
them). Partial content is accepted so editors can save work in progress.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

OBJECT = "object"
LIST = "list"
TEXT = "text"
FLAG = "flag"

_KIND_TYPES: dict[str, type] = {OBJECT: dict, LIST: list, TEXT: str, FLAG: bool}
_KIND_EMPTY: dict[str, Any] = {OBJECT: {}, LIST: [], TEXT: "", FLAG: False}

COA = "COA"
COC = "COC"
PSF = "PSF"
BOM = "BOM"
MMR = "MMR"
LABEL_MANUSCRIPT = "LABEL_MANUSCRIPT"
RAW_MATERIAL_SPEC = "RAW_MATERIAL_SPEC"
FINISHED_GOODS_SPEC = "FINISHED_GOODS_SPEC"
CCR = "CCR"
PIS = "PIS"
VALIDATION = "VALIDATION"
DEVIATION = "DEVIATION"
CHANGE_CONTROL = "CHANGE_CONTROL"

TEMPLATE_TYPES = (
    COA,
    COC,
    PSF,
    BOM,
    MMR,
    LABEL_MANUSCRIPT,
    RAW_MATERIAL_SPEC,
    FINISHED_GOODS_SPEC,
    CCR,
    PIS,
    VALIDATION,
    DEVIATION,
    CHANGE_CONTROL,
)


@dataclass(frozen=True)
class ContentSchema:
    template_type: str
    label: str
    sections: tuple[tuple[str, tuple[str, ...]], ...]

    def section_kinds(self) -> dict[str, tuple[str, ...]]:
        return dict(self.sections)

    def default_content(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name, kinds in self.sections:
            empty = _KIND_EMPTY[kinds[0]]
            out[name] = empty.copy() if isinstance(empty, (dict, list)) else empty
        return out

    def validate(self, content: Any) -> list[str]:
        """Return a list of human-readable problems; empty means valid."""
        if not isinstance(content, dict):
            return [f"{self.template_type} content must be a JSON object."]
        errors: list[str] = []
        kinds_by_section = self.section_kinds()
        for key, value in content.items():
            kinds = kinds_by_section.get(key)
            if kinds is None:
                errors.append(f"Unknown section {key!r} for {self.template_type}.")
                continue
            if value is None:
                continue
            if not any(_matches(value, k) for k in kinds):
                errors.append(f"Section {key!r} must be {' or '.join(kinds)}.")
        return errors


def _matches(value: Any, kind: str) -> bool:
    if kind == FLAG:
        return isinstance(value, bool)
    return isinstance(value, _KIND_TYPES[kind]) and not isinstance(value, bool)


def _schema(template_type: str, label: str, **sections: str | tuple[str, ...]) -> ContentSchema:
    norm = tuple((name, kinds if isinstance(kinds, tuple) else (kinds,)) for name, kinds in sections.items())
    return ContentSchema(template_type=template_type, label=label, sections=norm)


CONTENT_SCHEMAS: dict[str, ContentSchema] = {
    s.template_type: s
    for s in (
        _schema(
            COA,
            "Certificate of Analysis",
            batchInfo=OBJECT,
            specifications=LIST,
            microbiological=LIST,
            physical=LIST,
            chemical=LIST,
            testResults=LIST,
            conclusion=(TEXT, OBJECT),
            testedBy=TEXT,
            reviewedBy=TEXT,
            approvedBy=TEXT,
            approvals=OBJECT,
        ),
        _schema(
            COC,
            "Certificate of Compliance",
            productInfo=OBJECT,
            regulations=LIST,
            standards=LIST,
            certifications=LIST,
            complianceStatement=TEXT,
            manufacturerInfo=OBJECT,
            approvals=OBJECT,
        ),
        _schema(
            PSF,
            "Product Specification File",
            productDetails=OBJECT,
            formulation=(OBJECT, LIST),
            manufacturing=OBJECT,
            packaging=OBJECT,
            labeling=OBJECT,
            storage=OBJECT,
            distribution=OBJECT,
            approvals=OBJECT,
        ),
        _schema(
            BOM,
            "Bill of Materials",
            productInfo=OBJECT,
            materials=LIST,
            packaging=LIST,
            labels=LIST,
            totalWeight=TEXT,
            **{"yield": TEXT},
            approvals=OBJECT,
        ),
        _schema(
            MMR,
            "Master Manufacturing Record",
            productInfo=OBJECT,
            ingredients=LIST,
            equipment=LIST,
            procedures=LIST,
            qualityControls=LIST,
            packaging=LIST,
            approvals=OBJECT,
        ),
        _schema(
            LABEL_MANUSCRIPT,
            "Label Manuscript",
            productInfo=OBJECT,
            labelSpecs=OBJECT,
            textContent=OBJECT,
            nutritionalPanel=OBJECT,
            claims=LIST,
            warnings=LIST,
            approvals=OBJECT,
        ),
        _schema(
            RAW_MATERIAL_SPEC,
            "Raw Material Specification",
            materialInfo=OBJECT,
            specifications=OBJECT,
            tests=LIST,
            storage=TEXT,
            handling=TEXT,
            approvals=OBJECT,
        ),
        _schema(
            FINISHED_GOODS_SPEC,
            "Finished Goods Specification",
            productInfo=OBJECT,
            specifications=OBJECT,
            ingredients=LIST,
            nutritionalInfo=OBJECT,
            qualityTests=LIST,
            packaging=OBJECT,
            storage=OBJECT,
            approvals=OBJECT,
        ),
        _schema(
            CCR,
            "Critical Control Record",
            batchInfo=OBJECT,
            criticalControlPoints=LIST,
            monitoring=LIST,
            correctionActions=LIST,
            verification=TEXT,
            approvals=OBJECT,
        ),
        _schema(
            PIS,
            "Product Information Sheet",
            productInfo=OBJECT,
            description=TEXT,
            indications=TEXT,
            dosage=TEXT,
            ingredients=LIST,
            warnings=LIST,
            storageInstructions=TEXT,
            manufacturerInfo=OBJECT,
            approvals=OBJECT,
        ),
        _schema(
            VALIDATION,
            "Process Validation Protocol",
            processInfo=OBJECT,
            equipment=LIST,
            parameters=LIST,
            testResults=LIST,
            conclusion=TEXT,
            approvals=OBJECT,
        ),
        _schema(
            DEVIATION,
            "Deviation Report",
            deviationInfo=OBJECT,
            description=TEXT,
            investigation=OBJECT,
            correctiveActions=LIST,
            preventiveActions=LIST,
            approvals=OBJECT,
        ),
        _schema(
            CHANGE_CONTROL,
            "Change Control Record",
            changeInfo=OBJECT,
            description=TEXT,
            justification=TEXT,
            impact=OBJECT,
            implementation=OBJECT,
            testing=OBJECT,
            approvals=OBJECT,
        ),
    )
}


def schema_for(template_type: str) -> ContentSchema:
    try:
        return CONTENT_SCHEMAS[template_type]
    except KeyError:
        raise KeyError(f"Unknown template type: {template_type!r}") from None


def validate_content(template_type: str | None, content: Any) -> list[str]:
    """Validate a content tree for the given type; untyped documents only need a JSON object."""
    if template_type is None:
        return [] if isinstance(content, dict) else ["Content must be a JSON object."]
    return schema_for(template_type).validate(content)
