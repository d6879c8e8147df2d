"""
Built-in template catalog: one default content tree per document kind.

Seeded into the ``templates`` table by ``scripts/init_db.py`` and served as-is
by ``CatalogTemplateRegistry`` when running without a database.
"""

from __future__ import annotations

from app.qms.modules.templates import schemas as t

BUILTIN_TEMPLATES: tuple[dict, ...] = (
    {
        "id": "tmpl-coa",
        "name": "Certificate of Analysis (COA)",
        "description": "Batch test results against specification, signed for release.",
        "type": t.COA,
        "content": {
            "batchInfo": {
                "batchNumber": "",
                "productName": "",
                "lotNumber": "",
                "manufacturingDate": "",
                "expiryDate": "",
                "testDate": "",
                "releaseDate": "",
            },
            "specifications": [
                {"parameter": "Appearance", "specification": "", "method": "Visual", "result": "", "passFail": ""},
                {"parameter": "Identity", "specification": "Positive", "method": "HPLC", "result": "", "passFail": ""},
            ],
            "microbiological": [
                {"test": "Total Plate Count", "method": "USP <61>", "specification": "<1000 CFU/g", "result": "", "passFail": ""},
                {"test": "E. coli", "method": "USP <61>", "specification": "Negative", "result": "", "passFail": ""},
            ],
            "physical": [],
            "chemical": [],
            "conclusion": {"overallResult": "", "statement": ""},
            "testedBy": "",
            "reviewedBy": "",
            "approvedBy": "",
            "approvals": {"analyst": "", "supervisor": "", "qualityManager": "", "finalApproval": ""},
        },
    },
    {
        "id": "tmpl-coc",
        "name": "Certificate of Compliance (COC)",
        "description": "Regulatory compliance statement for a shipped batch.",
        "type": t.COC,
        "content": {
            "productInfo": {"productName": "", "batchNumber": "", "complianceDate": ""},
            "regulations": [],
            "standards": [],
            "certifications": [],
            "complianceStatement": "",
            "manufacturerInfo": {"name": "", "address": ""},
            "approvals": {},
        },
    },
    {
        "id": "tmpl-psf",
        "name": "Product Specification File (PSF)",
        "description": "Comprehensive product specification file.",
        "type": t.PSF,
        "content": {
            "productDetails": {"name": "", "sku": "", "version": "", "category": "", "description": "", "targetMarket": ""},
            "formulation": {"activeIngredients": [], "otherIngredients": []},
            "manufacturing": {},
            "packaging": {},
            "labeling": {},
            "storage": {},
            "distribution": {},
            "approvals": {},
        },
    },
    {
        "id": "tmpl-bom",
        "name": "Bill of Materials (BOM)",
        "description": "Materials, packaging and labels consumed per batch.",
        "type": t.BOM,
        "content": {
            "productInfo": {"productName": "", "sku": "", "version": "", "revision": ""},
            "materials": [],
            "packaging": [],
            "labels": [],
            "totalWeight": "",
            "yield": "",
            "approvals": {},
        },
    },
    {
        "id": "tmpl-mmr",
        "name": "Master Manufacturing Record (MMR)",
        "description": "Master batch record: ingredients, equipment and procedure steps.",
        "type": t.MMR,
        "content": {
            "productInfo": {"productName": "", "batchSize": "", "version": "", "revision": ""},
            "ingredients": [],
            "equipment": [],
            "procedures": [],
            "qualityControls": [],
            "packaging": [],
            "approvals": {},
        },
    },
    {
        "id": "tmpl-label-manuscript",
        "name": "Label Manuscript",
        "description": "Label copy, panel layout and claims for artwork approval.",
        "type": t.LABEL_MANUSCRIPT,
        "content": {
            "productInfo": {"productName": "", "sku": "", "version": ""},
            "labelSpecs": {"dimensions": "", "material": "", "colors": "", "finish": ""},
            "textContent": {},
            "nutritionalPanel": {},
            "claims": [],
            "warnings": [],
            "approvals": {},
        },
    },
    {
        "id": "tmpl-raw-material",
        "name": "Raw Material Specification",
        "description": "Raw material acceptance specification and quality requirements.",
        "type": t.RAW_MATERIAL_SPEC,
        "content": {
            "materialInfo": {"materialName": "", "supplierName": "", "lotNumber": "", "receiptDate": ""},
            "specifications": {"appearance": "", "color": "", "odor": "", "moisture": "", "purity": ""},
            "tests": [],
            "storage": "",
            "handling": "",
            "approvals": {},
        },
    },
    {
        "id": "tmpl-finished-goods",
        "name": "Finished Goods Specification",
        "description": "Finished product specification.",
        "type": t.FINISHED_GOODS_SPEC,
        "content": {
            "productInfo": {"productName": "", "sku": "", "version": "1.0", "effectiveDate": ""},
            "specifications": {"appearance": "", "color": "", "odor": "", "taste": "", "physicalForm": ""},
            "ingredients": [],
            "nutritionalInfo": {},
            "qualityTests": [],
            "packaging": {},
            "storage": {},
            "approvals": {},
        },
    },
    {
        "id": "tmpl-ccr",
        "name": "Critical Control Record (CCR)",
        "description": "Critical control point monitoring record for a batch.",
        "type": t.CCR,
        "content": {
            "batchInfo": {"batchNumber": "", "productName": "", "manufacturingDate": "", "expiryDate": ""},
            "criticalControlPoints": [],
            "monitoring": [],
            "correctionActions": [],
            "verification": "",
            "approvals": {},
        },
    },
    {
        "id": "tmpl-pis",
        "name": "Product Information Sheet (PIS)",
        "description": "Customer-facing product information sheet.",
        "type": t.PIS,
        "content": {
            "productInfo": {"productName": "", "sku": "", "version": "", "lastUpdated": ""},
            "description": "",
            "indications": "",
            "dosage": "",
            "ingredients": [],
            "warnings": [],
            "storageInstructions": "",
            "manufacturerInfo": {},
            "approvals": {},
        },
    },
    {
        "id": "tmpl-validation",
        "name": "Process Validation Protocol",
        "description": "Manufacturing process validation protocol.",
        "type": t.VALIDATION,
        "content": {
            "processInfo": {"processName": "", "version": "", "validationDate": "", "nextRevalidation": ""},
            "equipment": [{"name": "", "model": "", "calibrationStatus": "", "qualificationStatus": ""}],
            "parameters": [{"parameter": "", "target": "", "range": "", "method": ""}],
            "testResults": [],
            "conclusion": "",
            "approvals": {"validation": "", "quality": "", "finalApproval": ""},
        },
    },
    {
        "id": "tmpl-deviation",
        "name": "Deviation Report",
        "description": "Deviation documentation and investigation.",
        "type": t.DEVIATION,
        "content": {
            "deviationInfo": {"number": "", "date": "", "reporter": "", "severity": "Minor"},
            "description": "",
            "investigation": {"rootCause": "", "evidence": "", "impact": ""},
            "correctiveActions": [{"action": "", "responsible": "", "dueDate": "", "status": "Open"}],
            "preventiveActions": [],
            "approvals": {"investigator": "", "qualityManager": "", "finalApproval": ""},
        },
    },
    {
        "id": "tmpl-change-control",
        "name": "Change Control Record",
        "description": "Changes to processes, equipment or documents.",
        "type": t.CHANGE_CONTROL,
        "content": {
            "changeInfo": {"number": "", "requestDate": "", "requestor": "", "priority": "Medium"},
            "description": "",
            "justification": "",
            "impact": {"quality": "", "safety": "", "regulatory": "", "cost": ""},
            "implementation": {"steps": [], "timeline": "", "responsible": ""},
            "testing": {"required": False, "plan": "", "results": ""},
            "approvals": {"technical": "", "quality": "", "regulatory": "", "management": "", "finalApproval": ""},
        },
    },
)
