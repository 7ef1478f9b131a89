"""NRCES policy checks over a set of claim bundles and the batch audit log."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from claim_flow.schemas.claim import AuditEvent, ComplianceCheck, ComplianceReport

REQUIRED_AUDIT_ACTIONS = ("convert_started", "bundle_generated")


def evaluate_compliance(
    bundles: Iterable[dict[str, Any]],
    audit_log: Iterable[AuditEvent | dict[str, Any]] = (),
) -> ComplianceReport:
    bundles = list(bundles)
    checks = [
        _check(
            "NRCES-ID-01",
            "Patient identifier policy",
            all(_has_patient_identifier(b) for b in bundles),
        ),
        _check(
            "NRCES-AUDIT-01",
            "Audit trail for core actions",
            set(REQUIRED_AUDIT_ACTIONS) <= {_action(e) for e in audit_log},
        ),
        _check(
            "NRCES-IMM-01",
            "Immutable source traceability",
            all(_has_source_hash(b) for b in bundles),
        ),
    ]
    return ComplianceReport(
        overall_status="pass" if all(c.status == "pass" for c in checks) else "fail",
        checks=checks,
    )


def _check(rule_id: str, title: str, ok: bool) -> ComplianceCheck:
    return ComplianceCheck(rule_id=rule_id, title=title, status="pass" if ok else "fail")


def _action(event: AuditEvent | dict[str, Any]) -> str | None:
    if isinstance(event, AuditEvent):
        return event.action
    return event.get("action")


def _first(bundle: dict[str, Any], resource_type: str) -> dict[str, Any]:
    for entry in bundle.get("entry") or []:
        resource = entry.get("resource") or {}
        if resource.get("resourceType") == resource_type:
            return resource
    return {}


def _identifier_value(resource: dict[str, Any]) -> str | None:
    identifiers = resource.get("identifier") or [{}]
    return identifiers[0].get("value")


def _has_patient_identifier(bundle: dict[str, Any]) -> bool:
    value = _identifier_value(_first(bundle, "Patient"))
    return bool(value) and value != "UNKNOWN"


def _has_source_hash(bundle: dict[str, Any]) -> bool:
    return bool(_identifier_value(_first(bundle, "DocumentReference")))
