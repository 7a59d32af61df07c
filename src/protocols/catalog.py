"""Static catalog of clinical protocol templates.

Each template is an ordered list of task blueprints. Offsets are whole days
from the start date chosen when the protocol is applied. Long repeat
intervals (3/6 months) are not expressible as a recurrence rule; they stay
``NONE`` and the interval is spelled out in the description instead.
"""

from __future__ import annotations

from dataclasses import dataclass

from errors import NotFoundError
from models import Recurrence


@dataclass(frozen=True)
class ProtocolItem:
    """Blueprint for one task produced by a protocol."""

    key: str
    title: str
    due_in_days: int
    recurrence: Recurrence = Recurrence.NONE
    description: str | None = None


@dataclass(frozen=True)
class ProtocolTemplate:
    """Named, versioned, immutable list of task blueprints."""

    key: str
    name: str
    summary: str
    items: tuple[ProtocolItem, ...]
    version: int = 1


CLINICAL_PROTOCOLS: tuple[ProtocolTemplate, ...] = (
    ProtocolTemplate(
        key="hypertension",
        name="Hypertension (blood pressure control)",
        summary="Blood pressure monitoring plus baseline labs and target-organ assessment.",
        items=(
            ProtocolItem(
                key="bp-diary",
                title="Blood pressure diary (morning/evening) for 7 days",
                description="Measure and record blood pressure and pulse daily for 7 days.",
                due_in_days=0,
            ),
            ProtocolItem(
                key="bmp",
                title="Creatinine, potassium, sodium (basic metabolic panel)",
                description="Kidney function and electrolytes. Repeat every 6 months.",
                due_in_days=7,
            ),
            ProtocolItem(
                key="ua",
                title="Urinalysis",
                description="Kidney screening. Repeat every 6-12 months.",
                due_in_days=7,
            ),
            ProtocolItem(
                key="ecg",
                title="ECG",
                description="Baseline cardiac assessment. Repeat yearly or as indicated.",
                due_in_days=14,
                recurrence=Recurrence.YEARLY,
            ),
            ProtocolItem(
                key="lipids",
                title="Lipid panel",
                description="Cardiovascular risk assessment. Repeat yearly.",
                due_in_days=14,
                recurrence=Recurrence.YEARLY,
            ),
        ),
    ),
    ProtocolTemplate(
        key="anemia",
        name="Anemia (work-up)",
        summary="Confirm the finding and look for the cause: iron, B12, folate, inflammation.",
        items=(
            ProtocolItem(
                key="cbc",
                title="Complete blood count with reticulocytes",
                description="Repeat and refine blood counts.",
                due_in_days=0,
            ),
            ProtocolItem(
                key="ferritin",
                title="Ferritin",
                description="Iron stores.",
                due_in_days=0,
            ),
            ProtocolItem(
                key="iron-panel",
                title="Serum iron, TIBC/transferrin, saturation %",
                description="Iron panel to differentiate iron deficiency.",
                due_in_days=0,
            ),
            ProtocolItem(
                key="b12-folate",
                title="Vitamin B12 and folate",
                description="Rule out B12/folate deficiency.",
                due_in_days=0,
            ),
            ProtocolItem(
                key="crp",
                title="CRP (inflammation)",
                description="When inflammation or chronic disease is suspected.",
                due_in_days=0,
            ),
        ),
    ),
    ProtocolTemplate(
        key="lipids",
        name="Lipids (dyslipidemia)",
        summary="Lipid panel follow-up plus at least glucose and liver checks.",
        items=(
            ProtocolItem(
                key="lipid-panel",
                title="Lipid panel (TC/LDL/HDL/TG)",
                description=(
                    "Baseline control. Repeat every 3-6 months while adjusting therapy, "
                    "then yearly."
                ),
                due_in_days=0,
            ),
            ProtocolItem(
                key="alt-ast",
                title="ALT/AST",
                description="Liver monitoring, especially on therapy. Repeat every 6-12 months.",
                due_in_days=7,
            ),
            ProtocolItem(
                key="glucose-hba1c",
                title="Fasting glucose and/or HbA1c",
                description="Metabolic risk assessment. Repeat yearly.",
                due_in_days=7,
                recurrence=Recurrence.YEARLY,
            ),
            ProtocolItem(
                key="tsh",
                title="TSH",
                description="Rule out hypothyroidism as a driver of dyslipidemia (as indicated).",
                due_in_days=14,
            ),
        ),
    ),
    ProtocolTemplate(
        key="thyroid",
        name="Thyroid (TSH/T4)",
        summary="Initial assessment and interval follow-up.",
        items=(
            ProtocolItem(
                key="tsh-ft4",
                title="TSH + free T4",
                description="Baseline thyroid function check.",
                due_in_days=0,
            ),
            ProtocolItem(
                key="tpo",
                title="Anti-TPO antibodies (as indicated)",
                description="When autoimmune thyroiditis is suspected.",
                due_in_days=0,
            ),
            ProtocolItem(
                key="repeat-6w",
                title="Repeat TSH/free T4 in 6-8 weeks",
                description="After a therapy change or abnormal results. Interval 6-8 weeks.",
                due_in_days=45,
            ),
            ProtocolItem(
                key="repeat-year",
                title="Yearly TSH check",
                description="Stable condition or on maintenance therapy.",
                due_in_days=365,
                recurrence=Recurrence.YEARLY,
            ),
        ),
    ),
)

_PROTOCOLS_BY_KEY = {protocol.key: protocol for protocol in CLINICAL_PROTOCOLS}


def list_protocols() -> list[ProtocolTemplate]:
    """Return all protocol templates in catalog order."""
    return list(CLINICAL_PROTOCOLS)


def get_protocol(key: str | None) -> ProtocolTemplate | None:
    """Return the protocol for a key, or None when unknown."""
    return _PROTOCOLS_BY_KEY.get((key or "").strip())


def require_protocol(key: str | None) -> ProtocolTemplate:
    """Return the protocol for a key or raise NotFoundError."""
    protocol = get_protocol(key)
    if protocol is None:
        raise NotFoundError(f"Unknown protocol: {key!r}.", {"protocol_key": str(key)})
    return protocol


def validate_catalog(protocols: tuple[ProtocolTemplate, ...] = CLINICAL_PROTOCOLS) -> None:
    """Check catalog integrity: unique keys, non-empty items, non-negative offsets."""
    seen: set[str] = set()
    for protocol in protocols:
        if protocol.key in seen:
            raise ValueError(f"Duplicate protocol key: {protocol.key}")
        seen.add(protocol.key)
        if not protocol.items:
            raise ValueError(f"Protocol has no items: {protocol.key}")
        item_keys: set[str] = set()
        for item in protocol.items:
            if item.key in item_keys:
                raise ValueError(f"Duplicate item key {item.key} in protocol {protocol.key}")
            item_keys.add(item.key)
            if item.due_in_days < 0:
                raise ValueError(
                    f"Negative due_in_days for {protocol.key}/{item.key}: {item.due_in_days}"
                )
