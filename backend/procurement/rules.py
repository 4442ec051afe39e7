from typing import Dict, FrozenSet, Tuple

from procurement.exceptions import InvalidTransition

# FRB
FRB_DRAFT = "DRAFT"
FRB_SUBMITTED = "SUBMITTED"
FRB_AWAITING_DIRECTOR_APPROVAL = "AWAITING_DIRECTOR_APPROVAL"
FRB_APPROVED_BY_DIRECTOR = "APPROVED_BY_DIRECTOR"
FRB_REJECTED_BY_DIRECTOR = "REJECTED_BY_DIRECTOR"
FRB_IN_PURCHASING_VALIDATION = "IN_PURCHASING_VALIDATION"
FRB_IN_PURCHASING_PROCESS = "IN_PURCHASING_PROCESS"
FRB_PARTIALLY_STOCKED = "PARTIALLY_STOCKED"
FRB_FULLY_STOCKED = "FULLY_STOCKED"
FRB_COMPLETED = "COMPLETED"
FRB_REJECTED_BY_RECIPIENT = "REJECTED_BY_RECIPIENT"

FRB_STATUS_CHOICES = [
    (FRB_DRAFT, "Draft"),
    (FRB_SUBMITTED, "Submitted"),
    (FRB_AWAITING_DIRECTOR_APPROVAL, "Awaiting Director Approval"),
    (FRB_APPROVED_BY_DIRECTOR, "Approved by Director"),
    (FRB_REJECTED_BY_DIRECTOR, "Rejected by Director"),
    (FRB_IN_PURCHASING_VALIDATION, "In Purchasing Validation"),
    (FRB_IN_PURCHASING_PROCESS, "In Purchasing Process"),
    (FRB_PARTIALLY_STOCKED, "Partially Stocked"),
    (FRB_FULLY_STOCKED, "Fully Stocked"),
    (FRB_COMPLETED, "Completed"),
    (FRB_REJECTED_BY_RECIPIENT, "Rejected by Recipient"),
]

FRB_EDITABLE_STATUSES = frozenset({FRB_DRAFT, FRB_REJECTED_BY_DIRECTOR})
FRB_PENDING_DECISION_STATUSES = frozenset({FRB_SUBMITTED, FRB_AWAITING_DIRECTOR_APPROVAL})
FRB_VALIDATABLE_STATUSES = frozenset({FRB_APPROVED_BY_DIRECTOR, FRB_IN_PURCHASING_VALIDATION})
FRB_VALIDATED_STATUSES = frozenset(
    {
        FRB_IN_PURCHASING_PROCESS,
        FRB_PARTIALLY_STOCKED,
        FRB_FULLY_STOCKED,
        FRB_COMPLETED,
    }
)

FRB_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    FRB_DRAFT: frozenset({FRB_DRAFT, FRB_AWAITING_DIRECTOR_APPROVAL}),
    FRB_SUBMITTED: frozenset({FRB_APPROVED_BY_DIRECTOR, FRB_REJECTED_BY_DIRECTOR}),
    FRB_AWAITING_DIRECTOR_APPROVAL: frozenset(
        {FRB_APPROVED_BY_DIRECTOR, FRB_REJECTED_BY_DIRECTOR}
    ),
    FRB_REJECTED_BY_DIRECTOR: frozenset({FRB_DRAFT, FRB_AWAITING_DIRECTOR_APPROVAL}),
    FRB_APPROVED_BY_DIRECTOR: frozenset(
        {FRB_IN_PURCHASING_VALIDATION} | FRB_VALIDATED_STATUSES
    ),
    FRB_IN_PURCHASING_VALIDATION: FRB_VALIDATED_STATUSES,
    FRB_IN_PURCHASING_PROCESS: frozenset(
        {FRB_PARTIALLY_STOCKED, FRB_FULLY_STOCKED, FRB_COMPLETED, FRB_REJECTED_BY_RECIPIENT}
    ),
    FRB_PARTIALLY_STOCKED: frozenset(
        {FRB_FULLY_STOCKED, FRB_COMPLETED, FRB_REJECTED_BY_RECIPIENT}
    ),
    FRB_FULLY_STOCKED: frozenset({FRB_COMPLETED, FRB_REJECTED_BY_RECIPIENT}),
    FRB_COMPLETED: frozenset(),
    FRB_REJECTED_BY_RECIPIENT: frozenset(),
}

# PR
PR_AWAITING_DIRECTOR_APPROVAL = "AWAITING_DIRECTOR_APPROVAL"
PR_APPROVED = "APPROVED"
PR_REJECTED = "REJECTED"
PR_PROCESSED = "PROCESSED"

PR_STATUS_CHOICES = [
    (PR_AWAITING_DIRECTOR_APPROVAL, "Awaiting Director Approval"),
    (PR_APPROVED, "Approved"),
    (PR_REJECTED, "Rejected"),
    (PR_PROCESSED, "Processed"),
]

PR_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PR_AWAITING_DIRECTOR_APPROVAL: frozenset({PR_APPROVED, PR_REJECTED}),
    PR_APPROVED: frozenset({PR_PROCESSED}),
    PR_REJECTED: frozenset(),
    PR_PROCESSED: frozenset(),
}

# PO
PO_ORDERED = "ORDERED"
PO_SHIPPED = "SHIPPED"
PO_PARTIALLY_RECEIVED = "PARTIALLY_RECEIVED"
PO_FULLY_RECEIVED = "FULLY_RECEIVED"
PO_CANCELED = "CANCELED"

PO_STATUS_CHOICES = [
    (PO_ORDERED, "Ordered"),
    (PO_SHIPPED, "Shipped"),
    (PO_PARTIALLY_RECEIVED, "Partially Received"),
    (PO_FULLY_RECEIVED, "Fully Received"),
    (PO_CANCELED, "Canceled"),
]

PO_RECEIVABLE_STATUSES = frozenset({PO_ORDERED, PO_SHIPPED, PO_PARTIALLY_RECEIVED})

PO_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PO_ORDERED: frozenset({PO_SHIPPED, PO_PARTIALLY_RECEIVED, PO_FULLY_RECEIVED, PO_CANCELED}),
    PO_SHIPPED: frozenset({PO_PARTIALLY_RECEIVED, PO_FULLY_RECEIVED, PO_CANCELED}),
    PO_PARTIALLY_RECEIVED: frozenset({PO_PARTIALLY_RECEIVED, PO_FULLY_RECEIVED}),
    PO_FULLY_RECEIVED: frozenset(),
    PO_CANCELED: frozenset(),
}

# DO
DO_CREATED = "CREATED"
DO_PREPARED_BY_WAREHOUSE = "PREPARED_BY_WAREHOUSE"
DO_SENT = "SENT"
DO_DELIVERED = "DELIVERED"
DO_REJECTED_BY_RECIPIENT = "REJECTED_BY_RECIPIENT"

DO_STATUS_CHOICES = [
    (DO_CREATED, "Created"),
    (DO_PREPARED_BY_WAREHOUSE, "Prepared by Warehouse"),
    (DO_SENT, "Sent"),
    (DO_DELIVERED, "Delivered"),
    (DO_REJECTED_BY_RECIPIENT, "Rejected by Recipient"),
]

DO_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    DO_CREATED: frozenset({DO_PREPARED_BY_WAREHOUSE}),
    DO_PREPARED_BY_WAREHOUSE: frozenset({DO_SENT, DO_DELIVERED, DO_REJECTED_BY_RECIPIENT}),
    DO_SENT: frozenset({DO_DELIVERED, DO_REJECTED_BY_RECIPIENT}),
    DO_DELIVERED: frozenset(),
    DO_REJECTED_BY_RECIPIENT: frozenset(),
}

# GRN
GRN_CONDITION_GOOD = "GOOD"
GRN_CONDITION_DAMAGED = "DAMAGED"
GRN_CONDITION_PARTIALLY_DAMAGED = "PARTIALLY_DAMAGED"

GRN_CONDITION_CHOICES = [
    (GRN_CONDITION_GOOD, "Good"),
    (GRN_CONDITION_DAMAGED, "Damaged"),
    (GRN_CONDITION_PARTIALLY_DAMAGED, "Partially Damaged"),
]

RECEIPT_GOOD = "GOOD"
RECEIPT_MINOR_DAMAGE = "MINOR_DAMAGE"
RECEIPT_MAJOR_DAMAGE = "MAJOR_DAMAGE"
RECEIPT_MISMATCHED_SPEC = "MISMATCHED_SPEC"

RECEIPT_CONDITION_CHOICES = [
    (RECEIPT_GOOD, "Good"),
    (RECEIPT_MINOR_DAMAGE, "Minor Damage"),
    (RECEIPT_MAJOR_DAMAGE, "Major Damage"),
    (RECEIPT_MISMATCHED_SPEC, "Mismatched Spec"),
]

ACTION_ACCEPTED = "ACCEPTED"
ACTION_RETURNED_TO_SUPPLIER = "RETURNED_TO_SUPPLIER"
ACTION_TO_BE_REPAIRED = "TO_BE_REPAIRED"

ACTION_TAKEN_CHOICES = [
    (ACTION_ACCEPTED, "Accepted"),
    (ACTION_RETURNED_TO_SUPPLIER, "Returned to Supplier"),
    (ACTION_TO_BE_REPAIRED, "To be Repaired"),
]

# Checklist
CHECKLIST_READY_TO_SHIP = "READY_TO_SHIP"
CHECKLIST_NOT_READY = "NOT_READY"

CHECKLIST_STATUS_CHOICES = [
    (CHECKLIST_READY_TO_SHIP, "Ready to Ship"),
    (CHECKLIST_NOT_READY, "Not Ready"),
]

ITEM_CONDITION_CHOICES = [
    ("GOOD", "Good"),
    ("MINOR_MAJOR_DAMAGE", "Minor/Major Damage"),
]

ITEM_FUNCTIONALITY_CHOICES = [
    ("WORKING", "Working"),
    ("NOT_WORKING", "Not Working"),
]

# TTB
TTB_ACCEPTED = "ACCEPTED"
TTB_REJECTED = "REJECTED"

TTB_STATUS_CHOICES = [
    (TTB_ACCEPTED, "Accepted"),
    (TTB_REJECTED, "Rejected"),
]

REJECTION_REASON_CHOICES = [
    ("DAMAGED", "Damaged"),
    ("WRONG_QUANTITY", "Wrong Quantity"),
    ("WRONG_ITEM", "Wrong Item"),
    ("LATE_DELIVERY", "Late Delivery"),
    ("OTHER", "Other"),
]

# Reconciliation
RECON_PENDING = "PENDING"
RECON_IN_PROGRESS = "IN_PROGRESS"
RECON_RESOLVED = "RESOLVED"

RECONCILIATION_STATUS_CHOICES = [
    (RECON_PENDING, "Pending"),
    (RECON_IN_PROGRESS, "In Progress"),
    (RECON_RESOLVED, "Resolved"),
]

RECONCILIATION_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    RECON_PENDING: frozenset({RECON_IN_PROGRESS, RECON_RESOLVED}),
    RECON_IN_PROGRESS: frozenset({RECON_RESOLVED}),
    RECON_RESOLVED: frozenset(),
}

# Document number prefixes.
DOCUMENT_PREFIXES: Dict[str, str] = {
    "frb": "FRB",
    "pr": "PR",
    "po": "PO",
    "do": "DO",
    "grn": "GRN",
    "checklist": "CHK",
    "ttb": "TTB",
    "rejection_report": "RR",
}


def choice_values(choices) -> Tuple[str, ...]:
    return tuple(value for value, _ in choices)


def validate_transition(
    transitions: Dict[str, FrozenSet[str]],
    current: str,
    target: str,
    document: str,
) -> None:
    allowed = transitions.get(current, frozenset())
    if target not in allowed:
        raise InvalidTransition(
            f"Cannot move {document} from {current} to {target}.",
            field="status",
        )
