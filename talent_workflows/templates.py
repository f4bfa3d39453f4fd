"""
Workflow Templates Module

Pre-built workflow definitions for common recruiting and back-office processes.
Installing a template registers its definition as ``workflow_<template id>``.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

from .models import (
    AutomationTrigger, StateType, WorkflowAction, WorkflowCondition, WorkflowDefinition,
    WorkflowSettings, WorkflowState, WorkflowTransition, utc_now
)


@dataclass(frozen=True)
class WorkflowTemplate:
    """A reusable, installable workflow definition"""
    id: str
    name: str
    description: str
    entity_type: str
    category: str
    definition: WorkflowDefinition
    tags: Tuple[str, ...] = ()
    is_system: bool = True

    def install(self, created_by: str = "system") -> WorkflowDefinition:
        """Definition ready for registration, stamped with its creator"""
        return replace(self.definition, created_by=created_by, created_at=utc_now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'entity_type': self.entity_type,
            'category': self.category,
            'definition': self.definition.to_dict(),
            'tags': list(self.tags),
            'is_system': self.is_system
        }


def _states(*specs: Tuple[str, str, str, StateType]) -> Tuple[WorkflowState, ...]:
    return tuple(
        WorkflowState(id=state_id, label=label, color=color, state_type=state_type)
        for state_id, label, color, state_type in specs
    )


def _exists(condition_id: str, field: str) -> WorkflowCondition:
    return WorkflowCondition(id=condition_id, type="field", field=field, operator="exists")


def _notify(action_id: str, template: str, *recipients: str) -> WorkflowAction:
    return WorkflowAction(action_id, "notification",
                          {"template": template, "recipients": list(recipients)})


def _email(action_id: str, template: str, *recipients: str) -> WorkflowAction:
    return WorkflowAction(action_id, "email", {"template": template, "recipients": list(recipients)})


def _custom(action_id: str, name: str) -> WorkflowAction:
    return WorkflowAction(action_id, f"custom:{name}")


INITIAL, INTERMEDIATE, FINAL = StateType.INITIAL, StateType.INTERMEDIATE, StateType.FINAL


CANDIDATE_LIFECYCLE_TEMPLATE = WorkflowTemplate(
    id="template_candidate_lifecycle",
    name="Candidate Lifecycle",
    description="Complete candidate journey from screening to placement",
    entity_type="candidate",
    category="recruiting",
    tags=("recruiting", "candidate", "lifecycle"),
    definition=WorkflowDefinition(
        id="workflow_template_candidate_lifecycle",
        name="Candidate Lifecycle Workflow",
        description="Manage candidates through screening, qualification, submission, and placement",
        entity_type="candidate",
        version="1.0.0",
        states=_states(
            ("new", "New", "#3b82f6", INITIAL),
            ("screening", "Screening", "#8b5cf6", INTERMEDIATE),
            ("qualified", "Qualified", "#10b981", INTERMEDIATE),
            ("active", "Active", "#f59e0b", INTERMEDIATE),
            ("submitted", "Submitted", "#06b6d4", INTERMEDIATE),
            ("interviewing", "Interviewing", "#6366f1", INTERMEDIATE),
            ("offered", "Offered", "#8b5cf6", INTERMEDIATE),
            ("placed", "Placed", "#22c55e", FINAL),
            ("rejected", "Rejected", "#ef4444", FINAL),
            ("on_hold", "On Hold", "#64748b", INTERMEDIATE),
            ("archived", "Archived", "#94a3b8", FINAL),
        ),
        transitions=(
            WorkflowTransition(
                id="new_to_screening", name="start_screening", from_state="new",
                to_state="screening", label="Start Screening",
                description="Begin candidate screening process",
                actions=(_notify("notify_recruiter", "New candidate assigned for screening",
                                 "assigned_recruiter"),)),
            WorkflowTransition(
                id="screening_to_qualified", name="qualify_candidate", from_state="screening",
                to_state="qualified", label="Mark as Qualified",
                description="Candidate passed screening",
                conditions=(_exists("has_resume", "resumeUrl"),),
                actions=(_custom("add_to_talent_pool", "add_to_talent_pool"),)),
            WorkflowTransition(
                id="screening_to_rejected", name="reject_candidate", from_state="screening",
                to_state="rejected", label="Reject",
                description="Candidate did not pass screening"),
            WorkflowTransition(
                id="qualified_to_active", name="activate_candidate", from_state="qualified",
                to_state="active", label="Make Active",
                description="Move candidate to active bench"),
            WorkflowTransition(
                id="active_to_submitted", name="submit_to_client", from_state="active",
                to_state="submitted", label="Submit to Client",
                description="Submit candidate to client job",
                actions=(_custom("create_submission", "create_submission"),
                         _email("notify_client", "candidate_submission", "client_contact"))),
            WorkflowTransition(
                id="submitted_to_interviewing", name="schedule_interview", from_state="submitted",
                to_state="interviewing", label="Schedule Interview",
                description="Client requested interview",
                actions=(_custom("create_interview", "create_interview"),)),
            WorkflowTransition(
                id="interviewing_to_offered", name="extend_offer", from_state="interviewing",
                to_state="offered", label="Extend Offer",
                description="Client extended offer",
                actions=(_custom("create_offer", "create_offer"),)),
            WorkflowTransition(
                id="offered_to_placed", name="accept_offer", from_state="offered",
                to_state="placed", label="Place Candidate",
                description="Candidate accepted offer",
                actions=(_custom("create_placement", "create_placement"),
                         _notify("notify_success", "Placement successful!", "all_team"))),
            WorkflowTransition(
                id="client_rejection", name="client_reject", from_state="submitted",
                to_state="rejected", label="Client Rejected",
                description="Client rejected candidate"),
            WorkflowTransition(
                id="put_on_hold", name="hold_candidate", from_state="active",
                to_state="on_hold", label="Put On Hold",
                description="Temporarily pause candidate activities"),
        ),
        initial_state="new",
        final_states=("placed", "rejected", "archived"),
        settings=WorkflowSettings(require_comments=True, notify_on_transition=True, sla_days=90)
    )
)


JOB_REQUISITION_TEMPLATE = WorkflowTemplate(
    id="template_job_requisition",
    name="Job Requisition",
    description="Job requisition approval and posting workflow",
    entity_type="job",
    category="recruiting",
    tags=("recruiting", "job", "requisition"),
    definition=WorkflowDefinition(
        id="workflow_template_job_requisition",
        name="Job Requisition Workflow",
        description="Manage job requisitions from draft to closure",
        entity_type="job",
        version="1.0.0",
        states=_states(
            ("draft", "Draft", "#94a3b8", INITIAL),
            ("pending_approval", "Pending Approval", "#f59e0b", INTERMEDIATE),
            ("approved", "Approved", "#10b981", INTERMEDIATE),
            ("open", "Open", "#3b82f6", INTERMEDIATE),
            ("in_progress", "In Progress", "#8b5cf6", INTERMEDIATE),
            ("on_hold", "On Hold", "#64748b", INTERMEDIATE),
            ("filled", "Filled", "#22c55e", FINAL),
            ("closed", "Closed", "#ef4444", FINAL),
            ("cancelled", "Cancelled", "#94a3b8", FINAL),
        ),
        transitions=(
            WorkflowTransition(
                id="draft_to_pending", name="submit_for_approval", from_state="draft",
                to_state="pending_approval", label="Submit for Approval",
                description="Submit job requisition for approval",
                conditions=(_exists("has_title", "title"),
                            _exists("has_description", "description")),
                actions=(_notify("notify_approvers", "New job requisition pending approval",
                                 "hiring_managers"),)),
            WorkflowTransition(
                id="pending_to_approved", name="approve_job", from_state="pending_approval",
                to_state="approved", label="Approve",
                description="Approve job requisition",
                requires_approval=True, approval_roles=("hiring_manager", "admin")),
            WorkflowTransition(
                id="approved_to_open", name="open_job", from_state="approved",
                to_state="open", label="Open Job",
                description="Publish job and start sourcing",
                actions=(_custom("publish_job", "publish_job"),)),
            WorkflowTransition(
                id="open_to_in_progress", name="start_submissions", from_state="open",
                to_state="in_progress", label="Mark In Progress",
                description="First candidate submitted",
                automated=True, automation_trigger=AutomationTrigger.EVENT),
            WorkflowTransition(
                id="in_progress_to_filled", name="fill_job", from_state="in_progress",
                to_state="filled", label="Mark as Filled",
                description="Job has been filled",
                conditions=(_exists("has_placement", "placementId"),)),
        ),
        initial_state="draft",
        final_states=("filled", "closed", "cancelled"),
        settings=WorkflowSettings(notify_on_transition=True, sla_days=60)
    )
)


TIMESHEET_APPROVAL_TEMPLATE = WorkflowTemplate(
    id="template_timesheet_approval",
    name="Timesheet Approval",
    description="Multi-level timesheet approval workflow",
    entity_type="timesheet",
    category="staffing",
    tags=("staffing", "timesheet", "approval", "finance"),
    definition=WorkflowDefinition(
        id="workflow_template_timesheet_approval",
        name="Timesheet Approval Workflow",
        description="Manage timesheet submissions through approval and payment",
        entity_type="timesheet",
        version="1.0.0",
        states=_states(
            ("draft", "Draft", "#94a3b8", INITIAL),
            ("submitted", "Submitted", "#3b82f6", INTERMEDIATE),
            ("manager_review", "Manager Review", "#8b5cf6", INTERMEDIATE),
            ("client_review", "Client Review", "#f59e0b", INTERMEDIATE),
            ("approved", "Approved", "#10b981", INTERMEDIATE),
            ("invoiced", "Invoiced", "#06b6d4", INTERMEDIATE),
            ("paid", "Paid", "#22c55e", FINAL),
            ("rejected", "Rejected", "#ef4444", FINAL),
        ),
        transitions=(
            WorkflowTransition(
                id="draft_to_submitted", name="submit_timesheet", from_state="draft",
                to_state="submitted", label="Submit Timesheet",
                description="Submit timesheet for approval",
                conditions=(WorkflowCondition(id="has_hours", type="field", field="totalHours",
                                              operator="greater_than", value=0),),
                actions=(_notify("notify_manager", "New timesheet submitted for approval",
                                 "manager"),)),
            WorkflowTransition(
                id="submitted_to_manager_review", name="manager_review", from_state="submitted",
                to_state="manager_review", label="Manager Review",
                description="Manager reviewing timesheet",
                automated=True, automation_trigger=AutomationTrigger.EVENT),
            WorkflowTransition(
                id="manager_to_client", name="send_to_client", from_state="manager_review",
                to_state="client_review", label="Send to Client",
                description="Forward to client for approval",
                requires_approval=True, approval_roles=("manager",)),
            WorkflowTransition(
                id="client_to_approved", name="client_approve", from_state="client_review",
                to_state="approved", label="Client Approves",
                description="Client approved timesheet",
                requires_approval=True, approval_roles=("client",),
                actions=(_custom("trigger_invoice", "generate_invoice"),)),
            WorkflowTransition(
                id="approved_to_invoiced", name="create_invoice", from_state="approved",
                to_state="invoiced", label="Generate Invoice",
                description="Invoice generated from timesheet",
                automated=True, automation_trigger=AutomationTrigger.CONDITION),
            WorkflowTransition(
                id="invoiced_to_paid", name="mark_paid", from_state="invoiced",
                to_state="paid", label="Mark as Paid",
                description="Payment received"),
            WorkflowTransition(
                id="reject_timesheet", name="reject", from_state="manager_review",
                to_state="rejected", label="Reject",
                description="Reject timesheet", requires_approval=True),
        ),
        initial_state="draft",
        final_states=("paid", "rejected"),
        settings=WorkflowSettings(require_comments=True, notify_on_transition=True, sla_days=14)
    )
)


INVOICE_PROCESSING_TEMPLATE = WorkflowTemplate(
    id="template_invoice_processing",
    name="Invoice Processing",
    description="Invoice approval and payment tracking workflow",
    entity_type="invoice",
    category="finance",
    tags=("finance", "invoice", "billing"),
    definition=WorkflowDefinition(
        id="workflow_template_invoice_processing",
        name="Invoice Processing Workflow",
        description="Manage invoices from creation to payment",
        entity_type="invoice",
        version="1.0.0",
        states=_states(
            ("draft", "Draft", "#94a3b8", INITIAL),
            ("pending_approval", "Pending Approval", "#f59e0b", INTERMEDIATE),
            ("approved", "Approved", "#10b981", INTERMEDIATE),
            ("sent", "Sent", "#3b82f6", INTERMEDIATE),
            ("viewed", "Viewed", "#06b6d4", INTERMEDIATE),
            ("partial_paid", "Partially Paid", "#8b5cf6", INTERMEDIATE),
            ("paid", "Paid", "#22c55e", FINAL),
            ("overdue", "Overdue", "#ef4444", INTERMEDIATE),
            ("cancelled", "Cancelled", "#94a3b8", FINAL),
        ),
        transitions=(
            WorkflowTransition(
                id="draft_to_pending", name="submit_for_approval", from_state="draft",
                to_state="pending_approval", label="Submit for Approval",
                description="Submit invoice for approval",
                conditions=(_exists("has_line_items", "lineItems"),
                            WorkflowCondition(id="has_total", type="field", field="totalAmount",
                                              operator="greater_than", value=0))),
            WorkflowTransition(
                id="pending_to_approved", name="approve_invoice", from_state="pending_approval",
                to_state="approved", label="Approve Invoice",
                description="Invoice approved for sending",
                requires_approval=True, approval_roles=("finance_manager", "admin")),
            WorkflowTransition(
                id="approved_to_sent", name="send_invoice", from_state="approved",
                to_state="sent", label="Send to Client",
                description="Send invoice to client",
                actions=(_email("send_email", "invoice_email", "client_finance"),)),
            WorkflowTransition(
                id="sent_to_viewed", name="mark_viewed", from_state="sent",
                to_state="viewed", label="Mark as Viewed",
                description="Client viewed invoice",
                automated=True, automation_trigger=AutomationTrigger.EVENT),
            WorkflowTransition(
                id="sent_to_paid", name="mark_paid", from_state="sent",
                to_state="paid", label="Mark as Paid",
                description="Payment received",
                conditions=(WorkflowCondition(id="payment_received", type="field",
                                              field="paidInFull", operator="equals", value=True),)),
            WorkflowTransition(
                id="check_overdue", name="mark_overdue", from_state="sent",
                to_state="overdue", label="Mark Overdue",
                description="Invoice payment overdue",
                automated=True, automation_trigger=AutomationTrigger.TIME,
                actions=(_email("send_reminder", "overdue_invoice_reminder", "client_finance"),)),
        ),
        initial_state="draft",
        final_states=("paid", "cancelled"),
        settings=WorkflowSettings(notify_on_transition=True, sla_days=30)
    )
)


WORKFLOW_TEMPLATES: List[WorkflowTemplate] = [
    CANDIDATE_LIFECYCLE_TEMPLATE,
    JOB_REQUISITION_TEMPLATE,
    TIMESHEET_APPROVAL_TEMPLATE,
    INVOICE_PROCESSING_TEMPLATE,
]


def get_templates_by_entity_type(entity_type: str) -> List[WorkflowTemplate]:
    return [t for t in WORKFLOW_TEMPLATES if t.entity_type == entity_type]


def get_template_by_id(template_id: str) -> Optional[WorkflowTemplate]:
    for template in WORKFLOW_TEMPLATES:
        if template.id == template_id:
            return template
    return None
