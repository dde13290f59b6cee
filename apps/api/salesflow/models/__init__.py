from salesflow.approvals.models import ApprovalRequest
from salesflow.compliance.models import SuppressionEntry
from salesflow.crm.models import Activity, Lead, Proposal, Task
from salesflow.messaging.models import EmailAccount, EmailMessage
from salesflow.sequences.models import Sequence, SequenceEnrollment, SequenceStep
from salesflow.workflows.models import Workflow, WorkflowRun

__all__ = [
    "Activity",
    "ApprovalRequest",
    "EmailAccount",
    "EmailMessage",
    "Lead",
    "Proposal",
    "Sequence",
    "SequenceEnrollment",
    "SequenceStep",
    "SuppressionEntry",
    "Task",
    "Workflow",
    "WorkflowRun",
]
