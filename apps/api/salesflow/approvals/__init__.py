from salesflow.approvals.models import ApprovalRequest

__all__ = ["ApprovalRequest"]
