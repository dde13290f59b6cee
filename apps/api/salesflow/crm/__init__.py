from salesflow.crm.models import Activity, Lead, Proposal, Task

__all__ = ["Activity", "Lead", "Proposal", "Task"]
