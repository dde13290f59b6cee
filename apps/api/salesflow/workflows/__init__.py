from salesflow.workflows.models import Workflow, WorkflowRun
from salesflow.workflows.schemas import WorkflowDefinition

__all__ = ["Workflow", "WorkflowDefinition", "WorkflowRun"]
