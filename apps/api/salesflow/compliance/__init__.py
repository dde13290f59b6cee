from salesflow.compliance.models import SuppressionEntry
from salesflow.compliance.schemas import SendDecision

__all__ = ["SendDecision", "SuppressionEntry"]
