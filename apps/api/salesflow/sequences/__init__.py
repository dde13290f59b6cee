from salesflow.sequences.models import Sequence, SequenceEnrollment, SequenceStep

__all__ = ["Sequence", "SequenceEnrollment", "SequenceStep"]
