from salesflow.messaging.models import EmailAccount, EmailMessage
from salesflow.messaging.providers import EmailProvider, InboundEmail, ProviderRegistry, StubEmailProvider

__all__ = ["EmailAccount", "EmailMessage", "EmailProvider", "InboundEmail", "ProviderRegistry", "StubEmailProvider"]
