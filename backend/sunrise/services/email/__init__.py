from sunrise.services.email.client import EmailClient, EmailResult

__all__ = ["EmailClient", "EmailResult"]
