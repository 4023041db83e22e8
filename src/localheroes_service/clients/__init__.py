"""HTTP and SMTP clients for external collaborators."""

from localheroes_service.clients.ai_support_client import AISupportClient
from localheroes_service.clients.geocoding_client import GeocodingClient
from localheroes_service.clients.google_oauth_client import GoogleOAuthClient
from localheroes_service.clients.mail_client import MailClient

__all__ = ["AISupportClient", "GeocodingClient", "GoogleOAuthClient", "MailClient"]
