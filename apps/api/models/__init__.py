"""Models package."""

from .user import User
from .integration_api_key import IntegrationApiKey
from .uid_record import UidRecord
from .activity_log import ActivityLog
from .external_api_settings import ExternalApiSettings
