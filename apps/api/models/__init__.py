"""Models package."""

from .user import User
from .audit import Audit
from .module_result import AuditModuleResult
from .notification import Notification
from .alert_preferences import AlertPreference
