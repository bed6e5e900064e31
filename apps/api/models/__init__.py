from .consent import Consent  # noqa: F401
from .consent_handle import ConsentHandle  # noqa: F401
from .consent_template import ConsentTemplate  # noqa: F401
from .notification_trigger import NotificationTrigger  # noqa: F401
