"""Domain modules package."""

from tutorbook.modules.booking import models as booking_models  # noqa: F401
from tutorbook.modules.identity import models as identity_models  # noqa: F401
from tutorbook.modules.notifications import models as notifications_models  # noqa: F401
from tutorbook.modules.scheduling import models as scheduling_models  # noqa: F401
