"""Domain modules package."""

from app.modules.booking import models as booking_models  # noqa: F401
from app.modules.notifications import models as notifications_models  # noqa: F401
from app.modules.outbox import models as outbox_models  # noqa: F401
from app.modules.scheduling import models as scheduling_models  # noqa: F401
from app.modules.wallet import models as wallet_models  # noqa: F401
