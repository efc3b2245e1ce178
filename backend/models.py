"""Import every ORM module so ``Base.metadata`` holds the full schema.

Used by Alembic and the test suite.
"""

from backend.auth import models as auth_models  # noqa: F401
from backend.billing import models as billing_models  # noqa: F401
from backend.common import audit as audit_models  # noqa: F401
from backend.companies import models as companies_models  # noqa: F401
from backend.core_hr import models as core_hr_models  # noqa: F401
from backend.documents import models as documents_models  # noqa: F401
from backend.emails import models as emails_models  # noqa: F401
from backend.leave import models as leave_models  # noqa: F401
from backend.notifications import models as notifications_models  # noqa: F401
from backend.payroll import models as payroll_models  # noqa: F401
from backend.performance import models as performance_models  # noqa: F401
from backend.permissions import models as permissions_models  # noqa: F401
from backend.recruitment import models as recruitment_models  # noqa: F401
from backend.shifts import models as shifts_models  # noqa: F401
from backend.time_tracking import models as time_tracking_models  # noqa: F401
from backend.database import Base

metadata = Base.metadata
