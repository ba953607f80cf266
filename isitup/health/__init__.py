"""Health subsystem — prober, classifier, SQLite store.

The scheduler lives in ``isitup.health.scheduler``.
"""

from .classifier import classify
from .models import Check, CheckResult, ProbeFindings, Site, Status, User
from .prober import Prober, perform_check
from .store import CheckStore, SiteSource, SQLiteStore
