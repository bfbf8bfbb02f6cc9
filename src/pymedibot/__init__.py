"""pymedibot - Field encryption and live location sync for the patient/attender portal."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pymedibot")
except PackageNotFoundError:
    __version__ = "0+local"
from pymedibot._crypto.envelope import EnvelopeCipher
from pymedibot.backend import RecordBackend, Subscription, SupabaseBackend
from pymedibot.client import MedibotClient
from pymedibot.config import MedibotConfig
from pymedibot.exceptions import (
    MedibotConfigError,
    MedibotCryptoError,
    MedibotError,
    MedibotLocationError,
    MedibotLocationTimeoutError,
    MedibotPermissionDeniedError,
    MedibotStoreError,
    MedibotSubscriptionError,
    MedibotTransportError,
)
from pymedibot.location import LocationSource
from pymedibot.models import (
    HistoryEntry,
    LocationFix,
    LocationSample,
    MedicalRecord,
    ObservedPosition,
    PositionSource,
    StoredPosition,
    UserRole,
)
from pymedibot.observer import ObserverHandle, PositionObserver
from pymedibot.reporter import LocationReporter, ReporterState, ReportingHandle

__all__ = [
    "__version__",
    "EnvelopeCipher",
    "HistoryEntry",
    "LocationFix",
    "LocationReporter",
    "LocationSample",
    "LocationSource",
    "MedibotClient",
    "MedibotConfig",
    "MedibotConfigError",
    "MedibotCryptoError",
    "MedibotError",
    "MedibotLocationError",
    "MedibotLocationTimeoutError",
    "MedibotPermissionDeniedError",
    "MedibotStoreError",
    "MedibotSubscriptionError",
    "MedibotTransportError",
    "MedicalRecord",
    "ObservedPosition",
    "ObserverHandle",
    "PositionObserver",
    "PositionSource",
    "RecordBackend",
    "ReporterState",
    "ReportingHandle",
    "StoredPosition",
    "Subscription",
    "SupabaseBackend",
    "UserRole",
]
