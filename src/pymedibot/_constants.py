"""Internal constants shared across the library."""

# ------------------------------------------------------------------
# Envelope cipher
# ------------------------------------------------------------------

#: Salt used by every deployment of the portal so far.  Changing it
#: makes previously stored envelopes undecryptable.
DEFAULT_KDF_SALT = "medibot-salt-secure-unique"
MIN_KDF_ITERATIONS = 100_000
KEY_LENGTH_BYTES = 32
IV_LENGTH_BYTES = 12

# ------------------------------------------------------------------
# Location sync cadence (seconds)
# ------------------------------------------------------------------

DEFAULT_REPORT_INTERVAL = 300.0
DEFAULT_POLL_INTERVAL = 300.0
DEFAULT_DEBOUNCE_INTERVAL = 5.0
DEFAULT_FIX_TIMEOUT = 10.0
DEFAULT_HISTORY_LIMIT = 10

# Placeholder shown to observers when a subject has never reported.
FALLBACK_LATITUDE = 12.823053
FALLBACK_LONGITUDE = 80.043621

# ------------------------------------------------------------------
# Record store schema
# ------------------------------------------------------------------

SUBJECTS_TABLE = "patients"
HISTORY_TABLE = "locations"
MQTT_TOPIC_PREFIX = "medibot/positions"
