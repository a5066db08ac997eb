from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# The policy every custom hostname is reconciled towards.
TARGET_MIN_TLS_VERSION = "1.2"

# Stored when Cloudflare reports no ssl.settings.min_tls_version at all.
UNKNOWN_TLS_VERSION = "unknown"

# Cloudflare's default page size for the custom_hostnames listing.
SYNC_PAGE_SIZE = 50

# Upper bound on remote mutations per remediation pass. Larger backlogs are
# drained by re-invoking the pass.
REMEDIATION_BATCH_SIZE = 100

# Cloudflare rejects an ssl PATCH without method/type, so these accompany the
# min_tls_version change even though only the TLS setting is meant to move.
REMEDIATION_SSL_METHOD = "txt"
REMEDIATION_SSL_TYPE = "dv"


@dataclass
class SyncResult:
    total_processed: int = 0
    total_inserted: int = 0
    pages_fetched: int = 0
    timestamp: str = ""  # ISO 8601, completion time


@dataclass
class RemediationResult:
    updated: int = 0
    errors: list[str] = field(default_factory=list)  # "<hostname>: <status/detail>"
    attempted: int = 0
    timestamp: str = ""  # ISO 8601, completion time
