"""
snapshot/models.py -- Domain dataclass for the local hostname snapshot.

Pure data container with zero logic. The compliance flag is derived by the
reconcile engine at write time (core/reconcile.py) and stored as-is; nothing
recomputes it when a row is read back.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class HostnameRecord:
    """One Cloudflare custom hostname and its last-known TLS posture.

    id is Cloudflare's identifier and the primary key; hostname is not unique.
    ssl_* fields are mirrored verbatim from the API and never interpreted.

    needs_update reflects min_tls_version as of the last write by either pass.
    """

    id: str
    hostname: str
    min_tls_version: str
    needs_update: bool
    ssl_status: Optional[str] = None
    ssl_method: Optional[str] = None
    ssl_type: Optional[str] = None
    last_updated: str = ""  # ISO 8601, set on every write
    created_at: str = ""  # ISO 8601, set by store on first insert
