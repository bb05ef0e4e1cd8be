# zyra/version.py

import os

SERVICE_NAME = "zyra-api"
SERVICE_VERSION = "0.3.0"


def version_payload() -> dict:
    """Used by /version. ZYRA_BUILD_COMMIT is stamped in by the deploy pipeline when available."""
    payload = {
        "service": f"{SERVICE_NAME}:{SERVICE_VERSION}",
        "service_version": SERVICE_VERSION,
    }
    commit = os.getenv("ZYRA_BUILD_COMMIT")
    if commit:
        payload["commit"] = commit
    return payload
