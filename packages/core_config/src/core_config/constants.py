import os


# Registry base URL used when API_ENDPOINT is unset (local dev backend)
DEFAULT_API_ENDPOINT = os.getenv("API_ENDPOINT", "http://localhost:8080")

# Provider-side lifetime requested when hosting a cloud anchor.
# The client never expires anchors itself; the provider drops them after this.
CLOUD_ANCHOR_TTL_DAYS = int(os.getenv("CLOUD_ANCHOR_TTL_DAYS", "1"))

# Semantic tag carried by every anchor this client places or resolves
ANCHOR_TAG = os.getenv("ANCHOR_TAG", "placed-object")

# Bounded event journal (newest entries win)
JOURNAL_MAX_ENTRIES = int(os.getenv("JOURNAL_MAX_ENTRIES", "1000"))

# Stage budgets (ms) – env override keeps tests happy.
# A budget of 0 means "wait forever" and is only honoured for provider stages.
TIMEOUT_REGISTRY_MS = int(os.getenv("TIMEOUT_REGISTRY_MS", "5000"))
TIMEOUT_HOST_MS     = int(os.getenv("TIMEOUT_HOST_MS",     "60000"))
TIMEOUT_RESOLVE_MS  = int(os.getenv("TIMEOUT_RESOLVE_MS",  "60000"))

_STAGE_TIMEOUTS_MS = {
    "registry": TIMEOUT_REGISTRY_MS,
    "host": TIMEOUT_HOST_MS,
    "resolve": TIMEOUT_RESOLVE_MS,
}

def timeout_for_stage(stage: str) -> float:
    return _STAGE_TIMEOUTS_MS.get(stage, TIMEOUT_REGISTRY_MS) / 1000.0
