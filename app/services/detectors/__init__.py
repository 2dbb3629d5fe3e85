from app.services.detectors.base import serialize_parameters
from app.services.detectors.credential_usage import (
    SHARED_CREDENTIAL_THRESHOLD,
    detect_credential_usage,
    usage_by_credential,
    workflow_references,
)
from app.services.detectors.deprecated import DEPRECATED_NODES, detect_deprecated
from app.services.detectors.plaintext import PLAINTEXT_PATTERNS, detect_plaintext
from app.services.detectors.weak_auth import WEAK_AUTH_PATTERNS, detect_weak_auth

# Per-workflow detectors, run over active workflows only
WORKFLOW_DETECTORS = (detect_plaintext, detect_deprecated, detect_weak_auth)

__all__ = [
    "serialize_parameters",
    "SHARED_CREDENTIAL_THRESHOLD", "detect_credential_usage", "usage_by_credential", "workflow_references",
    "DEPRECATED_NODES", "detect_deprecated",
    "PLAINTEXT_PATTERNS", "detect_plaintext",
    "WEAK_AUTH_PATTERNS", "detect_weak_auth",
    "WORKFLOW_DETECTORS",
]
