"""Azure security posture audit: rule-driven evaluation, reporting and remediation."""

from .settings import APPLICATION_VERSION as __version__
