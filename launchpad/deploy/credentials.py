"""Pre-flight credential checks."""

from launchpad.config import Settings
from launchpad.models.deployment import AppType
from launchpad.utils.logging import get_logger

# Environment variable name -> Settings attribute
CREDENTIAL_FIELDS = {
    "GITHUB_TOKEN": "github_token",
    "RAILWAY_TOKEN": "railway_token",
    "CLOUDFLARE_TOKEN": "cloudflare_token",
    "CLOUDFLARE_ZONE_ID": "cloudflare_zone_id",
    "CLOUDFLARE_ZONE_ID_APP": "cloudflare_zone_id_app",
}

REQUIRED_CREDENTIALS: dict[AppType, tuple[str, ...]] = {
    AppType.WEBSITE: (
        "GITHUB_TOKEN",
        "RAILWAY_TOKEN",
        "CLOUDFLARE_TOKEN",
        "CLOUDFLARE_ZONE_ID",
    ),
    AppType.ADVANCED_APP: (
        "GITHUB_TOKEN",
        "RAILWAY_TOKEN",
        "CLOUDFLARE_TOKEN",
        "CLOUDFLARE_ZONE_ID_APP",
    ),
    # Companion apps live on the app domain but belong to a site on the root domain
    AppType.COMPANION_APP: (
        "GITHUB_TOKEN",
        "RAILWAY_TOKEN",
        "CLOUDFLARE_TOKEN",
        "CLOUDFLARE_ZONE_ID",
        "CLOUDFLARE_ZONE_ID_APP",
    ),
}


class CredentialValidator:
    """Checks that every token and zone an app type needs is configured.

    Read-only: it only inspects the settings object and never touches the
    network.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.logger = get_logger("deploy.credentials")

    def missing(self, platform: str | AppType) -> list[str]:
        """Names of the unset variables for ``platform``.

        Raises:
            ValueError: If ``platform`` is not a known app type
        """
        app_type = AppType(platform)
        return [
            name
            for name in REQUIRED_CREDENTIALS[app_type]
            if not getattr(self.settings, CREDENTIAL_FIELDS[name])
        ]

    def validate(self, platform: str | AppType) -> bool:
        name = getattr(platform, "value", platform)
        try:
            missing = self.missing(platform)
        except ValueError:
            self.logger.error("credentials.unknown_platform", platform=name)
            return False

        if missing:
            self.logger.error("credentials.missing", platform=name, missing=missing)
            return False
        return True

    def readiness(self) -> dict[str, dict[str, object]]:
        """Per app type readiness, for status endpoints."""
        report: dict[str, dict[str, object]] = {}
        for app_type in AppType:
            missing = self.missing(app_type)
            report[app_type.value] = {"ready": not missing, "missing": missing}
        return report
