"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_REPOSITORY_URL = "https://extensions.gnome.org"
DEFAULT_EXTENSIONS_DIR = "~/.local/share/gnome-shell/extensions"
DEFAULT_SYSTEM_DIRS = ["/usr/share/gnome-shell/extensions"]
DEFAULT_SELF_UUID = "updater@patapon.info"

# Five days between full checks, five minutes after a failed one
DEFAULT_UPDATE_INTERVAL = 432000
DEFAULT_RETRY_DELAY = 300

# Describes how each repository protocol variant shapes its requests
PROTOCOL_MAP = {
    "legacy": {
        "name": "Full records, bare operations",
        "installed": "record",
        "version_tags": False,
    },
    "tagged": {
        "name": "Versions with version tags",
        "installed": "version",
        "version_tags": True,
    },
}


def get_protocol_info(protocol: str) -> dict:
    """Gets all information for a given protocol variant from the central map."""
    return PROTOCOL_MAP.get(protocol, PROTOCOL_MAP["legacy"])


class UpdaterConfig(BaseModel):
    """A validated configuration model for the application."""

    # Repository
    repository_url: str = DEFAULT_REPOSITORY_URL
    shell_version: str = "3.4.1"
    api_version: str = "1"
    protocol: str = "legacy"
    request_timeout: int = 10

    # Host
    extensions_dir: str = DEFAULT_EXTENSIONS_DIR
    system_dirs: list[str] = Field(default_factory=lambda: list(DEFAULT_SYSTEM_DIRS))
    disabled_extensions: list[str] = Field(default_factory=list)
    self_uuid: str = DEFAULT_SELF_UUID

    # Scheduling
    update_interval: int = DEFAULT_UPDATE_INTERVAL
    retry_delay: int = DEFAULT_RETRY_DELAY
    startup_delay: int = 6

    # Update behaviour
    max_workers: int = 4
    auto_update: bool = False
    pretend_outdated: bool = False
    json_log: bool = False

    # Internal fields not loaded from INI file
    config_path: str = Field(..., repr=False)

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("repository_url")
    @classmethod
    def validate_repository_url(cls, v: str) -> str:
        """Ensures the repository URL is an absolute HTTP(S) URL without a trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Repository URL must start with http:// or https://.")
        return v.rstrip("/")

    @field_validator("protocol")
    @classmethod
    def validate_protocol(cls, v: str) -> str:
        v = v.lower()
        if v not in PROTOCOL_MAP:
            raise ValueError(
                f"Protocol must be one of: {', '.join(sorted(PROTOCOL_MAP))}."
            )
        return v

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensures a reasonable number of workers."""
        if v < 1 or v > 16:
            raise ValueError("Max workers must be between 1 and 16.")
        return v

    @field_validator("request_timeout", "startup_delay")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Timeouts and delays cannot be negative.")
        return v

    @model_validator(mode="after")
    def validate_schedule(self) -> "UpdaterConfig":
        """Checks that the retry delay is shorter than the full check interval."""
        if self.update_interval < 60:
            raise ValueError("Update interval must be at least 60 seconds.")
        if self.retry_delay < 1:
            raise ValueError("Retry delay must be at least 1 second.")
        if self.retry_delay >= self.update_interval:
            raise ValueError("Retry delay must be shorter than the update interval.")
        return self

    @property
    def uses_version_tags(self) -> bool:
        return bool(get_protocol_info(self.protocol)["version_tags"])

    @property
    def update_info_url(self) -> str:
        return f"{self.repository_url}/update-info/"

    def download_url(self, uuid: str) -> str:
        return f"{self.repository_url}/download-extension/{uuid}.shell-extension.zip"

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
