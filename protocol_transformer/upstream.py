"""
Upstream Configuration Model

Base URL and credential settings shared by every outbound transformer.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

# A base URL ending with this marker is used verbatim, without version normalization
RAW_URL_MARKER = "##"


class UpstreamConfig(BaseModel):
    """Upstream Base Model"""

    # Base URL
    base_url: str = Field("", description="Base URL")
    # API Key
    api_key: str = Field("", description="API Key")
    # Use base_url as the full request URL
    raw_url: bool = Field(False, description="Raw URL")
    # Insert the API version segment when the base URL lacks it
    versioned: bool = Field(True, description="Versioned")

    @field_validator("base_url")
    @classmethod
    def strip_base_url(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @model_validator(mode="after")
    def detect_raw_url(self) -> "UpstreamConfig":
        if self.base_url.endswith(RAW_URL_MARKER):
            self.base_url = self.base_url[: -len(RAW_URL_MARKER)].rstrip("/")
            self.raw_url = True
        return self

    def endpoint(self, path: str, version: Optional[str] = "v1") -> str:
        """
        Join `path` to the base URL, inserting the API version when the base lacks it.

        Args:
            path: Endpoint path starting with "/"
            version: Version segment such as "v1"; None disables insertion

        Returns:
            str: Full endpoint URL
        """
        if self.raw_url or not self.versioned or not version or self.base_url.endswith("/" + version):
            return self.base_url + path
        return f"{self.base_url}/{version}{path}"

    def request_url(self, path: str, version: Optional[str] = "v1") -> str:
        """Full request URL: the base URL itself in raw mode, otherwise `endpoint(path, version)`."""
        if self.raw_url:
            return self.base_url
        return self.endpoint(path, version)
