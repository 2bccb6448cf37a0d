"""
Verifier configuration: browser launch, target pages, directory credentials and pacing.
Uses the MV_VERIFIER_ prefix; database and schedule settings live in shared.config.
"""
from __future__ import annotations

import os
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class VerifierSettings(BaseSettings):
    """Verifier-specific settings; use get_settings() for DB and schedule."""

    model_config = SettingsConfigDict(
        env_prefix="MV_VERIFIER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Browser
    headless: bool = Field(default=True, description="Run Chromium without a window")
    visible: bool = Field(default=False, description="Supervised run: visible window and longer timeouts")
    executable_path: Optional[str] = Field(
        default=None, description="Chromium binary for hosts without a bundled browser"
    )
    navigation_timeout_ms: int = Field(default=30_000, description="Per-navigation timeout")
    supervised_timeout_ms: int = Field(default=60_000, description="Per-navigation timeout in visible mode")
    settle_delay_s: float = Field(default=1.0, description="Pause after load for late scripts")

    # Gated member directory
    directory_login_url: str = "https://members.kappaalphapsi1911.com/s/login/"
    directory_search_url: str = Field(
        default="https://members.kappaalphapsi1911.com/s/global-search/{query}",
        description="Search page; {query} is replaced with the URL-encoded search term",
    )
    directory_username: str = ""
    directory_password: str = ""
    login_username_selector: str = "input[type='email'], input[name='username'], input[type='text']"
    login_password_selector: str = "input[type='password']"
    login_submit_selector: str = "button[type='submit'], input[type='submit'], button.loginButton"
    login_success_url_fragment: str = "/s/"
    search_by: str = Field(default="membership_number", description="membership_number or name")

    # Public vendor listing
    vendor_listing_url: str = "https://www.kappaalphapsi1911.com/vendor-program/"

    # Pacing (seconds)
    cached_item_delay_s: float = Field(default=0.5, description="Delay between subjects matched against cached content")
    navigated_item_delay_s: float = Field(default=1.0, description="Delay between subjects needing their own search")

    # Diagnostic record mode
    record_login_timeout_s: float = Field(default=300.0, description="How long to wait for a manual login")

    @model_validator(mode="after")
    def executable_from_env(self) -> "VerifierSettings":
        """Fall back to the buildpack-provided Chrome binary."""
        if not self.executable_path:
            self.executable_path = (
                os.environ.get("PUPPETEER_EXECUTABLE_PATH") or os.environ.get("CHROME_BIN") or None
            )
        return self

    @property
    def effective_headless(self) -> bool:
        return self.headless and not self.visible

    @property
    def effective_timeout_ms(self) -> int:
        return self.supervised_timeout_ms if self.visible else self.navigation_timeout_ms

    @property
    def has_directory_credentials(self) -> bool:
        return bool(self.directory_username and self.directory_password)


def get_verifier_settings(**overrides: object) -> VerifierSettings:
    """Load verifier settings; keyword overrides win over the environment (CLI flags)."""
    return VerifierSettings(**overrides)
