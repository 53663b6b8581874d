"""Relay configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Telegram channel config
    telegram_bot_token: str | None = None
    telegram_allowed_chat_ids: list[int] = []

    # CDP target discovery and transport
    cdp_host: str = "127.0.0.1"
    cdp_ports: list[int] = [9222, 9000, 9001, 9002, 9003]
    cdp_call_timeout: float = 30.0
    cdp_settle_delay: float = 1.0  # absorbs the burst of context-created events
    discovery_timeout: float = 2.0
    target_url_keywords: list[str] = ["workbench"]
    target_title_keywords: list[str] = ["Antigravity", "Cascade"]
    target_url_exclude: list[str] = ["workbench-jetski-agent"]
    launcher_title: str = "Launchpad"

    # Response monitor timings (seconds)
    poll_interval: float = 2.0
    initial_delay: float = 3.0
    approval_grace: float = 3.0
    approval_timeout: float = 60.0
    idle_threshold: int = 3
    clear_attempts: int = 15
    clear_interval: float = 0.5
    click_timeout: float = 5.0
    chunk_size: int = 3900

    # Workspace (None disables the file watcher and attachment download)
    watch_dir: str | None = None
    upload_subdir: str = "telegram_uploads"
    max_upload_bytes: int = 8 * 1024 * 1024

    # Logging
    log_level: str = "INFO"
    interaction_log: str = "relay_interaction.log"

    model_config = SettingsConfigDict(env_prefix="RELAY_", env_file=".env", extra="ignore")
