# config.py — validated, JSON-persisted settings for the update cycle

import logging
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

import settings

logger = logging.getLogger(__name__)


class UpdaterConfig(BaseModel):
    # ─── Remote service ──────────────────────────────────────────
    api_url: str           = Field(settings.API_URL, min_length=1, description="Chat-completion endpoint")
    model: str             = Field(settings.MODEL, min_length=1, description="Model name sent with each request")
    temperature: float     = Field(settings.TEMPERATURE, ge=0.0, le=2.0, description="Sampling temperature")
    api_key_env: str       = Field(settings.API_KEY_ENV, min_length=1, description="Env var holding the bearer token")
    request_timeout: float = Field(settings.REQUEST_TIMEOUT, gt=0, description="Seconds per HTTP request")

    # ─── Retry ceilings ──────────────────────────────────────────
    max_retries: int          = Field(settings.MAX_RETRIES, ge=1, description="Total API attempts")
    retry_delay: float        = Field(settings.RETRY_DELAY, ge=0, description="Seconds between API attempts")
    max_restart_attempts: int = Field(settings.MAX_RESTART_ATTEMPTS, ge=1, description="Restart attempts before giving up")
    restart_delay: float      = Field(settings.RESTART_DELAY, ge=0, description="Seconds between restart attempts")
    early_exit_window: float  = Field(settings.EARLY_EXIT_WINDOW, ge=0, description="Seconds to watch a new child for a failing exit")

    # ─── Policy ──────────────────────────────────────────────────
    fallback_restart: bool = Field(True, description="Restart the current version when an update fails")
    strip_code_fences: bool = Field(True, description="Unwrap a Markdown fence around the returned code")

    # ─── Files ───────────────────────────────────────────────────
    log_file: str     = Field(settings.LOG_FILE, description="Rotating log file")
    journal_path: str = Field(settings.JOURNAL_PATH, description="JSON history of update outcomes")
    child_log: str    = Field(settings.CHILD_LOG, description="Output of the restarted process")


class ConfigManager:
    """
    Wraps an UpdaterConfig and persists it to disk as JSON.
    Loads existing config or creates defaults; invalid files are reset.
    """

    def __init__(self, path: str = settings.CONFIG_PATH):
        self.path = Path(path)
        self.cfg = self._load_or_create()

    def _load_or_create(self) -> UpdaterConfig:
        if not self.path.exists():
            logger.info(f"[CONFIG] No config found at {self.path!r}, creating default.")
            return self._create_default()

        try:
            raw = self.path.read_text(encoding="utf-8")
            return UpdaterConfig.model_validate_json(raw)
        except (ValidationError, ValueError) as e:
            logger.warning(f"[CONFIG] Failed to parse {self.path!r}: {e!r}, resetting to defaults.")
            return self._create_default()

    def _create_default(self) -> UpdaterConfig:
        cfg = UpdaterConfig()
        self._write_config(cfg)
        return cfg

    def _write_config(self, cfg: UpdaterConfig) -> None:
        try:
            self.path.write_text(cfg.model_dump_json(indent=4), encoding="utf-8")
        except OSError as e:
            logger.error(f"[CONFIG] Could not write {self.path!r}: {e!r}")

