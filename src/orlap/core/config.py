import logging
import os
import yaml
from pathlib import Path
from typing import Optional, List
from dotenv import load_dotenv
from pydantic import ValidationError

from .models import Config, FieldKey, MatchPolicy

# Load .env
load_dotenv()

logger = logging.getLogger(__name__)

class Settings:
    DEFAULT_BANK: str = os.getenv("ORLAP_DEFAULT_BANK", "BRI")
    LOG_LEVEL: str = os.getenv("ORLAP_LOG_LEVEL", "INFO")
    MAX_FILE_MB: int = int(os.getenv("ORLAP_MAX_FILE_MB", "10"))

    # User Config (defaults)
    config: Config = Config()

    _cli_lang_set: bool = False # Track if CLI overrode lang

    def __init__(self):
        self._init_i18n()

    def _init_i18n(self):
        # Priority: CLI > Config > ENV > default "id"
        env_lang = os.getenv("ORLAP_LANG")

        from .i18n import get_i18n
        self.i18n = get_i18n()
        self.i18n.set_language(env_lang or "id")

    def set_cli_language(self, lang: str):
        """Called by CLI callback to enforce language."""
        if lang:
            self.i18n.set_language(lang)
            self._cli_lang_set = True

    @property
    def default_bank(self) -> str:
        return self.config.default_bank or self.DEFAULT_BANK

    @property
    def max_file_bytes(self) -> int:
        mb = self.config.max_file_size_mb or self.MAX_FILE_MB
        return mb * 1024 * 1024

    @property
    def min_block_length(self) -> int:
        return self.config.min_block_length

    @property
    def match_policy(self) -> MatchPolicy:
        return self.config.match_policy

    @property
    def required_fields(self) -> Optional[List[FieldKey]]:
        return self.config.required_fields

    def load_user_config(self, config_path: Path):
        """Load configuration from .orlap/config.yml"""
        if not config_path.exists():
            return
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Failed to read config %s: %s", config_path, e)
            return

        if not data:
            return
        try:
            self.config = Config.model_validate(data)
        except ValidationError as e:
            logger.warning("Ignoring invalid config %s: %s", config_path, e)
            return

        # Config beats ENV, CLI beats Config
        if self.config.lang and not self._cli_lang_set:
            self.i18n.set_language(self.config.lang)

    def reset(self):
        """Drop user config; used between CLI invocations in tests."""
        self.config = Config()
        self._cli_lang_set = False

settings = Settings()
