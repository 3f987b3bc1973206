import logging
import yaml
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

SUPPORTED_LANGS = ("id", "en")
DEFAULT_LANG = "id"

# src/orlap/core/i18n.py -> src/orlap/i18n/<lang>.yml
CATALOG_DIR = Path(__file__).parent.parent / "i18n"

_i18n_instance = None


def load_catalog(lang: str) -> Dict[str, Any]:
    """Read one message catalog; an unreadable file yields an empty catalog."""
    path = CATALOG_DIR / f"{lang}.yml"
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error("Error loading translation for %s: %s", lang, e)
        return {}


class I18n:
    """Bot and CLI messages in Indonesian (default) and English.

    Keys are dotted paths into the YAML catalogs ("bot.welcome"). A key
    missing from the active catalog is looked up in the Indonesian one,
    and a key missing everywhere is returned as is.
    """

    def __init__(self):
        self.lang = DEFAULT_LANG
        self.translations: Dict[str, Dict[str, Any]] = {}

    def set_language(self, lang: str):
        self.lang = lang if lang in SUPPORTED_LANGS else DEFAULT_LANG
        self._catalog(self.lang)

    def _catalog(self, lang: str) -> Dict[str, Any]:
        if lang not in self.translations:
            self.translations[lang] = load_catalog(lang)
        return self.translations[lang]

    def _get_value(self, lang: str, key: str) -> Optional[Any]:
        node: Any = self._catalog(lang)
        for part in key.split("."):
            if not isinstance(node, dict):
                return None
            node = node.get(part)
        return node

    def t(self, key: str, **kwargs) -> str:
        val = self._get_value(self.lang, key)
        if val is None and self.lang != DEFAULT_LANG:
            val = self._get_value(DEFAULT_LANG, key)
        if val is None:
            return key
        if not isinstance(val, str):
            return str(val)
        try:
            return val.format(**kwargs)
        except (KeyError, IndexError):
            # missing placeholders: hand back the template
            return val


def get_i18n() -> I18n:
    global _i18n_instance
    if _i18n_instance is None:
        _i18n_instance = I18n()
    return _i18n_instance


def t(key: str, **kwargs) -> str:
    return get_i18n().t(key, **kwargs)
