import unittest
import sys
from pathlib import Path

import yaml

sys.path.insert(0, str(Path(__file__).parents[1] / "src"))

from orlap.core.i18n import I18n, SUPPORTED_LANGS

CATALOGS = Path(__file__).parents[1] / "src" / "orlap" / "i18n"


def flatten(data, prefix=""):
    keys = set()
    for key, value in data.items():
        path = f"{prefix}{key}"
        if isinstance(value, dict):
            keys |= flatten(value, path + ".")
        else:
            keys.add(path)
    return keys


class TestI18n(unittest.TestCase):
    def setUp(self):
        self.i18n = I18n()

    def test_default_is_id(self):
        self.assertEqual(self.i18n.lang, "id")
        self.assertEqual(self.i18n.t("cli.init.prompt_setup"), "Ingin mengatur konfigurasi sekarang?")

    def test_switch_to_en(self):
        self.i18n.set_language("en")
        self.assertEqual(self.i18n.lang, "en")
        self.assertEqual(self.i18n.t("cli.init.prompt_setup"), "Do you want to configure settings now?")

    def test_unknown_language_falls_back(self):
        self.i18n.set_language("ru")
        self.assertEqual(self.i18n.lang, "id")

    def test_missing_key_returns_key(self):
        self.assertEqual(self.i18n.t("missing.key"), "missing.key")

    def test_fallback_en_to_id(self):
        self.i18n.set_language("en")
        del self.i18n.translations["en"]["bot"]["welcome"]
        self.assertEqual(self.i18n.t("bot.welcome"), I18n().t("bot.welcome"))

    def test_formatting(self):
        self.i18n.set_language("en")
        self.assertEqual(self.i18n.t("bot.auth_not_found", code="X1"), "Field staff code 'X1' was not found. Try again.")
        # missing placeholders leave the template as is
        self.assertIn("{code}", self.i18n.t("bot.auth_not_found"))

    def test_catalogs_have_same_keys(self):
        keys = {}
        for lang in SUPPORTED_LANGS:
            with open(CATALOGS / f"{lang}.yml", encoding="utf-8") as f:
                keys[lang] = flatten(yaml.safe_load(f))
        self.assertEqual(keys["id"], keys["en"])


if __name__ == '__main__':
    unittest.main()
