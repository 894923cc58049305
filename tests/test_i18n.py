"""Tests for the translation catalog."""
import json

import pytest

from i18n import Translator, LOCALES_DIR


class TestTranslator:
    def test_substitutes_every_occurrence(self, translator):
        text = translator.t("TEMP_ALERT", "en", temp=71, threshold=60)
        assert text == "🔥 *Overheat:* inverter temperature is *71 °C* (threshold 60 °C)."

    def test_french(self, translator):
        assert translator.t("COMPARE_NOT_ENOUGH_DATA", "fr") == "pas assez de données"

    def test_unknown_language_falls_back_to_english(self, translator):
        assert translator.t("COMPARE_NOT_ENOUGH_DATA", "de") == "not enough data"

    def test_missing_key(self, translator):
        assert translator.t("NO_SUCH_KEY", "en") == "Missing translation: NO_SUCH_KEY"

    def test_catalogs_have_same_keys(self):
        with open(f"{LOCALES_DIR}/en.json", encoding="utf-8") as f:
            en = json.load(f)
        with open(f"{LOCALES_DIR}/fr.json", encoding="utf-8") as f:
            fr = json.load(f)
        assert set(en) == set(fr)

    def test_missing_catalog_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Translator(languages=("en",), locales_dir=str(tmp_path))
