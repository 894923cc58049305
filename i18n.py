"""Translation catalog for bot messages."""
import json
import logging
import os

logger = logging.getLogger(__name__)

LOCALES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "locales")
FALLBACK_LANGUAGE = "en"


class Translator:
    """Looks up message templates by key and fills ``{placeholder}`` variables."""

    def __init__(self, languages=("en", "fr"), locales_dir=LOCALES_DIR):
        self.catalogs = {}
        for lang in languages:
            path = os.path.join(locales_dir, f"{lang}.json")
            try:
                with open(path, "r", encoding="utf-8") as f:
                    self.catalogs[lang] = json.load(f)
            except Exception:
                logger.critical("Could not load language file %s", path)
                raise

    def t(self, key, lang=None, **variables):
        """Return the ``key`` template in ``lang`` with variables substituted.

        Falls back to English, then to a visible "Missing translation" marker.
        """
        text = (self.catalogs.get(lang or FALLBACK_LANGUAGE, {}).get(key)
                or self.catalogs.get(FALLBACK_LANGUAGE, {}).get(key))
        if text is None:
            logger.warning("Missing translation: %s (%s)", key, lang)
            return f"Missing translation: {key}"
        for name, value in variables.items():
            text = text.replace("{" + name + "}", str(value))
        return text
