from __future__ import annotations

import json
import logging
from pathlib import Path

LOGGER = logging.getLogger(__name__)


class I18N:
    def __init__(self, base_dir: Path, default_locale: str, supported_locales: list[str] | None = None) -> None:
        self.base_dir = base_dir
        self.default_locale = default_locale
        self.supported_locales = supported_locales or [default_locale]
        self._messages: dict[str, dict[str, str]] = {}
        for locale in {default_locale, *self.supported_locales}:
            self.load_locale(locale)

    def load_locale(self, locale: str) -> None:
        path = self.base_dir / f"{locale}.json"
        if not path.exists():
            LOGGER.warning("Locale file not found: %s", path)
            return
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        if isinstance(payload, dict):
            self._messages[locale] = {str(k): str(v) for k, v in payload.items()}

    def t(self, key: str, locale: str | None = None, **kwargs: object) -> str:
        locale_key = locale if locale in self._messages else self.default_locale
        template = self._messages.get(locale_key, {}).get(
            key, self._messages.get(self.default_locale, {}).get(key, key)
        )
        return template.format(**kwargs)
