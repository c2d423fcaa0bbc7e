from relaybot.i18n.service import I18nService, normalize_locale

__all__ = ["I18nService", "normalize_locale"]
