from datetime import datetime
from typing import Any, Dict, Optional

from app.config.settings import settings

FALLBACK_LANGUAGE = "en"

MONTH_ABBREVIATIONS = {
    "en": ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"],
    "tr": ["Oca", "Şub", "Mar", "Nis", "May", "Haz", "Tem", "Ağu", "Eyl", "Eki", "Kas", "Ara"],
}

CATALOG: Dict[str, Dict[str, str]] = {
    "en": {
        "datetime.short": "{month} {day}, {time}",
        "event_reminder.title": "{emoji} {event_title}",
        "event_reminder.title_with_pet": "{emoji} {pet_name}: {event_title}",
        "event_reminder.body.days.one": "{when} (in 1 day)",
        "event_reminder.body.days.other": "{when} (in {count} days)",
        "event_reminder.body.hours.one": "{when} (in 1 hour)",
        "event_reminder.body.hours.other": "{when} (in {count} hours)",
        "event_reminder.body.minutes.one": "{when} (in 1 minute)",
        "event_reminder.body.minutes.other": "{when} (in {count} minutes)",
        "event_reminder.body.now": "{when} (now)",
        "feeding_reminder.title": "🍽️ Feeding time for {pet_name}",
        "feeding_reminder.body": "Time to feed {pet_name}: {amount} of {food_type}",
        "budget_alert.warning.title": "Budget alert",
        "budget_alert.warning.body": (
            "You've used {percentage:.0f}% of your monthly budget. "
            "{currency} {remaining:.2f} remaining."
        ),
        "budget_alert.critical.title": "Budget exceeded",
        "budget_alert.critical.body": (
            "You've exceeded your monthly budget by {currency} {exceeded:.2f}. "
            "Current spending: {currency} {current:.2f} / {currency} {budget:.2f}"
        ),
    },
    "tr": {
        "datetime.short": "{day} {month}, {time}",
        "event_reminder.title": "{emoji} {event_title}",
        "event_reminder.title_with_pet": "{emoji} {pet_name}: {event_title}",
        "event_reminder.body.days.other": "{when} ({count} gün sonra)",
        "event_reminder.body.hours.other": "{when} ({count} saat sonra)",
        "event_reminder.body.minutes.other": "{when} ({count} dakika sonra)",
        "event_reminder.body.now": "{when} (şimdi)",
        "feeding_reminder.title": "🍽️ {pet_name} için mama zamanı",
        "feeding_reminder.body": "{pet_name} beslenme zamanı: {amount} {food_type}",
        "budget_alert.warning.title": "Bütçe uyarısı",
        "budget_alert.warning.body": (
            "Aylık bütçenizin %{percentage:.0f} kadarını kullandınız. "
            "Kalan: {currency} {remaining:.2f}."
        ),
        "budget_alert.critical.title": "Bütçe aşıldı",
        "budget_alert.critical.body": (
            "Aylık bütçenizi {currency} {exceeded:.2f} aştınız. "
            "Mevcut harcama: {currency} {current:.2f} / {currency} {budget:.2f}"
        ),
    },
}


def normalize_language(language: Optional[str]) -> str:
    """Reduce ``tr-TR``-style tags to a catalog language, falling back to English"""
    if not language:
        language = settings.DEFAULT_LANGUAGE
    code = language.split("-")[0].split("_")[0].lower()
    return code if code in CATALOG else FALLBACK_LANGUAGE


def _template(key: str, language: str) -> str:
    table = CATALOG.get(normalize_language(language), {})
    if key in table:
        return table[key]
    return CATALOG[FALLBACK_LANGUAGE][key]


def render(key: str, language: str, **params: Any) -> str:
    """Render catalog entry ``key`` in ``language``; missing keys fall back to English"""
    return _template(key, language).format(**params)


def render_count(key: str, count: int, language: str, **params: Any) -> str:
    """Render ``key.one`` or ``key.other`` depending on ``count``"""
    table = CATALOG.get(normalize_language(language), {})
    plural_key = f"{key}.one" if count == 1 else f"{key}.other"
    if count == 1 and plural_key not in table:
        plural_key = f"{key}.other"
    return render(plural_key, language, count=count, **params)


def format_short_datetime(value: datetime, language: str) -> str:
    """``Mar 5, 14:30`` (en) / ``5 Mar, 14:30`` (tr) for an already-localized datetime"""
    months = MONTH_ABBREVIATIONS.get(
        normalize_language(language), MONTH_ABBREVIATIONS[FALLBACK_LANGUAGE]
    )
    return render(
        "datetime.short",
        language,
        month=months[value.month - 1],
        day=value.day,
        time=value.strftime("%H:%M"),
    )
