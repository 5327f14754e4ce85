"""Display formatting for computed values.

Presentation only: nothing here feeds back into evaluation.

Kinds:
- ``number``: grouped, up to one fraction digit (``1.234,5``)
- ``currency``: grouped, no fraction digits, with symbol (``1.235 €``)
- ``percent``: grouped, no fraction digits, ``%`` suffix (``42%``)

Rounding is half away from zero, matching browser ``Intl`` output.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import Literal

from pydantic import BaseModel

FormatKind = Literal["number", "currency", "percent"]

DEFAULT_LOCALE = "de-DE"
DEFAULT_CURRENCY = "EUR"

# Wide enough for any finite double at full integer precision
_DECIMAL_CONTEXT = Context(prec=400)


class LocaleSpec(BaseModel):
    """Separators and currency layout for one locale."""

    group: str
    decimal: str
    # ``{number}`` and ``{symbol}`` placeholders
    currency_pattern: str


LOCALES: dict[str, LocaleSpec] = {
    "de-DE": LocaleSpec(group=".", decimal=",", currency_pattern="{number} {symbol}"),
    "de-AT": LocaleSpec(group=" ", decimal=",", currency_pattern="{symbol} {number}"),
    "de-CH": LocaleSpec(group="’", decimal=".", currency_pattern="{symbol} {number}"),
    "en-US": LocaleSpec(group=",", decimal=".", currency_pattern="{symbol}{number}"),
    "en-GB": LocaleSpec(group=",", decimal=".", currency_pattern="{symbol}{number}"),
    "fr-FR": LocaleSpec(group=" ", decimal=",", currency_pattern="{number} {symbol}"),
}

CURRENCY_SYMBOLS: dict[str, str] = {
    "EUR": "€",
    "USD": "$",
    "GBP": "£",
    "CHF": "CHF",
    "JPY": "¥",
}


def get_locale(name: str | None) -> LocaleSpec:
    """Look up a locale by tag, falling back to the language, then the default.

    Raises:
        ValueError: If neither the tag nor its language is known.
    """
    name = name or DEFAULT_LOCALE
    if name in LOCALES:
        return LOCALES[name]
    language = name.split("-")[0]
    for tag, spec in LOCALES.items():
        if tag.split("-")[0] == language:
            return spec
    raise ValueError(f"Unknown locale: {name!r}. Available: {sorted(LOCALES)}")


def format_number(value: float, decimals: int = 1, locale: str | None = None) -> str:
    """Format *value* with grouping and at most *decimals* fraction digits.

    Trailing fraction zeros are dropped (``12.0`` → ``"12"``).
    Non-finite values format as ``"0"``.
    """
    spec = get_locale(locale)
    if not math.isfinite(value):
        value = 0.0

    quantum = Decimal(1).scaleb(-decimals)
    rounded = Decimal(str(value)).quantize(
        quantum, rounding=ROUND_HALF_UP, context=_DECIMAL_CONTEXT
    )
    negative = rounded < 0
    digits = format(abs(rounded), "f")
    int_part, _, frac_part = digits.partition(".")
    frac_part = frac_part.rstrip("0")

    groups = []
    while len(int_part) > 3:
        groups.insert(0, int_part[-3:])
        int_part = int_part[:-3]
    groups.insert(0, int_part)
    text = spec.group.join(groups)
    if frac_part:
        text += spec.decimal + frac_part
    return f"-{text}" if negative else text


def format_currency(value: float, locale: str | None = None, currency: str | None = None) -> str:
    """Zero-decimal monetary string, e.g. ``"1.235 €"`` for de-DE/EUR."""
    spec = get_locale(locale)
    code = (currency or DEFAULT_CURRENCY).upper()
    symbol = CURRENCY_SYMBOLS.get(code, code)
    number = format_number(value, 0, locale)
    sign = ""
    if number.startswith("-"):
        sign, number = "-", number[1:]
    return sign + spec.currency_pattern.format(number=number, symbol=symbol)


def format_percent(value: float, locale: str | None = None) -> str:
    """Zero-decimal value with a ``%`` suffix; *value* is already a percentage."""
    return f"{format_number(value, 0, locale)}%"


def format_value(
    value: float,
    kind: FormatKind,
    locale: str | None = None,
    currency: str | None = None,
) -> str:
    """Format *value* for display according to *kind*.

    Raises:
        ValueError: If *kind* is not ``number``, ``currency`` or ``percent``.
    """
    if kind == "currency":
        return format_currency(value, locale, currency)
    if kind == "percent":
        return format_percent(value, locale)
    if kind == "number":
        return format_number(value, 1, locale)
    raise ValueError(f"Unknown format kind: {kind!r}")
