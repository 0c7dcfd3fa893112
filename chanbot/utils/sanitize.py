"""Unicode → ASCII sanitizing for text that ends up on plain-text channels."""

import re

# Common Unicode characters and their ASCII equivalents
UNICODE_TO_ASCII: dict[str, str] = {
    # Quotes
    "‘": "'", "’": "'", "‚": "'", "‛": "'",
    "“": '"', "”": '"', "„": '"', "‟": '"',
    "′": "'", "″": '"',
    # Dashes and hyphens
    "‐": "-", "‑": "-", "‒": "-", "–": "-",
    "—": "-", "―": "-", "−": "-",
    # Ellipsis, bullets
    "…": "...",
    "•": "*", "‣": "*", "․": ".", "‥": "..",
    "⁃": "-", "◦": "o", "●": "*", "○": "o",
    # Math
    "×": "x", "÷": "/", "∕": "/", "∖": "\\",
    "∗": "*", "≠": "!=", "≤": "<=", "≥": ">=",
    "±": "+/-",
    # Arrows
    "←": "<-", "→": "->", "↑": "^", "↓": "v", "↔": "<->",
    # Currency, units
    "£": "GBP", "¥": "YEN", "€": "EUR",
    "°": "deg", "µ": "u", "℃": "C", "℉": "F",
    # Fractions
    "¼": "1/4", "½": "1/2", "¾": "3/4", "⅓": "1/3", "⅔": "2/3",
    # Other symbols
    "©": "(c)", "®": "(R)", "™": "(TM)", "§": "S", "¶": "P",
}

# Unicode spaces (no-break, en/em, thin, hair, ...)
for _c in "\u00a0\u2000\u2001\u2002\u2003\u2004\u2005\u2006\u2007\u2008\u2009\u200a\u202f\u205f":
    UNICODE_TO_ASCII[_c] = " "

# Accented Latin letters
for _chars, _ascii in (
    ("ÀÁÂÃÄÅ", "A"), ("àáâãäå", "a"), ("ÈÉÊË", "E"), ("èéêë", "e"),
    ("ÌÍÎÏ", "I"), ("ìíîï", "i"), ("ÒÓÔÕÖ", "O"), ("òóôõö", "o"),
    ("ÙÚÛÜ", "U"), ("ùúûü", "u"), ("Ñ", "N"), ("ñ", "n"),
    ("Ç", "C"), ("ç", "c"), ("Ý", "Y"), ("ýÿ", "y"),
):
    for _c in _chars:
        UNICODE_TO_ASCII[_c] = _ascii

_TRANSLATION = str.maketrans(UNICODE_TO_ASCII)

# Anything outside printable ASCII, except tab / newline / carriage return
_NON_ASCII = re.compile(r"[^\x09\x0A\x0D\x20-\x7E]")


def sanitize_unicode(text: str) -> str:
    """Replace known Unicode characters with ASCII and drop the rest.

    Pure and total: ``None`` or empty input comes back unchanged.
    """
    if not text:
        return text
    return _NON_ASCII.sub("", text.translate(_TRANSLATION))
