"""
Text normalization for category comparison

Folds case and Turkish/European diacritics through a fixed table instead of
unicodedata decomposition: NFKD turns "İ" into "i" + combining dot and leaves
"ı" untouched, both of which break matching of Turkish labels.
"""
import re
from typing import Optional

# Applied after lower-casing, except "İ"/"I" which are handled first
# because str.lower() maps "İ" to "i̇" (two code points).
CHAR_MAP = str.maketrans({
    "ç": "c", "ğ": "g", "ı": "i", "ö": "o", "ş": "s", "ü": "u",
    "â": "a", "î": "i", "û": "u",
    "à": "a", "á": "a", "ä": "a", "ã": "a", "å": "a",
    "è": "e", "é": "e", "ê": "e", "ë": "e",
    "ì": "i", "í": "i", "ï": "i",
    "ò": "o", "ó": "o", "ô": "o", "õ": "o",
    "ù": "u", "ú": "u",
    "ñ": "n", "ß": "ss",
    "̇": "",  # combining dot above
})

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize(text: Optional[str]) -> str:
    """
    Canonical comparison form of a label.

    Never raises and is idempotent: normalize(normalize(x)) == normalize(x).

    Example:
        >>> normalize("  Fantazi SÜTYEN & İç-Giyim ")
        'fantazi sutyen ic giyim'
    """
    if not text:
        return ""

    text = str(text).replace("İ", "i").replace("I", "i")
    text = text.lower().translate(CHAR_MAP)
    text = _NON_ALNUM.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()
