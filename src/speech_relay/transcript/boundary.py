import re
from typing import Optional

from speech_relay.config import Config

TRANSITION_WORDS = (
    "And", "But", "So", "However", "Therefore", "Meanwhile", "Furthermore",
    "Moreover", "Nevertheless", "Additionally", "Actually", "Also", "Then",
    "Now", "Next", "Finally",
)

# Lower-cased; compared against the last whitespace-delimited token
ABBREVIATIONS = frozenset(a.lower() for a in (
    # Titles
    "Dr.", "Mr.", "Mrs.", "Ms.", "Prof.", "Sr.", "Jr.", "St.", "Rev.", "Gen.", "Capt.",
    # Business
    "Inc.", "Corp.", "Ltd.", "Co.", "LLC.", "Bros.",
    # Degrees
    "Ph.D.", "M.D.", "B.A.", "M.A.", "M.S.", "B.S.", "M.B.A.", "J.D.",
    # Common latin and reference
    "etc.", "vs.", "e.g.", "i.e.", "cf.", "viz.", "al.", "ibid.", "approx.", "est.",
    "No.", "Vol.", "Ch.", "pp.", "pg.", "fig.", "Sec.", "min.", "max.",
    # Places
    "U.S.", "U.K.", "U.N.", "E.U.", "N.Y.", "L.A.", "D.C.", "Mt.", "Ave.", "Blvd.",
    # Months and days
    "Jan.", "Feb.", "Mar.", "Apr.", "Jun.", "Jul.", "Aug.", "Sep.", "Sept.",
    "Oct.", "Nov.", "Dec.", "Mon.", "Tue.", "Wed.", "Thu.", "Fri.", "Sat.", "Sun.",
    "a.m.", "p.m.",
    # Units
    "in.", "ft.", "yd.", "mi.", "oz.", "lb.", "lbs.", "kg.", "cm.", "mm.", "km.",
))

_TRANSITIONS = "|".join(TRANSITION_WORDS)
_STRONG_PUNCTUATION = re.compile(r"([.!?])\s+(?:" + _TRANSITIONS + r")\b")
_INITIALS = re.compile(r"(?:\b[A-Za-z]\.){2,}$")
_DECIMAL_END = re.compile(r"\d+\.\d*$")
_LONG_TEXT_BREAKS = (
    re.compile(r"\s(?:And|But|So|However|Therefore|Meanwhile|Furthermore|Moreover|Then|Now|Next|Finally|Additionally)\s"),
    re.compile(r"\s(?:After that|Before that|In addition|On the other hand|For example|In fact|As a result)\s"),
    re.compile(r"[.!?]\s+[A-Z]"),
)
_COMMA_BREAKS = (
    re.compile(r",\s+(?:and|but|or|so|yet)\s+[a-zA-Z]"),
    re.compile(r",\s+(?:because|while|when|if|although|since|unless)\s+"),
    re.compile(r",\s+(?:however|therefore|meanwhile|furthermore|moreover|additionally|consequently)\s+"),
    re.compile(r",\s+(?:then|now|next|finally|lastly)\s+"),
)


def is_abbreviation(text: str) -> bool:
    """True when `text` ends in a known abbreviation, initials or a decimal number."""
    stripped = text.rstrip()
    if not stripped:
        return False
    last_token = stripped.split()[-1]
    if last_token.lower() in ABBREVIATIONS:
        return True
    if _INITIALS.search(last_token):
        return True
    return bool(_DECIMAL_END.search(last_token))


class BoundaryDetector:
    """
    Stateless sentence-boundary pattern analysis.

    Rules are evaluated in priority order and the first match wins:
    strong punctuation before a transition word, terminal question or
    exclamation, natural period ending, transition split point in the back
    half of long text, and comma before a conjunction.
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()

    def has_early_boundary(self, text: str) -> bool:
        return self.detection_reason(text) is not None

    def detection_reason(self, text: str) -> Optional[str]:
        clean = text.strip()
        if len(clean) < self.config.boundary_min_length:
            return None

        if self._strong_punctuation(clean):
            return "strong-punctuation"
        if self._question_exclamation_end(clean):
            return "question-exclamation"
        if self._natural_period_end(clean):
            return "natural-period"
        if self._long_text_break(clean):
            return "length-based"
        if self._comma_break(clean):
            return "comma-based"
        return None

    def _strong_punctuation(self, text: str) -> bool:
        for match in _STRONG_PUNCTUATION.finditer(text):
            before = text[:match.end(1)]
            if match.group(1) == "." and is_abbreviation(before):
                continue
            return True
        return False

    def _question_exclamation_end(self, text: str) -> bool:
        if len(text) < self.config.sentence_min_length:
            return False
        return text.endswith("?") or text.endswith("!")

    def _natural_period_end(self, text: str) -> bool:
        if len(text) < self.config.sentence_min_length or not text.endswith("."):
            return False
        before = text[:-1].rstrip()
        if not before or not before[-1].islower():
            return False
        return not is_abbreviation(text)

    def _long_text_break(self, text: str) -> bool:
        if len(text) <= self.config.long_text_length:
            return False
        back_half = text[len(text) // 2:]
        return any(p.search(back_half) for p in _LONG_TEXT_BREAKS)

    def _comma_break(self, text: str) -> bool:
        if len(text) < self.config.comma_split_min_length:
            return False
        return any(p.search(text) for p in _COMMA_BREAKS)
