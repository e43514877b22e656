"""
Ticket field extraction from SAP notification bodies.

Each field is a FieldRule: an ordered tuple of independent matchers, each
with its own stop-set baked into the pattern. The first matcher that yields a
non-empty cleaned value wins; otherwise the field is NOT_FOUND.

All patterns are case-insensitive and accept accented letters in their raw,
unaccented, quoted-printable (=C3=A9) and mis-decoded (Ã©) forms, since
bodies are only best-effort decoded upstream.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, List, Pattern, Tuple

NOT_FOUND = "not found"

_ACCENT_FORMS = {
    "é": ("é", "e", "=C3=A9", "Ã©", "&eacute;"),
    "è": ("è", "e", "=C3=A8", "Ã¨", "&egrave;"),
    "û": ("û", "u", "=C3=BB", "Ã»", "&ucirc;"),
}


def fr(words):
    """Regex for a French label, tolerant of accent encodings and spacing."""
    out = []
    for ch in words:
        if ch in _ACCENT_FORMS:
            out.append("(?:" + "|".join(re.escape(f) for f in _ACCENT_FORMS[ch]) + ")")
        elif ch == " ":
            out.append(r"\s+")
        else:
            out.append(re.escape(ch))
    return "".join(out)


def _alternation(labels):
    return "|".join(fr(l) for l in labels)


def _compile(pattern):
    return re.compile(pattern, re.IGNORECASE | re.DOTALL)


_WHITESPACE = re.compile(r"\s+")


def clean_value(value):
    """Drop surrounding '*' markers and collapse whitespace."""
    value = _WHITESPACE.sub(" ", value or "")
    return value.strip(" *:\t")


def clean_digits(value):
    return re.sub(r"[^\d+]", "", value or "")


@dataclass(frozen=True)
class Matcher:
    name: str
    pattern: Pattern
    clean: Callable[[str], str] = clean_value


@dataclass(frozen=True)
class FieldRule:
    field: str
    matchers: Tuple[Matcher, ...]

    def apply(self, text):
        for matcher in self.matchers:
            match = matcher.pattern.search(text or "")
            if not match:
                continue
            value = matcher.clean(match.group(1))
            if value:
                return value
        return NOT_FOUND


# ── stop-sets ────────────────────────────────────────────────

COMPANY_STOPS = ("Enseigne", "Grand Compte", "Adresse", "Code Client", "Client", "Téléphone", "Email", "Horaires")
ADDRESS_STOPS = ("Téléphone", "Email", "Horaires", "Client", "Code", "Commentaires",
                 "Enseigne", "Raison Sociale", "Grand Compte", "Pour le")

WEEKDAYS = ("lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche")
MONTHS = ("janvier", "février", "mars", "avril", "mai", "juin", "juillet", "août",
          "septembre", "octobre", "novembre", "décembre")


def _labelled_until(label, stops):
    return _compile(
        rf"\b{fr(label)}\b[\s:*]*(.*?)\s*(?=\b(?:{_alternation(stops)})\b|$)"
    )


_TOWN = r"[^\W\d_]+(?:[ '\-][^\W\d_]+)*?"

COMPANY_RULE = FieldRule("company_name", (
    Matcher("raison_sociale", _labelled_until("Raison Sociale", COMPANY_STOPS)),
    Matcher("enseigne", _labelled_until(
        "Enseigne", tuple(s for s in COMPANY_STOPS if s != "Enseigne"))),
))

TICKET_NUMBER_RULE = FieldRule("ticket_number", (
    Matcher("numero_label", _compile(rf"\b{fr('Numéro')}(?:\s+SAP)?[\s:*#°]*(\d{{7,}})")),
    Matcher("starred_digits", _compile(r"\*\s*(\d{7,})\s*\*")),
))

CLIENT_CODE_RULE = FieldRule("client_code", (
    Matcher("client_label", _compile(r"\b(?:Code\s+)?Client\b[\s:*#]*(\d+)")),
))

ADDRESS_RULE = FieldRule("address", (
    Matcher("street_postal_town", _compile(
        rf"\bAdresse\b[\s:*]*(\d+[\s,]+[^\d*]+?\s\d{{5}}\s+{_TOWN})"
        rf"\s*(?=\*|\b(?:{_alternation(ADDRESS_STOPS)})\b|$)"
    )),
    Matcher("street_postal_word", _compile(
        r"\bAdresse\b[\s:*]*(\d+[\s,]+[^\d*]+?\s\d{5}\s+[^\W\d_]+)"
    )),
))

RECEIVED_DATE_RULE = FieldRule("received_date", (
    Matcher("french_long_date", _compile(
        rf"\b((?:{_alternation(WEEKDAYS)})\s+\d{{1,2}}(?:er)?\s+"
        rf"(?:{_alternation(MONTHS)})\s+\d{{4}})\b"
    )),
))


def _phone_rule(index):
    return FieldRule(f"phone_{index}", (
        Matcher(f"telephone_{index}", _compile(
            rf"\b{fr('Téléphone')}\s*{index}\b[\s:*]*(\+?\d(?:[ .]?\d){{5,}})"
        ), clean=clean_digits),
    ))


PHONE_RULES = (_phone_rule(1), _phone_rule(2))

REQUEST_TEXT_RULE = FieldRule("request_text", (
    Matcher("commentaires", _compile(r"\bCommentaires?\b[\s:*]*(.*)$")),
))

FIELD_RULES = (
    COMPANY_RULE,
    TICKET_NUMBER_RULE,
    CLIENT_CODE_RULE,
    ADDRESS_RULE,
    RECEIVED_DATE_RULE,
    REQUEST_TEXT_RULE,
)


@dataclass
class ExtractedFields:
    company_name: str = NOT_FOUND
    ticket_number: str = NOT_FOUND
    client_code: str = NOT_FOUND
    address: str = NOT_FOUND
    received_date: str = NOT_FOUND
    request_text: str = NOT_FOUND
    phone_numbers: List[str] = field(default_factory=list)


def extract_phone_numbers(text):
    numbers = []
    for rule in PHONE_RULES:
        value = rule.apply(text)
        if value != NOT_FOUND:
            numbers.append(value)
    return numbers


def extract_fields(text):
    """Apply every rule to a flattened body."""
    values = {rule.field: rule.apply(text) for rule in FIELD_RULES}
    return ExtractedFields(phone_numbers=extract_phone_numbers(text), **values)
