"""Institution identifier -> bank name mapping.

Aggregators identify banks by slugs such as ``"ing-nl"`` or
``"abnamro_nl_retail"``. Known slugs map to display names; anything else is
cleaned up into something presentable.
"""

_KNOWN_INSTITUTIONS: dict[str, str] = {
    "abnamro": "ABN AMRO",
    "ing-nl": "ING Bank",
    "ing": "ING Bank",
    "rabobank": "Rabobank",
    "asnbank": "ASN Bank",
    "bunq": "bunq",
    "knab": "Knab",
    "regiobank": "RegioBank",
    "sns": "SNS Bank",
    "triodos": "Triodos Bank",
    "vanlanschot": "Van Lanschot",
    "revolut": "Revolut",
    "n26": "N26",
    "monzo": "Monzo",
    "starling": "Starling Bank",
    "hsbc": "HSBC",
    "barclays": "Barclays",
    "lloyds": "Lloyds Bank",
    "natwest": "NatWest",
    "santander": "Santander",
    "deutschebank": "Deutsche Bank",
    "commerzbank": "Commerzbank",
    "bnpparibas": "BNP Paribas",
    "creditmutuel": "Crédit Mutuel",
    "societegenerale": "Société Générale",
    "intesa": "Intesa Sanpaolo",
    "unicredit": "UniCredit",
}

UNKNOWN_INSTITUTION = "Unknown Bank"


def institution_display_name(raw_id: str | None) -> str:
    """Map a provider institution identifier to a human-readable bank name.

    Lookup order: exact (case-insensitive) match, then the longest known slug
    the identifier starts with, then a cleaned version of the identifier
    (text before the first ``-``, underscores as spaces, title-cased).

    Args:
        raw_id: Provider-specific identifier, e.g. ``"abnamro_nl_retail"``.

    Returns:
        A display name; ``"Unknown Bank"`` when nothing usable is given.
    """
    if not raw_id or not raw_id.strip():
        return UNKNOWN_INSTITUTION

    key = raw_id.strip().lower()
    if key in _KNOWN_INSTITUTIONS:
        return _KNOWN_INSTITUTIONS[key]

    # Longest slug first so "ing-nl" wins over "ing"
    for slug in sorted(_KNOWN_INSTITUTIONS, key=len, reverse=True):
        if key.startswith(slug):
            return _KNOWN_INSTITUTIONS[slug]

    cleaned = key.split("-")[0].replace("_", " ").strip()
    return cleaned.title() if cleaned else UNKNOWN_INSTITUTION
