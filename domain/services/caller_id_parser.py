from typing import Optional

DEFAULT_COUNTRY_CODE = "+41"


def normalize_country_code(code: str) -> str:
    """'41', '0041' and '+41' all become '+41'. Empty stays empty."""
    digits = "".join(ch for ch in str(code or "") if ch.isdigit())
    digits = digits.lstrip("0")
    return f"+{digits}" if digits else ""


class CallerIdParser:
    """
    Parses Caller ID payloads from typical USB modem outputs (e.g. USR5637).
    Looks for a "NMBR = +41..." line and extracts the number.
    """

    def __init__(self, country_code: str = DEFAULT_COUNTRY_CODE):
        self.country_code = normalize_country_code(country_code)

    def parse(self, raw: str) -> Optional[str]:
        """Return the normalized calling number, or None when the chunk carries none."""
        if not raw or not raw.strip():
            return None

        lines = raw.replace("\r\n", "\n").replace("\r", "\n").split("\n")
        for raw_line in lines:
            line = raw_line.strip()
            if not line or not line[:4].upper() == "NMBR":
                continue
            parts = line.split("=", 1)
            if len(parts) < 2:
                continue
            number = self.normalize(parts[1])
            if number:
                return number
        return None

    def normalize(self, value: str) -> str:
        """
        Reduce to digits and '+', then rewrite to international form:
        '00' -> '+', a single leading '0' -> default country code.
        """
        if not value:
            return ""
        s = "".join(ch for ch in value if ch in "0123456789+")
        # only a leading '+' survives
        s = s[:1] + s[1:].replace("+", "")

        if s.startswith("00"):
            s = "+" + s[2:]
        elif s.startswith("0"):
            s = self.country_code + s[1:]
        return s


_default_parser = CallerIdParser()


def parse_number(raw: str) -> Optional[str]:
    return _default_parser.parse(raw)


def normalize_number(value: str) -> str:
    return _default_parser.normalize(value)
