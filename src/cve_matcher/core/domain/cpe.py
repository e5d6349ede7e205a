from __future__ import annotations

import re
from dataclasses import dataclass, replace

_RX_UNESCAPED_COLON = re.compile(r"(?<!\\):")

_FIELDS = (
    "part",
    "vendor",
    "product",
    "version",
    "update",
    "edition",
    "language",
    "sw_edition",
    "target_sw",
    "target_hw",
    "other",
)

ANY = "*"
NA = "-"


@dataclass(frozen=True)
class Cpe:
    """A CPE 2.3 well-formed name; attribute values are kept in formatted-string form."""

    part: str
    vendor: str
    product: str
    version: str = ANY
    update: str = ANY
    edition: str = ANY
    language: str = ANY
    sw_edition: str = ANY
    target_sw: str = ANY
    target_hw: str = ANY
    other: str = ANY

    @classmethod
    def parse(cls, value: str) -> "Cpe":
        """Parse a CPE 2.3 formatted string, or a CPE 2.2 URI (cpe:/a:vendor:product:...)."""
        text = value.strip()
        if text.startswith("cpe:2.3:"):
            fields = _RX_UNESCAPED_COLON.split(text[len("cpe:2.3:"):])
        elif text.startswith("cpe:/"):
            fields = text[len("cpe:/"):].split(":")
        else:
            raise ValueError(f"Not a CPE identifier: {value!r}")
        if len(fields) < 3 or not all(fields[:3]):
            raise ValueError(f"CPE identifier must carry part, vendor and product: {value!r}")
        if len(fields) > len(_FIELDS):
            raise ValueError(f"Too many CPE attributes: {value!r}")
        values = [f if f else ANY for f in fields]
        return cls(**dict(zip(_FIELDS, values)))

    def to_cpe23(self) -> str:
        return "cpe:2.3:" + ":".join(getattr(self, f) for f in _FIELDS)

    def with_version(self, version: str) -> "Cpe":
        return replace(self, version=version or ANY)

    def __str__(self) -> str:
        return self.to_cpe23()
