"""Decide what a scanned token is before anything touches the ledger.

Scanners send whatever the code they read contains.  Work-order labels start
with ``WO-``; operator badges carry the operator's 24 hex character id,
sometimes wrapped in a profile URL.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

BARCODE_PREFIX = "WO-"
OPERATOR_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")


class ScanKind(Enum):
    BARCODE = "barcode"
    OPERATOR_ID = "operator_id"
    INVALID = "invalid"


@dataclass(frozen=True)
class ScanToken:
    kind: ScanKind
    value: str

    @property
    def is_barcode(self) -> bool:
        return self.kind is ScanKind.BARCODE

    @property
    def is_operator(self) -> bool:
        return self.kind is ScanKind.OPERATOR_ID


@dataclass(frozen=True)
class ParsedBarcode:
    work_order_short_id: str
    unit_number: int
    operation_number: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "workOrderShortId": self.work_order_short_id,
            "unitNumber": self.unit_number,
            "operationNumber": self.operation_number,
        }


def normalize_token(raw) -> str:
    """Strip whitespace and reduce a scanned URL to its last path segment."""
    if not isinstance(raw, str):
        return ""
    token = raw.strip()
    if token.startswith(("http://", "https://")):
        parts = [p for p in urlparse(token).path.split("/") if p]
        if parts:
            return parts[-1]
    return token


def classify(raw) -> ScanToken:
    token = normalize_token(raw)
    if token.startswith(BARCODE_PREFIX):
        return ScanToken(ScanKind.BARCODE, token)
    if OPERATOR_ID_RE.match(token):
        # ids are stored lower case
        return ScanToken(ScanKind.OPERATOR_ID, token.lower())
    return ScanToken(ScanKind.INVALID, token)


def parse_barcode(barcode_id: str) -> Optional[ParsedBarcode]:
    """Decode ``WO-<shortId>-<unit>[-<operation>]``; ``None`` if it doesn't fit."""
    parts = barcode_id.split("-")
    if len(parts) < 3 or parts[0] != "WO" or not parts[1]:
        return None
    try:
        unit = int(parts[2])
        operation = int(parts[3]) if len(parts) > 3 and parts[3] else None
    except ValueError:
        return None
    return ParsedBarcode(parts[1], unit, operation)


def short_id(work_order_pk: str) -> str:
    return work_order_pk[-8:]


def build_barcode_id(work_order_pk: str, unit_number: int, operation_number: Optional[int] = None) -> str:
    barcode = f"{BARCODE_PREFIX}{short_id(work_order_pk)}-{unit_number}"
    if operation_number is not None:
        barcode += f"-{operation_number}"
    return barcode
