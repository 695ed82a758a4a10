"""Recognise "already exists" answers from the marketplace.

A create can be refused synchronously ("Duplicate found: retailer offer ...")
or accepted and later reported as a failed process whose error message carries
"[Duplicate Offer]". Both mean the offer exists remotely; the message usually
names the existing offer id, which is what we need to bind the local subject.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

CREATE_DUPLICATE_MARKER = "Duplicate found: retailer offer"
PROCESS_DUPLICATE_MARKER = "[Duplicate Offer]"

_OFFER_ID_RE = re.compile(r"offer '([a-f0-9-]+)'", re.IGNORECASE)


@dataclass(frozen=True)
class ConflictError:
    message: str
    existing_identity: Optional[str] = None


def extract_offer_id(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    match = _OFFER_ID_RE.search(text)
    return match.group(1) if match else None


def parse_create_conflict(text: Optional[str]) -> Optional[ConflictError]:
    if not text or CREATE_DUPLICATE_MARKER not in text:
        return None
    return ConflictError(message=text, existing_identity=extract_offer_id(text))


def parse_process_conflict(error_message: Optional[str]) -> Optional[ConflictError]:
    if not error_message or PROCESS_DUPLICATE_MARKER not in error_message:
        return None
    return ConflictError(message=error_message, existing_identity=extract_offer_id(error_message))


__all__ = [
    "ConflictError",
    "CREATE_DUPLICATE_MARKER",
    "PROCESS_DUPLICATE_MARKER",
    "extract_offer_id",
    "parse_create_conflict",
    "parse_process_conflict",
]
