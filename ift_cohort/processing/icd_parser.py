"""ICD-10 code normalization and prefix matching."""
from typing import Iterable, Optional, Sequence
import re
import pandas as pd

# ICD-10-SE codes are registered with or without the dot (S065 / S06.5)
ICD10_PATTERN = re.compile(r'^[A-Z]\d{2}[0-9A-Z]*$')


def normalize_icd_code(code: Optional[str]) -> str:
    """Normalize ICD code for consistent comparison.

    Args:
        code: Raw ICD code

    Returns:
        Normalized code (uppercase, no dot, no whitespace)
    """
    if code is None:
        return ""
    code = str(code).strip().upper()
    if code in ("NAN", "NONE"):
        return ""
    return code.replace(".", "").replace(" ", "")


def is_valid_icd10(code: Optional[str]) -> bool:
    """Check whether a code looks like an ICD-10 code after normalization."""
    return bool(ICD10_PATTERN.match(normalize_icd_code(code)))


def code_in_set(code: Optional[str], prefixes: Iterable[str]) -> bool:
    """Check if code falls under any of the given prefixes.

    Args:
        code: ICD-10 code, any formatting
        prefixes: Code prefixes, e.g. ['S06', 'I62.0']

    Returns:
        True if code matches a prefix
    """
    code = normalize_icd_code(code)
    if not code:
        return False
    return any(code.startswith(normalize_icd_code(p)) for p in prefixes if p)


def any_code_in_set(codes: Sequence[str], prefixes: Iterable[str]) -> bool:
    """Check if any code in a sequence falls under the given prefixes."""
    prefixes = list(prefixes)
    return any(code_in_set(c, prefixes) for c in codes)


def split_code_list(value) -> tuple:
    """Split a delimited code string into an ordered tuple of codes.

    Accepts ';', ',' or whitespace separated strings, lists and tuples.
    Empty entries are dropped; order is preserved.
    """
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        parts = value
    else:
        if pd.isna(value):
            return ()
        parts = re.split(r'[;,\s]+', str(value))
    return tuple(normalize_icd_code(p) for p in parts if normalize_icd_code(p))
