# mapbuddy/identifiers.py
import re
from typing import List, Optional

from .config import AUTODETECT_RULES
from .errors import InvalidRequest
from .registry import NUMBER_SUFFIX, REGISTRY

_RE_NUMBER_SUFFIX = re.compile(r"^(\d+)\s*-?\s*([A-Za-z]{2,})$")
_RULES = tuple((re.compile(pattern), key) for pattern, key in AUTODETECT_RULES)


def clean_asset_id(raw: Optional[str]) -> str:
    asset_id = (raw or "").strip()
    if not asset_id:
        raise InvalidRequest("assetId is required.")
    return asset_id


def _dedupe(values: List[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for v in values:
        if v and v not in seen:
            seen.add(v)
            out.append(v)
    return out


def id_variants(raw_id: str, dataset_key: Optional[str] = None) -> List[str]:
    """
    Candidate spellings of an asset ID for one dataset, upper-cased and de-duplicated.

    "number + suffix" datasets (Fairfax BMPs) are stored inconsistently as
    1373DP, 1373-DP or 1373 DP, so all three are produced. Every other dataset
    gets the trimmed ID unchanged apart from case.
    """
    asset_id = clean_asset_id(raw_id).upper()
    ds = REGISTRY.resolve(dataset_key) if dataset_key else None
    if ds is None or ds.id_convention != NUMBER_SUFFIX:
        return [asset_id]

    m = _RE_NUMBER_SUFFIX.match(asset_id)
    if m:
        number, suffix = m.group(1), m.group(2)
        return _dedupe([f"{number}{suffix}", f"{number}-{suffix}", f"{number} {suffix}"])
    return _dedupe([asset_id, asset_id.replace("-", ""), re.sub(r"\s+", "", asset_id)])


def detect_dataset(asset_id: Optional[str]) -> Optional[str]:
    """Guess a dataset key from the shape of the ID; None when nothing matches."""
    s = (asset_id or "").strip().upper()
    if not s:
        return None
    for pattern, key in _RULES:
        if pattern.match(s):
            return key
    return None
