# mapbuddy/resolver.py
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from shapely.geometry import mapping as shp_mapping

from . import arcgis
from .errors import DatasetNotFound, NoFeatureFound, UpstreamUnavailable
from .geometry import AssetGeometry
from .identifiers import clean_asset_id, detect_dataset, id_variants
from .registry import REGISTRY, DatasetDescriptor, LayerDescriptor
from .where import EXACT, FUZZY, MATCH_MODES, build_where, fuzzy_forms

logger = logging.getLogger(__name__)

FOUND = "found"
NOT_FOUND = "not_found"
UPSTREAM_ERROR = "upstream_error"


@dataclass(frozen=True)
class MatchAttempt:
    endpoint: str
    mode: str
    outcome: str
    detail: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        out = {"layer": self.endpoint, "pass": self.mode, "outcome": self.outcome}
        if self.detail:
            out["detail"] = self.detail
        return out


@dataclass(frozen=True)
class AssetFeature:
    geometry: AssetGeometry
    attributes: Dict[str, Any]
    layer: Optional[LayerDescriptor] = None
    match_mode: Optional[str] = None
    match_field: Optional[str] = None

    def to_geojson(self) -> Dict[str, Any]:
        return {
            "type": "Feature",
            "geometry": shp_mapping(self.geometry),
            "properties": dict(self.attributes),
        }


@dataclass(frozen=True)
class Resolution:
    asset_id: str
    dataset: DatasetDescriptor
    layer: LayerDescriptor
    mode: str
    where: str
    features: Tuple[AssetFeature, ...]
    attempts: Tuple[MatchAttempt, ...] = field(default_factory=tuple)

    @property
    def feature(self) -> AssetFeature:
        return self.features[0]


def candidate_layers(
    asset_id: str, dataset: Optional[str] = None
) -> Tuple[DatasetDescriptor, Tuple[LayerDescriptor, ...]]:
    """Expand an explicit dataset, or the one guessed from the ID shape, into layers to try."""
    if dataset and dataset.strip():
        ds = REGISTRY.get(dataset)
        return ds, ds.layers

    key = detect_dataset(asset_id)
    if key is None:
        raise DatasetNotFound(
            f"dataset is required: could not detect a dataset for {asset_id!r}.",
            details={"known": [d.key for d in REGISTRY.datasets()]},
        )
    ds = REGISTRY.get(key)
    logger.info("Auto-detected dataset %s for %s", ds.key, asset_id)
    return ds, ds.layers


def _match_field(
    attrs: Dict[str, Any], fields: Tuple[str, ...], variants: List[str], mode: str
) -> Optional[str]:
    for f in fields:
        value = attrs.get(f)
        if value is None:
            continue
        text = str(value).strip().upper()
        if mode == EXACT and text in variants:
            return f
        if mode == FUZZY and any(form in text for v in variants for form in fuzzy_forms(v)):
            return f
    return None


def _tag(
    raw: arcgis.RawFeature,
    asset_id: str,
    ds: DatasetDescriptor,
    layer: LayerDescriptor,
    fields: Tuple[str, ...],
    mode: str,
    variants: List[str],
) -> AssetFeature:
    geom, attrs = raw
    props = dict(attrs)
    props["_assetId"] = asset_id
    props["_dataset"] = ds.key
    props["_matchMode"] = mode
    return AssetFeature(
        geometry=geom,
        attributes=props,
        layer=layer,
        match_mode=mode,
        match_field=_match_field(attrs, fields, variants, mode),
    )


def resolve_asset(asset_id: str, dataset: Optional[str] = None) -> Resolution:
    """
    Find the feature an asset ID refers to.

    Layers are tried in registry order; each layer gets an exact pass and then a
    fuzzy pass before the next layer is touched, and the first pass returning a
    feature wins. A layer whose query fails is skipped, not fatal.
    Each layer is only queried on the ID fields its metadata lists.
    """
    asset_id = clean_asset_id(asset_id)
    ds, layers = candidate_layers(asset_id, dataset)
    variants = id_variants(asset_id, ds.key)

    attempts: List[MatchAttempt] = []
    for layer in layers:
        fields = arcgis.usable_id_fields(layer)
        if not fields:
            attempts.append(MatchAttempt(layer.endpoint, EXACT, NOT_FOUND, "layer has none of the ID fields"))
            logger.warning("%s %s: none of %s on this layer, skipping", ds.key, layer.endpoint, layer.id_fields)
            continue

        for mode in MATCH_MODES:
            where = build_where(fields, variants, mode)
            result = arcgis.probe_layer(layer, where)

            if isinstance(result, arcgis.UpstreamError):
                attempts.append(MatchAttempt(layer.endpoint, mode, UPSTREAM_ERROR, result.cause))
                logger.warning("%s %s [%s]: upstream error, next layer", ds.key, layer.endpoint, mode)
                break

            if isinstance(result, arcgis.Found):
                attempts.append(MatchAttempt(layer.endpoint, mode, FOUND))
                logger.info(
                    "%s %s [%s]: %d feature(s) for %s",
                    ds.key, layer.endpoint, mode, len(result.features), asset_id,
                )
                features = tuple(_tag(f, asset_id, ds, layer, fields, mode, variants) for f in result.features)
                return Resolution(
                    asset_id=asset_id,
                    dataset=ds,
                    layer=layer,
                    mode=mode,
                    where=where,
                    features=features,
                    attempts=tuple(attempts),
                )

            attempts.append(MatchAttempt(layer.endpoint, mode, NOT_FOUND))
            logger.info("%s %s [%s]: no match for %s", ds.key, layer.endpoint, mode, asset_id)

    details = {
        "assetId": asset_id,
        "dataset": ds.key,
        "attempts": [a.to_json() for a in attempts],
    }
    if any(a.outcome != UPSTREAM_ERROR for a in attempts):
        raise NoFeatureFound(f"No feature found for {asset_id} in {ds.label}.", details=details)
    raise UpstreamUnavailable(
        f"Upstream service unavailable for {ds.label}; no layer could be queried.", details=details
    )
