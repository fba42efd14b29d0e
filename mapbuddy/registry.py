# mapbuddy/registry.py
"""
Dataset registry: one static table of the upstream layers an asset ID can live in.

Every endpoint resolves datasets through the module-level ``REGISTRY``; a lookup
string (key, label or alias) may belong to exactly one dataset.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .config import (
    FAIRFAX_BMP_ID_FIELDS,
    FAIRFAX_BMP_URL,
    MDSHA_LANDSCAPE_ID_FIELDS,
    MDSHA_LANDSCAPE_URL,
    MDSHA_TMDL_LAYERS,
    MDSHA_TMDL_URL,
)
from .errors import DatasetNotFound, RegistryError

NUMBER_SUFFIX = "number_suffix"


@dataclass(frozen=True)
class LayerDescriptor:
    endpoint: str
    id_fields: Tuple[str, ...]
    geometry_hint: Optional[str] = None
    title: str = ""

    def __post_init__(self):
        if not self.id_fields:
            raise RegistryError(f"Layer {self.endpoint} has no candidate ID fields.")


@dataclass(frozen=True)
class DatasetDescriptor:
    key: str
    label: str
    layers: Tuple[LayerDescriptor, ...]
    aliases: Tuple[str, ...] = field(default_factory=tuple)
    id_convention: Optional[str] = None

    def lookup_names(self) -> Iterable[str]:
        yield self.key
        yield self.label
        yield from self.aliases

    def to_json(self) -> Dict[str, object]:
        return {
            "key": self.key,
            "label": self.label,
            "aliases": list(self.aliases),
            "layers": [
                {
                    "endpoint": layer.endpoint,
                    "title": layer.title,
                    "idFields": list(layer.id_fields),
                    "geometryHint": layer.geometry_hint,
                }
                for layer in self.layers
            ],
        }


def _lookup_key(name: str) -> str:
    return " ".join((name or "").split()).casefold()


class DatasetRegistry:
    def __init__(self, datasets: Iterable[DatasetDescriptor]):
        self._datasets: List[DatasetDescriptor] = []
        self._by_name: Dict[str, DatasetDescriptor] = {}
        for ds in datasets:
            if not ds.layers:
                raise RegistryError(f"Dataset {ds.key!r} has no layers.")
            for name in ds.lookup_names():
                key = _lookup_key(name)
                if not key:
                    continue
                owner = self._by_name.get(key)
                if owner is not None and owner is not ds:
                    raise RegistryError(
                        f"Lookup name {name!r} is claimed by both {owner.key!r} and {ds.key!r}."
                    )
                self._by_name[key] = ds
            self._datasets.append(ds)

    def resolve(self, name: Optional[str]) -> Optional[DatasetDescriptor]:
        return self._by_name.get(_lookup_key(name or ""))

    def get(self, name: str) -> DatasetDescriptor:
        ds = self.resolve(name)
        if ds is None:
            raise DatasetNotFound(
                f"Unknown dataset: {name!r}.",
                details={"known": [d.key for d in self._datasets]},
            )
        return ds

    def datasets(self) -> List[DatasetDescriptor]:
        return list(self._datasets)

    def __contains__(self, name: str) -> bool:
        return self.resolve(name) is not None

    def __len__(self) -> int:
        return len(self._datasets)


def _tmdl_layer(layer_id: int, fields: Tuple[str, ...], hint: str, title: str) -> LayerDescriptor:
    return LayerDescriptor(
        endpoint=f"{MDSHA_TMDL_URL}/{layer_id}",
        id_fields=tuple(fields),
        geometry_hint=hint,
        title=title,
    )


def _build_default() -> DatasetRegistry:
    datasets: List[DatasetDescriptor] = [
        DatasetDescriptor(
            key="fairfax_bmps",
            label="Fairfax County BMPs",
            layers=(
                LayerDescriptor(
                    endpoint=FAIRFAX_BMP_URL,
                    id_fields=FAIRFAX_BMP_ID_FIELDS,
                    geometry_hint="point",
                    title="DPWES Stormwater Facilities",
                ),
            ),
            aliases=("fairfax", "fairfax_bmp", "bmp"),
            id_convention=NUMBER_SUFFIX,
        ),
        DatasetDescriptor(
            key="mdsha_landscape",
            label="MDOT SHA Managed Landscape",
            layers=(
                LayerDescriptor(
                    endpoint=MDSHA_LANDSCAPE_URL,
                    id_fields=MDSHA_LANDSCAPE_ID_FIELDS,
                    geometry_hint="polygon",
                    title="Managed Landscape",
                ),
            ),
            aliases=("landscape", "mdsha_lod"),
        ),
    ]

    tmdl_layers: List[LayerDescriptor] = []
    for key, label, layer_id, fields, hint, aliases in MDSHA_TMDL_LAYERS:
        layer = _tmdl_layer(layer_id, fields, hint, label)
        tmdl_layers.append(layer)
        datasets.append(DatasetDescriptor(key=key, label=label, layers=(layer,), aliases=aliases))

    datasets.append(
        DatasetDescriptor(
            key="mdsha_tmdl_any",
            label="MDOT SHA TMDL (any layer)",
            layers=tuple(tmdl_layers),
            aliases=("tmdl", "mdsha_tmdl"),
        )
    )
    return DatasetRegistry(datasets)


REGISTRY = _build_default()
