"""
Artifact caching for the heat load pipeline.

Two kinds of artifacts are cached:

- Per-cell surfaces (slope, aspect, folded aspect, HLI) as compressed .npz
  files with JSON metadata, keyed by a SHA256 hash of the elevation grid and
  the settings that affect them.
- The enriched group table, written as a GeoPackage. Its presence plus the
  ``overwrite`` flag decides whether a run recomputes anything.
"""

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
from rasterio import Affine
from rasterio.crs import CRS

from src.heatload.classify import QUARTILE_LABELS
from src.heatload.grid import ElevationGrid
from src.heatload.hli import HeatLoadSurfaces
from src.heatload.orientation import orientation_categorical

logger = logging.getLogger(__name__)

SURFACE_NAMES = ("slope", "aspect", "folded_aspect", "hli")
GROUPS_LAYER = "groups"


def artifact_exists(path: Optional[Path]) -> bool:
    """True if ``path`` names an existing, non-empty file."""
    if path is None:
        return False
    path = Path(path)
    return path.is_file() and path.stat().st_size > 0


def should_recompute(path: Optional[Path], overwrite: bool) -> bool:
    """Recompute when asked to overwrite or when no prior artifact exists."""
    return overwrite or not artifact_exists(path)


def write_groups_artifact(groups: gpd.GeoDataFrame, path: Path) -> Path:
    """
    Persist the enriched group table as a GeoPackage layer.

    Categorical label columns are written as text; missing labels as NULL.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    out = groups.copy()
    for column in out.columns:
        if isinstance(out[column].dtype, pd.CategoricalDtype):
            out[column] = out[column].astype(object).where(out[column].notna(), None)
    if path.exists():
        path.unlink()
    out.to_file(path, layer=GROUPS_LAYER, driver="GPKG")
    logger.info(f"Wrote {len(out)} groups to {path}")
    return path


def read_groups_artifact(path: Path) -> gpd.GeoDataFrame:
    """
    Reload a group table written by write_groups_artifact().

    Label columns are restored as ordered categoricals.
    """
    path = Path(path)
    groups = gpd.read_file(path, layer=GROUPS_LAYER)
    for column in ("hli_group_qrtl", "hli_overall_qrtl"):
        if column in groups.columns:
            groups[column] = _labels_categorical(groups[column], QUARTILE_LABELS)
    if "orientation_class" in groups.columns:
        groups["orientation_class"] = orientation_categorical(
            groups["orientation_class"].where(groups["orientation_class"].notna(), None)
        )
    for column in ("orientation_valid", "geometry_valid"):
        if column in groups.columns:
            groups[column] = groups[column].astype(bool)
    logger.info(f"Loaded {len(groups)} groups from {path}")
    return groups


def _labels_categorical(values, labels):
    return pd.Categorical(values.where(values.notna(), None), categories=labels, ordered=True)


class ArtifactCache:
    """
    Manages caching of computed surfaces with hash validation.

    The cache stores:
    - surface arrays and grid geometry as a .npz file
    - metadata including source hash, timestamp and value ranges

    Attributes:
        cache_dir: Directory where cache files are stored
        enabled: Whether caching is enabled
    """

    def __init__(self, cache_dir: Optional[Path] = None, enabled: bool = True):
        """
        Initialize surface cache.

        Args:
            cache_dir: Directory for cache files. If None, uses .hli_cache/ in the working directory
            enabled: Whether caching is enabled (default: True)
        """
        if cache_dir is None:
            cache_dir = Path.cwd() / ".hli_cache"

        self.cache_dir = Path(cache_dir)
        self.enabled = enabled

        if self.enabled:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Surface cache initialized at: {self.cache_dir}")

    def compute_source_hash(self, grid: ElevationGrid, **params) -> str:
        """
        Compute hash of an elevation grid and the settings applied to it.

        The cache is invalidated if elevation values, grid geometry, CRS or
        any of ``params`` change.

        Returns:
            SHA256 hex digest
        """
        hash_obj = hashlib.sha256()
        hash_obj.update(np.ascontiguousarray(grid.data).tobytes())
        hash_obj.update(repr(tuple(grid.transform)[:6]).encode())
        hash_obj.update(str(grid.shape).encode())
        hash_obj.update((grid.crs.to_wkt() if grid.crs else "").encode())
        hash_obj.update(json.dumps(params, sort_keys=True, default=str).encode())
        return hash_obj.hexdigest()

    def get_cache_path(self, source_hash: str, cache_name: str = "surfaces") -> Path:
        """Path of the .npz cache file."""
        return self.cache_dir / f"{cache_name}_{source_hash}.npz"

    def get_metadata_path(self, source_hash: str, cache_name: str = "surfaces") -> Path:
        """Path of the cache metadata file."""
        return self.cache_dir / f"{cache_name}_{source_hash}_meta.json"

    def save_surfaces(
        self,
        surfaces: HeatLoadSurfaces,
        source_hash: str,
        cache_name: str = "surfaces",
    ) -> Tuple[Optional[Path], Optional[Path]]:
        """
        Save surfaces and their grid geometry to cache.

        Returns:
            Tuple of (cache_file_path, metadata_file_path), or (None, None) if disabled
        """
        if not self.enabled:
            return None, None

        cache_path = self.get_cache_path(source_hash, cache_name)
        metadata_path = self.get_metadata_path(source_hash, cache_name)

        start_time = time.time()

        grid = surfaces.grid
        transform_list = [grid.transform.a, grid.transform.b, grid.transform.c,
                          grid.transform.d, grid.transform.e, grid.transform.f]
        arrays = surfaces.as_dict()
        np.savez_compressed(
            cache_path,
            transform_data=np.array(transform_list, dtype=np.float64),
            crs_wkt=np.array(grid.crs.to_wkt() if grid.crs else ""),
            **arrays,
        )

        hli = arrays["hli"]
        metadata = {
            "source_hash": source_hash,
            "shape": list(grid.shape),
            "surfaces": list(arrays),
            "hli_min": float(np.nanmin(hli)) if np.isfinite(hli).any() else None,
            "hli_max": float(np.nanmax(hli)) if np.isfinite(hli).any() else None,
            "cache_time": time.time(),
            "transform": transform_list,
        }
        with open(metadata_path, "w") as f:
            json.dump(metadata, f, indent=2)

        elapsed = time.time() - start_time
        logger.info(f"Cached surfaces to {cache_path.name} ({elapsed:.2f}s)")
        return cache_path, metadata_path

    def load_surfaces(
        self, source_hash: str, cache_name: str = "surfaces"
    ) -> Optional[HeatLoadSurfaces]:
        """
        Load cached surfaces.

        Returns:
            HeatLoadSurfaces, or None if the cache is disabled, missing or unreadable
        """
        if not self.enabled:
            return None

        cache_path = self.get_cache_path(source_hash, cache_name)
        if not cache_path.exists():
            logger.debug(f"Cache miss: {cache_path.name}")
            return None

        try:
            start_time = time.time()
            with np.load(cache_path) as cache_data:
                transform = Affine(*tuple(cache_data["transform_data"]))
                crs_wkt = str(cache_data["crs_wkt"])
                crs = CRS.from_wkt(crs_wkt) if crs_wkt else None
                grids = {
                    name: ElevationGrid(data=cache_data[name], transform=transform, crs=crs)
                    for name in SURFACE_NAMES
                }

            elapsed = time.time() - start_time
            logger.info(f"Loaded surfaces from cache ({elapsed:.2f}s)")
            return HeatLoadSurfaces(**grids)

        except (OSError, KeyError, ValueError) as e:
            logger.warning(f"Failed to load cache {cache_path.name}: {e}")
            logger.debug("Cache will be regenerated")
            return None

    def _surface_entries(self, cache_name: str = "surfaces") -> Dict[str, List[Path]]:
        """Cache files grouped by source hash (the .npz and its metadata)."""
        entries: Dict[str, List[Path]] = {}
        if not self.cache_dir.exists():
            return entries
        prefix = f"{cache_name}_"
        for cache_file in sorted(self.cache_dir.glob(f"{prefix}*")):
            if not cache_file.is_file():
                continue
            source_hash = cache_file.name[len(prefix):].split("_")[0].split(".")[0]
            entries.setdefault(source_hash, []).append(cache_file)
        return entries

    def clear_cache(self, cache_name: str = "surfaces") -> int:
        """
        Delete every cached surface set (arrays and metadata).

        Returns:
            Number of files deleted
        """
        if not self.enabled:
            return 0

        deleted = 0
        entries = self._surface_entries(cache_name)
        for source_hash, files in entries.items():
            for cache_file in files:
                try:
                    cache_file.unlink()
                    deleted += 1
                except OSError as e:
                    logger.warning(f"Failed to delete {cache_file.name}: {e}")
            logger.debug(f"Cleared surfaces {source_hash[:12]}")

        logger.info(f"Cleared {len(entries)} cached surface sets ({deleted} files)")
        return deleted

    def get_cache_stats(self, cache_name: str = "surfaces") -> dict:
        """
        Summarise the cached surface sets.

        Returns:
            Dict with the cache directory, file count, total size and one entry
            per source hash (grid shape and HLI range from its metadata, or
            None where the metadata is missing or unreadable)
        """
        stats = {
            "cache_dir": str(self.cache_dir),
            "enabled": self.enabled,
            "cache_files": 0,
            "total_size_mb": 0.0,
            "surfaces": [],
        }

        for source_hash, files in self._surface_entries(cache_name).items():
            size_mb = sum(f.stat().st_size for f in files) / (1024 * 1024)
            stats["cache_files"] += len(files)
            stats["total_size_mb"] += size_mb

            entry = {
                "source_hash": source_hash,
                "size_mb": size_mb,
                "complete": self.get_cache_path(source_hash, cache_name).exists(),
                "shape": None,
                "hli_range": None,
            }
            metadata_path = self.get_metadata_path(source_hash, cache_name)
            if metadata_path.exists():
                try:
                    with open(metadata_path) as f:
                        metadata = json.load(f)
                    entry["shape"] = tuple(metadata["shape"])
                    entry["hli_range"] = (metadata["hli_min"], metadata["hli_max"])
                except (OSError, KeyError, ValueError) as e:
                    logger.debug(f"Unreadable cache metadata {metadata_path.name}: {e}")
            stats["surfaces"].append(entry)

        return stats
