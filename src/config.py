"""Configuration module for heat-load project.

Centralizes data paths and default settings.
"""
from pathlib import Path

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Data directories
DATA_DIR = PROJECT_ROOT / "data"
DEM_DIR = DATA_DIR / "dem"
GROUPS_DIR = DATA_DIR / "groups"
OUTPUT_DIR = DATA_DIR / "output"

# Cache directories (created by ArtifactCache when enabled)
CACHE_DIR = DATA_DIR / "cache"
SURFACE_CACHE = CACHE_DIR / "surfaces"

# Default settings
DEFAULT_DEM_PATTERN = "*.tif"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_GEOGRAPHIC_CRS = "EPSG:4326"
DEFAULT_OUTPUT_NAME = "groups_hli.gpkg"

# Harvest group attributes
TREATMENT_CLASSES = ("Openings", "Reserves")
DEFAULT_ID_COLUMN = "group_id"
DEFAULT_TREATMENT_COLUMN = "treatment"
