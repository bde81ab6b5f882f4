"""
Warehouse regions and region-specific database routing.
"""

import logging
import os
from enum import Enum
from typing import Dict, Optional, Tuple, Union

logger = logging.getLogger(__name__)


class WarehouseRegion(str, Enum):
    """Regions served by the supplier portal."""
    US = "US"
    JP = "JP"
    EU = "EU"
    AU = "AU"


# Checked in order; the first variable that is set wins.
REGION_URL_ENV_VARS: Dict[WarehouseRegion, Tuple[str, ...]] = {
    WarehouseRegion.US: ("DATABASE_URL_US", "DATABASE_URL_US_WEST"),
    WarehouseRegion.JP: ("DATABASE_URL_JP", "DATABASE_URL_JAPAN"),
    WarehouseRegion.EU: ("DATABASE_URL_EU",),
    WarehouseRegion.AU: ("DATABASE_URL_AU", "DATABASE_URL_AUSTRALIA"),
}


def parse_region(value: Union[str, WarehouseRegion, None]) -> Optional[WarehouseRegion]:
    """
    Normalize a region tag.

    Args:
        value: Region name such as "us", "JP" or a WarehouseRegion

    Returns:
        WarehouseRegion, or None when value is empty

    Raises:
        ValueError: If the region is unknown
    """
    if value is None or value == "":
        return None
    if isinstance(value, WarehouseRegion):
        return value
    try:
        return WarehouseRegion(value.strip().upper())
    except ValueError:
        raise ValueError(
            f"Unknown warehouse region '{value}'. "
            f"Expected one of: {', '.join(r.value for r in WarehouseRegion)}"
        ) from None


def resolve_region_url(base_url: str, region: Optional[WarehouseRegion]) -> str:
    """
    Pick the database URL for a region, falling back to base_url.

    Args:
        base_url: Default database URL
        region: Optional warehouse region

    Returns:
        Region-specific URL if one is configured, otherwise base_url
    """
    if region is None:
        return base_url

    for env_var in REGION_URL_ENV_VARS.get(region, ()):
        url = os.getenv(env_var)
        if url:
            logger.info(f"Using warehouse-specific database URL for {region.value} ({env_var})")
            return url

    return base_url
