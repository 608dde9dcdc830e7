"""
Product catalog and storybook asset lookup.

Both are read-mostly in-process stores seeded at startup from the JSON file
named by CATALOG_PATH:

    {
      "products": [ {PrintProduct document}, ... ],
      "storybooks": [ {PrintableAssets document}, ... ]
    }

The storybook generator publishes finished print PDFs with
``StorybookAssetStore.publish``; order creation reads them back with
``get``. Lookups are keyed by (storyId, outputId); an empty outputId
selects the storybook's most recently published output.

Thread Safety:
    Both stores guard their dicts with a threading.Lock.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from core.exceptions import ConfigurationError
from models.product import PrintableAssets, PrintProduct
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)


class ProductCatalog:
    """Print products by ID."""

    def __init__(self, products: Optional[List[PrintProduct]] = None):
        self._products: Dict[str, PrintProduct] = {}
        self._lock = threading.Lock()
        for product in products or []:
            self.add(product)

    def add(self, product: PrintProduct) -> None:
        with self._lock:
            self._products[product.id] = product

    def get(self, product_id: str) -> Optional[PrintProduct]:
        with self._lock:
            return self._products.get(product_id)

    def active_products(self) -> List[PrintProduct]:
        with self._lock:
            products = [p for p in self._products.values() if p.active]
        return sorted(products, key=lambda p: p.name)


class StorybookAssetStore:
    """Printable PDFs published for each storybook output."""

    def __init__(self, assets: Optional[List[PrintableAssets]] = None):
        self._assets: Dict[Tuple[str, str], PrintableAssets] = {}
        self._latest: Dict[str, str] = {}
        self._lock = threading.Lock()
        for item in assets or []:
            self.publish(item)

    def publish(self, assets: PrintableAssets) -> None:
        with self._lock:
            self._assets[(assets.story_id, assets.output_id)] = assets
            self._latest[assets.story_id] = assets.output_id

    def get(self, story_id: str, output_id: str = "") -> Optional[PrintableAssets]:
        with self._lock:
            if not output_id:
                output_id = self._latest.get(story_id, "")
            return self._assets.get((story_id, output_id))


def load_catalog(path: Optional[str]) -> Tuple[ProductCatalog, StorybookAssetStore]:
    """
    Build the catalog and asset store from a JSON seed file.

    Args:
        path: Seed file path; empty means start with empty stores

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    if not path:
        logger.info("No catalog seed configured, starting with an empty catalog")
        return ProductCatalog(), StorybookAssetStore()

    seed_path = Path(path)
    try:
        with seed_path.open("r", encoding="utf-8") as handle:
            seed: Dict[str, Any] = json.load(handle)
        products = [PrintProduct.from_dict(p) for p in seed.get("products", [])]
        storybooks = [PrintableAssets.from_dict(s) for s in seed.get("storybooks", [])]
    except FileNotFoundError as e:
        raise ConfigurationError(f"Catalog seed not found: {seed_path}", setting="CATALOG_PATH") from e
    except (ValueError, KeyError, TypeError) as e:
        raise ConfigurationError(f"Catalog seed {seed_path} is malformed: {e}", setting="CATALOG_PATH") from e

    logger.info(f"Loaded {len(products)} products and {len(storybooks)} storybooks from {seed_path}")
    return ProductCatalog(products), StorybookAssetStore(storybooks)
