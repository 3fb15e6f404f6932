"""
Restaurant menu data and lookups.

The menu lives in `menu.json` at the project root (override with MENU_DATA_PATH).
It has four item sections (pizzas, appetizers, drinks, desserts) plus a list of
pizza toppings. Items carry either a single `price` or per-size `prices`.
"""

from __future__ import annotations

import json
import unicodedata
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)

SECTIONS: Tuple[str, ...] = ("pizzas", "appetizers", "drinks", "desserts")

_CATEGORY_BY_SECTION = {
    "pizzas": "pizza",
    "appetizers": "appetizer",
    "drinks": "drink",
    "desserts": "dessert",
}
_SECTION_BY_ALIAS = {
    **{section: section for section in SECTIONS},
    **{category: section for section, category in _CATEGORY_BY_SECTION.items()},
}

DEFAULT_SIZE = "medium"


@dataclass(frozen=True)
class MenuItem:
    item_id: str
    name: str
    category: str
    description: Optional[str] = None
    price: Optional[float] = None
    prices: Dict[str, float] = field(default_factory=dict)

    def unit_price(self, size: Optional[str] = None) -> float:
        """
        Price for one unit.

        Sized items fall back to their first listed size when `size` is unknown.
        """
        if self.prices:
            if size and size in self.prices:
                return self.prices[size]
            return next(iter(self.prices.values()))
        return self.price or 0.0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "itemId": self.item_id,
            "name": self.name,
            "category": self.category,
        }
        if self.description:
            data["description"] = self.description
        if self.prices:
            data["prices"] = dict(self.prices)
        if self.price is not None:
            data["price"] = self.price
        return data

    def to_summary(self) -> Dict[str, str]:
        return {"itemId": self.item_id, "name": self.name}


@dataclass(frozen=True)
class MenuCatalog:
    sections: Dict[str, Tuple[MenuItem, ...]]
    toppings: Tuple[str, ...] = ()

    @property
    def items(self) -> Tuple[MenuItem, ...]:
        items: List[MenuItem] = []
        for section in SECTIONS:
            items.extend(self.sections.get(section, ()))
        return tuple(items)

    def by_category(self, category: str) -> Tuple[MenuItem, ...]:
        section = _SECTION_BY_ALIAS.get((category or "").strip().lower())
        if section is None:
            return ()
        return self.sections.get(section, ())

    def get_item(self, item_id: str) -> Optional[MenuItem]:
        for item in self.items:
            if item.item_id == item_id:
                return item
        return None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            section: [item.to_dict() for item in self.sections.get(section, ())]
            for section in SECTIONS
        }
        data["toppings"] = list(self.toppings)
        return data


def _project_root() -> Path:
    # src/voice_bridge/menu.py -> src/voice_bridge -> src -> project root
    return Path(__file__).resolve().parent.parent.parent


def resolve_menu_path(menu_path: Optional[str] = None) -> Path:
    """
    Resolve a menu path.

    If menu_path is relative, it is interpreted relative to the project root.
    Defaults to `menu.json` in the project root.
    """
    if not menu_path:
        return _project_root() / "menu.json"

    path = Path(menu_path)
    if path.is_absolute():
        return path
    return _project_root() / path


def _normalize(text: str) -> str:
    """
    Normalize text for matching: casefold + strip accents + collapse whitespace.
    """
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = " ".join(text.split())
    return text.casefold()


def _to_price(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return round(float(value), 2)
    except (TypeError, ValueError):
        return None


def _parse_item(raw: Any, *, category: str) -> Optional[MenuItem]:
    if not isinstance(raw, dict):
        return None
    item_id = raw.get("itemId")
    name = raw.get("name")
    if not item_id or not name:
        return None

    prices: Dict[str, float] = {}
    raw_prices = raw.get("prices")
    if isinstance(raw_prices, dict):
        for size, value in raw_prices.items():
            price = _to_price(value)
            if price is not None:
                prices[str(size)] = price

    description = raw.get("description")
    return MenuItem(
        item_id=str(item_id),
        name=str(name),
        category=str(raw.get("category") or category),
        description=str(description) if description else None,
        price=_to_price(raw.get("price")) if raw.get("price") is not None else None,
        prices=prices,
    )


def parse_menu_data(data: Any) -> MenuCatalog:
    """
    Build a catalog from menu JSON, skipping malformed items.

    Raises:
        ValueError: If the top-level structure is not a menu
    """
    if not isinstance(data, dict):
        raise ValueError("Menu data must be an object")
    if not all(isinstance(data.get(section), list) for section in SECTIONS):
        raise ValueError(f"Menu data must include list sections: {', '.join(SECTIONS)}")
    if not isinstance(data.get("toppings"), list):
        raise ValueError("Menu data must include a toppings list")

    sections: Dict[str, Tuple[MenuItem, ...]] = {}
    for section in SECTIONS:
        category = _CATEGORY_BY_SECTION[section]
        parsed = (_parse_item(raw, category=category) for raw in data[section])
        sections[section] = tuple(item for item in parsed if item is not None)

    toppings = tuple(t for t in data["toppings"] if isinstance(t, str))
    return MenuCatalog(sections=sections, toppings=toppings)


def load_menu_from_json(path: Path) -> MenuCatalog:
    data = json.loads(path.read_text(encoding="utf-8"))
    return parse_menu_data(data)


@lru_cache(maxsize=4)
def get_menu_catalog(menu_path: Optional[str] = None) -> MenuCatalog:
    """
    Load and cache the menu catalog.

    Falls back to an empty catalog if the menu file is missing or invalid.
    """
    path = resolve_menu_path(menu_path)
    if not path.exists():
        logger.warning("Menu file not found", menu_path=str(path))
        return MenuCatalog(sections={section: () for section in SECTIONS})

    try:
        catalog = load_menu_from_json(path)
    except (OSError, ValueError) as e:
        logger.error("Failed to load menu", menu_path=str(path), error=str(e))
        return MenuCatalog(sections={section: () for section in SECTIONS})

    logger.info(
        "Menu loaded",
        menu_path=str(path),
        num_sections=len(catalog.sections),
        num_items=len(catalog.items),
    )
    return catalog


def find_menu_items(catalog: MenuCatalog, query: str, *, limit: int = 12) -> List[MenuItem]:
    """
    Find menu items by substring match against the item name and description.
    """
    q = _normalize(query)
    if not q:
        return []

    scored: List[Tuple[int, MenuItem]] = []
    for item in catalog.items:
        name_n = _normalize(item.name)
        description_n = _normalize(item.description or "")

        score = 0
        if q in name_n:
            score += 3
        if q in description_n:
            score += 1
        # Light token overlap boost.
        q_tokens = set(q.split())
        if q_tokens:
            overlap = len(q_tokens & set(name_n.split()))
            score += min(2, overlap)

        if score > 0:
            scored.append((score, item))

    scored.sort(key=lambda t: (-t[0], t[1].category, t[1].name))
    return [item for _, item in scored[:limit]]
