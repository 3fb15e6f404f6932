"""
Tests for menu parsing and matching.
"""

from __future__ import annotations

import json

import pytest

from src.voice_bridge.menu import (
    SECTIONS,
    find_menu_items,
    get_menu_catalog,
    load_menu_from_json,
    parse_menu_data,
    resolve_menu_path,
)


def test_menu_parses_expected_sections_and_items() -> None:
    catalog = load_menu_from_json(resolve_menu_path("menu.json"))

    assert set(catalog.sections) == set(SECTIONS)
    assert len(catalog.sections["pizzas"]) == 8
    assert len(catalog.toppings) > 0

    margherita = catalog.get_item("pizza_margherita")
    assert margherita is not None
    assert margherita.category == "pizza"
    assert margherita.prices == {"small": 14.99, "medium": 18.99, "large": 22.99}

    water = catalog.get_item("drink_water")
    assert water is not None
    assert water.price == 1.99
    assert water.prices == {}


def test_unit_price_by_size() -> None:
    catalog = load_menu_from_json(resolve_menu_path("menu.json"))
    margherita = catalog.get_item("pizza_margherita")

    assert margherita.unit_price("large") == 22.99
    # Unknown sizes fall back to the first listed size.
    assert margherita.unit_price("huge") == 14.99
    assert catalog.get_item("dessert_tiramisu").unit_price("large") == 6.99


def test_by_category_accepts_singular_and_plural() -> None:
    catalog = load_menu_from_json(resolve_menu_path("menu.json"))

    assert catalog.by_category("pizza") == catalog.by_category("Pizzas")
    assert catalog.by_category("dessert")
    assert catalog.by_category("sandwiches") == ()


def test_parse_menu_skips_malformed_items() -> None:
    data = {
        "pizzas": [{"itemId": "p1", "name": "Plain", "price": "9.5"}, {"name": "no id"}, "junk"],
        "appetizers": [],
        "drinks": [],
        "desserts": [],
        "toppings": ["Olives", 3],
    }

    catalog = parse_menu_data(data)

    assert [item.item_id for item in catalog.items] == ["p1"]
    assert catalog.items[0].price == 9.5
    assert catalog.toppings == ("Olives",)


def test_parse_menu_rejects_wrong_shape() -> None:
    with pytest.raises(ValueError):
        parse_menu_data([])
    with pytest.raises(ValueError):
        parse_menu_data({"pizzas": []})


def test_missing_or_invalid_menu_yields_empty_catalog(tmp_path) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text(json.dumps({"pizzas": "nope"}), encoding="utf-8")

    assert get_menu_catalog(str(tmp_path / "absent.json")).items == ()
    assert get_menu_catalog(str(broken)).items == ()


def test_find_menu_items_matches_name_tokens() -> None:
    catalog = load_menu_from_json(resolve_menu_path("menu.json"))

    matches = find_menu_items(catalog, "pepperoni pizza", limit=3)

    assert matches[0].item_id == "pizza_pepperoni"
    assert find_menu_items(catalog, "   ") == []
