"""Shared fixtures: small gemstone catalogs built in memory"""
import pandas as pd
import pytest

from catalog.store import DataFrameCatalogStore


def gem(gid, type="sapphire", color="blue", price=250000, **extra):
    # One catalog row with sensible defaults for everything not under test
    row = {
        "id": gid, "type": type, "color": color, "cut": "oval", "clarity": "VS1",
        "origin": "Sri Lanka", "price_amount": price, "price_currency": "USD",
        "weight_carats": 1.0, "in_stock": True, "has_images": True,
        "has_certification": False, "has_ai_analysis": False,
        "serial_number": f"SN-{gid}", "internal_code": f"IC-{gid}",
        "created_at": "2025-01-01T00:00:00Z",
    }
    row.update(extra)
    return row


@pytest.fixture
def make_gem():
    return gem


@pytest.fixture
def catalog_df():
    return pd.DataFrame([
        gem("g-1", "sapphire", "blue", 250000, cut="oval", clarity="VS1", weight_carats=1.5),
        gem("g-2", "sapphire", "pink", 180000, cut="round", clarity="IF", weight_carats=1.1),
        gem("g-3", "ruby", "red", 420000, cut="oval", clarity="SI1", weight_carats=1.2, has_certification=True),
        gem("g-4", "ruby", "pink", 160000, cut="cushion", clarity="VVS1", in_stock=False),
        gem("g-5", "emerald", "green", 330000, cut="emerald", clarity="I1", weight_carats=1.8),
        gem("g-6", "diamond", "D", 2450000, cut="round", clarity="FL", has_certification=True),
        gem("g-7", "sapphire", "blue", 95000, cut="pear", clarity="VS2", has_images=False),
    ])


@pytest.fixture
def store(catalog_df):
    return DataFrameCatalogStore(catalog_df)
