"""Tests for the read-only name catalog."""

import pytest

from warden.catalog import Catalog
from warden.errors import CatalogError, ConfigError, TargetNotFound


class TestLookup:
    def test_resolve_name(self):
        assert Catalog().resolve_name("weapon", "Diamond_Sword") == "minecraft:diamond_sword"

    def test_unknown_name(self):
        with pytest.raises(CatalogError) as exc:
            Catalog().resolve_name("entity", "dragon")
        assert exc.value.code == "CATALOG_MISS"
        assert isinstance(exc.value, TargetNotFound)

    def test_try_resolve(self):
        catalog = Catalog()
        assert catalog.try_resolve("entity", "zombie") == "minecraft:zombie"
        assert catalog.try_resolve("entity", "dragon") is None
        assert catalog.try_resolve("spell", "fireball") is None

    def test_reverse_lookup(self):
        assert Catalog().name_for("minecraft:iron_sword") == "iron_sword"
        assert Catalog().name_for("mod:unknown") is None

    def test_listing(self):
        catalog = Catalog()
        assert catalog.kinds() == ["block", "entity", "food", "item", "weapon"]
        assert "creeper" in catalog.names("entity")

    def test_custom_entries(self):
        catalog = Catalog({"entity": {"Warden": "mod:warden"}})
        assert catalog.resolve_name("entity", "warden") == "mod:warden"
        assert catalog.kinds() == ["entity"]


class TestFromConfig:
    def test_inline_entries(self):
        catalog = Catalog.from_config({"catalog": {"entries": {"weapon": {"trident": "minecraft:trident"}}}})
        assert catalog.resolve_name("weapon", "trident") == "minecraft:trident"
        assert catalog.resolve_name("weapon", "iron_sword") == "minecraft:iron_sword"

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "catalog.yaml"
        path.write_text("entity:\n  breeze: 'minecraft:breeze'\n")
        catalog = Catalog.from_config({"catalog": {"path": str(path)}})
        assert catalog.resolve_name("entity", "breeze") == "minecraft:breeze"

    def test_missing_file_is_fatal(self, tmp_path):
        with pytest.raises(ConfigError):
            Catalog.from_config({"catalog": {"path": str(tmp_path / "missing.yaml")}})

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "catalog.yaml"
        path.write_text("- zombie\n")
        with pytest.raises(ConfigError):
            Catalog.from_config({"catalog": {"path": str(path)}})

    def test_no_section(self):
        assert Catalog.from_config({}).try_resolve("item", "bread") == "minecraft:bread"
