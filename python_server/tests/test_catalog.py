"""Tests for the catalog and game config loaders, and travel times."""

from __future__ import annotations

import math

import pytest

from conftest import CONFIG_DIR
from polis.engine.catalog import Catalog
from polis.engine.travel import distance, modified_speed, travel_seconds
from polis.loaders.catalog_loader import load_catalog_data
from polis.loaders.game_config_loader import GameConfig, load_game_config
from polis.models.catalog import UnitType
from polis.util.errors import ConfigError


class TestCatalogLoader:
    @pytest.mark.parametrize("name", ["units", "heroes", "buildings", "research", "ruin_research"])
    def test_config_file_exists(self, name):
        assert (CONFIG_DIR / f"{name}.yaml").exists()

    def test_sections(self):
        data = load_catalog_data(CONFIG_DIR)
        assert set(data) == {"units", "heroes", "buildings", "research"}
        assert all(data.values())

    def test_ruin_research_merged(self, catalog: Catalog):
        assert catalog.research("qol_research_0").academy_level == 0
        assert catalog.research("slinger").academy_level == 1

    def test_missing_directory_is_empty(self, tmp_path):
        data = load_catalog_data(tmp_path)
        assert data == {"units": [], "heroes": [], "buildings": [], "research": []}

    def test_unknown_unit_type(self, tmp_path):
        (tmp_path / "units.yaml").write_text("golem: {type: stone}\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="golem"):
            load_catalog_data(tmp_path)

    def test_top_level_must_be_mapping(self, tmp_path):
        (tmp_path / "heroes.yaml").write_text("- achilles\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_catalog_data(tmp_path)


class TestCatalog:
    def test_unit_details(self, catalog: Catalog):
        hoplite = catalog.unit("hoplite")
        assert hoplite.type == UnitType.LAND
        assert hoplite.attack == 16
        assert hoplite.counters == ("swordsman",)
        trireme = catalog.unit("trireme")
        assert trireme.type == UnitType.NAVAL
        assert trireme.capacity == 10

    def test_flying_units(self, catalog: Catalog):
        assert catalog.unit("pegasus").flying is True
        assert catalog.unit("hoplite").flying is False

    def test_unknown_ids(self, catalog: Catalog):
        assert catalog.unit("golem") is None
        assert catalog.hero(None) is None
        assert catalog.hero("hercules2") is None
        assert catalog.building("tower") is None

    def test_hero_passive(self, catalog: Catalog):
        hero = catalog.hero("achilles")
        assert hero.passive_subtype == "land_attack"
        assert hero.passive_value == pytest.approx(0.1)

    def test_display_name(self, catalog: Catalog):
        assert catalog.display_name("transport_ship") == "Transport Boat"
        assert catalog.display_name("market") == "Market"
        assert catalog.display_name("golem") == "golem"

    def test_population_value_skips_unknown(self, catalog: Catalog):
        assert catalog.population_value({"hoplite": 10, "trireme": 2, "golem": 5}) == 10 + 32

    def test_is_type(self, catalog: Catalog):
        assert catalog.is_type("bireme", UnitType.NAVAL)
        assert not catalog.is_type("golem", UnitType.LAND)


class TestGameConfig:
    def test_loads_file(self, game_config: GameConfig):
        assert game_config.cancel_window_s == 30
        assert [o.name for o in game_config.demand_options] == [
            "5 minutes", "40 minutes", "2 hours", "4 hours",
        ]

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = load_game_config(str(tmp_path / "absent.yaml"))
        assert cfg == GameConfig()
        assert len(cfg.demand_options) == 4

    def test_unknown_keys_ignored(self, tmp_path):
        path = tmp_path / "game.yaml"
        path.write_text("plunder_ratio: 0.5\nnot_a_setting: 3\n", encoding="utf-8")
        cfg = load_game_config(str(path))
        assert cfg.plunder_ratio == 0.5
        assert not hasattr(cfg, "not_a_setting")


# ---------------------------------------------------------------------------
# Travel
# ---------------------------------------------------------------------------


class TestTravel:
    def test_distance(self):
        assert distance({"x": 10, "y": 10}, {"x": 13, "y": 14}) == 5
        assert distance({}, {"x": 1, "y": 1}) == 0

    def test_army_speed(self):
        assert travel_seconds(5, 6, "attack") == pytest.approx(600)

    def test_fast_modes_are_clamped(self):
        assert travel_seconds(5, 6, "scout") == 75
        assert travel_seconds(0.5, 6, "trade") == 15
        assert travel_seconds(100, 6, "trade") == 300

    def test_season_affects_land_only(self):
        assert modified_speed(10, {"season": "Summer"}, ["land"]) == pytest.approx(11)
        assert modified_speed(10, {"season": "Winter"}, ["land"]) == pytest.approx(8)
        assert modified_speed(10, {"season": "Winter"}, ["naval"]) == pytest.approx(10)

    def test_wind_affects_ships(self):
        assert modified_speed(10, {"windSpeed": 10}, ["naval"]) == pytest.approx(12.5)
        assert modified_speed(10, {"windSpeed": 0}, ["flying"]) == pytest.approx(7.5)
        assert modified_speed(10, {}, ["naval"]) == pytest.approx(10)

    def test_weather(self):
        assert modified_speed(10, {"weather": "Foggy"}, ["naval"]) == pytest.approx(7.5)
        assert modified_speed(10, {"weather": "Rainy"}, ["land"]) == pytest.approx(9)
        assert modified_speed(10, {"weather": "Stormy"}, ["land", "naval"]) == pytest.approx(6.4)

    def test_no_world_state(self):
        assert modified_speed(10, None, ["land"]) == 10

    def test_stalled_army(self):
        assert math.isinf(travel_seconds(5, 0, "attack"))
