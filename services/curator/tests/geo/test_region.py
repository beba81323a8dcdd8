"""
Tests for services/curator/geo/region.py

Covers:
  - BoundingBox.around / contains / to_rect_param / grid
  - ServiceArea two-layer check (box, then address prefix)
  - District helpers used by matching and blog relevance
"""

import pytest

from services.curator.config import Settings
from services.curator.geo.region import (
    SERVICE_AREA_BOUNDS,
    BoundingBox,
    ServiceArea,
    address_prefix,
    district_code_from_address,
    district_key,
    extract_district,
)


class TestBoundingBox:
    def test_around_uses_100m_deltas(self):
        box = BoundingBox.around(37.5, 127.0)
        assert box.sw_lat == pytest.approx(37.4991)
        assert box.ne_lat == pytest.approx(37.5009)
        assert box.sw_lng == pytest.approx(126.9989)
        assert box.ne_lng == pytest.approx(127.0011)

    def test_contains_is_inclusive(self):
        box = BoundingBox(37.0, 127.0, 38.0, 128.0)
        assert box.contains(37.0, 127.0)
        assert box.contains(38.0, 128.0)
        assert not box.contains(38.01, 127.5)

    def test_rect_param_is_lng_first(self):
        box = BoundingBox(sw_lat=36.9, sw_lng=126.5, ne_lat=38.0, ne_lng=127.9)
        assert box.to_rect_param() == "126.5,36.9,127.9,38.0"

    def test_grid_covers_service_area(self):
        tiles = SERVICE_AREA_BOUNDS.grid((36.9, 37.3, 37.65, 38.0), (126.5, 127.2, 127.9))
        assert len(tiles) == 6
        assert tiles[0] == BoundingBox(36.9, 126.5, 37.3, 127.2)
        assert tiles[-1] == BoundingBox(37.65, 127.2, 38.0, 127.9)

    def test_grid_rejects_edges_not_spanning_box(self):
        with pytest.raises(ValueError):
            SERVICE_AREA_BOUNDS.grid((37.0, 38.0), (126.5, 127.9))

    def test_grid_needs_two_edges(self):
        with pytest.raises(ValueError):
            SERVICE_AREA_BOUNDS.grid((36.9,), (126.5, 127.9))


class TestServiceArea:
    def test_in_box_with_valid_prefix(self):
        area = ServiceArea()
        assert area.is_in_area(37.5, 127.0, "서울 강남구 역삼동 123")

    def test_outside_box(self):
        assert not ServiceArea().is_in_area(35.1, 129.0, "부산 해운대구")

    def test_in_box_but_wrong_region(self):
        assert not ServiceArea().is_in_area(37.5, 127.0, "부산 해운대구 우동")

    def test_missing_address_skips_address_layer(self):
        area = ServiceArea()
        assert area.is_in_area(37.5, 127.0, None)
        assert area.is_in_area(37.5, 127.0, "   ")

    def test_is_valid_address(self):
        area = ServiceArea()
        assert area.is_valid_address("경기 남양주시 와부읍")
        assert area.is_valid_address("  인천 연수구")
        assert not area.is_valid_address("강원 춘천시")
        assert not area.is_valid_address(None)

    def test_default_area_is_tiled(self):
        assert len(ServiceArea().tiles()) == 6

    def test_custom_bounds_are_one_tile(self):
        box = BoundingBox(37.4, 126.9, 37.7, 127.2)
        assert ServiceArea(bounds=box).tiles() == [box]

    def test_from_settings(self):
        s = Settings(service_region_prefixes=["서울"], service_area_ne_lat=37.8)
        area = ServiceArea.from_settings(s)
        assert area.bounds.ne_lat == 37.8
        assert not area.is_valid_address("경기 수원시")


class TestAddressHelpers:
    def test_address_prefix(self):
        assert address_prefix("경기 용인시 기흥구 보정동", 3) == "경기 용인시 기흥구"
        assert address_prefix(None, 2) == ""

    def test_district_key_ignores_admin_suffixes(self):
        assert district_key("서울특별시 강남구 삼성동") == district_key("서울 강남구 역삼동")

    @pytest.mark.parametrize("address,expected", [
        ("경기 남양주시 와부읍 덕소로2번길 84", "남양주"),
        ("서울 강남구 역삼동 123", "강남"),
        ("서울특별시 마포구 연남동", "마포"),
        ("경기도 수원시 팔달구", "수원"),
        ("", ""),
        (None, ""),
    ])
    def test_extract_district(self, address, expected):
        assert extract_district(address) == expected

    def test_district_code(self):
        assert district_code_from_address("서울 강남구 역삼동 123") == "서울_강남구_역삼동"
        assert district_code_from_address("서울") is None
        assert district_code_from_address(None) is None
