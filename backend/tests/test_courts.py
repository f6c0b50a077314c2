from poolplay.utils.courts import courts_in_facility, facility_for_court, parse_court_names, venue_courts

FACILITIES = [
    {"name": "Main Gym", "courts": [{"name": "Court 1"}, {"name": "Court 2", "is_enabled": False}]},
    {"name": "Annex", "courts": ["Court 3"]},
]


def test_parse_court_names_string():
    assert parse_court_names("SRC-1, SRC-2,,SRC-1") == ["SRC-1", "SRC-2"]


def test_parse_court_names_list_and_empty():
    assert parse_court_names([" VC-1 ", "VC-1", "VC-2"]) == ["VC-1", "VC-2"]
    assert parse_court_names(None) == []
    assert parse_court_names("") == []
    assert parse_court_names(42) == []


def test_venue_courts_skips_disabled_by_default():
    assert [c["court"] for c in venue_courts(FACILITIES)] == ["Court 1", "Court 3"]
    assert [c["court"] for c in venue_courts(FACILITIES, enabled_only=False)] == ["Court 1", "Court 2", "Court 3"]


def test_facility_prefers_layout_then_prefix():
    assert facility_for_court("Court 2", FACILITIES) == "Main Gym"
    assert facility_for_court("SRC-3") == "SRC"
    assert facility_for_court("Court9") is None
    assert facility_for_court(None) is None


def test_courts_in_facility():
    assert courts_in_facility("Main Gym", FACILITIES) == ["Court 1"]
    assert courts_in_facility("Annex", FACILITIES) == ["Court 3"]
