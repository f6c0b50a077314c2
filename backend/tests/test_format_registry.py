"""Format registry: lookup, suggestions, stage shapes and the formats API."""
import pytest
from fastapi.testclient import TestClient

from poolplay.services.format_registry import (
    CUMULATIVE_SCOPE,
    DEFAULT_15_TEAM_FORMAT_ID,
    FormatDefinition,
    get_format,
    list_formats,
    register_format,
    suggest_formats,
)

FOURTEEN_TEAM_FORMAT_ID = "classic_14_mixedpools_crossover_gold8_silver6_v1"


def test_builtin_formats_are_listed():
    ids = [f.id for f in list_formats()]
    assert ids == [
        "classic_12_3x4_gold8_silver4_v1",
        FOURTEEN_TEAM_FORMAT_ID,
        DEFAULT_15_TEAM_FORMAT_ID,
        "classic_16_4x4_all16_v1",
    ]


def test_get_format_trims_and_rejects_blank_ids():
    assert get_format(f"  {DEFAULT_15_TEAM_FORMAT_ID} ").id == DEFAULT_15_TEAM_FORMAT_ID
    assert get_format("") is None
    assert get_format("   ") is None
    assert get_format(None) is None
    assert get_format("no_such_format") is None


def test_fifteen_team_format_shape():
    format_def = get_format(DEFAULT_15_TEAM_FORMAT_ID)
    assert [s.key for s in format_def.stages] == ["poolPlay1", "poolPlay2", "playoffs"]
    assert [p.name for p in format_def.stage("poolPlay1").pools] == ["A", "B", "C", "D", "E"]
    assert format_def.stage("poolPlay2").mapping_for("F") == ("A1", "B2", "C3")
    assert format_def.non_playoff_phases() == ["phase1", "phase2"]

    brackets = format_def.playoff_stage().brackets
    assert [b.key for b in brackets] == ["gold", "silver", "bronze"]
    assert brackets[1].overall_ranks == [6, 7, 8, 9, 10]


def test_stages_before_is_declaration_order():
    format_def = get_format(FOURTEEN_TEAM_FORMAT_ID)
    assert [s.key for s in format_def.stages_before("playoffs")] == ["poolPlay1", "crossover"]
    assert format_def.stages_before("poolPlay1") == []
    assert format_def.non_playoff_phases() == ["phase1", "crossover"]


def test_suggest_formats_matches_team_and_court_counts():
    assert [f.id for f in suggest_formats(15, 5)] == [DEFAULT_15_TEAM_FORMAT_ID]
    assert [f.id for f in suggest_formats("16", "8")] == ["classic_16_4x4_all16_v1"]
    # 3-court minimum
    assert suggest_formats(15, 2) == []


@pytest.mark.parametrize("team_count,court_count", [(0, 5), (-3, 5), ("abc", 5), (15, None), (None, 4), (13, 5)])
def test_suggest_formats_empty_for_bad_or_unsupported_counts(team_count, court_count):
    assert suggest_formats(team_count, court_count) == []


def test_register_format_rejects_duplicates():
    with pytest.raises(ValueError):
        register_format(get_format(DEFAULT_15_TEAM_FORMAT_ID))
    with pytest.raises(ValueError):
        register_format(
            FormatDefinition(id="empty_v1", name="Empty", description="", supported_team_counts=(4,), stages=())
        )


def test_to_dict_describes_brackets_and_mapping():
    data = get_format(DEFAULT_15_TEAM_FORMAT_ID).to_dict()
    assert data["supported_team_counts"] == [15]
    assert data["stages"][1]["mapping"]["J"] == ["E1", "A2", "B3"]
    gold = data["stages"][2]["brackets"][0]
    assert gold["seed_range"] == [1, 5]
    assert gold["bracket_type"] == "fiveTeamOps"
    assert CUMULATIVE_SCOPE == "cumulative"


# ============================================================================
# API
# ============================================================================


def test_list_formats_endpoint(client: TestClient):
    response = client.get("/api/formats")
    assert response.status_code == 200
    assert len(response.json()) == 4


def test_suggest_endpoint_tolerates_non_numeric_counts(client: TestClient):
    response = client.get("/api/formats/suggest", params={"team_count": "abc", "court_count": "5"})
    assert response.status_code == 200
    assert response.json() == []

    response = client.get("/api/formats/suggest", params={"team_count": "14", "court_count": "4"})
    assert [f["id"] for f in response.json()] == [FOURTEEN_TEAM_FORMAT_ID]


def test_get_format_endpoint_not_found(client: TestClient):
    response = client.get("/api/formats/missing_format")
    assert response.status_code == 404
    body = response.json()
    assert body["code"] == "NotFound"
    assert body["resource"] == "Format"


def test_get_format_endpoint(client: TestClient):
    response = client.get(f"/api/formats/{DEFAULT_15_TEAM_FORMAT_ID}")
    assert response.status_code == 200
    assert response.json()["name"] == "ODU 15-Team Classic"


def test_health_endpoint(client: TestClient):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
