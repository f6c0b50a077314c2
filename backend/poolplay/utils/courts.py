"""
Court and venue helpers.

Court lists arrive either as a comma string ("SRC-1,SRC-2") or a list; the
venue layout (Tournament.facilities) maps each court to its facility. When no
layout is configured the facility is the court-name prefix before the first
"-" ("SRC-1" -> "SRC").
"""
from typing import Any, Dict, List, Optional, Union


def parse_court_names(court_names: Optional[Union[str, List[str]]]) -> List[str]:
    """
    Normalize court names to an ordered list of unique non-empty strings.

    - None or "" -> []
    - "SRC-1, SRC-2" -> ["SRC-1", "SRC-2"]
    - ["SRC-1", " SRC-1 ", "VC-1"] -> ["SRC-1", "VC-1"]
    """
    if court_names is None:
        return []
    if isinstance(court_names, str):
        raw = court_names.split(",")
    elif isinstance(court_names, list):
        raw = [str(x) for x in court_names]
    else:
        return []

    result: List[str] = []
    for item in raw:
        name = item.strip()
        if name and name not in result:
            result.append(name)
    return result


def venue_courts(facilities: Optional[List[Dict[str, Any]]], enabled_only: bool = True) -> List[Dict[str, str]]:
    """Flatten the venue layout into [{"facility": ..., "court": ...}] in layout order."""
    courts: List[Dict[str, str]] = []
    for facility in facilities or []:
        facility_name = str(facility.get("name") or "").strip()
        for court in facility.get("courts") or []:
            if isinstance(court, str):
                court_name, is_enabled = court.strip(), True
            else:
                court_name = str(court.get("name") or "").strip()
                is_enabled = court.get("is_enabled", True) is not False
            if not court_name or (enabled_only and not is_enabled):
                continue
            courts.append({"facility": facility_name, "court": court_name})
    return courts


def facility_for_court(court: Optional[str], facilities: Optional[List[Dict[str, Any]]] = None) -> Optional[str]:
    if not court:
        return None
    for entry in venue_courts(facilities, enabled_only=False):
        if entry["court"] == court:
            return entry["facility"] or None
    prefix, sep, _ = court.partition("-")
    return prefix if sep and prefix else None


def courts_in_facility(facility: str, facilities: Optional[List[Dict[str, Any]]] = None) -> List[str]:
    return [entry["court"] for entry in venue_courts(facilities) if entry["facility"] == facility]
