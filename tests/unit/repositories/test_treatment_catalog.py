from __future__ import annotations

import pytest

from app.domain.exceptions import ValidationError
from infrastructure.database.repositories.treatments import MAX_RESULTS_PER_KIND, extract_keywords


def _names(groups, kind):
    for group in groups:
        if group["kind"] == kind:
            return [item["name"] for item in group["items"]]
    return []


def test_extract_keywords_drops_filler_and_short_tokens():
    assert extract_keywords("Bệnh Leaf Blight on tomato") == ["leaf", "blight", "tomato"]
    assert extract_keywords(None) == []


def test_lookup_groups_in_kind_order(seeded_catalog):
    groups = seeded_catalog.lookup("Leaf blight disease", "Tomato plant")
    assert [group["kind"] for group in groups] == ["chemical", "biological", "cultural"]
    assert _names(groups, "chemical") == ["Anvil 5SC", "Ridomil Gold"]
    assert _names(groups, "biological") == ["Trichoderma"]
    assert _names(groups, "cultural") == ["Remove lower leaves"]


def test_chemical_requires_crop_match(seeded_catalog):
    groups = seeded_catalog.lookup("early blight", "potato")
    assert _names(groups, "chemical") == ["Anvil 5SC"]
    assert _names(groups, "cultural") == []


def test_details_are_flattened_into_items(seeded_catalog):
    chemical = seeded_catalog.lookup("leaf blight", "tomato")[0]["items"]
    anvil = chemical[0]
    assert anvil["dosage"] == "20ml/16L"
    assert anvil["target_crops"] == ["tomato", "potato"]


def test_healthy_plant_only_gets_cultural(seeded_catalog):
    groups = seeded_catalog.lookup(None, "tomato")
    assert [group["kind"] for group in groups] == ["cultural"]


def test_results_are_capped_per_kind(treatment_repo):
    for index in range(MAX_RESULTS_PER_KIND + 2):
        treatment_repo.add_entry("biological", f"Agent {index}", target_diseases=["rust"])
    groups = treatment_repo.lookup("rust")
    assert len(_names(groups, "biological")) == MAX_RESULTS_PER_KIND


def test_find_products_is_case_insensitive(seeded_catalog):
    found = seeded_catalog.find_products(["anvil 5sc ", "Unknown"])
    assert [item["name"] for item in found] == ["Anvil 5SC"]
    assert seeded_catalog.find_products([]) == []


@pytest.mark.parametrize("kind, name", [("magic", "Wand"), ("chemical", "  ")])
def test_add_entry_validates(treatment_repo, kind, name):
    with pytest.raises(ValidationError):
        treatment_repo.add_entry(kind, name)
