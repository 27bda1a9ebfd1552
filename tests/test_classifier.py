"""
Unit tests for the keyword classifier.
Run: pytest tests/test_classifier.py -v
"""

import asyncio

import pytest

from triage.classifier import COST_TABLE, classify, classify_async, estimate_cost
from triage.models import Category, TenantVulnerability, Urgency


class TestUrgency:
    @pytest.mark.parametrize("text", [
        "My apartment is flooding!",
        "FLOOD in the basement",
        "the laundry room flooded overnight",
        "water is FlOoDiNg the hallway",
    ])
    def test_flood_is_emergency_plumbing(self, text):
        c = classify(text)
        assert c.urgency == Urgency.EMERGENCY
        assert c.category == Category.PLUMBING
        assert c.estimated_cost.min <= c.estimated_cost.max

    @pytest.mark.parametrize("text", ["I smell gas", "there's a fire", "sparks from the wall", "electrical smell", "sewage backing up"])
    def test_emergency_keywords(self, text):
        assert classify(text).urgency == Urgency.EMERGENCY

    def test_high_tier(self):
        c = classify("There is no heat in my apartment")
        assert c.urgency == Urgency.HIGH
        assert c.category == Category.HVAC

    def test_no_hot_water_is_high(self):
        assert classify("we have no hot water since morning").urgency == Urgency.HIGH

    def test_medium_tier(self):
        c = classify("my sink has a drip")
        assert c.urgency == Urgency.MEDIUM
        assert c.category == Category.PLUMBING

    def test_low_default(self):
        c = classify("the door squeaks")
        assert c.urgency == Urgency.LOW
        assert c.category == Category.GENERAL

    def test_emergency_wins_over_lower_tiers(self):
        assert classify("broken pipe and there's sewage everywhere").urgency == Urgency.EMERGENCY


class TestCategory:
    def test_plumbing_checked_first(self):
        assert classify("the light above the sink").category == Category.PLUMBING

    def test_electrical(self):
        c = classify("the outlet in my bedroom has no power")
        assert c.category == Category.ELECTRICAL
        assert c.required_skills == ["electrical"]

    def test_ac_needs_word_boundary(self):
        assert classify("The AC is not working").category == Category.HVAC
        assert classify("my back hurts and the fridge is out").category == Category.APPLIANCE

    def test_air_needs_word_boundary(self):
        assert classify("please repair the closet door").category == Category.GENERAL

    def test_other_terms_match_inside_words(self):
        # Only "ac" and "air" need whole words; everything else is a substring match.
        assert classify("my flight got cancelled").category == Category.ELECTRICAL
        assert classify("the heater is clicking").category == Category.HVAC
        assert classify("the sinkhole by the porch").category == Category.PLUMBING
        assert classify("the stairs are loose").category == Category.GENERAL
        assert classify("air is blowing warm").category == Category.HVAC

    def test_appliance(self):
        assert classify("the washer won't spin").category == Category.APPLIANCE

    def test_security_never_produced_but_priced(self):
        assert Category.SECURITY in COST_TABLE
        cost = estimate_cost(Category.SECURITY, Urgency.EMERGENCY)
        assert cost.min <= cost.max


class TestDerivedFields:
    def test_emergency_flags(self):
        c = classify("flood in the kitchen")
        assert c.confidence == 0.85
        assert c.time_estimate == 1
        assert c.safety_risk is True
        assert c.property_damage is True
        assert c.follow_up_required is True
        assert c.description == "EMERGENCY plumbing issue requiring attention"

    def test_high_flags(self):
        c = classify("broken lock on the front door")
        assert c.urgency == Urgency.HIGH
        assert c.time_estimate == 2
        assert c.safety_risk is False
        assert c.property_damage is True

    def test_low_flags(self):
        c = classify("the door squeaks")
        assert c.time_estimate == 3
        assert c.safety_risk is False
        assert c.property_damage is False
        assert c.follow_up_required is False
        assert c.required_skills == ["general"]

    def test_keywords_are_matched_terms(self):
        c = classify("Flood coming from a pipe")
        assert "flood" in c.keywords
        assert "pipe" in c.keywords
        assert c.keywords == sorted(set(c.keywords))

    def test_cost_from_table(self):
        c = classify("the outlet is broken")
        assert (c.estimated_cost.min, c.estimated_cost.max) == COST_TABLE[Category.ELECTRICAL][Urgency.MEDIUM]

    def test_vulnerability(self):
        c = classify("My elderly mother lives here and the stove is broken")
        assert c.tenant_vulnerability == TenantVulnerability.ELDERLY
        assert classify("the stove is broken").tenant_vulnerability == TenantVulnerability.NONE

    def test_preventive_maintenance_listed(self):
        assert classify("leak under the sink").preventive_maintenance


class TestTotality:
    def test_cost_table_ranges_valid(self):
        assert len(COST_TABLE) == 6
        for category, tiers in COST_TABLE.items():
            assert set(tiers) == set(Urgency)
            for low, high in tiers.values():
                assert low <= high

    @pytest.mark.parametrize("text", ["", "   ", "???", "asdf qwerty", "x" * 5000, "Ünïcödé flood"])
    def test_any_text_classifies(self, text):
        c = classify(text)
        assert 0.0 <= c.confidence <= 1.0
        assert c.estimated_cost.min <= c.estimated_cost.max

    def test_deterministic(self):
        text = "No heat and the pipe is leaking"
        assert classify(text) == classify(text)

    def test_async_matches_sync(self):
        text = "sparks from the outlet"
        assert asyncio.run(classify_async(text)) == classify(text)
