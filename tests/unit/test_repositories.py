"""Unit tests for the automation repository's stored payload form."""

from __future__ import annotations

import pytest

from packages.database.src.repositories import automation_to_rule


class TestStoredPayloads:
    """Tests for the canonical form written by AutomationRepository."""

    @pytest.mark.asyncio
    async def test_defaults_are_not_stored(self, make_automation):
        """Should store only the fields the caller set."""
        automation = await make_automation(trigger_conditions={"threshold": 3})

        assert automation.trigger_conditions == {"threshold": 3}
        assert automation.action_config == {"tag": "urgent"}

    @pytest.mark.asyncio
    async def test_explicit_fields_are_normalized(self, make_automation):
        """Should keep explicit filters in their normalized form."""
        automation = await make_automation(
            trigger_conditions={"threshold": 3, "platforms": [" Google ", "Yelp"]}
        )

        assert automation.trigger_conditions == {"threshold": 3, "platforms": ["google", "yelp"]}

    @pytest.mark.asyncio
    async def test_stored_form_round_trips_to_rule(self, make_automation):
        """Should rebuild the same conditions, defaults included, from the stored row."""
        automation = await make_automation(trigger_conditions={"threshold": 3})

        rule = automation_to_rule(automation)

        assert rule.conditions.threshold == 3
        assert rule.conditions.platforms == ()
