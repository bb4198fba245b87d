"""
Unit tests for src/identity_client/registry.py.

Covers:
- add: capacity limit of 3, URL normalisation, first endpoint auto-selected.
- remove: last-endpoint guard, reselection of the first remaining endpoint.
- select: exactly one selected endpoint from any prior state.
- update: field merge, selection routed through select, unknown fields.
- on_change hook: called after successful mutations only.
- probe / probe_all: 2xx → active, anything else → inactive, never raises.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from src.identity_client.errors import (
    CapacityExceededError,
    EndpointNotFoundError,
    LastEndpointError,
)
from src.identity_client.registry import (
    Endpoint,
    EndpointRegistry,
    EndpointStatus,
    normalize_url,
)

from .conftest import make_response


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _registry_with(n: int, on_change=None) -> EndpointRegistry:
    registry = EndpointRegistry(on_change=on_change)
    for i in range(1, n + 1):
        registry.add(f"tag{i}", f"http://host{i}:7777")
    return registry


def _selected_ids(registry: EndpointRegistry) -> list[str]:
    return [e.id for e in registry.list() if e.is_selected]


# ---------------------------------------------------------------------------
# add
# ---------------------------------------------------------------------------

class TestAdd:

    def test_new_endpoint_is_inactive(self):
        registry = _registry_with(1)
        second = registry.add("Staging", "http://staging:7777")
        assert second.is_active is False
        assert second.is_selected is False

    def test_first_endpoint_in_empty_registry_is_selected(self):
        registry = EndpointRegistry()
        first = registry.add("Dev", "http://localhost:7777")
        assert first.is_selected is True

    def test_endpoints_appended_in_order(self):
        registry = _registry_with(3)
        assert [e.tag for e in registry.list()] == ["tag1", "tag2", "tag3"]

    def test_fourth_add_rejected_and_set_unchanged(self):
        registry = _registry_with(3)
        before = registry.list()
        with pytest.raises(CapacityExceededError):
            registry.add("tag4", "http://host4")
        assert registry.list() == before
        assert len(registry) == 3

    def test_never_exceeds_capacity(self):
        registry = EndpointRegistry()
        for i in range(10):
            try:
                registry.add(f"t{i}", f"http://h{i}")
            except CapacityExceededError:
                pass
            assert len(registry) <= 3

    def test_trailing_slash_removed(self):
        registry = EndpointRegistry()
        endpoint = registry.add(" Dev ", " http://localhost:7777/ ")
        assert endpoint.url == "http://localhost:7777"
        assert endpoint.tag == "Dev"

    def test_ids_are_unique(self):
        registry = _registry_with(3)
        ids = [e.id for e in registry.list()]
        assert len(set(ids)) == 3

    @pytest.mark.parametrize("tag,url", [("", "http://x"), ("Dev", "  ")])
    def test_blank_fields_rejected(self, tag, url):
        registry = EndpointRegistry()
        with pytest.raises(ValueError):
            registry.add(tag, url)
        assert len(registry) == 0


def test_normalize_url_strips_one_trailing_slash():
    assert normalize_url("http://a/b/") == "http://a/b"
    assert normalize_url("http://a/b") == "http://a/b"


# ---------------------------------------------------------------------------
# remove
# ---------------------------------------------------------------------------

class TestRemove:

    def test_last_endpoint_cannot_be_removed(self):
        registry = _registry_with(1)
        only = registry.list()[0]
        with pytest.raises(LastEndpointError):
            registry.remove(only.id)
        assert registry.list() == [only]

    def test_removing_selected_selects_first_remaining(self):
        registry = _registry_with(3)
        first, second, third = registry.list()
        registry.select(second.id)

        registry.remove(second.id)

        remaining = registry.list()
        assert [e.id for e in remaining] == [first.id, third.id]
        assert _selected_ids(registry) == [first.id]

    def test_removing_selected_first_selects_next_in_order(self):
        registry = _registry_with(3)
        first, second, _ = registry.list()
        assert first.is_selected

        registry.remove(first.id)

        assert _selected_ids(registry) == [second.id]

    def test_removing_unselected_keeps_selection(self):
        registry = _registry_with(3)
        first, _, third = registry.list()
        registry.remove(third.id)
        assert _selected_ids(registry) == [first.id]

    def test_unknown_id_raises_not_found(self):
        registry = _registry_with(2)
        with pytest.raises(EndpointNotFoundError):
            registry.remove("missing")
        assert len(registry) == 2


# ---------------------------------------------------------------------------
# select
# ---------------------------------------------------------------------------

class TestSelect:

    @pytest.mark.parametrize("target", [0, 1, 2])
    def test_exactly_one_selected_from_any_state(self, target):
        registry = _registry_with(3)
        for start in range(3):
            registry.select(registry.list()[start].id)
            chosen = registry.list()[target]
            registry.select(chosen.id)
            assert _selected_ids(registry) == [chosen.id]

    def test_select_unknown_raises_and_keeps_selection(self):
        registry = _registry_with(2)
        before = _selected_ids(registry)
        with pytest.raises(EndpointNotFoundError):
            registry.select("missing")
        assert _selected_ids(registry) == before

    def test_selected_returns_endpoint(self):
        registry = _registry_with(2)
        second = registry.list()[1]
        registry.select(second.id)
        assert registry.selected().id == second.id


class TestRepairOnLoad:

    def test_multiple_selected_keeps_first(self):
        endpoints = [
            Endpoint(id="a", tag="A", url="http://a", is_selected=True),
            Endpoint(id="b", tag="B", url="http://b", is_selected=True),
        ]
        registry = EndpointRegistry(endpoints)
        assert _selected_ids(registry) == ["a"]

    def test_none_selected_selects_first(self):
        endpoints = [
            Endpoint(id="a", tag="A", url="http://a"),
            Endpoint(id="b", tag="B", url="http://b"),
        ]
        registry = EndpointRegistry(endpoints)
        assert _selected_ids(registry) == ["a"]


# ---------------------------------------------------------------------------
# update
# ---------------------------------------------------------------------------

class TestUpdate:

    def test_merges_fields(self):
        registry = _registry_with(2)
        second = registry.list()[1]
        updated = registry.update(second.id, tag="Renamed", url="http://new/")
        assert updated.tag == "Renamed"
        assert updated.url == "http://new"
        assert updated.id == second.id

    def test_does_not_touch_selection(self):
        registry = _registry_with(2)
        first, second = registry.list()
        registry.update(second.id, is_active=True)
        assert _selected_ids(registry) == [first.id]
        assert registry.get(second.id).is_active is True

    def test_is_selected_true_goes_through_select(self):
        registry = _registry_with(3)
        third = registry.list()[2]
        registry.update(third.id, is_selected=True)
        assert _selected_ids(registry) == [third.id]

    def test_is_selected_false_ignored(self):
        registry = _registry_with(2)
        first = registry.list()[0]
        registry.update(first.id, is_selected=False)
        assert _selected_ids(registry) == [first.id]

    def test_unknown_field_rejected(self):
        registry = _registry_with(1)
        only = registry.list()[0]
        with pytest.raises(ValueError):
            registry.update(only.id, id="other")

    def test_unknown_id_raises_not_found(self):
        registry = _registry_with(1)
        with pytest.raises(EndpointNotFoundError):
            registry.update("missing", tag="x")


# ---------------------------------------------------------------------------
# on_change hook
# ---------------------------------------------------------------------------

class TestOnChange:

    def test_called_after_each_mutation(self):
        hook = MagicMock()
        registry = _registry_with(2, on_change=hook)
        assert hook.call_count == 2

        first, second = registry.list()
        registry.select(second.id)
        registry.update(first.id, tag="x")
        registry.remove(first.id)
        assert hook.call_count == 5

    def test_not_called_on_rejected_operation(self):
        hook = MagicMock()
        registry = _registry_with(3, on_change=hook)
        hook.reset_mock()

        with pytest.raises(CapacityExceededError):
            registry.add("t4", "http://h4")
        with pytest.raises(EndpointNotFoundError):
            registry.select("missing")
        hook.assert_not_called()


# ---------------------------------------------------------------------------
# probe
# ---------------------------------------------------------------------------

class TestProbe:

    def test_2xx_marks_selected_active(self):
        registry = _registry_with(2)
        with patch("src.identity_client.registry.requests.get",
                   return_value=make_response(204)) as mock_get:
            status = registry.probe()

        assert status is EndpointStatus.ACTIVE
        assert registry.selected().is_active is True
        url = mock_get.call_args.args[0]
        assert url == "http://host1:7777/liveness"
        assert mock_get.call_args.kwargs["timeout"] == registry.probe_timeout

    def test_non_2xx_marks_inactive(self):
        registry = _registry_with(1)
        registry.update(registry.list()[0].id, is_active=True)
        with patch("src.identity_client.registry.requests.get",
                   return_value=make_response(503, reason="Service Unavailable")):
            status = registry.probe()
        assert status is EndpointStatus.INACTIVE
        assert registry.selected().is_active is False

    @pytest.mark.parametrize("exc", [
        requests.ConnectionError("refused"),
        requests.Timeout("timed out"),
    ])
    def test_transport_failure_is_inactive_not_raised(self, exc):
        registry = _registry_with(1)
        with patch("src.identity_client.registry.requests.get", side_effect=exc):
            status = registry.probe()
        assert status is EndpointStatus.INACTIVE

    def test_probe_specific_endpoint(self):
        registry = _registry_with(2)
        second = registry.list()[1]
        with patch("src.identity_client.registry.requests.get",
                   return_value=make_response(200)) as mock_get:
            registry.probe(endpoint_id=second.id)
        assert mock_get.call_args.args[0] == "http://host2:7777/liveness"
        assert registry.get(second.id).is_active is True
        assert registry.list()[0].is_active is False

    def test_url_override_updates_matching_entry(self):
        registry = _registry_with(2)
        with patch("src.identity_client.registry.requests.get",
                   return_value=make_response(200)):
            registry.probe(url_override="http://host2:7777/")
        assert registry.list()[1].is_active is True

    def test_url_override_without_match_changes_nothing(self):
        hook = MagicMock()
        registry = _registry_with(1, on_change=hook)
        hook.reset_mock()
        with patch("src.identity_client.registry.requests.get",
                   return_value=make_response(200)) as mock_get:
            status = registry.probe(url_override="http://elsewhere")
        assert status is EndpointStatus.ACTIVE
        assert mock_get.call_args.args[0] == "http://elsewhere/liveness"
        hook.assert_not_called()

    def test_probe_all_returns_status_per_endpoint(self):
        registry = _registry_with(2)
        first, second = registry.list()

        def fake_get(url, headers, timeout):  # noqa: ARG001
            return make_response(200) if "host1" in url else make_response(500)

        with patch("src.identity_client.registry.requests.get", side_effect=fake_get):
            results = registry.probe_all()

        assert results == {
            first.id: EndpointStatus.ACTIVE,
            second.id: EndpointStatus.INACTIVE,
        }
