"""
Property-Based Tests for Health Check Status
**Feature: knowledge-vault, Property: Overall Health Status**

Tests how component statuses (API, storage, persistence, enrichment queue)
roll up into the overall status.
"""
from hypothesis import given, settings, strategies as st

from app.api.v1.health import determine_overall_status
from app.models.schemas import ComponentHealth, ComponentStatus


COMPONENTS = ("api", "storage", "persistence", "enrichment_queue")
CRITICAL_COMPONENTS = ("api", "persistence")

component_status_strategy = st.sampled_from(list(ComponentStatus))


def build_components(statuses):
    return {
        name: ComponentHealth(name=name, status=status)
        for name, status in zip(COMPONENTS, statuses)
    }


class TestOverallStatusProperties:
    """
    **Feature: knowledge-vault, Property: Overall Health Status**

    For any mix of component statuses the overall status is healthy only
    when everything is healthy, unhealthy when a critical component is
    unavailable, and degraded otherwise.
    """

    @given(statuses=st.tuples(*[component_status_strategy] * len(COMPONENTS)))
    @settings(max_examples=100, deadline=None)
    def test_overall_status_rollup(self, statuses):
        components = build_components(statuses)
        overall = determine_overall_status(components)

        if all(s == ComponentStatus.HEALTHY for s in statuses):
            assert overall == "healthy"
        elif any(components[c].status == ComponentStatus.UNAVAILABLE for c in CRITICAL_COMPONENTS):
            assert overall == "unhealthy"
        else:
            assert overall == "degraded"


class TestOverallStatusDetermination:
    """
    Tests for overall status determination logic.
    """

    def test_all_healthy_returns_healthy(self):
        statuses = [ComponentStatus.HEALTHY] * len(COMPONENTS)
        assert determine_overall_status(build_components(statuses)) == "healthy"

    def test_storage_unavailable_returns_degraded(self):
        """Uploads fail without storage, but reads of records still work"""
        statuses = [
            ComponentStatus.HEALTHY,
            ComponentStatus.UNAVAILABLE,
            ComponentStatus.HEALTHY,
            ComponentStatus.HEALTHY,
        ]
        assert determine_overall_status(build_components(statuses)) == "degraded"

    def test_queue_degraded_returns_degraded(self):
        statuses = [ComponentStatus.HEALTHY] * 3 + [ComponentStatus.DEGRADED]
        assert determine_overall_status(build_components(statuses)) == "degraded"

    def test_persistence_unavailable_returns_unhealthy(self):
        statuses = [
            ComponentStatus.HEALTHY,
            ComponentStatus.HEALTHY,
            ComponentStatus.UNAVAILABLE,
            ComponentStatus.HEALTHY,
        ]
        assert determine_overall_status(build_components(statuses)) == "unhealthy"
