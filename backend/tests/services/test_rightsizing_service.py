"""Tests for rightsizing recommendations."""

import uuid

import pytest

from app.services.rightsizing_service import RightsizingAnalyzer, generate_recommendation, next_smaller_type


class TestNextSmallerType:
    @pytest.mark.parametrize(
        "instance_type,expected",
        [
            ("t3.large", "t3.medium"),
            ("m5.2xlarge", "m5.xlarge"),
            ("t3.micro", "t3.nano"),
            ("t3.nano", None),
            ("m5.metal", None),
            ("weird", None),
        ],
    )
    def test_one_size_down(self, instance_type, expected):
        assert next_smaller_type(instance_type) == expected


class TestGenerateRecommendation:
    def test_very_idle_instance(self):
        draft = generate_recommendation("t3.large", avg_cpu=10.0, max_cpu=40.0)

        assert draft.recommended_type == "t3.medium"
        assert draft.confidence == 95
        assert draft.performance_impact == "low"
        assert draft.estimated_monthly_savings == 30.37
        assert draft.analysis_data == {
            "avg_cpu_utilization": 10.0,
            "max_cpu_utilization": 40.0,
            "analysis_period_days": 14,
        }

    def test_moderately_idle_instance(self):
        draft = generate_recommendation("t3.large", avg_cpu=25.0, max_cpu=70.0)

        assert draft.confidence == 85
        assert draft.performance_impact == "medium"

    def test_smallest_size_has_no_recommendation(self):
        assert generate_recommendation("t3.nano", avg_cpu=1.0, max_cpu=2.0) is None


class TestRightsizingAnalyzer:
    @pytest.fixture
    def analyzer(self, stub_resolver, provider_factory) -> RightsizingAnalyzer:
        return RightsizingAnalyzer(stub_resolver, provider_factory, cpu_threshold=30.0, lookback_days=14)

    @pytest.mark.asyncio
    async def test_idle_instance_gets_draft(self, analyzer, fake_provider):
        fake_provider.add_instance("i-1", instance_type="t3.large")
        fake_provider.cpu_datapoints["i-1"] = [{"Average": 5.0, "Maximum": 20.0}, {"Average": 15.0, "Maximum": 45.0}]

        draft = await analyzer.analyze(uuid.uuid4(), "i-1")

        assert draft.current_type == "t3.large"
        assert draft.recommended_type == "t3.medium"
        assert draft.analysis_data["avg_cpu_utilization"] == 10.0
        assert draft.analysis_data["max_cpu_utilization"] == 45.0

    @pytest.mark.asyncio
    async def test_busy_instance(self, analyzer, fake_provider):
        fake_provider.add_instance("i-1", instance_type="t3.large")
        fake_provider.cpu_datapoints["i-1"] = [{"Average": 60.0, "Maximum": 90.0}]

        assert await analyzer.analyze(uuid.uuid4(), "i-1") is None

    @pytest.mark.asyncio
    async def test_no_metrics(self, analyzer, fake_provider):
        fake_provider.add_instance("i-1", instance_type="t3.large")

        assert await analyzer.analyze(uuid.uuid4(), "i-1") is None
