"""Tests for src.reporting -- dashboard read models."""

from datetime import timedelta

import pytest

from src.reporting import PerformanceMetrics, ReportingService


def _cluster_row(key, avg, updated_at, direction="stable", **extra):
    row = {
        "cluster_name": key,
        "primary_keyword": key.title(),
        "keywords": [key],
        "avg_score": avg,
        "total_signals": 3,
        "trend_direction": direction,
        "updated_at": updated_at.isoformat(),
    }
    row.update(extra)
    return row


def _perf(views, engagement, at):
    return {"post_id": "p", "views": views, "engagement_score": engagement, "updated_at": at.isoformat()}


@pytest.mark.asyncio
async def test_trending_clusters_window_and_order(fake_db, clock, sample_utc_now):
    fake_db.clusters = {
        "devara": _cluster_row("devara", 60, sample_utc_now - timedelta(days=1)),
        "kalki": _cluster_row("kalki", 90, sample_utc_now - timedelta(days=2)),
        "salaar": _cluster_row("salaar", 99, sample_utc_now - timedelta(days=9)),
    }

    clusters = await ReportingService(fake_db, clock=clock).get_trending_clusters()

    assert [c.cluster_key for c in clusters] == ["kalki", "devara"]


@pytest.mark.asyncio
async def test_trending_clusters_limit(fake_db, clock, sample_utc_now):
    fake_db.clusters = {
        f"topic {i}": _cluster_row(f"topic {i}", i, sample_utc_now) for i in range(5)
    }
    clusters = await ReportingService(fake_db, clock=clock).get_trending_clusters(limit=2)
    assert [c.avg_score for c in clusters] == [4, 3]


@pytest.mark.asyncio
async def test_fatigue_buckets(fake_db, clock, sample_utc_now):
    fake_db.clusters = {
        "pushpa 2": _cluster_row("pushpa 2", 95, sample_utc_now, "spiking",
                                 saturation_score=0.9, is_saturated=True, times_covered=6),
        "og": _cluster_row("og", 70, sample_utc_now, "rising"),
    }

    report = await ReportingService(fake_db, clock=clock).get_fatigue_buckets()

    assert report.saturated == ["Pushpa 2"]
    assert report.rising == ["Og"]
    assert report.underserved == ["Og"]


@pytest.mark.asyncio
async def test_performance_metrics_day_over_day(fake_db, clock, sample_utc_now):
    today = sample_utc_now.replace(hour=9)
    yesterday = today - timedelta(days=1)
    fake_db.performance = [
        _perf(300, 2.0, today),
        _perf(150, 3.0, today),
        _perf(300, 9.0, yesterday),
        _perf(9999, 9.0, yesterday - timedelta(days=1)),
    ]
    fake_db.clusters = {
        "a": _cluster_row("a", 50, sample_utc_now, "spiking"),
        "b": _cluster_row("b", 50, sample_utc_now, "spiking"),
        "c": _cluster_row("c", 50, sample_utc_now, "falling"),
    }

    metrics = await ReportingService(fake_db, clock=clock).get_performance_metrics()

    assert metrics.views_today == 450
    assert metrics.views_yesterday == 300
    assert metrics.views_change_percent == 50
    assert metrics.views_trend == "up"
    assert metrics.avg_engagement == 2.5
    assert metrics.spiking_topics == 2


@pytest.mark.asyncio
async def test_performance_metrics_with_no_data(fake_db, clock):
    metrics = await ReportingService(fake_db, clock=clock).get_performance_metrics()
    assert metrics.views_today == 0
    assert metrics.views_yesterday == 1
    assert metrics.views_change_percent == -100
    assert metrics.views_trend == "down"
    assert metrics.avg_engagement == 0.0
    assert metrics.spiking_topics == 0


def test_performance_metrics_to_dict():
    metrics = PerformanceMetrics(
        views_today=10,
        views_yesterday=10,
        views_change_percent=0,
        views_trend="stable",
        avg_engagement=1.25,
        spiking_topics=1,
    )
    assert metrics.to_dict() == {
        "views_24h": {"value": 10, "change": 0, "trend": "stable"},
        "avg_engagement": 1.25,
        "spiking_topics": 1,
    }
