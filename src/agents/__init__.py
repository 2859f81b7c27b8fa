"""Engines of the content intelligence pipeline."""

from src.agents.signal_fetchers import (
    SignalFetcher,
    TMDBSignalFetcher,
    YouTubeSignalFetcher,
    InternalSignalFetcher,
    NewsSignalFetcher,
    create_signal_fetchers,
)
from src.agents.clustering import ClusteringEngine, build_clusters
from src.agents.fatigue import FatigueScorer
from src.agents.image_intelligence import ImageIntelligenceEngine
from src.agents.content_synthesizer import ContentSynthesizer
from src.agents.validation_pipeline import ValidationPipeline

__all__ = [
    "SignalFetcher",
    "TMDBSignalFetcher",
    "YouTubeSignalFetcher",
    "InternalSignalFetcher",
    "NewsSignalFetcher",
    "create_signal_fetchers",
    "ClusteringEngine",
    "build_clusters",
    "FatigueScorer",
    "ImageIntelligenceEngine",
    "ContentSynthesizer",
    "ValidationPipeline",
]
