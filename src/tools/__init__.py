"""
External service clients for the content intelligence pipeline.

- TMDBClient: movie database (trending, upcoming, people, images)
- YouTubeClient: YouTube Data API v3 search and view statistics
- GNewsClient: news search
- WikimediaCommonsClient / WikipediaClient: encyclopedic images
- UnsplashClient: stock photos
- ClaudeClient / OllamaClient: AI text generation capabilities
"""

from src.tools.tmdb import TMDBClient
from src.tools.youtube import YouTubeClient
from src.tools.gnews import GNewsClient
from src.tools.wikimedia import WikimediaCommonsClient, WikipediaClient
from src.tools.unsplash import UnsplashClient
from src.tools.claude_client import ClaudeClient
from src.tools.ollama import OllamaClient

__all__ = [
    "TMDBClient",
    "YouTubeClient",
    "GNewsClient",
    "WikimediaCommonsClient",
    "WikipediaClient",
    "UnsplashClient",
    "ClaudeClient",
    "OllamaClient",
]
