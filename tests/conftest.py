"""
Pytest configuration and fixtures for webcast-podcast tests.

This module runs before any test imports, setting up the test environment.
Environment variables are explicitly set to ensure deterministic test behavior
regardless of external environment configuration.
"""

import os

# Object store settings used by every Config built in tests
os.environ["SPACES_ENDPOINT"] = "ams3.digitaloceanspaces.com"
os.environ["SPACES_BUCKET"] = "test-space"
os.environ["SPACES_KEY"] = "test-key"
os.environ["SPACES_SECRET"] = "test-secret"

# Transcription stays off unless a test turns it on
os.environ["SPEECH_API_KEY"] = ""
os.environ["SPEECH_SERVICE_URL"] = ""

# Drop overrides that would change defaults under test
for _name in (
    "SOURCE_FEED_URL",
    "WEBCAST_REDIRECT_URL",
    "UNAVAILABLE_MARKER",
    "OUTPUT_FEED_KEY",
    "SCRATCH_DIRECTORY",
    "TRANSCRIPT_DIRECTORY",
    "TRANSCRIPTION_ENABLED",
    "HTTP_TIMEOUT",
    "SPEECH_TIMEOUT",
    "DOWNLOAD_CHUNK_SIZE",
    "PODCAST_IMAGE_URL",
):
    os.environ.pop(_name, None)
