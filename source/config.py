"""Configuration settings for the dataset source server."""

import os

from common.constants import DEFAULT_SOURCE_DATA_DIR, SOURCE_HOST, SOURCE_PORT


SOURCE_DATA_DIR = os.environ.get("ISLAND_SOURCE_DATA_DIR", DEFAULT_SOURCE_DATA_DIR)

SOURCE_SERVER_HOST = os.environ.get("ISLAND_SOURCE_HOST", SOURCE_HOST)

SOURCE_SERVER_PORT = int(os.environ.get("ISLAND_SOURCE_PORT", str(SOURCE_PORT)))

RESTRICTED_FIELD = "restricted"
