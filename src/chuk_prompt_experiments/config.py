# chuk_prompt_experiments/config.py
from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()

# Token estimation
DEFAULT_MODEL_FAMILY = os.getenv("CHUK_PROMPT_MODEL_FAMILY", "gemini")
DEFAULT_CHARS_PER_TOKEN = float(os.getenv("CHUK_PROMPT_CHARS_PER_TOKEN", "4"))

# Metrics collection
METRICS_BATCH_SIZE = int(os.getenv("CHUK_METRICS_BATCH_SIZE", "100"))
METRICS_FLUSH_INTERVAL = float(os.getenv("CHUK_METRICS_FLUSH_INTERVAL", "30"))
METRICS_MIN_SAMPLES = int(os.getenv("CHUK_METRICS_MIN_SAMPLES", "10"))
METRICS_STORAGE = os.getenv("CHUK_METRICS_STORAGE", "memory")
METRICS_DATA_DIR = os.getenv("CHUK_METRICS_DATA_DIR", "./data/metrics")

# Variant registry persistence
VARIANT_SNAPSHOT_PATH = os.getenv("CHUK_VARIANT_SNAPSHOT_PATH", "./data/variants.json")

# Flush / snapshot I/O
PERSIST_TIMEOUT = float(os.getenv("CHUK_PERSIST_TIMEOUT", "10"))
PERSIST_MAX_RETRIES = int(os.getenv("CHUK_PERSIST_MAX_RETRIES", "3"))
