# Form autofill configuration

import os
from pathlib import Path

from dotenv import load_dotenv

# Directories
AUTOFILL_DIR = Path(__file__).parent
PROJECT_ROOT = AUTOFILL_DIR.parent

load_dotenv(PROJECT_ROOT / ".env", override=False)

DATA_DIR = Path(os.getenv("AUTOFILL_DATA_DIR", str(PROJECT_ROOT / "data")))
LOGS_DIR = PROJECT_ROOT / "logs" / "form_fills"
MEMORY_STORE_PATH = DATA_DIR / "learned_questions.json"
PROFILE_PATH = Path(os.getenv("AUTOFILL_PROFILE_PATH", str(DATA_DIR / "profile.json")))
RESUME_PATH = os.getenv("AUTOFILL_RESUME_PATH", "")

# Fill loop
MAX_DEPTH = 10
SETTLE_DELAY = float(os.getenv("AUTOFILL_SETTLE_DELAY", "1.0"))  # seconds after a write
OPTION_LOAD_DELAY = 1.0  # seconds to wait for a popup to render its options

# Memory store
MEMORY_STORE_KEY = "learnedQuestions"
MEMORY_MAX_BYTES = int(os.getenv("AUTOFILL_MEMORY_MAX_BYTES", str(9 * 1024 * 1024)))
MEMORY_EVICTION_SHARE = 0.3  # drop lowest-frequency 30% when over the cap
LEARNED_EXACT_MIN_CONFIDENCE = 0.7
SIMILARITY_THRESHOLD = 0.5
SIMILAR_CONFIDENCE_FACTOR = 0.8

# Resolution
MEMORY_USE_THRESHOLD = 0.75  # suggestion confidence needed inside the fill loop
PROFILE_MATCH_MIN_LENGTH = 3  # batch answers reclassified as profile-sourced

# Timeouts (milliseconds)
AI_TIMEOUT_SINGLE_MS = 15_000
AI_TIMEOUT_BATCH_MS = 30_000

# CV upload detection
CV_KEYWORDS = ["cv", "resume", "résumé", "życiorys", "załącz", "plik", "curriculum"]


def _split_models(raw: str) -> list:
    return [m.strip() for m in raw.split(",") if m.strip()]


# AI Configuration
AI_CONFIG = {
    "provider": os.getenv("AUTOFILL_AI_PROVIDER", "claude"),  # claude (paid), ollama (free) or none
    "anthropic_api_key": os.getenv("ANTHROPIC_API_KEY", ""),
    "claude_models": _split_models(os.getenv(
        "AUTOFILL_CLAUDE_MODELS",
        "claude-sonnet-4-20250514,claude-3-7-sonnet-latest,claude-3-5-haiku-latest",
    )),
    "ollama_url": os.getenv("AUTOFILL_OLLAMA_URL", "http://localhost:11434"),
    "ollama_models": _split_models(os.getenv("AUTOFILL_OLLAMA_MODEL", "llama3.2:3b")),
    "max_tokens": 300,
    "batch_max_tokens": 2000,
    "temperature": 0.1,
    "max_attempts": 3,
    "backoff_base": 1.0,  # seconds, doubled per retry
}
