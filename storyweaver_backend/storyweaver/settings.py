import os
from dotenv import load_dotenv
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Load .env file if it exists (for local development)
env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)
    logger.info("Loaded .env file for local development")
else:
    logger.info("No .env file found, using environment variables")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
REPLICATE_API_TOKEN = os.getenv("REPLICATE_API_TOKEN", "")
ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")

# Text models: the primary model is tried first, the fallback once after it fails.
STORY_MODEL = os.getenv("STORY_MODEL", "o4-mini")
STORY_REASONING_EFFORT = os.getenv("STORY_REASONING_EFFORT", "medium").strip()
STORY_FALLBACK_MODEL = os.getenv("STORY_FALLBACK_MODEL", "gpt-4o-mini")
SIMPLIFY_MODEL = os.getenv("SIMPLIFY_MODEL", "gpt-4o-mini")
VISION_MODEL = os.getenv("VISION_MODEL", "gpt-4o-mini")

# Replicate model selectors ("owner/name" or a bare version hash)
IMAGE_MODEL_HIGH = os.getenv("IMAGE_MODEL_HIGH", "black-forest-labs/flux-1.1-pro")
IMAGE_MODEL_LOW = os.getenv("IMAGE_MODEL_LOW", "black-forest-labs/flux-schnell")
VIDEO_MODEL = os.getenv("VIDEO_MODEL", "minimax/video-01")

REPLICATE_POLL_INTERVAL_MS = int(os.getenv("REPLICATE_POLL_INTERVAL_MS", "1500"))
REPLICATE_POLL_TIMEOUT_S = int(os.getenv("REPLICATE_POLL_TIMEOUT_S", "120"))

# Video generation is slow; poll on a coarser interval with a bounded number of attempts.
VIDEO_POLL_INTERVAL_S = float(os.getenv("VIDEO_POLL_INTERVAL_S", "5"))
VIDEO_POLL_MAX_ATTEMPTS = int(os.getenv("VIDEO_POLL_MAX_ATTEMPTS", "60"))

ELEVENLABS_MODEL_ID = os.getenv("ELEVENLABS_MODEL_ID", "eleven_multilingual_v2")

STORY_SCENE_COUNT = int(os.getenv("STORY_SCENE_COUNT", "5"))
STORY_QUIZ_COUNT = int(os.getenv("STORY_QUIZ_COUNT", "3"))
STORY_NOTES_COUNT = int(os.getenv("STORY_NOTES_COUNT", "5"))
STORY_READER_AGE = int(os.getenv("STORY_READER_AGE", "10"))

AFFECT_SAMPLE_INTERVAL_S = float(os.getenv("AFFECT_SAMPLE_INTERVAL_S", "15"))
AFFECT_FRAME_WIDTH = 320
AFFECT_FRAME_HEIGHT = 240
AFFECT_JPEG_QUALITY = 70
CONFUSION_THRESHOLD = float(os.getenv("CONFUSION_THRESHOLD", "0.6"))
SIMPLIFY_MIN_CHARS = int(os.getenv("SIMPLIFY_MIN_CHARS", "50"))

STORY_CACHE_KEY = "storyweaver_offline_stories"
STORY_CACHE_LIMIT = int(os.getenv("STORY_CACHE_LIMIT", "5"))
STORY_CACHE_PATH = os.getenv(
    "STORY_CACHE_PATH",
    os.path.join(os.path.expanduser("~"), ".storyweaver", "offline_stories.json"),
)
# Roughly the quota a browser grants local storage
STORY_CACHE_MAX_BYTES = int(os.getenv("STORY_CACHE_MAX_BYTES", str(5 * 1024 * 1024)))

# Optional: remote KV store (Vercel KV / Upstash REST) instead of the local file
KV_REST_API_URL = os.getenv("KV_REST_API_URL", "").strip()
KV_REST_API_TOKEN = os.getenv("KV_REST_API_TOKEN", "").strip()

# Comma-separated list of allowed origins for CORS (e.g., "https://app.vercel.app,https://www.example.com").
_allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "").strip()
if _allowed_origins_env:
    ALLOWED_ORIGINS = [o.strip() for o in _allowed_origins_env.split(",") if o.strip()]
else:
    ALLOWED_ORIGINS = ["*"]

def has_all_keys() -> bool:
    keys_present = all([OPENAI_API_KEY, REPLICATE_API_TOKEN, ELEVENLABS_API_KEY])
    if not keys_present:
        missing = []
        if not OPENAI_API_KEY: missing.append("OPENAI_API_KEY")
        if not REPLICATE_API_TOKEN: missing.append("REPLICATE_API_TOKEN")
        if not ELEVENLABS_API_KEY: missing.append("ELEVENLABS_API_KEY")
        logger.warning(f"Missing API keys: {', '.join(missing)}")
    return keys_present
