"""Configuration: env, playlist source, sink, encoder and timing settings."""
import os
from pathlib import Path

from dotenv import load_dotenv

# Base paths (project root = parent of looprelay package)
BASE_DIR = Path(__file__).resolve().parent.parent

# Load .env from project root so RELAY_SINK_URL etc. are set
load_dotenv(BASE_DIR / ".env")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


DATA_DIR = BASE_DIR / "data"
PLAYLIST_PATH = Path(os.getenv("RELAY_PLAYLIST_PATH", str(DATA_DIR / "playlist.json")))
DOWNLOAD_DIR = Path(os.getenv("RELAY_DOWNLOAD_DIR", str(BASE_DIR / "downloads")))

# API
API_HOST = os.getenv("RELAY_API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("RELAY_API_PORT", os.getenv("PORT", "3000")))
LOG_LEVEL = os.getenv("RELAY_LOG_LEVEL", "INFO").upper()

# Sink (single fixed destination for the transport stream)
SINK_URL = os.getenv(
    "RELAY_SINK_URL", "srt://rtmp.livepeer.com:2935?streamid=95e4-urol-igfh-cehi"
)

# Playlist used when neither RELAY_PLAYLIST_PATH nor RELAY_PLAYLIST provide one
DEFAULT_PLAYLIST = (
    "https://youtu.be/BR3NFEXuSv0?si=mSCaAzM4r6NjbC5L",
    "https://youtu.be/XOt3Rgs-tt0?si=RU86-8VqLKJ3TH60",
    "https://youtu.be/nD2TZahdAJY?si=3DfZBqXeEhAsgQH8",
    "https://youtu.be/lKgDhWCEfQo?si=6mD0EbDePrs_EAiI",
    "https://youtu.be/4uwZ-80XAqw?si=b62G5uNlWCdHBcnT",
    "https://youtu.be/NRQ7Kv7-8Hs?si=kFxtzMTvOwVFRx84",
    "https://youtu.be/rzDrGSWteZg?si=CqsE3ffZU5H0Mnyg",
)
PLAYLIST_ENV = os.getenv("RELAY_PLAYLIST", "")

# Loop pacing
ITEM_PAUSE_SEC = float(os.getenv("RELAY_ITEM_PAUSE_SEC", "2.0"))
AUTOSTART = _env_bool("RELAY_AUTOSTART", "1")
AUTOSTART_DELAY_SEC = float(os.getenv("RELAY_AUTOSTART_DELAY_SEC", "5.0"))
# Counters are monotonic for the process lifetime unless this is set
RESET_STATS_ON_START = _env_bool("RELAY_RESET_STATS_ON_START", "0")

# Transport time bounds: timeout = (duration hint or default) + margin
SAFETY_MARGIN_SEC = float(os.getenv("RELAY_SAFETY_MARGIN_SEC", "60"))
DEFAULT_DURATION_SEC = float(os.getenv("RELAY_DEFAULT_DURATION_SEC", "3600"))
CANCEL_GRACE_SEC = float(os.getenv("RELAY_CANCEL_GRACE_SEC", "10"))

# Acquisition (resolver API + download)
ACQUIRE_API_URL = os.getenv("RELAY_ACQUIRE_API_URL", "https://api.vreden.my.id/api/ytmp4")
# requests timeout tuple (connect, read); each read is bounded, not the whole body
HTTP_CONNECT_TIMEOUT_SEC = float(os.getenv("RELAY_HTTP_CONNECT_TIMEOUT_SEC", "5"))
HTTP_TIMEOUT_SEC = float(os.getenv("RELAY_HTTP_TIMEOUT_SEC", "15"))
ACQUIRE_RETRIES = int(os.getenv("RELAY_ACQUIRE_RETRIES", "2"))
ACQUIRE_BACKOFF_SEC = float(os.getenv("RELAY_ACQUIRE_BACKOFF_SEC", "2.0"))
DOWNLOAD_CHUNK_BYTES = 1024 * 256

# Encoders
FFMPEG_PATH = os.getenv("FFMPEG_PATH", "ffmpeg")
GST_LAUNCH_PATH = os.getenv("GST_LAUNCH_PATH", "gst-launch-1.0")
VIDEO_BITRATE = os.getenv("RELAY_VIDEO_BITRATE", "2500k")
AUDIO_BITRATE = os.getenv("RELAY_AUDIO_BITRATE", "128k")


def ensure_download_dir() -> None:
    DOWNLOAD_DIR.mkdir(parents=True, exist_ok=True)


def ensure_data_dir() -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
