"""Load the fixed playlist (JSON file, env list, or built-in defaults)."""
import json
import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional

from looprelay.config import DEFAULT_PLAYLIST, PLAYLIST_ENV, PLAYLIST_PATH
from looprelay.models.playlist import PlaylistItem

logger = logging.getLogger(__name__)

_VIDEO_ID_REGEX = re.compile(r"(?:youtu\.be/|youtube\.com/watch\?v=)([^&\n?#]+)")


def extract_video_id(url: str) -> Optional[str]:
    """Return the video id from a youtu.be or youtube.com/watch URL, or None."""
    match = _VIDEO_ID_REGEX.search(url or "")
    return match.group(1) if match else None


def _make_item(locator: str, title: Optional[str] = None) -> PlaylistItem:
    locator = locator.strip()
    return PlaylistItem(locator=locator, title=title or None, video_id=extract_video_id(locator))


def items_from_locators(locators: Iterable[str]) -> List[PlaylistItem]:
    return [_make_item(loc) for loc in locators if loc and loc.strip()]


def load_playlist_file(path: Path) -> List[PlaylistItem]:
    """Parse {"items": [{"locator", "title"}...]} or a plain list of locator strings."""
    data = json.loads(Path(path).read_text())
    entries = data.get("items", []) if isinstance(data, dict) else data
    out = []
    for entry in entries:
        if isinstance(entry, str):
            if entry.strip():
                out.append(_make_item(entry))
            continue
        try:
            out.append(_make_item(entry["locator"], entry.get("title")))
        except (KeyError, TypeError, AttributeError):
            logger.warning("Playlist: skipping malformed entry %r", entry)
            continue
    return out


def load_playlist(
    path: Optional[Path] = PLAYLIST_PATH,
    env_value: str = PLAYLIST_ENV,
    defaults: Iterable[str] = DEFAULT_PLAYLIST,
) -> List[PlaylistItem]:
    """Playlist file wins over RELAY_PLAYLIST, which wins over the built-in list."""
    if path is not None and Path(path).exists():
        try:
            items = load_playlist_file(path)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Playlist: could not read %s: %s", path, e)
            items = []
        if items:
            logger.info("Playlist: %d item(s) from %s", len(items), path)
            return items
    if env_value.strip():
        items = items_from_locators(env_value.split(","))
        if items:
            logger.info("Playlist: %d item(s) from RELAY_PLAYLIST", len(items))
            return items
    items = items_from_locators(defaults)
    logger.info("Playlist: %d built-in item(s)", len(items))
    return items
