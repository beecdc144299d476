"""Playlist items and the sink they are relayed to."""
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlparse


@dataclass(frozen=True)
class PlaylistItem:
    """One entry of the fixed playlist: remote locator plus optional display title."""
    locator: str
    title: Optional[str] = None
    video_id: Optional[str] = None


@dataclass(frozen=True)
class SinkDescriptor:
    """Transport endpoint (host, port, stream id) parsed from the sink URL."""
    url: str
    scheme: str
    host: str
    port: Optional[int]
    stream_id: Optional[str]

    @classmethod
    def from_url(cls, url: str) -> "SinkDescriptor":
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.hostname:
            raise ValueError(f"Invalid sink URL: {url!r}")
        query = parse_qs(parsed.query)
        stream_id = (query.get("streamid") or [None])[0]
        if stream_id is None and parsed.path.strip("/"):
            # rtmp://host/app/key style sinks carry the stream id in the path
            stream_id = parsed.path.strip("/")
        return cls(
            url=url,
            scheme=parsed.scheme.lower(),
            host=parsed.hostname,
            port=parsed.port,
            stream_id=stream_id,
        )

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "scheme": self.scheme,
            "host": self.host,
            "port": self.port,
            "stream_id": self.stream_id,
        }
