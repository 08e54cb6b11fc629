"""Media asset access for the frame compositor.

Resolves item sources to local files, caches decoded still images for the
lifetime of a job and keeps a small LRU of decoded video frames. Video frames
are extracted with ffmpeg (one seek + one frame per request).
"""

import io
import logging
import subprocess
from collections import OrderedDict
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from export_engine.config import Settings, get_settings
from export_engine.exceptions import MediaLoadError
from export_engine.schemas.timeline import TimelineItem

logger = logging.getLogger(__name__)


class MediaLibrary:
    """Job-scoped media cache.

    Args:
        media_dir: Directory holding the job's uploaded media, searched when
            an item has no usable ``local_path``
        settings: Application settings (defaults to ``get_settings()``)
    """

    def __init__(self, media_dir: str | Path | None = None, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.media_dir = Path(media_dir) if media_dir else None
        self._images: dict[str, Image.Image] = {}
        self._frames: OrderedDict[tuple[str, float], Image.Image] = OrderedDict()

    def resolve(self, item: TimelineItem) -> Path:
        """Local file for an item.

        Order: ``local_path``, then ``<media_dir>/<basename of src>``, then
        any ``<media_dir>/<item id>.*``.

        Raises:
            MediaLoadError: If no file can be found
        """
        if item.local_path and Path(item.local_path).is_file():
            return Path(item.local_path)

        if self.media_dir is not None:
            if item.src:
                candidate = self.media_dir / Path(item.src.split("?")[0]).name
                if candidate.is_file():
                    return candidate
            for candidate in sorted(self.media_dir.glob(f"{item.id}.*")):
                if candidate.is_file():
                    return candidate

        raise MediaLoadError(f"No local media for item {item.id} ({item.src or item.local_path})", item_id=item.id)

    def load_image(self, path: Path, item_id: str | None = None) -> Image.Image:
        key = str(path)
        cached = self._images.get(key)
        if cached is not None:
            return cached
        try:
            with Image.open(path) as img:
                image = img.convert("RGBA")
        except (OSError, UnidentifiedImageError) as e:
            raise MediaLoadError(f"Cannot decode image {path}: {e}", item_id=item_id) from e
        self._images[key] = image
        return image

    def load_video_frame(self, path: Path, timestamp: float, item_id: str | None = None) -> Image.Image:
        """Decode the frame shown at ``timestamp`` seconds of the source."""
        key = (str(path), round(max(0.0, timestamp), 3))
        cached = self._frames.get(key)
        if cached is not None:
            self._frames.move_to_end(key)
            return cached

        cmd = [
            self.settings.ffmpeg_path,
            "-v", "error",
            "-ss", f"{key[1]:.3f}",
            "-i", str(path),
            "-frames:v", "1",
            "-f", "image2pipe",
            "-vcodec", "png",
            "-",
        ]
        try:
            result = subprocess.run(cmd, capture_output=True)
        except OSError as e:
            raise MediaLoadError(f"ffmpeg could not be started: {e}", item_id=item_id) from e
        if result.returncode != 0 or not result.stdout:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise MediaLoadError(f"Frame extraction failed for {path} at {key[1]}s: {stderr}", item_id=item_id)

        try:
            with Image.open(io.BytesIO(result.stdout)) as img:
                frame = img.convert("RGBA")
        except (OSError, UnidentifiedImageError) as e:
            raise MediaLoadError(f"Cannot decode frame of {path}: {e}", item_id=item_id) from e

        self._frames[key] = frame
        while len(self._frames) > self.settings.export_video_frame_cache_size:
            self._frames.popitem(last=False)
        return frame

    def release_frames(self) -> None:
        """Drop decoded video frames (images stay cached)."""
        self._frames.clear()

    def clear(self) -> None:
        self._images.clear()
        self._frames.clear()
