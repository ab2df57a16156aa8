"""
Transform Engine

Decode -> resize -> encode for one derivative.

- Decoding uses only the Pillow plugin matching the file's extension, so a
  PNG saved as .jpg is a decode error rather than silently accepted.
- Resampling: LANCZOS when upscaling (or same size), NEAREST when shrinking.
- Animated GIFs keep every frame and are re-quantized to the palette size.
- Output is encoded in the destination's own format, written to a temp
  file and, at the same time, to an optional ChunkStream feeding the client.
  The temp file is renamed into place only after a successful encode.
"""

import asyncio
import logging
import mimetypes
import os
from pathlib import Path
from typing import AsyncIterator, List, Optional, Tuple, Union

from PIL import Image, ImageSequence

from .errors import (
    DecodeFailed,
    EncodeFailed,
    FilesystemFailure,
    UnsupportedImageFormat,
    UnsupportedMediaType,
)
from .fetcher import temp_path_for

logger = logging.getLogger(__name__)

ICON_TYPES = {"image/vnd.microsoft.icon", "image/x-icon", "image/ico"}

# MIME type -> Pillow format. "image/jpg" is what older mime tables report.
PIL_FORMATS = {
    "image/png": "PNG",
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/gif": "GIF",
}

_WRITE_CHUNK = 64 * 1024


def guess_mime(path: Union[str, Path]) -> str:
    """MIME type from the file extension, "" when unknown."""
    mime, _ = mimetypes.guess_type(str(path))
    return mime or ""


def is_servable_image(mime: str) -> bool:
    return mime.startswith("image/") and mime not in ICON_TYPES


def target_size(original: Tuple[int, int], width: Optional[int]) -> Tuple[int, int]:
    """
    Proportional size for a requested width.

    width None/0 keeps the native width. Height follows the source ratio:
    round(width * original_height / original_width), at least 1px.
    """
    ow, oh = original
    w = width or ow
    h = max(1, round(w * oh / ow))
    return w, h


def choose_resample(original_width: int, width: int) -> Image.Resampling:
    """LANCZOS for upscaling, NEAREST for thumbnails."""
    if width > original_width - 1:
        return Image.Resampling.LANCZOS
    return Image.Resampling.NEAREST


# ============================================
# Client stream
# ============================================

class ChunkStream:
    """
    Bridge from the encoder thread to an async response body.

    The encoder calls start()/write()/close() from its worker thread; the
    response iterates the stream on the event loop. Must be created on the
    event loop that will consume it.
    """

    def __init__(self):
        self._loop = asyncio.get_running_loop()
        self._queue: "asyncio.Queue[Optional[bytes]]" = asyncio.Queue()
        self._started = asyncio.Event()

    # -- producer side (worker thread) --

    def start(self) -> None:
        self._loop.call_soon_threadsafe(self._started.set)

    def write(self, chunk: bytes) -> None:
        self._loop.call_soon_threadsafe(self._queue.put_nowait, bytes(chunk))

    def close(self) -> None:
        self._loop.call_soon_threadsafe(self._queue.put_nowait, None)

    # -- consumer side (event loop) --

    async def wait_started(self, task: "asyncio.Future[Path]") -> None:
        """
        Wait until encoding begins or the producing task ends.

        Raises the task's exception if it failed, so errors found while
        decoding are reported before any response bytes go out.
        """
        started = asyncio.ensure_future(self._started.wait())
        try:
            await asyncio.wait({started, task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            started.cancel()
        if not task.done():
            return
        if task.cancelled():
            raise asyncio.CancelledError()
        if task.exception() is not None:
            raise task.exception()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                return
            yield chunk


class _TeeWriter:
    """File-like object copying every write to the cache file and the stream."""

    def __init__(self, fh, sink: Optional[ChunkStream]):
        self._fh = fh
        self._sink = sink
        self._pos = 0

    def write(self, data) -> int:
        self._fh.write(data)
        if self._sink is not None and len(data):
            self._sink.write(data)
        self._pos += len(data)
        return len(data)

    def tell(self) -> int:
        return self._pos

    def flush(self) -> None:
        self._fh.flush()


# ============================================
# Engine
# ============================================

class TransformEngine:
    """
    Produces width-specific derivatives of cached originals.

    Args:
        quality: JPEG quality (1-100)
        colors: GIF palette size (2-256)
    """

    def __init__(self, quality: int = 85, colors: int = 256):
        self.quality = quality
        self.colors = colors

    def pil_format_for(self, path: Union[str, Path]) -> str:
        """Pillow format for a path, rejecting anything we cannot produce."""
        mime = guess_mime(path)
        if not is_servable_image(mime):
            raise UnsupportedMediaType(f"Invalid file {Path(path).name}")
        fmt = PIL_FORMATS.get(mime)
        if fmt is None:
            raise UnsupportedImageFormat(f"Unsupported image type {mime}")
        return fmt

    async def transform(
        self,
        original: Path,
        destination: Path,
        width: Optional[int] = None,
        sink: Optional[ChunkStream] = None,
    ) -> Path:
        """
        Generate destination from original at the given width.

        Args:
            original: Cached original image
            destination: Derivative path; its extension selects the format
            width: Target width in pixels; None/0 keeps the native width
            sink: Optional stream receiving encoded bytes as they are produced

        Returns:
            destination, once the derivative is fully written.
        """
        try:
            fmt = self.pil_format_for(destination)
        except Exception:
            if sink is not None:
                sink.close()
            raise
        logger.info(f"[Transform] Creating {destination}")
        return await asyncio.to_thread(self._transform_sync, original, destination, width, fmt, sink)

    # -- worker thread --

    def _transform_sync(
        self,
        original: Path,
        destination: Path,
        width: Optional[int],
        fmt: str,
        sink: Optional[ChunkStream],
    ) -> Path:
        try:
            frames, info = self._load_resized(original, width, fmt)
            self._write(frames, info, destination, fmt, sink)
        finally:
            if sink is not None:
                sink.close()
        return destination

    def _load_resized(
        self, original: Path, width: Optional[int], fmt: str
    ) -> Tuple[List[Image.Image], dict]:
        """Decode original and return its resized frame(s) plus save info."""
        try:
            img = Image.open(original, formats=[fmt])
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise DecodeFailed(f"Could not decode {original.name}: {e}") from e

        with img:
            try:
                img.load()
            except (OSError, SyntaxError, ValueError) as e:
                raise DecodeFailed(f"Could not decode {original.name}: {e}") from e

            size = target_size(img.size, width)
            method = choose_resample(img.width, size[0])
            logger.debug(
                f"[Transform] {original.name}: {img.width}x{img.height} -> "
                f"{size[0]}x{size[1]} ({method.name})"
            )
            try:
                if fmt == "GIF":
                    return self._resize_gif(img, size, method)
                return [self._resize_still(img, size, method)], {}
            except (OSError, ValueError, OverflowError, MemoryError) as e:
                raise DecodeFailed(f"Could not resize {original.name}: {e!r}") from e

    @staticmethod
    def _resize_still(img: Image.Image, size: Tuple[int, int], method) -> Image.Image:
        # Pillow resamples palette and bilevel images with NEAREST only
        if img.mode in ("1", "P", "PA"):
            img = img.convert("RGBA")
        return img.resize(size, method)

    def _resize_gif(self, img: Image.Image, size: Tuple[int, int], method) -> Tuple[List[Image.Image], dict]:
        frames: List[Image.Image] = []
        durations: List[int] = []
        for frame in ImageSequence.Iterator(img):
            resized = frame.convert("RGBA").resize(size, method)
            frames.append(resized.quantize(colors=self.colors))
            durations.append(frame.info.get("duration", img.info.get("duration", 100)))

        info = {}
        if len(frames) > 1:
            info = {
                "save_all": True,
                "append_images": frames[1:],
                "duration": durations,
                "loop": img.info.get("loop", 0),
            }
        return frames, info

    def _encode(self, frames: List[Image.Image], info: dict, out, fmt: str) -> None:
        first = frames[0]
        if fmt == "JPEG":
            if first.mode not in ("RGB", "L", "CMYK"):
                first = first.convert("RGB")
            first.save(out, format="JPEG", quality=self.quality)
        elif fmt == "GIF":
            first.save(out, format="GIF", **info)
        else:
            first.save(out, format=fmt)

    def _write(
        self,
        frames: List[Image.Image],
        info: dict,
        destination: Path,
        fmt: str,
        sink: Optional[ChunkStream],
    ) -> None:
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemFailure(f"Could not create {destination.parent}: {e}") from e

        tmp_path = temp_path_for(destination)
        try:
            with open(tmp_path, "wb", buffering=_WRITE_CHUNK) as fh:
                if sink is not None:
                    sink.start()
                self._encode(frames, info, _TeeWriter(fh, sink), fmt)
            os.replace(tmp_path, destination)
        except Exception as e:
            _discard(tmp_path)
            raise EncodeFailed(f"Could not encode {destination.name}: {e}") from e


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"[Transform] Could not remove temp file {path}: {e}")
