# images.py
import asyncio
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from PIL import Image, ImageOps

from .config import Settings, get_settings
from .exceptions import ProcessingError
from .models import ConvertibleFormat, FitStrategy, ImageMetadata, ProcessingOptions
from .storage.dto import FormatDescriptor, UploadableFile

FORMAT_ALIASES = {"jpg": "jpeg", "jpe": "jpeg", "tif": "tiff"}

FORMATS_TO_PROCESS = {"jpeg", "png", "webp", "tiff", "gif", "avif"}
FORMATS_TO_RESIZE = {"jpeg", "png", "webp", "tiff", "gif"}
FORMATS_TO_OPTIMIZE = {"jpeg", "png", "webp", "tiff", "avif"}

PIL_FORMATS = {
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "tiff": "TIFF",
    "gif": "GIF",
    "avif": "AVIF",
}
FORMAT_EXTENSIONS = {"jpeg": ".jpg", "png": ".png", "webp": ".webp", "avif": ".avif"}
FORMAT_MIME_TYPES = {
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "avif": "image/avif",
}


def normalize_format(value: Optional[str]) -> str:
    """Maps an extension or format name ('.JPG', 'tif') onto a canonical format ('jpeg', 'tiff')."""
    value = (value or "").lstrip(".").lower()
    return FORMAT_ALIASES.get(value, value)


@dataclass
class ImageBuffer:
    """Encoded image bytes plus the facts about them the pipeline records."""

    data: bytes
    width: Optional[int]
    height: Optional[int]
    size: int
    format: str


@dataclass
class ProcessedImage:
    """
    Result of process_image. size and filepath are only set when the optimized
    primary is smaller than the original.
    """

    formats: Dict[str, FormatDescriptor] = field(default_factory=dict)
    size: Optional[int] = None
    filepath: Optional[Path] = None


def _open(path: Path) -> Image.Image:
    with Image.open(path) as img:
        img.load()
        return img


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA") or "transparency" in img.info


def _flatten(img: Image.Image) -> Image.Image:
    """Drops transparency onto a white background for formats without an alpha channel."""
    if img.mode == "RGB":
        return img
    if not _has_alpha(img):
        return img.convert("RGB")
    rgba = img.convert("RGBA")
    background = Image.new("RGB", rgba.size, (255, 255, 255))
    background.paste(rgba, mask=rgba.getchannel("A"))
    return background


def _encode(img: Image.Image, fmt: str, quality: int, progressive: bool = False) -> bytes:
    params = {}
    if fmt == "jpeg":
        img = _flatten(img)
        params = {"quality": quality, "progressive": progressive, "optimize": True}
    elif fmt == "png":
        params = {"optimize": True}
    elif fmt in ("webp", "avif"):
        params = {"quality": quality}
    elif fmt == "tiff":
        params = {"compression": "tiff_deflate"}

    buffer = io.BytesIO()
    img.save(buffer, format=PIL_FORMATS[fmt], **params)
    return buffer.getvalue()


def _target_box(
    source: Tuple[int, int],
    width: Optional[int],
    height: Optional[int],
    without_enlargement: bool,
) -> Tuple[int, int]:
    src_width, src_height = source
    if not width and not height:
        return source
    if not height:
        height = max(1, round(src_height * width / src_width))
    elif not width:
        width = max(1, round(src_width * height / src_height))
    if without_enlargement:
        width, height = min(width, src_width), min(height, src_height)
    return width, height


def _resize(img: Image.Image, box: Tuple[int, int], fit: str) -> Image.Image:
    width, height = box
    if fit == "cover":
        return ImageOps.fit(img, box, Image.Resampling.LANCZOS)
    if fit == "fill":
        return img.resize(box, Image.Resampling.LANCZOS)
    if fit == "inside":
        return ImageOps.contain(img, box, Image.Resampling.LANCZOS)
    if fit == "outside":
        scale = max(width / img.width, height / img.height)
        size = (max(1, round(img.width * scale)), max(1, round(img.height * scale)))
        return img.resize(size, Image.Resampling.LANCZOS)
    if fit == "contain":
        if img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA" if _has_alpha(img) else "RGB")
        color = (0, 0, 0, 0) if img.mode == "RGBA" else (0, 0, 0)
        return ImageOps.pad(img, box, Image.Resampling.LANCZOS, color=color)
    raise ValueError(f"Unknown fit strategy: {fit}")


class ImageProcessor:
    """
    Produces the derived variants of raster images (thumbnail, responsive
    widths, converted formats) and re-encodes the primary to save space.
    All Pillow work is done in a worker thread.
    """

    def __init__(self, settings: Optional[Settings] = None, logger: Optional[logging.Logger] = None):
        self.settings = settings or get_settings()
        self.logger = logger or logging.getLogger("media_upload.images")

    @staticmethod
    def _require_path(file: UploadableFile, action: str) -> Path:
        if not file.filepath:
            raise ProcessingError(f"File path is required for {action}")
        return Path(file.filepath)

    async def get_metadata(self, file: UploadableFile) -> ImageMetadata:
        path = self._require_path(file, "metadata extraction")

        def read() -> ImageMetadata:
            with Image.open(path) as img:
                return ImageMetadata(
                    width=img.width,
                    height=img.height,
                    format=normalize_format(img.format),
                    mode=img.mode,
                    has_alpha=_has_alpha(img),
                )

        try:
            return await asyncio.to_thread(read)
        except Exception as e:
            self.logger.error(f"Failed to extract metadata from {path}: {e}")
            raise ProcessingError("Failed to extract image metadata") from e

    async def optimize_image(
        self,
        file: UploadableFile,
        quality: Optional[int] = None,
        progressive: Optional[bool] = None,
        format: Optional[str] = None,
    ) -> ImageBuffer:
        """
        Re-encodes an image with format-specific compression settings.

        :param file: The image to optimize; its filepath must be set.
        :param quality: Encoder quality, defaults to IMAGE_QUALITY.
        :param progressive: Progressive JPEG output, defaults to IMAGE_PROGRESSIVE.
        :param format: Output format, defaults to the file's own format.
        :return: The smaller of the re-encoded and the original bytes.
        """
        path = self._require_path(file, "optimization")
        quality = quality or self.settings.IMAGE_QUALITY
        progressive = self.settings.IMAGE_PROGRESSIVE if progressive is None else progressive
        fmt = normalize_format(format or file.ext)

        def optimize() -> ImageBuffer:
            original = path.read_bytes()
            try:
                img = _open(path)
            except (OSError, Image.DecompressionBombError):
                if fmt in FORMATS_TO_OPTIMIZE:
                    raise
                return ImageBuffer(original, None, None, len(original), fmt)

            if fmt not in FORMATS_TO_OPTIMIZE:
                return ImageBuffer(original, img.width, img.height, len(original), fmt)

            data = _encode(img, fmt, quality, progressive)
            if len(data) >= len(original):
                data = original
            return ImageBuffer(data, img.width, img.height, len(data), fmt)

        return await asyncio.to_thread(optimize)

    async def resize_image(
        self,
        file: UploadableFile,
        width: Optional[int] = None,
        height: Optional[int] = None,
        fit: FitStrategy = "cover",
        without_enlargement: bool = True,
    ) -> ImageBuffer:
        path = self._require_path(file, "resizing")
        fmt = normalize_format(file.ext)

        def resize() -> ImageBuffer:
            img = _open(path)
            box = _target_box(img.size, width, height, without_enlargement)
            resized = _resize(img, box, fit)
            data = _encode(resized, fmt, self.settings.IMAGE_QUALITY)
            return ImageBuffer(data, resized.width, resized.height, len(data), fmt)

        return await asyncio.to_thread(resize)

    async def generate_thumbnail(self, file: UploadableFile, size: Optional[int] = None) -> ImageBuffer:
        size = size or self.settings.THUMBNAIL_SIZE
        return await self.resize_image(file, width=size, height=size, fit="cover")

    async def generate_responsive_images(
        self, file: UploadableFile, breakpoints: Optional[List[int]] = None
    ) -> Dict[str, ImageBuffer]:
        """
        Resizes the image to each breakpoint width. Breakpoints that fail, including
        those at or above the source width, are logged and left out of the result.
        """
        if breakpoints is None:
            breakpoints = self.settings.RESPONSIVE_BREAKPOINTS

        source_width = None
        responsive = {}
        for breakpoint in breakpoints:
            try:
                if source_width is None:
                    source_width = (await self.get_metadata(file)).width
                if breakpoint <= 0:
                    raise ProcessingError(f"Breakpoint must be a positive width, got {breakpoint}")
                if breakpoint >= source_width:
                    raise ProcessingError(
                        f"Image is {source_width}px wide, narrower than breakpoint {breakpoint}px; enlargement disallowed"
                    )
                responsive[f"w{breakpoint}"] = await self.resize_image(
                    file, width=breakpoint, without_enlargement=True
                )
            except Exception as e:
                self.logger.warning(
                    f"Failed to generate responsive image w{breakpoint} for {file.name}: {e}"
                )
        return responsive

    async def convert_format(
        self, file: UploadableFile, target_format: ConvertibleFormat, quality: Optional[int] = None
    ) -> ImageBuffer:
        path = self._require_path(file, "format conversion")
        quality = quality or self.settings.IMAGE_QUALITY
        fmt = normalize_format(target_format)
        if fmt not in FORMAT_EXTENSIONS:
            raise ProcessingError(f"Unsupported target format: {target_format}")

        def convert() -> ImageBuffer:
            img = _open(path)
            data = _encode(img, fmt, quality)
            return ImageBuffer(data, img.width, img.height, len(data), fmt)

        return await asyncio.to_thread(convert)

    def _output_dir(self, file: UploadableFile) -> Path:
        if file.tmp_working_directory:
            return Path(file.tmp_working_directory)
        return Path(file.filepath).parent

    async def _write_variant(
        self,
        file: UploadableFile,
        key: str,
        buffer: ImageBuffer,
        name: str,
        ext: str,
        mime: str,
    ) -> FormatDescriptor:
        variant_hash = f"{key}_{file.hash}"
        path = self._output_dir(file) / f"{variant_hash}{ext}"
        await asyncio.to_thread(path.write_bytes, buffer.data)
        return FormatDescriptor(
            name=name,
            hash=variant_hash,
            ext=ext,
            mime=mime,
            width=buffer.width,
            height=buffer.height,
            size=buffer.size,
            path=path,
        )

    async def process_image(
        self, file: UploadableFile, options: Optional[ProcessingOptions] = None
    ) -> ProcessedImage:
        """
        Generates every configured variant for an image and optimizes the primary.
        Non-image and unsupported files yield an empty result.
        """
        options = options or ProcessingOptions()
        result = ProcessedImage()

        if not file.mime.startswith("image/"):
            return result

        fmt = normalize_format(file.ext)
        if fmt not in FORMATS_TO_PROCESS:
            self.logger.info(f"Skipping processing for unsupported format {fmt} ({file.name})")
            return result

        try:
            if fmt in FORMATS_TO_RESIZE:
                generate_thumbnail = (
                    self.settings.GENERATE_THUMBNAILS if options.thumbnail is None else options.thumbnail
                )
                if generate_thumbnail:
                    thumbnail = await self.generate_thumbnail(file)
                    result.formats["thumbnail"] = await self._write_variant(
                        file, "thumbnail", thumbnail, f"thumbnail_{file.name}", file.ext, file.mime
                    )

                if options.responsive:
                    responsive = await self.generate_responsive_images(file, options.breakpoints)
                    for key, image in responsive.items():
                        result.formats[key] = await self._write_variant(
                            file, key, image, f"{key}_{file.name}", file.ext, file.mime
                        )

                for target_format in options.formats:
                    converted = await self.convert_format(file, target_format, options.quality)
                    ext = FORMAT_EXTENSIONS[target_format]
                    result.formats[target_format] = await self._write_variant(
                        file,
                        target_format,
                        converted,
                        f"{target_format}_{Path(file.name).stem}{ext}",
                        ext,
                        FORMAT_MIME_TYPES[target_format],
                    )

            if fmt in FORMATS_TO_OPTIMIZE:
                optimized = await self.optimize_image(
                    file, quality=options.quality, progressive=options.progressive
                )
                if optimized.size < file.size:
                    path = self._output_dir(file) / f"optimized_{file.hash}{file.ext}"
                    await asyncio.to_thread(path.write_bytes, optimized.data)
                    result.size = optimized.size
                    result.filepath = path

            self.logger.info(
                f"Image processed: {file.name}, formats={list(result.formats)}, "
                f"original size={file.size}, optimized size={result.size}"
            )
            return result
        except Exception as e:
            self.logger.error(f"Image processing failed for {file.name}: {e}")
            raise ProcessingError(f"Image processing failed: {e}") from e
