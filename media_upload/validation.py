# validation.py
import asyncio
import logging
import re
import unicodedata
from pathlib import Path
from typing import Optional, Sequence, Tuple

from PIL import Image, UnidentifiedImageError

from .config import Settings, get_settings
from .exceptions import ValidationError
from .models import FileInfo, PaginationOptions, RawFile, ValidationOptions

FILENAME_RESERVED_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
WINDOWS_RESERVED_NAME_RE = re.compile(r"^(con|prn|aux|nul|com\d|lpt\d)$", re.IGNORECASE)

MAX_FILENAME_LENGTH = 255
MAX_FOLDER_NAME_LENGTH = 100
MAX_ALTERNATIVE_TEXT_LENGTH = 500
MAX_CAPTION_LENGTH = 1000
MAX_PAGE_LIMIT = 100


def _read_dimensions(path: Path) -> Tuple[int, int]:
    with Image.open(path) as img:
        return img.size


class Validator:
    """
    Gatekeeper for incoming files and request metadata. Every rejection raises a
    ValidationError naming the violated constraint.
    """

    def __init__(self, settings: Optional[Settings] = None, logger: Optional[logging.Logger] = None):
        self.settings = settings or get_settings()
        self.logger = logger or logging.getLogger("media_upload.validation")

    def validate_filename(self, filename: str) -> str:
        """
        Checks a filename against length, character and reserved-name rules.

        :param filename: The name as supplied by the client.
        :return: The NFC-normalized name.
        """
        if not filename:
            raise ValidationError("File name is required")
        name = unicodedata.normalize("NFC", filename)
        if len(name) > MAX_FILENAME_LENGTH:
            raise ValidationError(f"File name cannot exceed {MAX_FILENAME_LENGTH} characters")
        if FILENAME_RESERVED_RE.search(name):
            raise ValidationError(f"File name '{name}' contains invalid characters")
        if WINDOWS_RESERVED_NAME_RE.match(name):
            raise ValidationError(f"File name '{name}' is a reserved system name")
        if name in (".", ".."):
            raise ValidationError(f"File name '{name}' is not allowed")
        return name

    def validate_batch(self, files: Sequence[RawFile]) -> None:
        if not files:
            raise ValidationError("At least one file must be provided")
        limit = self.settings.MAX_FILES_PER_UPLOAD
        if len(files) > limit:
            raise ValidationError(f"Too many files: {len(files)} provided, at most {limit} allowed per upload")

    async def validate_file(self, file: RawFile, options: Optional[ValidationOptions] = None) -> None:
        options = options or ValidationOptions()
        max_file_size = options.max_file_size or self.settings.MAX_FILE_SIZE
        allowed_types = options.allowed_types or self.settings.ALLOWED_TYPES

        # 1. Size
        if file.size > max_file_size:
            raise ValidationError(f"File size {file.size} exceeds maximum allowed size {max_file_size}")

        # 2. MIME type
        if file.mime_type not in allowed_types:
            raise ValidationError(f"File type {file.mime_type} is not allowed")

        # 3. Extension (optional)
        if options.allowed_extensions:
            extension = Path(file.filename).suffix.lstrip(".").lower()
            allowed = {ext.lstrip(".").lower() for ext in options.allowed_extensions}
            if not extension or extension not in allowed:
                raise ValidationError(f"File extension {extension or '(none)'} is not allowed")

        # 4. Filename
        self.validate_filename(file.filename)

        # 5. Image dimensions (optional)
        if file.mime_type.startswith("image/"):
            await self._validate_image(
                file,
                max_width=options.max_width or self.settings.MAX_IMAGE_WIDTH,
                max_height=options.max_height or self.settings.MAX_IMAGE_HEIGHT,
            )

        self.logger.info(
            f"File validation passed: {file.filename} ({file.size} bytes, {file.mime_type})"
        )

    async def _validate_image(self, file: RawFile, max_width: Optional[int], max_height: Optional[int]) -> None:
        if not max_width and not max_height:
            return

        try:
            width, height = await asyncio.to_thread(_read_dimensions, file.path)
        except Image.DecompressionBombError as e:
            raise ValidationError(
                f"Image dimensions exceed the maximum allowed {max_width or '-'}x{max_height or '-'}: {e}"
            ) from e
        except (OSError, UnidentifiedImageError) as e:
            # An unreadable header is not a rejection.
            self.logger.warning(f"Failed to validate image dimensions for {file.filename}: {e}")
            return

        if max_width and width > max_width:
            raise ValidationError(f"Image width {width} exceeds maximum allowed width {max_width}")
        if max_height and height > max_height:
            raise ValidationError(f"Image height {height} exceeds maximum allowed height {max_height}")

    def validate_file_info(self, file_info: FileInfo) -> None:
        if file_info.name is not None:
            self.validate_filename(file_info.name)
        if file_info.alternative_text and len(file_info.alternative_text) > MAX_ALTERNATIVE_TEXT_LENGTH:
            raise ValidationError(f"Alternative text cannot exceed {MAX_ALTERNATIVE_TEXT_LENGTH} characters")
        if file_info.caption and len(file_info.caption) > MAX_CAPTION_LENGTH:
            raise ValidationError(f"Caption cannot exceed {MAX_CAPTION_LENGTH} characters")

    def validate_pagination_options(self, options: PaginationOptions) -> None:
        if options.page < 1:
            raise ValidationError("Page must be a positive number")
        if options.limit < 1 or options.limit > MAX_PAGE_LIMIT:
            raise ValidationError(f"Limit must be a number between 1 and {MAX_PAGE_LIMIT}")

    def validate_folder_name(self, name: str) -> None:
        if not name or not isinstance(name, str):
            raise ValidationError("Folder name is required and must be a string")
        if len(name) > MAX_FOLDER_NAME_LENGTH:
            raise ValidationError(f"Folder name cannot exceed {MAX_FOLDER_NAME_LENGTH} characters")
        if FILENAME_RESERVED_RE.search(name):
            raise ValidationError("Folder name contains invalid characters")
        if WINDOWS_RESERVED_NAME_RE.match(name):
            raise ValidationError("Folder name cannot be a reserved system name")
        if name in (".", ".."):
            raise ValidationError(f"Folder name '{name}' is not allowed")
