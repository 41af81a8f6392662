# tests/test_validation.py
import pytest
import unicodedata

from media_upload.exceptions import ValidationError
from media_upload.models import FileInfo, PaginationOptions, RawFile, ValidationOptions
from media_upload.validation import Validator


@pytest.fixture
def validator(settings, mock_logger):
    return Validator(settings, logger=mock_logger)


@pytest.mark.parametrize(
    "filename",
    ["", "a" * 256, "bad<name>.jpg", "tab\tname.png", "dir/file.png", "CON", "lpt1", ".", ".."],
)
def test_validate_filename_rejects_invalid_names(validator, filename):
    with pytest.raises(ValidationError):
        validator.validate_filename(filename)


def test_validate_filename_returns_nfc_normalized_name(validator):
    decomposed = unicodedata.normalize("NFD", "café.jpg")

    assert validator.validate_filename(decomposed) == "café.jpg"


def test_validate_filename_allows_reserved_word_with_extension(validator):
    assert validator.validate_filename("con.txt") == "con.txt"


@pytest.mark.asyncio
async def test_validate_file_accepts_allowed_image(validator, make_raw, mock_logger):
    raw = make_raw("photo.jpg")

    await validator.validate_file(raw)

    mock_logger.info.assert_called_once()


@pytest.mark.asyncio
async def test_validate_file_rejects_oversized_file(validator, make_raw):
    raw = make_raw("photo.jpg")

    with pytest.raises(ValidationError, match="exceeds maximum allowed size"):
        await validator.validate_file(raw, ValidationOptions(max_file_size=raw.size - 1))


@pytest.mark.asyncio
async def test_validate_file_checks_size_before_type(validator, text_file):
    raw = RawFile.from_path(text_file, mime_type="application/x-msdownload")

    with pytest.raises(ValidationError, match="size"):
        await validator.validate_file(raw, ValidationOptions(max_file_size=1))


@pytest.mark.asyncio
async def test_validate_file_rejects_disallowed_type(validator, text_file):
    raw = RawFile.from_path(text_file, mime_type="application/x-msdownload")

    with pytest.raises(ValidationError, match="is not allowed"):
        await validator.validate_file(raw)


@pytest.mark.asyncio
async def test_validate_file_extension_allow_list_is_case_insensitive(validator, make_raw):
    raw = make_raw("PHOTO.JPG", mime_type="image/jpeg")

    await validator.validate_file(raw, ValidationOptions(allowed_extensions=[".jpg", "png"]))

    with pytest.raises(ValidationError, match="extension"):
        await validator.validate_file(raw, ValidationOptions(allowed_extensions=["png"]))


@pytest.mark.asyncio
async def test_validate_file_rejects_invalid_filename(validator, text_file):
    raw = RawFile(filename="bad|name.txt", mime_type="text/plain", size=5, path=text_file)

    with pytest.raises(ValidationError, match="invalid characters"):
        await validator.validate_file(raw)


@pytest.mark.asyncio
async def test_validate_file_enforces_image_dimensions(validator, make_raw):
    raw = make_raw("wide.png", size=(800, 200), fmt="PNG")

    await validator.validate_file(raw, ValidationOptions(max_width=800, max_height=200))

    with pytest.raises(ValidationError, match="width 800"):
        await validator.validate_file(raw, ValidationOptions(max_width=799))

    with pytest.raises(ValidationError, match="height 200"):
        await validator.validate_file(raw, ValidationOptions(max_height=100))


@pytest.mark.asyncio
async def test_validate_file_unreadable_image_header_only_warns(validator, tmp_path, mock_logger):
    path = tmp_path / "broken.png"
    path.write_bytes(b"not really a png")
    raw = RawFile.from_path(path)

    await validator.validate_file(raw, ValidationOptions(max_width=10))

    mock_logger.warning.assert_called_once()


@pytest.mark.asyncio
async def test_validate_file_rejects_decompression_bomb_when_dimensions_are_limited(
    validator, make_raw, monkeypatch, mock_logger
):
    raw = make_raw("huge.png", size=(800, 200), fmt="PNG")
    monkeypatch.setattr("PIL.Image.MAX_IMAGE_PIXELS", 1000)

    with pytest.raises(ValidationError, match="Image dimensions exceed"):
        await validator.validate_file(raw, ValidationOptions(max_width=4000, max_height=4000))
    mock_logger.warning.assert_not_called()


@pytest.mark.asyncio
async def test_validate_file_ignores_decompression_bomb_without_dimension_limits(validator, make_raw, monkeypatch):
    raw = make_raw("huge.png", size=(800, 200), fmt="PNG")
    monkeypatch.setattr("PIL.Image.MAX_IMAGE_PIXELS", 1000)

    await validator.validate_file(raw)


def test_validate_file_info_limits(validator):
    validator.validate_file_info(FileInfo(name="ok.jpg", alternative_text="a" * 500, caption="c" * 1000))

    with pytest.raises(ValidationError, match="Alternative text"):
        validator.validate_file_info(FileInfo(alternative_text="a" * 501))
    with pytest.raises(ValidationError, match="Caption"):
        validator.validate_file_info(FileInfo(caption="c" * 1001))
    with pytest.raises(ValidationError):
        validator.validate_file_info(FileInfo(name="nul"))


@pytest.mark.parametrize("page, limit", [(0, 20), (1, 0), (1, 101)])
def test_validate_pagination_options_rejects_out_of_range(validator, page, limit):
    with pytest.raises(ValidationError):
        validator.validate_pagination_options(PaginationOptions(page=page, limit=limit))


def test_validate_pagination_options_accepts_bounds(validator):
    validator.validate_pagination_options(PaginationOptions(page=1, limit=1))
    validator.validate_pagination_options(PaginationOptions(page=3, limit=100))


@pytest.mark.parametrize("name", ["", "x" * 101, "a:b", "COM3"])
def test_validate_folder_name_rejects_invalid(validator, name):
    with pytest.raises(ValidationError):
        validator.validate_folder_name(name)


def test_validate_folder_name_accepts_plain_name(validator):
    validator.validate_folder_name("holiday photos")


def test_validate_batch_limits(validator, text_file, settings):
    raw = RawFile.from_path(text_file)

    with pytest.raises(ValidationError, match="At least one file"):
        validator.validate_batch([])
    with pytest.raises(ValidationError, match="Too many files"):
        validator.validate_batch([raw] * (settings.MAX_FILES_PER_UPLOAD + 1))

    validator.validate_batch([raw] * settings.MAX_FILES_PER_UPLOAD)
