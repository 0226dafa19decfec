import base64

from werkzeug.exceptions import ClientDisconnected

DEFAULT_DOWNLOAD_NAME = "image.png"

INVALID_FILE_TYPE_MESSAGE = "Please upload a valid image file (PNG, JPG, etc.)."
READ_FAILURE_MESSAGE = "Could not read the uploaded file."


class IntakeError(Exception):
    pass


class InvalidFileType(IntakeError):
    def __init__(self, mime_type):
        super().__init__(INVALID_FILE_TYPE_MESSAGE)
        self.mime_type = mime_type


class ReadFailure(IntakeError):
    def __init__(self, message=READ_FAILURE_MESSAGE):
        super().__init__(message)


def is_image_type(mime_type):
    return bool(mime_type) and mime_type.lower().startswith("image/")


def to_data_url(mime_type, b64):
    return f"data:{mime_type};base64,{b64}"


def split_data_url(data_url):
    """Split ``data:<mime>;base64,<payload>`` into (mime, payload)."""
    try:
        header, b64 = data_url.split(",", 1)
        scheme, meta = header.split(":", 1)
    except (AttributeError, ValueError):
        raise ValueError("Invalid data URL") from None
    mime, _, encoding = meta.partition(";")
    if scheme != "data" or encoding != "base64" or not mime:
        raise ValueError("Invalid data URL")
    return mime, b64


def file_to_data_url(file):
    """Encode an uploaded file as a base64 data URL.

    Only the declared content type is checked. The caller owns any state
    that results from the upload.
    """
    mime_type = file.mimetype
    if not is_image_type(mime_type):
        raise InvalidFileType(mime_type)

    try:
        raw_bytes = file.read()
    except (OSError, ClientDisconnected) as e:
        raise ReadFailure() from e

    if not raw_bytes:
        raise ReadFailure("The uploaded file is empty.")

    b64 = base64.b64encode(raw_bytes).decode("utf-8")
    return to_data_url(mime_type, b64)


def edited_filename(filename):
    return f"edited-{filename or DEFAULT_DOWNLOAD_NAME}"
