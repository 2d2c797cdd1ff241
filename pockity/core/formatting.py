"""Human-readable sizes and file categories."""

from pathlib import PurePosixPath

from ..config.loader import GIB

_SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]

_CATEGORIES = {
    "Images": {"jpg", "jpeg", "png", "gif", "bmp", "svg", "webp", "tiff", "ico"},
    "Videos": {"mp4", "avi", "mov", "wmv", "flv", "webm", "mkv", "3gp"},
    "Audio": {"mp3", "wav", "flac", "aac", "ogg", "wma", "m4a"},
    "Documents": {"pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx", "txt", "rtf", "odt"},
    "Archives": {"zip", "rar", "7z", "tar", "gz", "bz2"},
    "Code": {"js", "ts", "html", "css", "py", "java", "cpp", "c", "php", "rb"},
}


def format_file_size(size: int) -> str:
    """Format a byte count, e.g. ``1536 -> '1.5 KB'``."""
    if size <= 0:
        return "0 Bytes"
    exponent = 0
    while size >= 1024 ** (exponent + 1) and exponent < len(_SIZE_UNITS) - 1:
        exponent += 1
    value = round(size / 1024 ** exponent, 2)
    return f"{value:g} {_SIZE_UNITS[exponent]}"


def file_category(name: str) -> str:
    """Category for a file name or bare extension."""
    suffix = PurePosixPath(name).suffix
    extension = (suffix[1:] if suffix else name.lstrip(".")).lower()
    for category, extensions in _CATEGORIES.items():
        if extension in extensions:
            return category
    return "Other"


def bytes_to_gb(size: int) -> float:
    """Gigabytes rounded to two decimals."""
    return round(size / GIB, 2)
