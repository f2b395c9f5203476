import re
import secrets
import time
from pathlib import Path
from typing import Iterable, Optional

MAX_FILENAME_LENGTH = 255
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_PATH_SEPARATORS = re.compile(r"[/\\]")

def sanitize_filename(filename: str) -> str:
    """
    Make a decoded file name safe to store.

    Path separators become underscores, control characters are dropped and
    the name is cut to 255 characters while keeping its extension. Names
    that end up empty or made only of dots are rejected with ValueError.
    """
    name = _PATH_SEPARATORS.sub("_", filename)
    name = _CONTROL_CHARS.sub("", name).strip()

    if len(name) > MAX_FILENAME_LENGTH:
        stem, dot, ext = name.rpartition(".")
        if dot and len(ext) + 1 < MAX_FILENAME_LENGTH:
            name = stem[:MAX_FILENAME_LENGTH - len(ext) - 1] + "." + ext
        else:
            name = name[:MAX_FILENAME_LENGTH]

    if not name or set(name) == {"."}:
        raise ValueError(f"Invalid file name: {filename!r}")
    return name

def file_extension(filename: str) -> str:
    return Path(filename).suffix.lower()

def find_dangerous_extension(filename: str, dangerous_types: Iterable[str]) -> Optional[str]:
    """
    Return the extension if it is in the dangerous list, otherwise None.
    """
    ext = file_extension(filename)
    if ext and ext in {t.lower() for t in dangerous_types}:
        return ext
    return None

def generate_upload_id() -> str:
    """
    Opaque session token: epoch milliseconds plus 16 random hex characters.
    """
    return f"{int(time.time() * 1000)}_{secrets.token_hex(8)}"

def calculate_storage_used(directory: Path) -> int:
    """
    Total size of the stored files directly inside `directory`.
    """
    if not directory.exists():
        return 0
    return sum(path.stat().st_size for path in directory.iterdir() if path.is_file())

def ensure_directory_exists(directory_path: Path) -> None:
    """
    Ensure that a directory exists, creating it if necessary.
    """
    directory_path.mkdir(parents=True, exist_ok=True)
