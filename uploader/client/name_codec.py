import base64
import binascii
import logging

logger = logging.getLogger("name_codec")

UTF8_PREFIX = "UTF8:"

def is_ascii(name: str) -> bool:
    return all(ord(char) < 128 for char in name)

def encode_filename(name: str) -> str:
    """
    Encode a file name for transport.

    Pure ASCII names are returned unchanged. Anything else becomes
    "UTF8:" followed by the Base64 of its UTF-8 bytes. If the name cannot
    be encoded as UTF-8 it is passed through as-is.
    """
    if not name:
        return ""
    if is_ascii(name):
        return name

    try:
        payload = base64.b64encode(name.encode("utf-8")).decode("ascii")
    except UnicodeEncodeError as e:
        logger.warning(f"Could not encode file name {name!r}, sending it unencoded: {e}")
        return name
    return UTF8_PREFIX + payload

def decode_filename(value: str) -> str:
    """
    Reverse encode_filename. Values without the UTF8 prefix are returned unchanged.
    """
    if not value:
        return ""
    if not value.startswith(UTF8_PREFIX):
        return value

    try:
        return base64.b64decode(value[len(UTF8_PREFIX):], validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        logger.warning(f"Could not decode file name {value!r}: {e}")
        return value
