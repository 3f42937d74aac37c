"""Parsing of the comma-separated mount option string."""

from __future__ import annotations

import errno as _errno
import logging
from dataclasses import dataclass

from bfcfs.format import BfcfsError, VerifyMode

logger = logging.getLogger(__name__)

PATH_MAX = 4096
KEY_DESC_MAX = 128
DEFAULT_KEY_DESC = "bfcfs:"

_VERIFY_MODES = {
    "none": VerifyMode.NONE,
    "shallow": VerifyMode.SHALLOW,
    "deep": VerifyMode.DEEP,
}


class OptionError(BfcfsError, ValueError):
    """A mount option is missing, unknown or malformed."""

    errno = _errno.EINVAL


@dataclass
class MountOptions:
    source: str = ""
    key_desc: str = DEFAULT_KEY_DESC
    verify: VerifyMode = VerifyMode.SHALLOW
    noreadahead: bool = False


def parse_verify_mode(text: str) -> VerifyMode:
    """Map ``none``, ``shallow`` or ``deep`` to a VerifyMode."""
    try:
        return _VERIFY_MODES[text]
    except KeyError:
        raise OptionError(f"invalid verify mode '{text}'") from None


def _value(option: str, key: str) -> str | None:
    prefix = key + "="
    if option.startswith(prefix) and len(option) > len(prefix):
        return option[len(prefix):]
    return None


def parse_mount_options(data: str | None) -> MountOptions:
    """Parse ``source=PATH,verify=MODE,key=DESC,noreadahead``; source is required."""
    if data is None:
        raise OptionError("no mount options provided")

    opts = MountOptions()
    for option in data.split(","):
        if not option:
            continue
        if (source := _value(option, "source")) is not None:
            if len(source) >= PATH_MAX:
                raise OptionError("source path too long", errno=_errno.ENAMETOOLONG)
            opts.source = source
        elif (mode := _value(option, "verify")) is not None:
            opts.verify = parse_verify_mode(mode)
        elif (key := _value(option, "key")) is not None:
            if len(key) >= KEY_DESC_MAX:
                raise OptionError("key descriptor too long", errno=_errno.ENAMETOOLONG)
            opts.key_desc = key
        elif option == "noreadahead":
            opts.noreadahead = True
        else:
            raise OptionError(f"unrecognized mount option '{option}'")

    if not opts.source:
        raise OptionError("'source' option is required")

    logger.debug(
        "mount options parsed - source='%s', verify=%d, key='%s', noreadahead=%d",
        opts.source,
        opts.verify,
        opts.key_desc,
        opts.noreadahead,
    )
    return opts