"""
Conversions between Kubernetes quantity strings and plain integers.

Bytes and millicpu are the numeric units used by the API; custom resources
store them as strings with optional suffixes (``1Gi``, ``500m``, ``0.5``).
"""
import math
import re
from fractions import Fraction

from dbaas_controller.exceptions import ConversionError

KILO = 1000
KIBI = 1024

# exact, so byte counts above 2**53 convert without loss
BYTE_SUFFIXES = {
    "": Fraction(1),
    "m": Fraction(1, KILO),
    "K": Fraction(KILO),
    "Ki": Fraction(KIBI),
    "M": Fraction(KILO ** 2),
    "Mi": Fraction(KIBI ** 2),
    "G": Fraction(KILO ** 3),
    "Gi": Fraction(KIBI ** 3),
    "T": Fraction(KILO ** 4),
    "Ti": Fraction(KIBI ** 4),
}

_NUMBER = re.compile(r"^\d+(\.\d+)?$")


def _split_suffix(value: str):
    i = len(value)
    while i > 0 and not value[i - 1].isdigit():
        i -= 1
    return value[:i], value[i:]


def _byte_coefficient(suffix: str) -> Fraction:
    if suffix in BYTE_SUFFIXES:
        return BYTE_SUFFIXES[suffix]
    # "m" is milli, so only k/g/t are accepted in lower case
    if suffix[:1] in ("k", "g", "t"):
        normalized = suffix[0].upper() + suffix[1:]
        if normalized in BYTE_SUFFIXES:
            return BYTE_SUFFIXES[normalized]
    raise ConversionError(f"suffix '{suffix}' not supported", value=suffix)


def str_to_bytes(memory: str) -> int:
    """
    Convert a memory quantity such as ``1Gi`` or ``500M`` to bytes.

    The result is rounded up to the next whole byte. An empty string is an
    error, never zero.
    """
    if not memory:
        raise ConversionError("can't convert an empty string to a number", value=memory)

    number, suffix = _split_suffix(memory)
    coefficient = _byte_coefficient(suffix)
    if not _NUMBER.match(number):
        raise ConversionError(f"given value '{number}' is not a number", value=memory)
    return int(math.ceil(Fraction(number) * coefficient))


def str_to_millicpu(cpu: str) -> int:
    """Convert a CPU quantity (``250m``, ``1``, ``0.5``) to millicpu."""
    if not cpu:
        raise ConversionError("can't convert an empty string to a number", value=cpu)

    if cpu.endswith("m"):
        millis = cpu[:-1]
        if not millis.isdigit():
            raise ConversionError(f"given value '{cpu}' is not a valid millicpu quantity", value=cpu)
        return int(millis)

    if not _NUMBER.match(cpu):
        raise ConversionError(f"given value '{cpu}' is not a number", value=cpu)
    return int(round(Fraction(cpu) * 1000))


def bytes_to_str(value: int) -> str:
    return str(int(value))


def millicpu_to_str(value: int) -> str:
    return f"{int(value)}m"
