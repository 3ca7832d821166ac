"""Line-by-line transmission of local input over an established session."""

from typing import BinaryIO, Iterable

from .errors import TransmissionIOError
from .session import Session


def encode_line(line: str) -> bytes:
    """Return the UTF-8 bytes of line with its terminator replaced by a single newline."""
    if line.endswith("\r\n"):
        line = line[:-2]
    elif line.endswith(("\n", "\r")):
        line = line[:-1]
    return line.encode("utf-8") + b"\n"


def transmit(source: Iterable[str], writer: BinaryIO) -> int:
    """Send each line of source to writer, flushing after every line.

    Args:
        source: Line-oriented text input, e.g. stdin
        writer: Binary stream connected to the session

    Returns:
        Number of lines sent before end of input

    Raises:
        TransmissionIOError: On the first read, encode or write failure
    """
    sent = 0
    try:
        for line in source:
            writer.write(encode_line(line))
            writer.flush()
            sent += 1
    except (OSError, ValueError) as exc:
        raise TransmissionIOError(sent, "I/O failure while transmitting") from exc
    return sent


def run_transmission(source: Iterable[str], session: Session) -> int:
    """Stream source over session until end of input, closing the session afterwards.

    The session is closed on every path, including errors and interrupts.
    """
    try:
        return transmit(source, session.open_writer())
    finally:
        session.close()
