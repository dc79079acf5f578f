"""Photo Dates - EXIF capture-date extraction and date consistency checks.

All functions are pure: same input always produces same output, no side effects.
Only the JPEG/EXIF subset needed for capture dates is parsed:

    SOI (FFD8) -> markers ... -> APP1 (FFE1) "Exif\\0\\0" -> TIFF header
    TIFF header: byte order ("II" little / "MM" big), magic, IFD0 offset
    IFD0:        DateTime (0x0132), Exif sub-IFD pointer (0x8769)
    Exif IFD:    DateTimeOriginal (0x9003), DateTimeDigitized (0x9004)
"""

import re
import struct
from datetime import date, datetime
from typing import Optional

from .models import PhotoDateCheck, PhotoUpload
from .rules import PHOTO_DATE_TOLERANCE_DAYS
from .weeks import week_range


TAG_DATETIME = 0x0132
TAG_EXIF_IFD = 0x8769
TAG_DATETIME_ORIGINAL = 0x9003
TAG_DATETIME_DIGITIZED = 0x9004

EXIF_DATETIME_LENGTH = 19
EXIF_DATETIME_PATTERN = re.compile(r"(\d{4}):(\d{2}):(\d{2})\s+(\d{2}):(\d{2}):(\d{2})")


class _TiffReader:
    """Bounds-checked integer reads inside one TIFF block."""

    def __init__(self, data: bytes, start: int, end: int, little_endian: bool) -> None:
        self.data = data
        self.start = start
        self.end = min(end, len(data))
        self.prefix = "<" if little_endian else ">"

    def u16(self, offset: int) -> int:
        if offset + 2 > self.end:
            raise struct.error("read past end of TIFF block")
        return struct.unpack_from(self.prefix + "H", self.data, offset)[0]

    def u32(self, offset: int) -> int:
        if offset + 4 > self.end:
            raise struct.error("read past end of TIFF block")
        return struct.unpack_from(self.prefix + "I", self.data, offset)[0]

    def ascii(self, relative_offset: int, length: int) -> Optional[str]:
        offset = self.start + relative_offset
        if offset + length > self.end:
            return None
        raw = self.data[offset:offset + length].split(b"\x00", 1)[0]
        try:
            text = raw.decode("ascii")
        except UnicodeDecodeError:
            return None
        return text or None

    def entries(self, relative_offset: int):
        """Yield (tag, value-or-offset) for each entry of an IFD."""
        ifd = self.start + relative_offset
        count = self.u16(ifd)
        for i in range(count):
            entry = ifd + 2 + i * 12
            if entry + 12 > self.end:
                break
            yield self.u16(entry), self.u32(entry + 8)


def _parse_tiff(data: bytes, start: int, end: int) -> Optional[str]:
    """Return the best capture-date string found in a TIFF block."""
    order = data[start:start + 2]
    if order == b"II":
        reader = _TiffReader(data, start, end, little_endian=True)
    elif order == b"MM":
        reader = _TiffReader(data, start, end, little_endian=False)
    else:
        return None

    modified = None
    exif_ifd = None
    for tag, value in reader.entries(reader.u32(start + 4)):
        if tag == TAG_DATETIME:
            modified = reader.ascii(value, EXIF_DATETIME_LENGTH)
        elif tag == TAG_EXIF_IFD:
            exif_ifd = value

    original = digitized = None
    if exif_ifd is not None:
        for tag, value in reader.entries(exif_ifd):
            if tag == TAG_DATETIME_ORIGINAL:
                original = reader.ascii(value, EXIF_DATETIME_LENGTH)
            elif tag == TAG_DATETIME_DIGITIZED:
                digitized = reader.ascii(value, EXIF_DATETIME_LENGTH)

    return original or digitized or modified


def parse_exif_datetime(text: str) -> Optional[datetime]:
    """Parse the EXIF 'YYYY:MM:DD HH:MM:SS' format."""
    match = EXIF_DATETIME_PATTERN.search(text)
    if match is None:
        return None
    try:
        return datetime(*(int(part) for part in match.groups()))
    except ValueError:
        return None


def extract_exif_datetime(data: bytes) -> Optional[datetime]:
    """Extract the capture timestamp from JPEG bytes.

    Args:
        data: Raw file bytes (the first 128KB is enough)

    Returns:
        Capture datetime if an EXIF date is present, None otherwise
    """
    if len(data) < 4 or data[:2] != b"\xff\xd8":
        return None

    offset = 2
    try:
        while offset + 4 <= len(data):
            marker = struct.unpack_from(">H", data, offset)[0]
            if marker & 0xFF00 != 0xFF00:
                break
            if marker == 0xFFDA:  # start of scan, no metadata beyond here
                break
            length = struct.unpack_from(">H", data, offset + 2)[0]
            if marker == 0xFFE1 and data[offset + 4:offset + 10] == b"Exif\x00\x00":
                text = _parse_tiff(data, offset + 10, offset + 2 + length)
                if text:
                    parsed = parse_exif_datetime(text)
                    if parsed is not None:
                        return parsed
            offset += 2 + length
    except struct.error:
        return None
    return None


def photo_capture_date(photo: PhotoUpload) -> Optional[tuple[date, str]]:
    """Best available capture date and its source ('exif' or 'file_modified')."""
    taken = extract_exif_datetime(photo.data)
    if taken is not None:
        return taken.date(), "exif"
    if photo.last_modified is not None:
        return photo.last_modified.date(), "file_modified"
    return None


def _days_outside(day: date, earliest: date, latest: date) -> int:
    if day < earliest:
        return (earliest - day).days
    if day > latest:
        return (day - latest).days
    return 0


def _check(photo: PhotoUpload, earliest: date, latest: date, claimed: str) -> PhotoDateCheck:
    found = photo_capture_date(photo)
    if found is None:
        return PhotoDateCheck(
            valid=True,
            message="Could not read the photo's date. Make sure it is from the right day.",
        )

    photo_date, source = found
    distance = _days_outside(photo_date, earliest, latest)
    if distance == 0:
        return PhotoDateCheck(valid=True, photo_date=photo_date, source=source)

    origin = "EXIF data" if source == "exif" else "file date"
    if distance <= PHOTO_DATE_TOLERANCE_DAYS:
        return PhotoDateCheck(
            valid=True,
            message=(
                f"The photo is from {photo_date} ({origin}). "
                "One day off, possibly a timezone difference."
            ),
            photo_date=photo_date,
            source=source,
        )

    return PhotoDateCheck(
        valid=False,
        message=(
            f"The photo is from {photo_date}, but you reported {claimed}. "
            "The photo must be from the day of the activity."
        ),
        photo_date=photo_date,
        source=source,
    )


def validate_photo_date(photo: PhotoUpload, claimed_date: date) -> PhotoDateCheck:
    """Compare a photo's capture date with the claimed workout date.

    Exact match is valid, a one-day difference is valid with an advisory
    note, anything further is invalid. A photo without any date signal is
    let through with an advisory note.
    """
    return _check(photo, claimed_date, claimed_date, claimed_date.isoformat())


def validate_photo_in_week(photo: PhotoUpload, week_id: str) -> PhotoDateCheck:
    """Same tolerance as validate_photo_date, against a whole week."""
    bounds = week_range(week_id)
    return _check(photo, bounds.start, bounds.end, f"week {week_id}")
