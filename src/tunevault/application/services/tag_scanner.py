"""ID3 tag scanner producing ScannedTrack records for the local sync."""

import logging
import os
import zlib
from collections.abc import Iterator
from pathlib import Path
from typing import BinaryIO

from mutagen import MutagenError
from mutagen.id3 import ID3, ID3NoHeaderError

from tunevault.domain.entities import ScannedTrack
from tunevault.domain.exceptions import (
    FileIoFail,
    ScanError,
    TagMissingRequiredField,
    TagReadFail,
)
from tunevault.domain.ports import ITagScanner

logger = logging.getLogger(__name__)

ID3V2_HEADER_SIZE = 10
ID3V1_SIZE = 128
ID3V1_EXTENDED_SIZE = 355  # 227-byte "TAG+" block followed by the regular 128-byte tag
HASH_CHUNK_SIZE = 64 * 1024


def parse_number_pair(value: str | None) -> tuple[int | None, int | None]:
    """Parse "3/12" style TRCK/TPOS values into (number, total).

    "3" gives (3, None); anything unparseable gives None for that part.
    """
    if not value:
        return None, None
    number_part, _, total_part = value.partition("/")

    def to_int(part: str) -> int | None:
        try:
            return int(part.strip())
        except ValueError:
            return None

    return to_int(number_part), to_int(total_part) if total_part else None


def id3v2_tag_size(header: bytes) -> int:
    """Total size in bytes of a leading ID3v2 tag, 0 if ``header`` doesn't start one."""
    if len(header) < ID3V2_HEADER_SIZE or header[:3] != b"ID3":
        return 0
    flags = header[5]
    # Syncsafe integer: 4 bytes, 7 significant bits each
    size = (header[6] << 21) | (header[7] << 14) | (header[8] << 7) | header[9]
    footer = ID3V2_HEADER_SIZE if flags & 0x10 else 0
    return ID3V2_HEADER_SIZE + size + footer


# Hey future me, THIS is the content identity used for move detection, so it must not change
# when tags are edited. We CRC32 only the bytes between the leading ID3v2 tag and the trailing
# ID3v1 tag: "TAG+" 355 bytes before EOF wins, else "TAG" 128 bytes before EOF. Retagging with
# a different padding size, adding an ID3v1 tag, removing one - none of that moves the window
# over the audio frames. Read in chunks so a 300MB live recording doesn't land in RAM.
def audio_payload_crc32(fileobj: BinaryIO, size: int) -> int:
    """CRC32 of the audio payload of an mp3 file, tag regions excluded."""
    fileobj.seek(0)
    start = id3v2_tag_size(fileobj.read(ID3V2_HEADER_SIZE))
    end = size

    if size - ID3V1_EXTENDED_SIZE >= start:
        fileobj.seek(size - ID3V1_EXTENDED_SIZE)
        if fileobj.read(4) == b"TAG+":
            end = size - ID3V1_EXTENDED_SIZE
    if end == size and size - ID3V1_SIZE >= start:
        fileobj.seek(size - ID3V1_SIZE)
        if fileobj.read(3) == b"TAG":
            end = size - ID3V1_SIZE

    crc = 0
    fileobj.seek(start)
    remaining = max(0, end - start)
    while remaining > 0:
        chunk = fileobj.read(min(HASH_CHUNK_SIZE, remaining))
        if not chunk:
            break
        crc = zlib.crc32(chunk, crc)
        remaining -= len(chunk)
    return crc & 0xFFFFFFFF


class Id3TagScanner(ITagScanner):
    """Scans a directory tree for .mp3 files and reads their ID3 tags.

    This is blocking filesystem work - run it in a worker thread.
    """

    AUDIO_EXTENSION = ".mp3"

    def scan(self, directory: Path) -> Iterator[ScannedTrack | ScanError]:
        """Walk ``directory`` and yield one result per tagged .mp3 file.

        Files without any ID3 tag are skipped silently. Per-file problems are yielded as
        ScanError instances; the walk always continues.

        Args:
            directory: Root of the local source

        Yields:
            ScannedTrack or ScanError, in sorted path order
        """
        root = Path(directory)
        walk_errors: list[OSError] = []

        for dirpath, dirnames, filenames in os.walk(root, onerror=walk_errors.append):
            # Sorted walk keeps runs deterministic (insert order == id order)
            dirnames.sort()
            while walk_errors:
                error = walk_errors.pop(0)
                yield FileIoFail(self._relative(root, error.filename), str(error))

            for filename in sorted(filenames):
                if not filename.lower().endswith(self.AUDIO_EXTENSION):
                    continue
                path = Path(dirpath) / filename
                relative = self._relative(root, path)
                try:
                    track = self.scan_file(path, relative)
                except ScanError as e:
                    logger.debug(f"Skipping {relative}: {e.message}")
                    yield e
                    continue
                if track is not None:
                    yield track

        while walk_errors:
            error = walk_errors.pop(0)
            yield FileIoFail(self._relative(root, error.filename), str(error))

    @staticmethod
    def _relative(root: Path, path: str | os.PathLike[str] | None) -> str:
        if path is None:
            return ""
        try:
            return Path(path).relative_to(root).as_posix()
        except ValueError:
            return Path(path).as_posix()

    # Yo, "prefer ID3v2" means v2 frames ONLY when a v2 header exists. ID3() with the default
    # load_v1=True quietly copies v1 fields into a v2 tag that lacks them (a v2 tag without
    # TALB would pick up the v1 album), so the first load skips v1. Only when there is no v2
    # header do we load again with v1 allowed; mutagen then reports version (1, 1) with the v1
    # fields converted to TIT2/TPE1/TALB/TRCK frames. No tag at all is a skip, not an error.
    def scan_file(self, path: Path, relative_path: str) -> ScannedTrack | None:
        """Read tags and payload hash of one file.

        Args:
            path: Absolute path of the file
            relative_path: Path relative to the source root, "/"-separated

        Returns:
            The scanned track, or None if the file carries no ID3 tag

        Raises:
            TagMissingRequiredField: Title or album missing
            TagReadFail: Tag present but unreadable
            FileIoFail: File could not be read
        """
        try:
            tags = self._load_tags(path)
        except MutagenError as e:
            cause = e.__cause__ or (e.args[0] if e.args else None)
            if isinstance(cause, OSError):
                raise FileIoFail(relative_path, str(cause)) from e
            raise TagReadFail(relative_path, str(e) or e.__class__.__name__) from e
        except OSError as e:
            raise FileIoFail(relative_path, str(e)) from e

        if tags is None:
            return None

        title = self._text(tags, "TIT2")
        if not title:
            raise TagMissingRequiredField(relative_path, "title")
        album = self._text(tags, "TALB")
        if not album:
            raise TagMissingRequiredField(relative_path, "album")

        track_number, track_total = parse_number_pair(self._text(tags, "TRCK"))
        if tags.version < (2, 0, 0):
            # ID3v1 has a bare track number and nothing about discs
            disc_number = disc_total = track_total = None
        else:
            disc_number, disc_total = parse_number_pair(self._text(tags, "TPOS"))

        artist = self._text(tags, "TPE1")
        album_artist = self._text(tags, "TPE2")

        try:
            with open(path, "rb") as f:
                hash_value = audio_payload_crc32(f, os.fstat(f.fileno()).st_size)
        except OSError as e:
            raise FileIoFail(relative_path, str(e)) from e

        return ScannedTrack(
            file_path=relative_path,
            title=title,
            album=album,
            hash=hash_value,
            disc_number=disc_number,
            disc_total=disc_total,
            track_number=track_number,
            track_total=track_total,
            track_artists=[artist] if artist else [],
            album_artists=[album_artist] if album_artist else [],
        )

    @staticmethod
    def _load_tags(path: Path) -> ID3 | None:
        try:
            return ID3(path, load_v1=False)
        except ID3NoHeaderError:
            pass
        try:
            return ID3(path)
        except ID3NoHeaderError:
            return None

    @staticmethod
    def _text(tags: ID3, frame_id: str) -> str | None:
        """First text value of a frame, stripped; None when absent or blank."""
        frame = tags.get(frame_id)
        if frame is None or not getattr(frame, "text", None):
            return None
        value = str(frame.text[0]).strip()
        return value or None
