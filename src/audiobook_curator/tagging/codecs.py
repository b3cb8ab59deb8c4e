"""Tag container codecs: one closed set of readers/writers keyed by extension.

    AtomCodec        -- MPEG-4 atoms (.m4b .m4a .mp4)
    Id3Codec         -- ID3v2 frames (.mp3)
    VorbisCodec      -- Vorbis comments (.flac .ogg .opus)
    UnsupportedCodec -- everything else; reads nothing, refuses to write

Every apply() removes a field's existing entries before inserting the new
ones, so rewriting the same value never accumulates duplicates.
"""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod
from enum import StrEnum
from pathlib import Path

from loguru import logger
from mutagen import MutagenError
from mutagen.flac import FLAC, Picture
from mutagen.id3 import (
    COMM,
    ID3,
    TALB,
    TCOM,
    TCON,
    TDRC,
    TIT2,
    TIT3,
    TLAN,
    TPE1,
    TPE2,
    TPUB,
    TXXX,
    ID3NoHeaderError,
    PictureType,
)
from mutagen.mp4 import MP4, MP4Cover, MP4FreeForm
from mutagen.oggopus import OggOpus
from mutagen.oggvorbis import OggVorbis

from ..errors import TagReadError, UnsupportedFormatError
from ..models import FileTags, MetadataChange

log = logger.bind(stage="tags")

Changes = dict[str, MetadataChange]

# (image bytes, mime type)
EmbeddedCover = tuple[bytes, str]

# Fields stored outside the standard slots (freeform atoms, TXXX, custom Vorbis keys)
CUSTOM_FIELDS: dict[str, str] = {
    "series": "SERIES",
    "sequence": "SERIES-PART",
    "asin": "ASIN",
    "isbn": "ISBN",
}


class TagFamily(StrEnum):
    ATOM = "atom"
    FRAME = "frame"
    UNSUPPORTED = "unsupported"


def is_narrator_credit(value: str) -> bool:
    return "narrated by" in value.lower()


def _genre_list(value: str) -> list[str]:
    return [g.strip() for g in value.split(",") if g.strip()]


def _writable(changes: Changes) -> dict[str, str]:
    """Flatten changes to field -> new value, dropping values never written."""
    out: dict[str, str] = {}
    for key, change in changes.items():
        value = (change.new or "").strip()
        if not value:
            continue
        if key in ("description", "comment") and is_narrator_credit(value):
            log.debug(f"Not writing {key}: contains a narrator credit")
            continue
        if key == "year" and not value.isdigit():
            log.debug(f"Not writing year {value!r}: not a plain integer")
            continue
        out[key] = value
    return out


class TagCodec(ABC):
    family: TagFamily
    extensions: tuple[str, ...] = ()

    @abstractmethod
    def read(self, path: Path) -> FileTags:
        """Best-effort read; malformed tags give empty fields."""

    @abstractmethod
    def apply(self, path: Path, changes: Changes) -> None:
        """Write the change-set into the file at path (in place)."""

    def read_cover(self, path: Path) -> EmbeddedCover | None:
        """Embedded front cover, if the container carries one."""
        return None


class AtomCodec(TagCodec):
    family = TagFamily.ATOM
    extensions = (".m4b", ".m4a", ".mp4")

    FREEFORM_PREFIX = "----:com.apple.iTunes:"

    STANDARD_ATOMS: dict[str, tuple[str, ...]] = {
        "title": ("\xa9nam",),
        "author": ("\xa9ART", "aART"),
        "album": ("\xa9alb",),
        "narrator": ("\xa9wrt",),
        "genre": ("\xa9gen",),
        "year": ("\xa9day",),
        "description": ("\xa9cmt", "desc"),
        "comment": ("\xa9cmt",),
    }

    FREEFORM_FIELDS: dict[str, str] = {
        **CUSTOM_FIELDS,
        "language": "LANGUAGE",
        "publisher": "PUBLISHER",
        "subtitle": "SUBTITLE",
    }

    def read(self, path: Path) -> FileTags:
        try:
            audio = MP4(path)
        except MutagenError as e:
            log.warning(f"Unreadable MP4 tags in {path.name}: {e}")
            return FileTags()
        tags = audio.tags
        if tags is None:
            return FileTags()

        def first(atom: str) -> str | None:
            values = tags.get(atom)
            return str(values[0]) if values else None

        def freeform(name: str) -> str | None:
            values = tags.get(self.FREEFORM_PREFIX + name)
            if not values:
                return None
            raw = values[0]
            return bytes(raw).decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)

        genres = tags.get("\xa9gen") or []
        return FileTags(
            title=first("\xa9nam"),
            artist=first("\xa9ART"),
            album=first("\xa9alb"),
            genre=", ".join(str(g) for g in genres) or None,
            year=first("\xa9day"),
            comment=first("\xa9cmt"),
            composer=first("\xa9wrt"),
            series=freeform("SERIES"),
            sequence=freeform("SERIES-PART"),
            asin=freeform("ASIN"),
            isbn=freeform("ISBN"),
            publisher=freeform("PUBLISHER"),
            language=freeform("LANGUAGE"),
            subtitle=freeform("SUBTITLE"),
        )

    def read_cover(self, path: Path) -> EmbeddedCover | None:
        try:
            audio = MP4(path)
        except MutagenError as e:
            log.debug(f"No MP4 artwork in {path.name}: {e}")
            return None
        covers = audio.tags.get("covr") if audio.tags is not None else None
        if not covers:
            return None
        cover = covers[0]
        mime_type = "image/png" if cover.imageformat == MP4Cover.FORMAT_PNG else "image/jpeg"
        return bytes(cover), mime_type

    def apply(self, path: Path, changes: Changes) -> None:
        audio = MP4(path)
        if audio.tags is None:
            audio.add_tags()
        tags = audio.tags

        for key, value in _writable(changes).items():
            if key in self.STANDARD_ATOMS:
                values = _genre_list(value) if key == "genre" else [value]
                for atom in self.STANDARD_ATOMS[key]:
                    if atom in tags:
                        del tags[atom]
                    tags[atom] = values
            elif key in self.FREEFORM_FIELDS:
                atom = self.FREEFORM_PREFIX + self.FREEFORM_FIELDS[key]
                if atom in tags:
                    del tags[atom]
                tags[atom] = [MP4FreeForm(value.encode("utf-8"))]
            else:
                log.debug(f"No atom for field {key!r}")

        audio.save()


class FrameCodec(TagCodec):
    """Frame-based containers: ID3 for MP3, Vorbis comments for FLAC/Ogg."""

    family = TagFamily.FRAME


class Id3Codec(FrameCodec):
    extensions = (".mp3",)

    TEXT_FRAMES: dict[str, tuple[type, ...]] = {
        "title": (TIT2,),
        "author": (TPE1, TPE2),
        "album": (TALB,),
        "narrator": (TCOM,),
        "genre": (TCON,),
        "year": (TDRC,),
        "publisher": (TPUB,),
        "language": (TLAN,),
        "subtitle": (TIT3,),
    }

    def read(self, path: Path) -> FileTags:
        try:
            tags = ID3(path)
        except ID3NoHeaderError:
            return FileTags()
        except MutagenError as e:
            log.warning(f"Unreadable ID3 tags in {path.name}: {e}")
            return FileTags()

        def text(frame_id: str, joiner: str | None = None) -> str | None:
            frame = tags.get(frame_id)
            if frame is None or not frame.text:
                return None
            values = [str(t) for t in frame.text]
            return joiner.join(values) if joiner else values[0]

        def txxx(desc: str) -> str | None:
            return text(f"TXXX:{desc}")

        comments = tags.getall("COMM")
        return FileTags(
            title=text("TIT2"),
            artist=text("TPE1"),
            album=text("TALB"),
            genre=text("TCON", ", "),
            year=text("TDRC"),
            comment=str(comments[0].text[0]) if comments and comments[0].text else None,
            composer=text("TCOM"),
            series=txxx("SERIES"),
            sequence=txxx("SERIES-PART"),
            asin=txxx("ASIN"),
            isbn=txxx("ISBN"),
            publisher=text("TPUB"),
            language=text("TLAN"),
            subtitle=text("TIT3"),
        )

    def read_cover(self, path: Path) -> EmbeddedCover | None:
        try:
            tags = ID3(path)
        except ID3NoHeaderError:
            return None
        except MutagenError as e:
            log.debug(f"No ID3 artwork in {path.name}: {e}")
            return None
        frames = tags.getall("APIC")
        if not frames:
            return None
        front = next((f for f in frames if f.type == PictureType.COVER_FRONT), frames[0])
        return bytes(front.data), front.mime or "image/jpeg"

    def apply(self, path: Path, changes: Changes) -> None:
        try:
            tags = ID3(path)
        except ID3NoHeaderError:
            tags = ID3()

        for key, value in _writable(changes).items():
            if key in self.TEXT_FRAMES:
                values = _genre_list(value) if key == "genre" else [value]
                for frame_cls in self.TEXT_FRAMES[key]:
                    tags.delall(frame_cls.__name__)
                    tags.add(frame_cls(encoding=3, text=values))
            elif key in ("description", "comment"):
                tags.delall("COMM")
                tags.add(COMM(encoding=3, lang="eng", desc="", text=[value]))
            elif key in CUSTOM_FIELDS:
                desc = CUSTOM_FIELDS[key]
                tags.delall(f"TXXX:{desc}")
                tags.add(TXXX(encoding=3, desc=desc, text=[value]))
            else:
                log.debug(f"No ID3 frame for field {key!r}")

        tags.save(path)


class VorbisCodec(FrameCodec):
    extensions = (".flac", ".ogg", ".opus")

    FIELD_KEYS: dict[str, tuple[str, ...]] = {
        "title": ("TITLE",),
        "author": ("ARTIST", "ALBUMARTIST"),
        "album": ("ALBUM",),
        "narrator": ("COMPOSER",),
        "genre": ("GENRE",),
        "year": ("DATE",),
        "description": ("COMMENT",),
        "comment": ("COMMENT",),
        "publisher": ("ORGANIZATION",),
        "language": ("LANGUAGE",),
        "subtitle": ("SUBTITLE",),
        **{field: (key,) for field, key in CUSTOM_FIELDS.items()},
    }

    _OPENERS = {".flac": FLAC, ".ogg": OggVorbis, ".opus": OggOpus}

    def _open(self, path: Path):
        return self._OPENERS[path.suffix.lower()](path)

    def read(self, path: Path) -> FileTags:
        try:
            audio = self._open(path)
        except MutagenError as e:
            log.warning(f"Unreadable Vorbis comments in {path.name}: {e}")
            return FileTags()
        tags = audio.tags
        if tags is None:
            return FileTags()

        def first(key: str, joiner: str | None = None) -> str | None:
            values = tags.get(key)
            if not values:
                return None
            return joiner.join(values) if joiner else values[0]

        return FileTags(
            title=first("TITLE"),
            artist=first("ARTIST"),
            album=first("ALBUM"),
            genre=first("GENRE", ", "),
            year=first("DATE"),
            comment=first("COMMENT"),
            composer=first("COMPOSER"),
            series=first("SERIES"),
            sequence=first("SERIES-PART"),
            asin=first("ASIN"),
            isbn=first("ISBN"),
            publisher=first("ORGANIZATION"),
            language=first("LANGUAGE"),
            subtitle=first("SUBTITLE"),
        )

    def read_cover(self, path: Path) -> EmbeddedCover | None:
        try:
            audio = self._open(path)
        except MutagenError as e:
            log.debug(f"No Vorbis artwork in {path.name}: {e}")
            return None

        pictures = list(getattr(audio, "pictures", None) or [])
        if not pictures and audio.tags is not None:
            # Ogg streams carry FLAC picture blocks base64-encoded in a comment
            for raw in audio.tags.get("METADATA_BLOCK_PICTURE") or []:
                try:
                    pictures.append(Picture(base64.b64decode(raw)))
                except (ValueError, MutagenError) as e:
                    log.debug(f"Bad picture block in {path.name}: {e}")
        if not pictures:
            return None
        front = next((p for p in pictures if p.type == PictureType.COVER_FRONT), pictures[0])
        return bytes(front.data), front.mime or "image/jpeg"

    def apply(self, path: Path, changes: Changes) -> None:
        audio = self._open(path)
        if audio.tags is None:
            audio.add_tags()
        tags = audio.tags

        for key, value in _writable(changes).items():
            keys = self.FIELD_KEYS.get(key)
            if not keys:
                log.debug(f"No Vorbis key for field {key!r}")
                continue
            values = _genre_list(value) if key == "genre" else [value]
            for vorbis_key in keys:
                if vorbis_key in tags:
                    del tags[vorbis_key]
                tags[vorbis_key] = values

        audio.save()


class UnsupportedCodec(TagCodec):
    family = TagFamily.UNSUPPORTED

    def read(self, path: Path) -> FileTags:
        return FileTags()

    def apply(self, path: Path, changes: Changes) -> None:
        raise UnsupportedFormatError(path, path.suffix.lower())


_CODECS: tuple[TagCodec, ...] = (AtomCodec(), Id3Codec(), VorbisCodec())
_UNSUPPORTED = UnsupportedCodec()


def codec_for(path: Path) -> TagCodec:
    """Pick the codec for a file by extension."""
    suffix = path.suffix.lower()
    for codec in _CODECS:
        if suffix in codec.extensions:
            return codec
    return _UNSUPPORTED


def read_tags(path: Path) -> FileTags:
    """Read embedded tags. Raises TagReadError if the file cannot be opened."""
    path = Path(path)
    if not path.is_file():
        raise TagReadError(path, "file not found")
    try:
        with path.open("rb"):
            pass
    except OSError as e:
        raise TagReadError(path, str(e)) from e
    return codec_for(path).read(path)


def read_cover(path: Path) -> EmbeddedCover | None:
    """Embedded front cover of a file, or None if it has none or cannot be read."""
    path = Path(path)
    if not path.is_file():
        return None
    return codec_for(path).read_cover(path)
