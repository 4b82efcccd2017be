import io
import logging
import zipfile
from typing import Dict, List, Optional

from .errors import CorruptArchiveError, MalformedPartError
from .xmlutil import templated_parts

logger = logging.getLogger(__name__)

ZIP_SIGNATURE = b"PK"
# fixed timestamp for entries that did not exist in the input
_NEW_ENTRY_DATE = (1980, 1, 1, 0, 0, 0)


class Archive:
    """In-memory view of a .docx ZIP container.

    Entries keep their input order and metadata. Only entries written through
    ``write_text``/``write_bytes`` change; everything else is re-emitted with
    its original content.
    """

    def __init__(self, compression_level: int = 6):
        self.compression_level = compression_level
        self._infos: Dict[str, zipfile.ZipInfo] = {}
        self._data: Dict[str, bytes] = {}
        self.source = b""

    @classmethod
    def open(cls, buffer: bytes, compression_level: int = 6) -> "Archive":
        if not buffer:
            raise CorruptArchiveError("empty buffer, expected a .docx (ZIP) file")
        if buffer[:2] != ZIP_SIGNATURE:
            preview = bytes(buffer[:40]).decode("utf-8", errors="replace")
            raise CorruptArchiveError(
                f"file does not appear to be a valid DOCX (ZIP) file, starts with {preview!r}"
            )

        archive = cls(compression_level=compression_level)
        archive.source = bytes(buffer)
        try:
            with zipfile.ZipFile(io.BytesIO(buffer), "r") as zin:
                for info in zin.infolist():
                    archive._infos[info.filename] = info
                    archive._data[info.filename] = zin.read(info.filename)
        except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError) as exc:
            raise CorruptArchiveError(f"cannot read ZIP container: {exc}") from exc
        logger.debug("opened archive with %d entries", len(archive._data))
        return archive

    def names(self) -> List[str]:
        return list(self._data)

    def has(self, name: str) -> bool:
        return name in self._data

    __contains__ = has

    def read_bytes(self, name: str) -> Optional[bytes]:
        return self._data.get(name)

    def read_text(self, name: str) -> Optional[str]:
        data = self._data.get(name)
        if data is None:
            return None
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedPartError(f"{name} is not UTF-8 encoded: {exc}") from exc

    def write_bytes(self, name: str, data: bytes) -> None:
        if name not in self._infos:
            info = zipfile.ZipInfo(name, date_time=_NEW_ENTRY_DATE)
            info.external_attr = 0o644 << 16
            self._infos[name] = info
        self._data[name] = data

    def write_text(self, name: str, content: str) -> None:
        self.write_bytes(name, content.encode("utf-8"))

    def document_parts(self) -> List[str]:
        """``word/document.xml`` plus every header and footer part."""
        return templated_parts(self._data)

    def serialize(self) -> bytes:
        out = io.BytesIO()
        with zipfile.ZipFile(out, "w", compression=zipfile.ZIP_DEFLATED) as zout:
            for name, data in self._data.items():
                src = self._infos[name]
                info = zipfile.ZipInfo(name, date_time=src.date_time)
                info.external_attr = src.external_attr
                info.create_system = src.create_system
                info.compress_type = zipfile.ZIP_DEFLATED
                zout.writestr(info, data, compresslevel=self.compression_level)
        return out.getvalue()
