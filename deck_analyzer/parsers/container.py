from __future__ import annotations

import io
import logging
import zipfile
from types import MappingProxyType
from typing import Iterable, Mapping

from lxml import etree

from ..core.errors import ContainerError, EntryNotFoundError
from ..models import DeckMetadata

log = logging.getLogger(__name__)

# Фиксированная раскладка OOXML-презентации
MEDIA_PREFIX = "ppt/media/"
SLIDES_PREFIX = "ppt/slides/"
SLIDE_RELS_PREFIX = "ppt/slides/_rels/"
CORE_PROPS = "docProps/core.xml"
APP_PROPS = "docProps/app.xml"

# Без разрешения внешних сущностей и сетевых запросов
XML_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)

_NS = {
    "cp": "http://schemas.openxmlformats.org/package/2006/metadata/core-properties",
    "dc": "http://purl.org/dc/elements/1.1/",
    "dcterms": "http://purl.org/dc/terms/",
    "ep": "http://schemas.openxmlformats.org/officeDocument/2006/extended-properties",
}


class Container:
    """
    Неизменяемый набор частей OOXML-пакета (путь -> байты).

    Все «изменения» возвращают новый Container, исходный объект не трогается.
    Порядок частей совпадает с порядком записей в архиве.
    """

    def __init__(self, parts: Mapping[str, bytes]):
        self._parts = MappingProxyType(dict(parts))

    # -----------------------------------------------------------------
    @classmethod
    def open(cls, data: bytes) -> "Container":
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                parts = {
                    info.filename: archive.read(info)
                    for info in archive.infolist()
                    if not info.is_dir()
                }
        except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError, ValueError) as e:
            raise ContainerError(f"Not a readable ZIP container: {e}") from e
        return cls(parts)

    # -----------------------------------------------------------------
    @property
    def parts(self) -> Mapping[str, bytes]:
        return self._parts

    def __contains__(self, path: object) -> bool:
        return path in self._parts

    def __len__(self) -> int:
        return len(self._parts)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Container):
            return NotImplemented
        return list(self._parts.items()) == list(other._parts.items())

    def list_entries(self, prefix: str = "") -> list[str]:
        return [name for name in self._parts if name.startswith(prefix)]

    def read_entry(self, path: str) -> bytes:
        try:
            return self._parts[path]
        except KeyError:
            raise EntryNotFoundError(path) from None

    # -----------------------------------------------------------------
    def replace_parts(self, changes: Mapping[str, bytes]) -> "Container":
        """Новый контейнер с заменёнными байтами указанных частей."""
        unknown = [p for p in changes if p not in self._parts]
        if unknown:
            raise EntryNotFoundError(unknown[0])
        merged = {name: changes.get(name, data) for name, data in self._parts.items()}
        return Container(merged)

    def strip_parts(self, paths: Iterable[str]) -> "Container":
        """Опустошает потоки частей, сохраняя сами записи и связи пакета."""
        return self.replace_parts({path: b"" for path in paths})

    def to_bytes(self) -> bytes:
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for name, data in self._parts.items():
                archive.writestr(name, data)
        return buf.getvalue()


# ---------------------------------------------------------------------------
def _text(root: etree._Element, xpath: str) -> str | None:
    found = root.xpath(xpath, namespaces=_NS)
    if not found:
        return None
    value = (found[0].text or "").strip()
    return value or None


def _int(value: str | None) -> int | None:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


def read_metadata(container: Container) -> DeckMetadata:
    """Свойства документа из docProps; битые или отсутствующие части -> пустые поля."""
    meta = DeckMetadata()

    if CORE_PROPS in container:
        try:
            core = etree.fromstring(container.read_entry(CORE_PROPS), XML_PARSER)
            meta.title = _text(core, "/cp:coreProperties/dc:title")
            meta.creator = _text(core, "/cp:coreProperties/dc:creator")
            meta.last_modified_by = _text(core, "/cp:coreProperties/cp:lastModifiedBy")
            meta.created = _text(core, "/cp:coreProperties/dcterms:created")
            meta.modified = _text(core, "/cp:coreProperties/dcterms:modified")
        except etree.XMLSyntaxError as e:
            log.warning("Malformed %s, metadata skipped: %s", CORE_PROPS, e)

    if APP_PROPS in container:
        try:
            app = etree.fromstring(container.read_entry(APP_PROPS), XML_PARSER)
            meta.slides = _int(_text(app, "/ep:Properties/ep:Slides"))
            meta.hidden_slides = _int(_text(app, "/ep:Properties/ep:HiddenSlides"))
        except etree.XMLSyntaxError as e:
            log.warning("Malformed %s, metadata skipped: %s", APP_PROPS, e)

    return meta
