from __future__ import annotations

import logging
import posixpath
import re
from typing import Mapping

from lxml import etree

from ..models import UNKNOWN_SLIDE, Relationship, SlideRef
from .container import MEDIA_PREFIX, SLIDE_RELS_PREFIX, XML_PARSER, Container

log = logging.getLogger(__name__)

_PKG_RELS_NS = "http://schemas.openxmlformats.org/package/2006/relationships"
_SLIDE_RELS_RE = re.compile(r"^ppt/slides/_rels/slide(\d+)\.xml\.rels$")


def _owner_part(rels_path: str) -> str:
    """ppt/slides/_rels/slide3.xml.rels -> ppt/slides/slide3.xml"""
    directory, name = posixpath.split(rels_path)
    return posixpath.join(posixpath.dirname(directory), name[: -len(".rels")])


def _resolve_target(owner_part: str, target: str) -> str:
    if target.startswith("/"):
        return target.lstrip("/")
    base = posixpath.dirname(owner_part)
    return posixpath.normpath(posixpath.join(base, target))


def parse_relationships(container: Container, rels_path: str) -> list[Relationship]:
    """
    Разбирает одну часть связей.
    Бросает EntryNotFoundError / etree.XMLSyntaxError; решение о деградации
    принимает вызывающий код.
    """
    root = etree.fromstring(container.read_entry(rels_path), XML_PARSER)
    owner = _owner_part(rels_path)

    relationships: list[Relationship] = []
    for node in root.iter(f"{{{_PKG_RELS_NS}}}Relationship"):
        target = node.get("Target")
        if not target:
            continue
        external = (node.get("TargetMode") or "").lower() == "external"
        relationships.append(
            Relationship(
                owner_part=owner,
                relationship_id=node.get("Id", ""),
                type=node.get("Type", ""),
                target=target if external else _resolve_target(owner, target),
                external=external,
            )
        )
    return relationships


def slide_rels_parts(container: Container) -> list[tuple[int, str]]:
    """Все части slideN.xml.rels, по возрастанию N."""
    found: list[tuple[int, str]] = []
    for name in container.list_entries(SLIDE_RELS_PREFIX):
        m = _SLIDE_RELS_RE.match(name)
        if m:
            found.append((int(m.group(1)), name))
    return sorted(found)


def resolve_media_owners(container: Container) -> dict[str, int]:
    """
    Карта «имя медиафайла -> номер слайда».

    Если один файл используется на нескольких слайдах, побеждает первый слайд
    по возрастанию номера. Битые части связей пропускаются: их медиа
    останутся с владельцем "unknown".
    """
    owners: dict[str, int] = {}
    for slide_index, rels_path in slide_rels_parts(container):
        try:
            relationships = parse_relationships(container, rels_path)
        except etree.XMLSyntaxError as e:
            log.warning("Skipping malformed relationship part %s: %s", rels_path, e)
            continue

        for rel in relationships:
            if rel.external or not rel.target.startswith(MEDIA_PREFIX):
                continue
            owners.setdefault(posixpath.basename(rel.target), slide_index)

    log.debug("Resolved owners for %d media files", len(owners))
    return owners


def owner_of(owners: Mapping[str, int], filename: str) -> SlideRef:
    return owners.get(filename, UNKNOWN_SLIDE)
