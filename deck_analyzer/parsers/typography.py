from __future__ import annotations

import logging

from lxml import etree

from .container import XML_PARSER, Container

log = logging.getLogger(__name__)

# Части, где встречаются объявления шрифтов (latin/ea/cs/sym, buFont и т.п.)
TYPOGRAPHY_PREFIXES: tuple[str, ...] = (
    "ppt/slides/",
    "ppt/theme/",
    "ppt/slideMasters/",
    "ppt/slideLayouts/",
)

TYPEFACE_ATTR = "typeface"


def typography_part(path: str) -> bool:
    if "/_rels/" in path or not path.endswith(".xml"):
        return False
    return path.startswith(TYPOGRAPHY_PREFIXES)


def _rewrite_part(data: bytes, font_name: str) -> bytes | None:
    """Новые байты части или None, если менять нечего."""
    root = etree.fromstring(data, XML_PARSER)
    changed = False
    for node in root.iter(etree.Element):
        current = node.get(TYPEFACE_ATTR)
        if current and current != font_name:
            node.set(TYPEFACE_ATTR, font_name)
            changed = True
    if not changed:
        return None
    return etree.tostring(root, xml_declaration=True, encoding="UTF-8", standalone=True)


def rewrite_typography(container: Container, font_name: str) -> Container:
    """
    Заменяет все непустые атрибуты `typeface` на `font_name`.

    Обход идёт по дереву XML, а не по тексту: атрибут в любом пространстве
    имён и с любыми кавычками обрабатывается одинаково. Части без изменений
    сохраняют исходные байты, поэтому повторный вызов ничего не меняет.
    Часть, которая не разбирается как XML, остаётся как есть.
    """
    if not font_name:
        raise ValueError("font_name must be non-empty")

    changes: dict[str, bytes] = {}
    for path in container.list_entries():
        if not typography_part(path):
            continue
        try:
            rewritten = _rewrite_part(container.read_entry(path), font_name)
        except etree.XMLSyntaxError as e:
            log.warning("Typography rewrite skipped for malformed part %s: %s", path, e)
            continue
        if rewritten is not None:
            changes[path] = rewritten

    if changes:
        log.info("Normalized typography in %d part(s) to '%s'", len(changes), font_name)
    return container.replace_parts(changes)
