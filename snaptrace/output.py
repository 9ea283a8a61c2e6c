"""
Markup generation and parsing.

``build_svg`` flattens a path set into a standalone SVG string with svgwrite;
``parse_svg_paths`` reads path elements back out of markup, keeping group ids
as path id prefixes.
"""

import logging
import xml.etree.ElementTree as ET
from typing import List, Sequence

import svgwrite

from .types import VectorPath, _fmt

logger = logging.getLogger(__name__)

SVG_NS = '{http://www.w3.org/2000/svg}'


def build_svg(paths: Sequence[VectorPath], width: int, height: int) -> str:
    """
    Render paths into an SVG document string.

    Each path is filled with even-odd so the holes of a compound path stay
    open; the hairline stroke of the same color hides seams between regions.
    """
    dwg = svgwrite.Drawing(size=(width, height), profile='tiny', debug=False)
    dwg.viewbox(0, 0, width, height)

    for path in paths:
        attrs = {
            'd': path.path_data,
            'fill': path.fill_color,
            'fill-rule': 'evenodd',
            'id': path.id,
        }
        if path.stroke_color:
            attrs['stroke'] = path.stroke_color
            attrs['stroke-width'] = _fmt(path.stroke_width or 0)
            attrs['stroke-linejoin'] = 'round'
        else:
            attrs['stroke'] = 'none'
        if path.transform:
            attrs['transform'] = path.transform
        dwg.add(dwg.path(**attrs))

    return dwg.tostring()


def _local(tag: str) -> str:
    return tag[len(SVG_NS):] if tag.startswith(SVG_NS) else tag


def parse_svg_paths(markup: str) -> List[VectorPath]:
    """
    Extract paths from SVG markup.

    Paths inside a ``<g id=...>`` get ids ``{group}-{n}``, others
    ``path-{n}``. Paths with ``fill="none"`` or no ``d`` are skipped. Returns
    an empty list when the markup does not parse.
    """
    try:
        root = ET.fromstring(markup)
    except ET.ParseError as e:
        logger.warning("Could not parse SVG markup: %s", e)
        return []

    paths = []

    def visit(element, group_id):
        tag = _local(element.tag).lower()
        if tag == 'g' and element.get('id'):
            group_id = element.get('id')
        if tag == 'path':
            d = element.get('d')
            fill = element.get('fill') or '#000000'
            if d and fill.lower() != 'none':
                prefix = group_id or 'path'
                stroke_width = element.get('stroke-width')
                paths.append(VectorPath(
                    id=f"{prefix}-{len(paths)}",
                    path_data=d,
                    fill_color=fill,
                    stroke_color=element.get('stroke') or fill,
                    stroke_width=float(stroke_width) if stroke_width else None,
                ))
        for child in element:
            visit(child, group_id)

    visit(root, None)
    return paths
