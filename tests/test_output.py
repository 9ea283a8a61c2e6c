"""
Tests for SVG generation and parsing.
"""

import xml.etree.ElementTree as ET

from snaptrace import VectorPath, build_svg, parse_svg_paths

SVG = "{http://www.w3.org/2000/svg}"


def sample_paths():
    return [
        VectorPath("shape-0", "M 0 0 L 10 0 L 10 10 Z", "#ff0000", "#ff0000", 0.25),
        VectorPath("shape-1", "M 2 2 L 4 2 L 4 4 Z", "#00ff00").translated(5, 0),
    ]


class TestBuildSvg:
    """Test markup generation."""

    def test_document_attributes(self):
        root = ET.fromstring(build_svg(sample_paths(), 120, 80))
        assert root.get("width") == "120"
        assert root.get("height") == "80"
        assert root.get("viewBox") == "0,0,120,80"

    def test_path_attributes(self):
        root = ET.fromstring(build_svg(sample_paths(), 120, 80))
        first, second = root.findall(f"{SVG}path")
        assert first.get("fill") == "#ff0000"
        assert first.get("fill-rule") == "evenodd"
        assert first.get("stroke-width") == "0.25"
        assert first.get("transform") is None
        assert second.get("stroke") == "none"
        assert second.get("transform") == "translate(5,0)"

    def test_draw_order_kept(self):
        root = ET.fromstring(build_svg(sample_paths(), 10, 10))
        assert [p.get("id") for p in root.findall(f"{SVG}path")] == ["shape-0", "shape-1"]

    def test_empty(self):
        root = ET.fromstring(build_svg([], 5, 5))
        assert root.findall(f"{SVG}path") == []


class TestParseSvg:
    """Test reading paths back out of markup."""

    def test_round_trip(self):
        paths = parse_svg_paths(build_svg(sample_paths(), 20, 20))
        assert [p.path_data for p in paths] == [p.path_data for p in sample_paths()]
        assert paths[0].fill_color == "#ff0000"
        assert paths[0].stroke_width == 0.25

    def test_group_ids_prefix_paths(self):
        markup = (
            '<svg xmlns="http://www.w3.org/2000/svg">'
            '<g id="logo"><path d="M 0 0 L 1 0 L 1 1 Z" fill="#000"/></g>'
            '<path d="M 0 0 L 2 0 L 2 2 Z" fill="#fff"/>'
            '<path d="M 0 0 L 3 0 L 3 3 Z" fill="none"/>'
            '</svg>'
        )
        paths = parse_svg_paths(markup)
        assert [p.id for p in paths] == ["logo-0", "path-1"]

    def test_invalid_markup(self, caplog):
        assert parse_svg_paths("<svg><path") == []
        assert "Could not parse" in caplog.text
