"""Unit tests for the design source parser."""

from __future__ import annotations

from circuitforge_repair.verification_plane.source_parser import (
    AttributeKind,
    parse_design,
    scan_elements,
)

DESIGN = """\
export default () => (
  <board width="20mm" height="20mm">
    {/* <chip name="COMMENTED" /> */}
    <chip
      name="U1"
      footprint="soic8"
      pinLabels={{ pin1: "VIN", pin2: "GND", pin3: "OUT" }}
      connections={{ OUT: "net.SIG", VIN: "net.VCC" }}
    />
    <resistor name={"R1"} resistance={`10k`} pcbX={4} schOnly />
    // <chip name="GHOST" />
    <trace from=".U1 > .OUT" to=".R1 > .pin1" />
    <trace from={dynamicRef} />
  </board>
)
"""


def test_parse_design_components_in_declaration_order() -> None:
    model = parse_design(DESIGN)

    assert model.component_names() == ("U1", "R1")
    chip = model.component("U1")
    assert chip is not None
    assert chip.tag == "chip"
    assert chip.line == 4
    assert chip.pin_labels == (("pin1", "VIN"), ("pin2", "GND"), ("pin3", "OUT"))
    assert chip.connections == (("OUT", "net.SIG"), ("VIN", "net.VCC"))
    assert model.component("GHOST") is None
    assert model.component("COMMENTED") is None


def test_attribute_value_forms() -> None:
    model = parse_design(DESIGN)
    resistor = model.component("R1")
    assert resistor is not None
    element = resistor.element

    assert element.string_attribute("name") == "R1"
    assert element.string_attribute("resistance") == "10k"
    pcb_x = element.attribute("pcbX")
    assert pcb_x is not None
    assert pcb_x.kind is AttributeKind.EXPRESSION
    assert pcb_x.text == "4"
    flag = element.attribute("schOnly")
    assert flag is not None
    assert flag.kind is AttributeKind.FLAG


def test_attribute_offsets_delimit_the_value_text() -> None:
    model = parse_design(DESIGN)
    chip = model.component("U1")
    assert chip is not None
    footprint = chip.element.attribute("footprint")
    assert footprint is not None

    assert DESIGN[footprint.value_start : footprint.value_end] == '"soic8"'


def test_traces_and_dynamic_endpoints() -> None:
    model = parse_design(DESIGN)
    first, second = model.traces

    assert (first.from_ref, first.to_ref) == (".U1 > .OUT", ".R1 > .pin1")
    assert first.index == 1
    assert first.label == f"trace@{first.line}:1"
    assert not first.missing_endpoint

    assert second.from_ref is None
    assert second.from_dynamic
    assert second.missing_endpoint


def test_closing_offset_points_at_last_closing_tag() -> None:
    model = parse_design(DESIGN)
    offset = model.closing_offset("board")

    assert offset is not None
    assert DESIGN[offset:].startswith("</board>")
    assert model.closing_offset("group") is None


def test_string_literals_outside_elements_are_skipped() -> None:
    source = 'const label = "<chip name=\'FAKE\' />"\n<chip name="REAL" />\n'

    assert parse_design(source).component_names() == ("REAL",)


def test_unterminated_element_keeps_attributes_read_so_far() -> None:
    elements = scan_elements('<board>\n  <chip name="U1" footprint="soic8"')

    assert [element.tag for element in elements] == ["board", "chip"]
    assert elements[1].string_attribute("name") == "U1"
    assert elements[1].line == 2


def test_outer_end_covers_children() -> None:
    source = '<group name="G1"><resistor name="R1" /></group>'
    group = scan_elements(source)[0]

    assert not group.self_closing
    assert group.outer_end == len(source)


def test_malformed_input_never_raises() -> None:
    for source in ["<", "</", "<chip name=", "<chip name={{ a: ", "<trace from='x", "``", "/*"]:
        parse_design(source)
