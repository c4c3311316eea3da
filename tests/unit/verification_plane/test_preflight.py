"""Unit tests for the connectivity preflight analyzer."""

from __future__ import annotations

import pytest

from circuitforge_repair.constants import PREFLIGHT_SEVERITY
from circuitforge_repair.domain.diagnostics import DiagnosticSource
from circuitforge_repair.verification_plane.preflight import (
    ALIAS_PINS_BY_TAG,
    NetEndpoint,
    SelectorEndpoint,
    collect_preflight_diagnostics,
    parse_endpoint,
)
from circuitforge_repair.verification_plane.source_parser import parse_design

try:
    from hypothesis import given, settings
    from hypothesis import strategies as st
except ModuleNotFoundError:
    HYPOTHESIS_AVAILABLE = False
else:
    HYPOTHESIS_AVAILABLE = True


def _board(*lines: str) -> str:
    return "<board>\n" + "\n".join(f"  {line}" for line in lines) + "\n</board>\n"


def _categories(source: str) -> list[str]:
    return [item.category for item in collect_preflight_diagnostics(source)]


def test_trace_without_to_reports_missing_endpoint_once() -> None:
    source = _board('<chip name="U1" />', '<trace from=".U1 > .OUT" />')

    diagnostics = collect_preflight_diagnostics(source)

    assert len(diagnostics) == 1
    diagnostic = diagnostics[0]
    assert diagnostic.category == "source_trace_missing_endpoint"
    assert diagnostic.message == "Trace is missing from/to endpoint."
    assert diagnostic.severity == PREFLIGHT_SEVERITY
    assert diagnostic.source is DiagnosticSource.DESIGN_SOURCE
    assert diagnostic.signature == "connectivity|source_trace_missing_endpoint|trace@3:1"


def test_malformed_selector_is_reported_for_that_endpoint_only() -> None:
    source = _board(
        '<chip name="U1" />',
        '<chip name="U2" />',
        '<trace from=".U1 .OUT" to=".U2 > .IN" />',
    )

    diagnostics = collect_preflight_diagnostics(source)

    assert [item.category for item in diagnostics] == ["source_trace_invalid_selector"]
    assert diagnostics[0].signature.endswith("|from")
    assert '".U1 .OUT"' in diagnostics[0].message


def test_empty_source_has_no_diagnostics() -> None:
    assert collect_preflight_diagnostics("") == []
    assert collect_preflight_diagnostics("   \n") == []


def test_polarized_alias_pins_are_valid() -> None:
    source = _board(
        '<led name="LED1" />',
        '<battery name="B1" />',
        '<trace from=".LED1 > .anode" to=".B1 > .positive" />',
        '<trace from=".LED1 > .CATHODE" to=".B1 > .neg" />',
    )

    assert collect_preflight_diagnostics(source) == []


def test_pin_matching_ignores_case() -> None:
    source = _board('<resistor name="R1" />', '<trace from=".R1 > .PIN1" to=".R1 > .Pin2" />')

    assert collect_preflight_diagnostics(source) == []


def test_unknown_pin_on_known_tag() -> None:
    source = _board('<resistor name="R1" />', '<trace from=".R1 > .pin1" to=".R1 > .pin3" />')

    diagnostics = collect_preflight_diagnostics(source)

    assert [item.category for item in diagnostics] == ["source_trace_unknown_pin"]
    assert diagnostics[0].message == 'Trace references unknown pin "pin3" on component "R1".'


def test_unknown_component() -> None:
    source = _board('<resistor name="R1" />', '<trace from=".R9 > .pin1" to=".R1 > .pin1" />')

    assert _categories(source) == ["source_trace_unknown_component"]


def test_pin_labels_extend_valid_pins() -> None:
    source = _board(
        '<chip name="U1" pinLabels={{ pin1: "VIN", pin2: "GND" }} />',
        '<trace from=".U1 > .vin" to=".U1 > .pin2" />',
        '<trace from=".U1 > .OUT" to="net.GND" />',
    )

    diagnostics = collect_preflight_diagnostics(source)

    assert [item.category for item in diagnostics] == ["source_trace_unknown_pin"]
    assert '"OUT"' in diagnostics[0].message


def test_alias_pins_stay_valid_alongside_pin_labels() -> None:
    source = _board(
        '<led name="D1" pinLabels={{ pin1: "A", pin2: "K" }} />',
        '<battery name="B1" pinLabels={{ pin1: "PLUS", pin2: "MINUS" }} />',
        '<trace from=".D1 > .anode" to=".D1 > .cathode" />',
        '<trace from=".B1 > .positive" to=".B1 > .NEGATIVE" />',
        '<trace from=".D1 > .k" to=".B1 > .minus" />',
    )

    assert collect_preflight_diagnostics(source) == []


def test_pin_labels_replace_default_pins_but_not_aliases() -> None:
    source = _board(
        '<led name="D1" pinLabels={{ pin1: "A", pin2: "K" }} />',
        '<trace from=".D1 > .anode" to=".D1 > .pin3" />',
    )

    diagnostics = collect_preflight_diagnostics(source)

    assert [item.category for item in diagnostics] == ["source_trace_unknown_pin"]
    assert '"pin3"' in diagnostics[0].message


def test_chip_without_pin_labels_is_not_checked() -> None:
    source = _board('<chip name="U1" />', '<trace from=".U1 > .ANYTHING" to="net.VCC" />')

    assert collect_preflight_diagnostics(source) == []


def test_net_endpoints_are_valid_unless_malformed() -> None:
    source = _board('<trace from="net.VCC" to="net.GND" />', '<trace from="net.VCC" to="net.1bad" />')

    assert _categories(source) == ["source_trace_invalid_selector"]


def test_dynamic_endpoint_is_neither_missing_nor_checked() -> None:
    source = _board('<resistor name="R1" />', '<trace from={refs.input} to=".R1 > .pin1" />')

    assert collect_preflight_diagnostics(source) == []


def test_accepts_a_parsed_model() -> None:
    source = _board('<trace to="net.VCC" />')

    assert _categories(source) == [
        item.category for item in collect_preflight_diagnostics(parse_design(source))
    ]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("net.VCC", NetEndpoint("VCC")),
        (".U1 > .OUT", SelectorEndpoint("U1", "OUT")),
        (" .U1>.OUT ", SelectorEndpoint("U1", "OUT")),
        (".U1 .OUT", None),
        ("U1 > OUT", None),
        ("net.", None),
        ("net.3V3", None),
    ],
)
def test_parse_endpoint(raw: str, expected: object) -> None:
    assert parse_endpoint(raw) == expected


if HYPOTHESIS_AVAILABLE:

    def _random_case(draw: st.DrawFn, word: str) -> str:
        flags = draw(st.lists(st.booleans(), min_size=len(word), max_size=len(word)))
        return "".join(char.upper() if flag else char for char, flag in zip(word, flags))

    @settings(max_examples=40, deadline=None)
    @given(
        tag=st.sampled_from(("diode", "led", "battery")),
        labeled=st.booleans(),
        data=st.data(),
    )
    def test_alias_pins_never_produce_unknown_pin(
        tag: str, labeled: bool, data: st.DataObject
    ) -> None:
        alias = data.draw(st.sampled_from(ALIAS_PINS_BY_TAG[tag]))
        pin = _random_case(data.draw, alias)
        labels = ' pinLabels={{ pin1: "P", pin2: "N" }}' if labeled else ""
        source = _board(
            f'<{tag} name="D1"{labels} />', f'<trace from=".D1 > .{pin}" to="net.GND" />'
        )

        assert collect_preflight_diagnostics(source) == []
