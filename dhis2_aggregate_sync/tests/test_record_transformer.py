from types import MappingProxyType

import pytest

from d2d_library.data_point import DataPoint
from d2d_library.dhis2_mapping_resolver import MappingTables
from d2d_library.dhis2_record_transformer import DataValueTransformer
from d2d_library.errors import ExtractDecodeError

HEADER = "dataelement,period,orgunit,categoryoptioncombo,attributeoptioncombo,value,storedby,lastupdated,comment,followup"


def make_tables(org_units=None, combos=None, attributes=None) -> MappingTables:
    return MappingTables(
        org_units=MappingProxyType({"U1": "U1m"} if org_units is None else org_units),
        combos=MappingProxyType({"A,B": "X,Y"} if combos is None else combos),
        attributes=MappingProxyType({"Z": "Zm"} if attributes is None else attributes),
    )


def write_extract(tmp_path, *rows, header=HEADER):
    path = tmp_path / "section.csv"
    path.write_text("\n".join([header, *rows]) + "\n", encoding="utf-8")
    return path


def test_transform_remaps_all_identifiers(tmp_path):
    path = write_extract(tmp_path, "A,202401,U1,B,Z,5,admin,2024-02-01T10:00:00.000,,false")

    data_points = DataValueTransformer(make_tables()).transform(path)

    assert [dp.to_json() for dp in data_points] == [
        {
            "dataElement": "X",
            "period": "202401",
            "orgUnit": "U1m",
            "categoryOptionCombo": "Y",
            "attributeOptionCombo": "Zm",
            "value": "5",
        }
    ]
    assert all(dp.is_valid() for dp in data_points)


def test_transform_drops_row_with_unmapped_org_unit(tmp_path):
    path = write_extract(tmp_path, "A,202401,U1,B,Z,5,admin,2024-02-01T10:00:00.000,,false")

    data_points = DataValueTransformer(make_tables(org_units={"U2": "U2m"})).transform(path)

    assert data_points == []


@pytest.mark.parametrize(
    "tables",
    [
        make_tables(combos={"A,C": "X,Y"}),
        make_tables(attributes={"W": "Wm"}),
        make_tables(combos={}, org_units={}, attributes={}),
    ],
)
def test_transform_drops_unmapped_rows(tmp_path, tables):
    path = write_extract(tmp_path, "A,202401,U1,B,Z,5,,,,")

    data_points, summary = DataValueTransformer(tables).transform_with_summary(path)

    assert data_points == []
    assert summary.rows == 1
    assert summary.dropped_unmapped == 1


def test_transform_drops_malformed_combo_mapping(tmp_path, mock_current_run):
    path = write_extract(tmp_path, "A,202401,U1,B,Z,5,,,,", "C,202401,U1,D,Z,7,,,,")
    tables = make_tables(combos={"A,B": "X", "C,D": "P,Q"})

    data_points, summary = DataValueTransformer(tables).transform_with_summary(path)

    assert [(dp.dataElement, dp.categoryOptionCombo, dp.value) for dp in data_points] == [("P", "Q", "7")]
    assert summary.malformed_combos == 1
    assert summary.dropped_unmapped == 1
    assert any(level == "warning" and "malformed combo" in msg for level, msg in mock_current_run.messages)


def test_transform_header_is_case_insensitive(tmp_path):
    header = "DataElement,Period,OrgUnit,CategoryOptionCombo,AttributeOptionCombo,Value"
    path = write_extract(tmp_path, "A,202401,U1,B,Z,5", header=header)

    data_points = DataValueTransformer(make_tables()).transform(path)

    assert data_points == [
        DataPoint(
            {
                "DX_UID": "X",
                "PERIOD": "202401",
                "ORG_UNIT": "U1m",
                "CATEGORY_OPTION_COMBO": "Y",
                "ATTRIBUTE_OPTION_COMBO": "Zm",
                "VALUE": "5",
            }
        )
    ]


def test_transform_keeps_extract_order(tmp_path):
    org_units = {f"U{i}": f"U{i}m" for i in range(20)}
    rows = [f"A,202401,U{i},B,Z,{i},,,," for i in reversed(range(20))]
    path = write_extract(tmp_path, *rows)

    data_points = DataValueTransformer(make_tables(org_units=org_units)).transform(path)

    assert [dp.value for dp in data_points] == [str(i) for i in reversed(range(20))]
    assert [dp.orgUnit for dp in data_points] == [f"U{i}m" for i in reversed(range(20))]


def test_transform_drops_rows_without_value(tmp_path):
    path = write_extract(tmp_path, "A,202401,U1,B,Z,,,,,", "A,202402,U1,B,Z,3,,,,")

    data_points, summary = DataValueTransformer(make_tables()).transform_with_summary(path)

    assert [dp.period for dp in data_points] == ["202402"]
    assert summary.dropped_incomplete == 1
    assert summary.records == 1


def test_transform_values_are_kept_as_text(tmp_path):
    path = write_extract(tmp_path, "A,202401,U1,B,Z,007,,,,", "A,202402,U1,B,Z,1.50,,,,")

    data_points = DataValueTransformer(make_tables()).transform(path)

    assert [dp.value for dp in data_points] == ["007", "1.50"]


def test_transform_header_only_extract(tmp_path):
    path = write_extract(tmp_path)

    assert DataValueTransformer(make_tables()).transform(path) == []


def test_transform_empty_extract(tmp_path):
    path = tmp_path / "section.csv"
    path.write_bytes(b"")

    assert DataValueTransformer(make_tables()).transform(path) == []


def test_transform_missing_columns(tmp_path):
    path = write_extract(tmp_path, "A,202401,U1,5", header="dataelement,period,orgunit,value")

    with pytest.raises(ExtractDecodeError, match="categoryoptioncombo"):
        DataValueTransformer(make_tables()).transform(path)


def test_transform_missing_file(tmp_path):
    with pytest.raises(ExtractDecodeError):
        DataValueTransformer(make_tables()).transform(tmp_path / "missing.csv")
