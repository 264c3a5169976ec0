import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import polars as pl
from openhexa.sdk import current_run

from d2d_library.data_point import DataPoint
from d2d_library.dhis2_mapping_resolver import MappingTables
from d2d_library.errors import ExtractDecodeError

# dataValueSets.csv columns (lower-cased)
REQUIRED_COLUMNS = ["dataelement", "period", "categoryoptioncombo", "attributeoptioncombo", "orgunit", "value"]


@dataclass
class TransformSummary:
    """Row counts of a transformed extract."""

    rows: int = 0
    records: int = 0
    dropped_incomplete: int = 0  # empty period or value
    dropped_unmapped: int = 0
    malformed_combos: int = 0  # combo mapping found but not "dataElement,categoryOptionCombo"

    def __str__(self) -> str:
        return (
            f"rows: {self.rows} records: {self.records} dropped incomplete: {self.dropped_incomplete} "
            f"dropped unmapped: {self.dropped_unmapped} (malformed combos: {self.malformed_combos})"
        )


def _non_empty(column: str) -> pl.Expr:
    return pl.col(column).is_not_null() & (pl.col(column) != "")


class DataValueTransformer:
    """Remaps the data values of a remote extract to the destination DHIS2 identifiers.

    A row is kept only if its "dataElement,categoryOptionCombo" key, organisation unit and
    attribute option combo are all mapped, and the combo mapping splits back into a
    data element and a category option combo. Other rows are dropped, they are outside
    the scope of the mapping sets.
    """

    def __init__(self, tables: MappingTables, logger: logging.Logger | None = None):
        self.tables = tables
        self.logger = logger if logger else logging.getLogger(__name__)
        self._combos = self._lookup_frame(tables.combos, key="DE_COC_KEY", value="DE_COC")
        self._org_units = self._lookup_frame(tables.org_units, key="orgunit", value="ORG_UNIT")
        self._attributes = self._lookup_frame(
            tables.attributes, key="attributeoptioncombo", value="ATTRIBUTE_OPTION_COMBO"
        )

    def transform(self, extract_path: Path) -> list[DataPoint]:
        """Read the extract file and return the remapped data points, in extract order.

        Raises
        ------
        ExtractDecodeError
            If the extract can not be decoded, no data points are returned.
        """
        data_points, _ = self.transform_with_summary(extract_path)
        return data_points

    def transform_with_summary(self, extract_path: Path) -> tuple[list[DataPoint], TransformSummary]:
        raw_data = self._read_extract(extract_path)
        summary = TransformSummary(rows=raw_data.height)
        if raw_data.is_empty():
            return [], summary

        complete = raw_data.filter(_non_empty("period") & _non_empty("value"))
        summary.dropped_incomplete = raw_data.height - complete.height

        mapped = (
            complete.with_row_index("ROW_ID")
            .with_columns(
                pl.concat_str([pl.col("dataelement"), pl.col("categoryoptioncombo")], separator=",").alias(
                    "DE_COC_KEY"
                )
            )
            .join(self._combos, on="DE_COC_KEY", how="left")
            .join(self._org_units, on="orgunit", how="left")
            .join(self._attributes, on="attributeoptioncombo", how="left")
            .sort("ROW_ID")
            .with_columns(
                pl.col("DE_COC")
                .str.split_exact(",", 1)
                .struct.rename_fields(["DX_UID", "CATEGORY_OPTION_COMBO"])
                .alias("DE_COC_SPLIT")
            )
            .unnest("DE_COC_SPLIT")
        )

        valid_split = _non_empty("DX_UID") & _non_empty("CATEGORY_OPTION_COMBO")
        summary.malformed_combos = mapped.filter(_non_empty("DE_COC") & ~valid_split).height

        selected = mapped.filter(
            _non_empty("DE_COC") & valid_split & _non_empty("ORG_UNIT") & _non_empty("ATTRIBUTE_OPTION_COMBO")
        ).select(
            pl.col("DX_UID"),
            pl.col("period").alias("PERIOD"),
            pl.col("ORG_UNIT"),
            pl.col("CATEGORY_OPTION_COMBO"),
            pl.col("ATTRIBUTE_OPTION_COMBO"),
            pl.col("value").alias("VALUE"),
        )
        summary.records = selected.height
        summary.dropped_unmapped = complete.height - selected.height

        if summary.malformed_combos > 0:
            msg = f"{summary.malformed_combos} rows dropped with a malformed combo mapping in {extract_path.name}."
            current_run.log_warning(msg)
            self.logger.warning(msg)
        self.logger.info(f"Extract {extract_path.name} transformed, {summary}")

        return [DataPoint(row) for row in selected.iter_rows(named=True)], summary

    @staticmethod
    def _read_extract(extract_path: Path) -> pl.DataFrame:
        """Decode the CSV extract, all columns as strings with lower-cased names."""
        try:
            raw_data = pl.read_csv(extract_path, infer_schema_length=0, raise_if_empty=False)
            if raw_data.width == 0:
                return pl.DataFrame(schema={c: pl.String for c in REQUIRED_COLUMNS})
            raw_data = raw_data.rename({c: c.strip().lower() for c in raw_data.columns})
        except (pl.exceptions.PolarsError, OSError, ValueError) as e:
            raise ExtractDecodeError(f"Error decoding extract {extract_path}: {e}") from e

        missing = [c for c in REQUIRED_COLUMNS if c not in raw_data.columns]
        if missing:
            raise ExtractDecodeError(f"Extract {extract_path.name} is missing columns: {', '.join(missing)}")

        return raw_data.select(REQUIRED_COLUMNS)

    @staticmethod
    def _lookup_frame(table: Mapping[str, str], key: str, value: str) -> pl.DataFrame:
        return pl.DataFrame(
            {key: list(table.keys()), value: list(table.values())},
            schema={key: pl.String, value: pl.String},
        )
