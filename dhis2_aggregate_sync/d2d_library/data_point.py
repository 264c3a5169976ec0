class DataPoint:
    """Helper class definition to store/create the correct DataValue JSON format for the dataValueSets import."""

    __slots__ = ("dataElement", "period", "orgUnit", "categoryOptionCombo", "attributeOptionCombo", "value")

    def __init__(self, row: dict):
        """Create a new data point instance.

        Parameters
        ----------
        row : dict
            Dictionary with keys: ['DX_UID', 'PERIOD', 'ORG_UNIT', 'CATEGORY_OPTION_COMBO',
            'ATTRIBUTE_OPTION_COMBO', 'VALUE']
        """
        self.dataElement = row.get("DX_UID")
        self.period = row.get("PERIOD")
        self.orgUnit = row.get("ORG_UNIT")
        self.categoryOptionCombo = row.get("CATEGORY_OPTION_COMBO")
        self.attributeOptionCombo = row.get("ATTRIBUTE_OPTION_COMBO")
        self.value = row.get("VALUE")

    def to_json(self) -> dict:
        """Return a dictionary representation of the data point suitable for DHIS2 JSON format.

        Returns
        -------
        dict
            A dictionary with keys corresponding to DHIS2 data value fields.
        """
        return {
            "dataElement": self.dataElement,
            "period": self.period,
            "orgUnit": self.orgUnit,
            "categoryOptionCombo": self.categoryOptionCombo,
            "attributeOptionCombo": self.attributeOptionCombo,
            "value": self.value,
        }

    def is_valid(self) -> bool:
        """Check if all attributes are set (not None nor empty)."""
        attributes = [
            self.dataElement,
            self.period,
            self.orgUnit,
            self.categoryOptionCombo,
            self.attributeOptionCombo,
            self.value,
        ]
        return all(attr is not None and attr != "" for attr in attributes)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DataPoint):
            return NotImplemented
        return self.to_json() == other.to_json()

    def __str__(self) -> str:
        return (
            f"DataPoint(dx:{self.dataElement} pe:{self.period} ou:{self.orgUnit} "
            f"coc:{self.categoryOptionCombo} aoc:{self.attributeOptionCombo} val:{self.value})"
        )
