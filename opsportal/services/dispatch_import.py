"""
Planning sheet import.

Parses the weekly planning spreadsheet as pasted from Excel (tab separated)
into branch plans for manifest creation:

- row 0 carries branch names, each followed within 15 columns by a
  "Total" column on row 1
- rows 2+ carry the item (recipe) name in column B and quantities
- quantities may contain thousands separators or trailing text; only the
  first number is used and rows with nothing positive are dropped
"""
import csv
import io
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from opsportal.config import settings
from opsportal.schemas.dispatch import BranchPlan, DispatchItemPlan
from opsportal.services.dispatch_errors import DispatchValidationError
from opsportal.services.dispatch_unit_mappings import get_item_unit


logger = logging.getLogger(__name__)

TOTAL_SEARCH_WINDOW = 15
ITEM_NAME_COLUMN = 1
ITEM_HEADER = "recipe"


@dataclass
class SheetImport:
    branches: List[BranchPlan] = field(default_factory=list)
    unmatched_columns: List[str] = field(default_factory=list)

    @property
    def total_items(self) -> int:
        return sum(len(branch.items) for branch in self.branches)


def parse_quantity(raw: Optional[str]) -> float:
    """Parse a sheet cell as a quantity; unreadable or non-finite cells count as 0."""
    cleaned = (raw or "").replace(",", "").strip()
    if not cleaned:
        return 0.0
    try:
        value = float(cleaned.split()[0])
    except ValueError:
        return 0.0
    return value if math.isfinite(value) else 0.0


def find_total_columns(branch_row: List[str], total_row: List[str], aliases: Dict[str, str]) -> Dict[str, int]:
    """Map each recognised branch header to the index of its Total column."""
    columns: Dict[str, int] = {}
    for index, header in enumerate(branch_row):
        name = header.strip()
        if name not in aliases or name in columns:
            continue
        for i in range(index, min(index + TOTAL_SEARCH_WINDOW, len(total_row))):
            if total_row[i].strip().lower() == "total":
                columns[name] = i
                break
    return columns


def parse_planning_sheet(raw_text: str, aliases: Optional[Dict[str, str]] = None) -> SheetImport:
    """
    Turn pasted sheet text into branch plans.

    Raises:
        DispatchValidationError: If the sheet has no data rows or no branch
            with a Total column.
    """
    aliases = aliases or settings.DISPATCH_BRANCH_ALIASES
    rows = list(csv.reader(io.StringIO(raw_text.strip("\r\n")), delimiter="\t", quoting=csv.QUOTE_NONE))

    if len(rows) < 3:
        raise DispatchValidationError("Sheet must have two header rows and at least one item row")

    branch_row, total_row = rows[0], rows[1]
    total_columns = find_total_columns(branch_row, total_row, aliases)
    if not total_columns:
        raise DispatchValidationError(
            "No branches with Total columns found. Make sure branch names like "
            "Soufouh, DIP, Sharja are in the header and each has a \"Total\" column."
        )

    unmatched = [
        header.strip() for header in branch_row[ITEM_NAME_COLUMN + 1:]
        if header.strip() and header.strip() not in aliases
    ]

    plans: Dict[str, List[DispatchItemPlan]] = {name: [] for name in total_columns}
    for row in rows[2:]:
        if len(row) <= ITEM_NAME_COLUMN:
            continue
        item_name = row[ITEM_NAME_COLUMN].strip()
        if not item_name or item_name.lower() == ITEM_HEADER:
            continue

        for branch_name, column in total_columns.items():
            quantity = parse_quantity(row[column] if column < len(row) else "")
            if quantity > 0:
                plans[branch_name].append(DispatchItemPlan(
                    name=item_name,
                    quantity=quantity,
                    unit=get_item_unit(item_name),
                ))

    result = SheetImport(unmatched_columns=unmatched)
    for branch_name, items in plans.items():
        if not items:
            continue
        result.branches.append(BranchPlan(
            branch_slug=aliases[branch_name],
            branch_name=branch_name,
            items=items,
        ))

    logger.info(
        "Parsed planning sheet: %d branches, %d items",
        len(result.branches), result.total_items,
    )
    return result
