"""
Blocked date ranges: the pure validator used by every slot mutation, and
the admin service that authors the ranges.
"""

from datetime import date, datetime
from typing import Iterable, List, Optional, Union

from db.store import CalendarStore
from models.blocked_date import BlockedDate, BlockedDateCreate
from models.slot import Slot
from utils.datetime_utils import parse_calendar_date
from utils.exceptions import BlockedSlotError, ValidationError
from utils.logging_config import get_logger

logger = get_logger(__name__)


def is_blocked(
    day: Union[date, datetime, str], blocked_ranges: Iterable[BlockedDate]
) -> bool:
    """
    True when ``day`` lies inside any blocked range (inclusive).

    The range's scope tag only records how it was authored and plays no
    part here.
    """
    target = parse_calendar_date(day)
    return any(block.contains(target) for block in blocked_ranges)


def find_blocking_range(
    day: Union[date, datetime, str], blocked_ranges: Iterable[BlockedDate]
) -> Optional[BlockedDate]:
    target = parse_calendar_date(day)
    for block in blocked_ranges:
        if block.contains(target):
            return block
    return None


def assert_not_blocked(slot: Slot, blocked_ranges: Iterable[BlockedDate]) -> None:
    """
    Raises:
        BlockedSlotError: The slot's date is inside a blocked range
    """
    block = find_blocking_range(slot.date, blocked_ranges)
    if block is not None:
        reason = f" ({block.reason})" if block.reason else ""
        raise BlockedSlotError(
            f"Slot {slot.date} {slot.time} is inside blocked range "
            f"{block.start_date} to {block.end_date}{reason}."
        )


class BlockService:
    """Admin authoring of blocked date ranges."""

    def __init__(self, store: CalendarStore):
        self.store = store

    async def list_blocked_dates(self) -> List[BlockedDate]:
        return await self.store.list_blocked_dates()

    async def create_blocked_date(
        self,
        start_date: Union[date, str],
        end_date: Union[date, str],
        reason: Optional[str] = None,
        scope: str = "range",
    ) -> BlockedDate:
        try:
            block_data = BlockedDateCreate(
                start_date=parse_calendar_date(start_date),
                end_date=parse_calendar_date(end_date),
                reason=reason,
                scope=scope,
            )
        except ValueError as e:
            raise ValidationError(str(e)) from e
        return await self._create(block_data)

    async def block_single_day(self, day: Union[date, str], reason: Optional[str] = None) -> BlockedDate:
        return await self._create(
            BlockedDateCreate.single_day(parse_calendar_date(day), reason)
        )

    async def block_month(self, year: int, month: int, reason: Optional[str] = None) -> BlockedDate:
        if not 1 <= month <= 12:
            raise ValidationError(f"Invalid month: {month}")
        return await self._create(BlockedDateCreate.whole_month(year, month, reason))

    async def delete_blocked_date(self, block_id: str) -> bool:
        deleted = await self.store.delete_blocked_date(block_id)
        if deleted:
            logger.info(f"Blocked range {block_id} removed")
        return deleted

    async def _create(self, block_data: BlockedDateCreate) -> BlockedDate:
        block = await self.store.create_blocked_date(block_data)
        logger.info(
            f"Blocked {block.start_date} to {block.end_date} "
            f"(scope={block.scope}, reason={block.reason or '-'})"
        )
        return block
