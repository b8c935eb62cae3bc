from racestay.schemas.booking import BookingCreate, BookingResponse, BookingListResponse
from racestay.schemas.points import BalanceResponse, PointsSummaryResponse, PointsHistoryResponse
from racestay.schemas.availability import CalendarResponse, BlockDatesRequest
from racestay.schemas.webhook import SubscriptionEvent, WebhookResult

__all__ = [
    "BookingCreate", "BookingResponse", "BookingListResponse",
    "BalanceResponse", "PointsSummaryResponse", "PointsHistoryResponse",
    "CalendarResponse", "BlockDatesRequest",
    "SubscriptionEvent", "WebhookResult",
]
