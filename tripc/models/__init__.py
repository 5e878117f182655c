# Import every model so Base.metadata is complete (Alembic, tests, create_all)
from tripc.models.user import User  # noqa: F401
from tripc.models.resource import Resource, SlotCapacity, BlockedDate  # noqa: F401
from tripc.models.booking import Booking, BookingSlot  # noqa: F401
from tripc.models.booking_event import BookingEvent  # noqa: F401
from tripc.models.payment import PaymentTransaction  # noqa: F401
from tripc.models.voucher import Voucher, UserVoucher  # noqa: F401
from tripc.models.ledger import LedgerEntry  # noqa: F401
from tripc.models.email_log import EmailLog  # noqa: F401
from tripc.models.setting import Setting  # noqa: F401
from tripc.models.shop_order import ShopOrder, ShopOrderItem  # noqa: F401
