"""Time helpers. The store keeps naive UTC timestamps."""
from datetime import datetime, timedelta

import pytz

EPOCH = datetime(1970, 1, 1)


def utcnow() -> datetime:
    """Current UTC time without tzinfo, matching the persisted columns."""
    return datetime.now(pytz.utc).replace(tzinfo=None)


def epoch_millis(moment: datetime) -> int:
    """Milliseconds since the epoch for a naive UTC datetime."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(pytz.utc).replace(tzinfo=None)
    return (moment - EPOCH) // timedelta(milliseconds=1)
