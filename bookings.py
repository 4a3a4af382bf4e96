"""
Booking engine: reservations, their lifecycle, reviews and the listing
rating rollup.

Every active (pending or confirmed) booking owns one ``booking_night``
document per night of its stay. The unique (listing_id, night) index on
that collection is what keeps two concurrent requests from booking the
same night; the overlap query in ``create_booking`` only produces the
friendly error in the common, uncontended case.
"""

import logging
import math
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Tuple

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from auth import Caller
from database import create_document, datetime_to_day, day_to_datetime, isoformat, to_object_id
from errors import (
    BadRequest,
    BookingRejected,
    Conflict,
    NotFound,
    PermissionDenied,
    ServiceUnavailable,
    ValidationFailed,
    field_error,
)
from listings import serialize_images, serialize_location
from schemas import ACTIVE_BOOKING_STATUSES, BookingCreate, BookingListType, BookingStatus, PaymentStatus

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)
NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]
RATING_UPDATE_ATTEMPTS = 10
# how long a claim whose booking is not written yet stays untouchable
CLAIM_GRACE = timedelta(minutes=5)
DEFAULT_CANCELLATION_REASON = "No reason provided"
DATES_UNAVAILABLE = "These dates are not available. Please choose different dates."

# target status -> status the booking must currently have
HOST_TRANSITIONS = {
    BookingStatus.confirmed.value: BookingStatus.pending.value,
    BookingStatus.completed.value: BookingStatus.confirmed.value,
}


def count_nights(check_in, check_out) -> int:
    return math.ceil((check_out - check_in).total_seconds() / ONE_DAY.total_seconds())


def calculate_total_amount(check_in, check_out, price: float) -> float:
    return count_nights(check_in, check_out) * price


def stay_nights(check_in: date, check_out: date) -> List[date]:
    return [check_in + timedelta(days=n) for n in range(count_nights(check_in, check_out))]


def rolled_up_rating(average: float, count: int, rating: int) -> Tuple[float, int]:
    new_count = count + 1
    return (average * count + rating) / new_count, new_count


def validate_stay_dates(check_in: date, check_out: date, today: date) -> None:
    errors = []
    if check_in < today:
        errors.append(field_error("checkIn", "Check-in date cannot be in the past"))
    if check_out <= check_in:
        errors.append(field_error("checkOut", "Check-out date must be after check-in date"))
    if errors:
        raise ValidationFailed(errors)


# Serialization

def _serialize_listing_summary(listing, listing_id) -> dict:
    if not listing:
        return {"id": str(listing_id)}
    return {
        "id": str(listing["_id"]),
        "title": listing.get("title"),
        "location": serialize_location(listing.get("location")),
        "images": serialize_images(listing.get("images")),
        "price": listing.get("price"),
        "host": str(listing.get("host_id")),
    }


def _serialize_guest(guest, guest_id) -> dict:
    if not guest:
        return {"id": str(guest_id)}
    return {"id": str(guest["_id"]), "name": guest.get("name"), "email": guest.get("email")}


def serialize_booking(doc, listing=None, guest=None) -> dict:
    guests = doc.get("guests") or {}
    review = doc.get("review")
    check_in, check_out = doc.get("check_in"), doc.get("check_out")
    return {
        "id": str(doc["_id"]),
        "listing": _serialize_listing_summary(listing, doc.get("listing_id")),
        "guest": _serialize_guest(guest, doc.get("guest_id")),
        "checkIn": isoformat(datetime_to_day(check_in)),
        "checkOut": isoformat(datetime_to_day(check_out)),
        "nights": count_nights(check_in, check_out),
        "guests": {
            "adults": guests.get("adults", 1),
            "children": guests.get("children", 0),
            "infants": guests.get("infants", 0),
        },
        "totalGuests": guests.get("adults", 1) + guests.get("children", 0) + guests.get("infants", 0),
        "totalAmount": doc.get("total_amount"),
        "status": doc.get("status"),
        "paymentStatus": doc.get("payment_status"),
        "specialRequests": doc.get("special_requests"),
        "cancellationReason": doc.get("cancellation_reason"),
        "review": {
            "rating": review.get("rating"),
            "comment": review.get("comment", ""),
            "reviewDate": isoformat(review.get("review_date")),
        } if review else None,
        "createdAt": isoformat(doc.get("created_at")),
        "updatedAt": isoformat(doc.get("updated_at")),
    }


def _joined(db: Database, doc, listing=None) -> dict:
    if listing is None:
        listing = db["listing"].find_one({"_id": doc["listing_id"]})
    guest = db["user"].find_one({"_id": doc["guest_id"]})
    return serialize_booking(doc, listing, guest)


# Night claims

def _new_claim(listing_id: ObjectId, booking_id: ObjectId, night: datetime, claimed_at: datetime) -> dict:
    return {"listing_id": listing_id, "night": night, "booking_id": booking_id, "claimed_at": claimed_at}


def _reclaim_stale_night(db: Database, listing_id: ObjectId, night: datetime, now: datetime) -> bool:
    """Drop the claim on ``night`` if nothing active stands behind it.

    A claim is stale when its booking has left the active set, or when its
    booking never got written and the claim is older than CLAIM_GRACE.
    Returns True when the night may be claimed again.
    """
    holder = db["booking_night"].find_one({"listing_id": listing_id, "night": night})
    if holder is None:
        return True
    booking = db["booking"].find_one({"_id": holder.get("booking_id")}, {"status": 1})
    if booking is not None:
        if booking.get("status") in ACTIVE_BOOKING_STATUSES:
            return False
        stale = {"_id": holder["_id"]}
    else:
        # the booking may still be on its way in
        stale = {"_id": holder["_id"], "$or": [
            {"claimed_at": {"$lt": now - CLAIM_GRACE}},
            {"claimed_at": {"$exists": False}},
        ]}
    if not db["booking_night"].delete_one(stale).deleted_count:
        return False
    logger.warning("Reclaimed stale night %s on listing %s from booking %s",
                   night.date(), listing_id, holder.get("booking_id"))
    return True


def _claim_night(db: Database, listing_id: ObjectId, booking_id: ObjectId, night: datetime,
                 claimed_at: datetime) -> None:
    try:
        db["booking_night"].insert_one(_new_claim(listing_id, booking_id, night, claimed_at))
        return
    except DuplicateKeyError:
        if not _reclaim_stale_night(db, listing_id, night, claimed_at):
            raise
    db["booking_night"].insert_one(_new_claim(listing_id, booking_id, night, claimed_at))


def _claim_nights(db: Database, listing_id: ObjectId, booking_id: ObjectId, nights: List[date]) -> None:
    # naive UTC, like every other datetime compared inside a query
    claimed_at = datetime.now(timezone.utc).replace(tzinfo=None)
    try:
        for night in nights:
            _claim_night(db, listing_id, booking_id, day_to_datetime(night), claimed_at)
    except DuplicateKeyError:
        _release_nights(db, booking_id)
        logger.warning("Booking %s lost a race for listing %s", booking_id, listing_id)
        raise Conflict(DATES_UNAVAILABLE)
    except PyMongoError:
        _release_nights(db, booking_id)
        raise


def _release_nights(db: Database, booking_id: ObjectId) -> None:
    db["booking_night"].delete_many({"booking_id": booking_id})


def _release_if_inactive(db: Database, doc) -> None:
    # a release that failed after a status change is finished on the next attempt
    if doc.get("status") not in ACTIVE_BOOKING_STATUSES:
        _release_nights(db, doc["_id"])


# Creation

def _check_listing_calendar(listing, check_in: date, check_out: date) -> None:
    availability = listing.get("availability") or {}
    window_start = datetime_to_day(availability.get("start_date"))
    window_end = datetime_to_day(availability.get("end_date"))
    if (window_start and check_in < window_start) or (window_end and check_out > window_end):
        raise Conflict("Listing is not available for the selected dates")
    blocked = {datetime_to_day(d) for d in availability.get("blocked_dates", [])}
    if blocked.intersection(stay_nights(check_in, check_out)):
        raise Conflict("Listing is not available for the selected dates")


def find_overlapping_booking(db: Database, listing_id: ObjectId, check_in: datetime, check_out: datetime):
    # [a, b) and [c, d) overlap iff a < d and c < b; a stay ending on another's
    # check-in day does not conflict
    return db["booking"].find_one({
        "listing_id": listing_id,
        "status": {"$in": list(ACTIVE_BOOKING_STATUSES)},
        "check_in": {"$lt": check_out},
        "check_out": {"$gt": check_in},
    })


def create_booking(db: Database, caller: Caller, payload: BookingCreate, today: Optional[date] = None) -> dict:
    listing_id = to_object_id(payload.listing_id, "listing")
    listing = db["listing"].find_one({"_id": listing_id})
    if not listing:
        raise NotFound("Listing not found")
    if not listing.get("is_active", True):
        raise BookingRejected("Listing is not available for booking")

    max_guests = listing.get("max_guests", 0)
    if payload.guests.total > max_guests:
        raise BookingRejected(f"This property can accommodate maximum {max_guests} guests")

    validate_stay_dates(payload.check_in, payload.check_out, today or datetime.now(timezone.utc).date())
    _check_listing_calendar(listing, payload.check_in, payload.check_out)

    check_in = day_to_datetime(payload.check_in)
    check_out = day_to_datetime(payload.check_out)
    if find_overlapping_booking(db, listing_id, check_in, check_out):
        logger.warning("Rejected overlapping booking on listing %s for %s", listing_id, caller.id)
        raise Conflict(DATES_UNAVAILABLE)

    booking_id = ObjectId()
    _claim_nights(db, listing_id, booking_id, stay_nights(payload.check_in, payload.check_out))

    doc = {
        "_id": booking_id,
        "listing_id": listing_id,
        "guest_id": caller.object_id,
        "check_in": check_in,
        "check_out": check_out,
        "guests": payload.guests.model_dump(),
        "total_amount": calculate_total_amount(payload.check_in, payload.check_out, listing.get("price", 0)),
        "status": BookingStatus.pending.value,
        "payment_status": PaymentStatus.pending.value,
        "special_requests": payload.special_requests,
        "cancellation_reason": None,
        "review": None,
    }
    try:
        create_document(db, "booking", doc)
    except PyMongoError:
        _release_nights(db, booking_id)
        raise

    logger.info("Booking %s created for listing %s by %s", booking_id, listing_id, caller.id)
    return _joined(db, doc, listing)


# Retrieval

def list_bookings(db: Database, caller: Caller, list_type: BookingListType = BookingListType.guest,
                  status: Optional[BookingStatus] = None) -> list:
    if list_type == BookingListType.host:
        owned = [doc["_id"] for doc in db["listing"].find({"host_id": caller.object_id}, {"_id": 1})]
        filter_q = {"listing_id": {"$in": owned}}
    else:
        filter_q = {"guest_id": caller.object_id}
    if status is not None:
        filter_q["status"] = status.value

    docs = list(db["booking"].find(filter_q).sort(NEWEST_FIRST))
    listing_ids = list({d["listing_id"] for d in docs})
    guest_ids = list({d["guest_id"] for d in docs})
    listings = {l["_id"]: l for l in db["listing"].find({"_id": {"$in": listing_ids}})}
    guests = {g["_id"]: g for g in db["user"].find({"_id": {"$in": guest_ids}})}
    return [serialize_booking(d, listings.get(d["listing_id"]), guests.get(d["guest_id"])) for d in docs]


def _load_booking(db: Database, booking_id: str):
    doc = db["booking"].find_one({"_id": to_object_id(booking_id, "booking")})
    if not doc:
        raise NotFound("Booking not found")
    listing = db["listing"].find_one({"_id": doc["listing_id"]})
    return doc, listing


def _is_guest(doc, caller: Caller) -> bool:
    return doc.get("guest_id") == caller.object_id


def _is_host(listing, caller: Caller) -> bool:
    return bool(listing) and listing.get("host_id") == caller.object_id


def get_booking(db: Database, caller: Caller, booking_id: str) -> dict:
    doc, listing = _load_booking(db, booking_id)
    if not (_is_guest(doc, caller) or _is_host(listing, caller)):
        raise PermissionDenied("Not authorized to view this booking")
    return _joined(db, doc, listing)


# Lifecycle

def _ensure_cancellable(status: str) -> None:
    if status == BookingStatus.cancelled.value:
        raise Conflict("Booking is already cancelled")
    if status == BookingStatus.completed.value:
        raise Conflict("Cannot cancel a completed booking")


def cancel_booking(db: Database, caller: Caller, booking_id: str, reason: Optional[str] = None) -> dict:
    doc, listing = _load_booking(db, booking_id)
    if not (_is_guest(doc, caller) or _is_host(listing, caller)):
        raise PermissionDenied("Not authorized to cancel this booking")
    _release_if_inactive(db, doc)
    _ensure_cancellable(doc.get("status"))

    now = datetime.now(timezone.utc)
    updated = db["booking"].find_one_and_update(
        {"_id": doc["_id"], "status": {"$in": list(ACTIVE_BOOKING_STATUSES)}},
        {"$set": {
            "status": BookingStatus.cancelled.value,
            "cancellation_reason": (reason or "").strip() or DEFAULT_CANCELLATION_REASON,
            "updated_at": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        # status changed between the read and the write
        current = db["booking"].find_one({"_id": doc["_id"]}, {"status": 1}) or {}
        _ensure_cancellable(current.get("status"))
        raise Conflict("Booking can no longer be cancelled")

    _release_nights(db, doc["_id"])
    logger.info("Booking %s cancelled by %s", doc["_id"], caller.id)
    return _joined(db, updated, listing)


def update_booking_status(db: Database, caller: Caller, booking_id: str, status: BookingStatus) -> dict:
    """Host-driven transitions: pending -> confirmed -> completed."""
    doc, listing = _load_booking(db, booking_id)
    if not _is_host(listing, caller):
        raise PermissionDenied("Only the host can update booking status")
    if status == BookingStatus.cancelled:
        return cancel_booking(db, caller, booking_id)
    if status.value not in HOST_TRANSITIONS:
        raise BadRequest(f"Cannot set booking status to {status.value}")

    required = HOST_TRANSITIONS[status.value]
    if doc.get("status") != required:
        _release_if_inactive(db, doc)
        raise Conflict(f"Cannot change booking status from {doc.get('status')} to {status.value}")

    updated = db["booking"].find_one_and_update(
        {"_id": doc["_id"], "status": required},
        {"$set": {"status": status.value, "updated_at": datetime.now(timezone.utc)}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise Conflict("Booking status changed, please reload and try again")

    if status == BookingStatus.completed:
        _release_nights(db, doc["_id"])
    logger.info("Booking %s moved to %s by %s", doc["_id"], status.value, caller.id)
    return _joined(db, updated, listing)


# Reviews

def roll_up_listing_rating(db: Database, listing_id: ObjectId, rating: int) -> Optional[dict]:
    """Fold ``rating`` into the listing's average.

    Each attempt is a compare-and-swap on ``rating.count``: every
    successful rollup increments it, so a match proves no other review
    landed in between. Returns the new rating, or None if the listing is
    gone. Raises ServiceUnavailable when every attempt lost the race.
    """
    for attempt in range(RATING_UPDATE_ATTEMPTS):
        listing = db["listing"].find_one({"_id": listing_id}, {"rating": 1})
        if listing is None:
            return None
        current = listing.get("rating") or {}
        average = float(current.get("average", 0))
        count = int(current.get("count", 0))
        new_average, new_count = rolled_up_rating(average, count, rating)

        expected_count = count if "count" in current else {"$exists": False}
        result = db["listing"].update_one(
            {"_id": listing_id, "rating.count": expected_count},
            {"$set": {"rating.average": new_average, "rating.count": new_count}},
        )
        if result.matched_count:
            return {"average": new_average, "count": new_count}
        logger.warning("Rating update on listing %s raced, retry %d", listing_id, attempt + 1)
    raise ServiceUnavailable()


def submit_review(db: Database, caller: Caller, booking_id: str, rating: int, comment: Optional[str] = None) -> dict:
    doc, listing = _load_booking(db, booking_id)
    if not _is_guest(doc, caller):
        raise PermissionDenied("Only guests can review bookings")
    if doc.get("status") != BookingStatus.completed.value:
        raise Conflict("Can only review completed bookings")
    if doc.get("review"):
        raise Conflict("Booking already reviewed")

    review = {"rating": rating, "comment": (comment or "").strip(), "review_date": datetime.now(timezone.utc)}
    updated = db["booking"].find_one_and_update(
        {"_id": doc["_id"], "guest_id": caller.object_id, "status": BookingStatus.completed.value, "review": None},
        {"$set": {"review": review, "updated_at": review["review_date"]}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise Conflict("Booking already reviewed")

    try:
        roll_up_listing_rating(db, doc["listing_id"], rating)
    except (ServiceUnavailable, PyMongoError):
        db["booking"].update_one({"_id": doc["_id"]}, {"$set": {"review": None}})
        raise

    logger.info("Booking %s reviewed with rating %d", doc["_id"], rating)
    return _joined(db, updated)
