import logging
import math
import re
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from bson import ObjectId
from pymongo import DESCENDING
from pymongo.database import Database

from auth import Caller
from database import create_document, datetime_to_day, isoformat, to_object_id, to_storage
from errors import NotFound, PermissionDenied, ValidationFailed, field_error
from schemas import ListingCreate, ListingSearch, ListingUpdate

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


def serialize_host(doc) -> Optional[dict]:
    if not doc:
        return None
    return {
        "id": str(doc["_id"]),
        "name": doc.get("name"),
        "avatarUrl": doc.get("avatar_url"),
        "bio": doc.get("bio"),
        "joinedAt": isoformat(doc.get("joined_at")),
    }


def serialize_location(location: Optional[dict]) -> dict:
    location = location or {}
    coordinates = location.get("coordinates")
    return {
        "address": location.get("address"),
        "city": location.get("city"),
        "state": location.get("state"),
        "country": location.get("country"),
        "zipCode": location.get("zip_code"),
        "coordinates": {
            "latitude": coordinates.get("latitude"),
            "longitude": coordinates.get("longitude"),
        } if coordinates else None,
    }


def serialize_images(images: Optional[Iterable[dict]]) -> list:
    return [{"url": img.get("url"), "caption": img.get("caption", "")} for img in images or []]


def serialize_listing(doc, host: Optional[dict] = None) -> dict:
    availability = doc.get("availability") or {}
    rules = doc.get("rules") or {}
    rating = doc.get("rating") or {}
    return {
        "id": str(doc["_id"]),
        "title": doc.get("title"),
        "description": doc.get("description"),
        "price": doc.get("price"),
        "location": serialize_location(doc.get("location")),
        "images": serialize_images(doc.get("images")),
        "amenities": list(doc.get("amenities", [])),
        "propertyType": doc.get("property_type"),
        "roomType": doc.get("room_type"),
        "maxGuests": doc.get("max_guests"),
        "bedrooms": doc.get("bedrooms"),
        "bathrooms": doc.get("bathrooms"),
        "host": serialize_host(host) if host else {"id": str(doc.get("host_id"))},
        "availability": {
            "startDate": isoformat(datetime_to_day(availability.get("start_date"))),
            "endDate": isoformat(datetime_to_day(availability.get("end_date"))),
            "blockedDates": [isoformat(datetime_to_day(d)) for d in availability.get("blocked_dates", [])],
        },
        "rules": {
            "checkIn": rules.get("check_in"),
            "checkOut": rules.get("check_out"),
            "smokingAllowed": bool(rules.get("smoking_allowed", False)),
            "petsAllowed": bool(rules.get("pets_allowed", False)),
            "partiesAllowed": bool(rules.get("parties_allowed", False)),
        },
        "rating": {
            "average": round(float(rating.get("average", 0)), 2),
            "count": int(rating.get("count", 0)),
        },
        "isActive": bool(doc.get("is_active", True)),
        "createdAt": isoformat(doc.get("created_at")),
        "updatedAt": isoformat(doc.get("updated_at")),
    }


def _hosts_by_id(db: Database, listings: list) -> Dict[ObjectId, dict]:
    host_ids = list({doc["host_id"] for doc in listings if doc.get("host_id")})
    if not host_ids:
        return {}
    return {host["_id"]: host for host in db["user"].find({"_id": {"$in": host_ids}})}


def build_search_filter(params: ListingSearch) -> dict:
    filter_q = {"is_active": True}
    if params.city and params.city.strip():
        filter_q["location.city"] = {"$regex": re.escape(params.city.strip()), "$options": "i"}
    price = {}
    if params.min_price is not None:
        price["$gte"] = params.min_price
    if params.max_price is not None:
        price["$lte"] = params.max_price
    if price:
        filter_q["price"] = price
    if params.guests is not None:
        filter_q["max_guests"] = {"$gte": params.guests}
    if params.property_type is not None:
        filter_q["property_type"] = params.property_type.value
    return filter_q


def paginate(total: int, page: int, limit: int) -> dict:
    total_pages = math.ceil(total / limit)
    return {
        "currentPage": page,
        "totalPages": total_pages,
        "totalListings": total,
        "hasNextPage": page < total_pages,
        "hasPreviousPage": page > 1,
    }


def search_listings(db: Database, params: ListingSearch) -> dict:
    if params.min_price is not None and params.max_price is not None and params.min_price > params.max_price:
        raise ValidationFailed([field_error("minPrice", "Min price cannot exceed max price")])

    filter_q = build_search_filter(params)
    skip = (params.page - 1) * params.limit
    docs = list(db["listing"].find(filter_q).sort(NEWEST_FIRST).skip(skip).limit(params.limit))
    total = db["listing"].count_documents(filter_q)
    hosts = _hosts_by_id(db, docs)
    return {
        "listings": [serialize_listing(d, hosts.get(d.get("host_id"))) for d in docs],
        "pagination": paginate(total, params.page, params.limit),
    }


def get_listing(db: Database, listing_id: str) -> dict:
    """Public fetch: inactive listings are hidden as if missing."""
    doc = db["listing"].find_one({"_id": to_object_id(listing_id, "listing")})
    if not doc:
        raise NotFound("Listing not found")
    if not doc.get("is_active", True):
        raise NotFound("Listing is not available")
    host = db["user"].find_one({"_id": doc.get("host_id")})
    return serialize_listing(doc, host)


def list_host_listings(db: Database, caller: Caller) -> list:
    docs = db["listing"].find({"host_id": caller.object_id}).sort(NEWEST_FIRST)
    return [serialize_listing(d) for d in docs]


def create_listing(db: Database, caller: Caller, payload: ListingCreate) -> dict:
    doc = to_storage(payload.model_dump())
    doc.update({
        "host_id": caller.object_id,
        "rating": {"average": 0.0, "count": 0},
        "is_active": True,
    })
    listing_id = create_document(db, "listing", doc)
    logger.info("Host %s created listing %s", caller.id, listing_id)
    host = db["user"].find_one({"_id": caller.object_id})
    return serialize_listing(doc, host)


def _owned_listing(db: Database, caller: Caller, listing_id: str, action: str) -> dict:
    doc = db["listing"].find_one({"_id": to_object_id(listing_id, "listing")})
    if not doc:
        raise NotFound("Listing not found")
    if doc.get("host_id") != caller.object_id:
        raise PermissionDenied(f"Not authorized to {action} this listing")
    return doc


def update_listing(db: Database, caller: Caller, listing_id: str, payload: ListingUpdate) -> dict:
    doc = _owned_listing(db, caller, listing_id, "update")

    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    new_images = changes.pop("images", None)
    update = {"$set": dict(to_storage(changes), updated_at=datetime.now(timezone.utc))}
    if new_images:
        update["$push"] = {"images": {"$each": to_storage(new_images)}}

    db["listing"].update_one({"_id": doc["_id"]}, update)
    updated = db["listing"].find_one({"_id": doc["_id"]})
    host = db["user"].find_one({"_id": caller.object_id})
    return serialize_listing(updated, host)


def delete_listing(db: Database, caller: Caller, listing_id: str) -> None:
    doc = _owned_listing(db, caller, listing_id, "delete")
    db["listing"].delete_one({"_id": doc["_id"]})
    db["booking_night"].delete_many({"listing_id": doc["_id"]})
    logger.info("Host %s deleted listing %s", caller.id, doc["_id"])
