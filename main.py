import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Query, status
from fastapi.middleware.cors import CORSMiddleware
from pymongo.database import Database
from pymongo.errors import PyMongoError

import bookings
import listings
import users
from auth import Caller, get_current_user, hash_password, require_role
from database import DATABASE_NAME, create_document, db, ensure_indexes, get_db
from errors import register_exception_handlers
from schemas import (
    BookingCreate,
    BookingListType,
    BookingStatus,
    CancelRequest,
    ListingCreate,
    ListingSearch,
    ListingUpdate,
    LoginRequest,
    ProfileUpdate,
    PropertyType,
    RegisterRequest,
    ReviewRequest,
    StatusUpdate,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes(db)
    except PyMongoError as e:
        logger.error("Could not create indexes on %s: %s", DATABASE_NAME, e)
    yield


# App setup
app = FastAPI(title="StayFinder API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.getenv("CLIENT_URL", "http://localhost:5173")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)


# Routes
@app.get("/")
def root():
    return {"message": "StayFinder API"}


@app.get("/health")
def health():
    return {"status": "OK", "message": "StayFinder API is running", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/test")
def test_database(database: Database = Depends(get_db)):
    try:
        collections = database.list_collection_names()
        return {"backend": "ok", "database": "ok", "collections": collections}
    except PyMongoError as e:
        return {"backend": "ok", "database": f"error: {str(e)[:80]}"}


# Auth
@app.post("/auth/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, database: Database = Depends(get_db)):
    return users.register_user(database, payload)


@app.post("/auth/login")
def login(payload: LoginRequest, database: Database = Depends(get_db)):
    return users.login_user(database, payload)


@app.get("/auth/me")
def me(caller: Caller = Depends(get_current_user), database: Database = Depends(get_db)):
    return {"user": users.get_me(database, caller)}


# Users
@app.put("/users/profile")
def update_profile(payload: ProfileUpdate, caller: Caller = Depends(get_current_user),
                   database: Database = Depends(get_db)):
    return {"message": "Profile updated successfully", "user": users.update_profile(database, caller, payload)}


@app.get("/users/{user_id}")
def public_profile(user_id: str, database: Database = Depends(get_db)):
    return {"user": users.get_public_profile(database, user_id)}


# Listings
# /listings/host/my-listings must be declared before /listings/{listing_id}
@app.get("/listings/host/my-listings")
def my_listings(caller: Caller = Depends(require_role("host")), database: Database = Depends(get_db)):
    return {"listings": listings.list_host_listings(database, caller)}


@app.get("/listings")
def search_listings(
    city: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    guests: Optional[int] = Query(None, ge=1),
    property_type: Optional[PropertyType] = Query(None, alias="propertyType"),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=50),
    database: Database = Depends(get_db),
):
    params = ListingSearch(
        city=city,
        min_price=min_price,
        max_price=max_price,
        guests=guests,
        property_type=property_type,
        page=page,
        limit=limit,
    )
    return listings.search_listings(database, params)


@app.get("/listings/{listing_id}")
def get_listing(listing_id: str, database: Database = Depends(get_db)):
    return {"listing": listings.get_listing(database, listing_id)}


@app.post("/listings", status_code=status.HTTP_201_CREATED)
def create_listing(payload: ListingCreate, caller: Caller = Depends(require_role("host")),
                   database: Database = Depends(get_db)):
    listing = listings.create_listing(database, caller, payload)
    return {"message": "Listing created successfully", "listing": listing}


@app.put("/listings/{listing_id}")
def update_listing(listing_id: str, payload: ListingUpdate, caller: Caller = Depends(get_current_user),
                   database: Database = Depends(get_db)):
    listing = listings.update_listing(database, caller, listing_id, payload)
    return {"message": "Listing updated successfully", "listing": listing}


@app.delete("/listings/{listing_id}")
def delete_listing(listing_id: str, caller: Caller = Depends(get_current_user),
                   database: Database = Depends(get_db)):
    listings.delete_listing(database, caller, listing_id)
    return {"message": "Listing deleted successfully"}


# Bookings
@app.post("/bookings", status_code=status.HTTP_201_CREATED)
def create_booking(payload: BookingCreate, caller: Caller = Depends(get_current_user),
                   database: Database = Depends(get_db)):
    booking = bookings.create_booking(database, caller, payload)
    return {"message": "Booking created successfully", "booking": booking}


@app.get("/bookings")
def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    list_type: BookingListType = Query(BookingListType.guest, alias="type"),
    caller: Caller = Depends(get_current_user),
    database: Database = Depends(get_db),
):
    return {"bookings": bookings.list_bookings(database, caller, list_type, status_filter)}


@app.get("/bookings/{booking_id}")
def get_booking(booking_id: str, caller: Caller = Depends(get_current_user),
                database: Database = Depends(get_db)):
    return {"booking": bookings.get_booking(database, caller, booking_id)}


@app.put("/bookings/{booking_id}/cancel")
def cancel_booking(booking_id: str, payload: Optional[CancelRequest] = None,
                   caller: Caller = Depends(get_current_user), database: Database = Depends(get_db)):
    reason = payload.reason if payload else None
    booking = bookings.cancel_booking(database, caller, booking_id, reason)
    return {"message": "Booking cancelled successfully", "booking": booking}


@app.put("/bookings/{booking_id}/status")
def update_booking_status(booking_id: str, payload: StatusUpdate, caller: Caller = Depends(get_current_user),
                          database: Database = Depends(get_db)):
    booking = bookings.update_booking_status(database, caller, booking_id, payload.status)
    return {"message": f"Booking {booking['status']}", "booking": booking}


@app.put("/bookings/{booking_id}/review")
def review_booking(booking_id: str, payload: ReviewRequest, caller: Caller = Depends(get_current_user),
                   database: Database = Depends(get_db)):
    booking = bookings.submit_review(database, caller, booking_id, payload.rating, payload.comment)
    return {"message": "Review added successfully", "booking": booking}


# Seed/demo endpoint
@app.post("/seed")
def seed(database: Database = Depends(get_db)):
    # Create demo users if not exist
    def ensure_user(name, email, password, role, bio):
        u = database["user"].find_one({"email": email})
        if u:
            return u
        doc = {
            "name": name,
            "email": email,
            "password_hash": hash_password(password),
            "role": role,
            "bio": bio,
            "phone": None,
            "avatar_url": None,
            "is_verified": True,
            "is_active": True,
            "joined_at": datetime.now(timezone.utc),
        }
        create_document(database, "user", doc)
        return doc

    host = ensure_user("John Doe", "john@example.com", "password123", "host",
                       "Experienced host with a passion for hospitality.")
    ensure_user("Jane Smith", "jane@example.com", "password123", "guest",
                "Travel enthusiast who loves exploring new cities.")

    # Create sample listings for the demo host
    if database["listing"].count_documents({"host_id": host["_id"]}) == 0:
        samples = [
            ListingCreate(
                title="Modern Downtown Apartment",
                description="Bright apartment in the heart of the city, close to restaurants and transit.",
                price=150,
                location={"address": "123 Main St", "city": "New York", "state": "NY",
                          "country": "USA", "zipCode": "10001"},
                amenities=["WiFi", "Kitchen", "Air conditioning", "Workspace"],
                propertyType="apartment",
                roomType="entire_place",
                maxGuests=4,
                bedrooms=2,
                bathrooms=1,
                rules={"checkIn": "15:00", "checkOut": "11:00"},
            ),
            ListingCreate(
                title="Beachfront Villa",
                description="Spacious villa with a private pool a few steps from the beach.",
                price=420,
                location={"address": "9 Ocean Dr", "city": "Miami", "state": "FL",
                          "country": "USA", "zipCode": "33139"},
                amenities=["WiFi", "Pool", "Parking", "Garden"],
                propertyType="villa",
                roomType="entire_place",
                maxGuests=8,
                bedrooms=4,
                bathrooms=3,
                rules={"checkIn": "16:00", "checkOut": "10:00", "petsAllowed": True},
            ),
        ]
        host_caller = Caller(id=str(host["_id"]), role="host", name=host["name"], email=host["email"])
        for sample in samples:
            listings.create_listing(database, host_caller, sample)

    return {
        "demo_accounts": {
            "host": {"email": "john@example.com", "password": "password123"},
            "guest": {"email": "jane@example.com", "password": "password123"},
        }
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
