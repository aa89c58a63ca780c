from fastapi import APIRouter

# Import routers from modules
from gymbooking.api.v1.endpoints import courses, members, worker

api_router = APIRouter()

# Courses module (capacity, participants, registrations)
api_router.include_router(courses.router, prefix="/courses", tags=["courses"])

# Members module (registrations, quota, credits)
api_router.include_router(members.router, prefix="/members", tags=["members"])

# Worker module (waitlist sweep, promotion dispatch)
api_router.include_router(worker.router)
