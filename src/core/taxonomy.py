"""Closed vocabularies the classifier answers are validated against."""

from __future__ import annotations

DEPARTMENTS = (
    "Water Supply",
    "Waste Management",
    "Roads & Infrastructure",
    "Health & Sanitation",
    "Building & Planning",
    "Electricity",
    "Parks & Recreation",
    "Traffic & Transport",
    "Property Tax",
    "General Administration",
)

PRIORITIES = ("emergency", "high", "medium", "low")

COMPLAINT_TYPES = (
    "Water Supply Issues",
    "Drainage Problems",
    "Road Maintenance",
    "Street Lighting",
    "Waste Collection",
    "Public Toilets",
    "Building Permits",
    "Property Tax",
    "Traffic Management",
    "Park Maintenance",
    "Health Services",
    "General Services",
)

INTENTS = (
    "complaint",
    "complaint_status",
    "query",
    "small_talk",
    "location_sharing",
    "greeting",
    "other",
)

FALLBACK_DEPARTMENT = "General Administration"
FALLBACK_PRIORITY = "medium"
FALLBACK_CATEGORY = "General Services"
