"""
Pydantic models for API request/response serialization.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ListingOut(BaseModel):
    """Output model for listing data."""
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[int] = None
    title: str
    price: str = ""
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    url: str = ""
    description: str = ""
    seller: str = ""
    location: str = ""
    date: str = ""
    condition: Optional[str] = None
    category: Optional[str] = None
    attributes: List[str] = []
    selector: str = ""
    timestamp: Optional[str] = None


class ListingsResponse(BaseModel):
    """Response model for the stored listing set."""
    listings: List[ListingOut]


class ConfigUpdate(BaseModel):
    """Any subset of the configuration sections."""
    website: Optional[Dict[str, Any]] = None
    schedule: Optional[str] = None
    email: Optional[Dict[str, Any]] = None
    theme: Optional[Any] = None


class ConfigOut(BaseModel):
    website: Dict[str, Any] = {}
    schedule: Optional[str] = None
    email: Dict[str, Any] = {}
    theme: Optional[Any] = None


class EmailTestRequest(BaseModel):
    to: Optional[str] = None


class SendEmailRequest(BaseModel):
    to: str
    subject: str
    content: str
