"""
Data models for the site monitor.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


@dataclass
class Listing:
    """One classified-ad entry extracted from a result page."""

    title: str
    price: str = ""
    image_url: Optional[str] = None
    url: str = ""
    description: str = ""
    seller: str = ""
    location: str = ""
    date: str = ""
    attributes: List[str] = field(default_factory=list)

    # Set when the listing is persisted
    selector: str = ""
    timestamp: Optional[str] = None
    id: Optional[int] = None

    @property
    def key(self) -> Tuple[str, str, str]:
        """Identity used for dedup and diffing."""
        return (self.title, self.price, self.url or "")

    @property
    def condition(self) -> Optional[str]:
        return _find_attribute(self.attributes, "conditie")

    @property
    def category(self) -> Optional[str]:
        return _find_attribute(self.attributes, "categorie")

    def to_dict(self) -> dict:
        """JSON shape consumed by the dashboard."""
        return {
            "id": self.id,
            "title": self.title,
            "price": self.price,
            "imageUrl": self.image_url,
            "url": self.url,
            "description": self.description,
            "seller": self.seller,
            "location": self.location,
            "date": self.date,
            "condition": self.condition,
            "category": self.category,
            "attributes": list(self.attributes),
            "selector": self.selector,
            "timestamp": self.timestamp,
        }


def _find_attribute(attributes: List[str], needle: str) -> Optional[str]:
    for attr in attributes:
        if needle in attr.lower():
            return attr
    return None


@dataclass(frozen=True)
class Target:
    """A saved search: the result page URL and the selector wrapping its listings."""

    url: str
    selector: str
    name: Optional[str] = None

    @property
    def key(self) -> str:
        return self.name or self.selector


@dataclass
class CheckResult:
    """Outcome of change detection for one target."""

    target: str
    is_changed: bool
    new_items: List[Listing] = field(default_factory=list)
    total: int = 0

    def summary(self) -> dict:
        return {
            "target": self.target,
            "isChanged": self.is_changed,
            "newItems": len(self.new_items),
            "total": self.total,
        }
