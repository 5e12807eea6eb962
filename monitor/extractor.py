"""
Listing extraction from loaded result pages.

The page HTML is parsed with BeautifulSoup and every field is read through an
ordered list of strategies. A strategy is a plain function ``(node) -> value``
returning ``None`` when it does not apply; the first strategy that returns a
value wins. This keeps extraction working when the site renames a class or
two.
"""
import asyncio
import logging
from typing import Callable, Dict, List, Optional, Sequence
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup
from bs4.element import Tag
from playwright.async_api import TimeoutError as PlaywrightTimeout

from .errors import ContentNotFoundError
from .models import Listing
from .utils import clean_text

logger = logging.getLogger(__name__)

Strategy = Callable[[Tag], Optional[str]]

# Constants
CONTAINER_SELECTOR = ".hz-Listings.hz-Listings--list-view"
CONTAINER_CLASSES = {"hz-Listings", "hz-Listings--list-view"}
LISTING_WAIT_SELECTOR = "li.hz-Listing, article.hz-Listing, div.hz-Listing"

ITEM_SELECTORS = [
    "li.hz-Listing.hz-Listing--list-item",
    'li[class*="Listing"]',
    "li",
]

TITLE_SELECTORS = [
    "h3.hz-Listing-title",
    'h3[class*="Listing-title"]',
    'h3[class*="title"]',
    "h3",
]
PRICE_SELECTORS = [
    "p.hz-Listing-price",
    "span.hz-Listing-price",
    'p[class*="Listing-price"]',
    'span[class*="Listing-price"]',
    'p[class*="price"]',
    'span[class*="price"]',
]
IMAGE_SELECTORS = [
    "img.hz-Listing-image-item",
    "img.hz-Listing-image",
    'img[class*="Listing-image"]',
    'img[class*="image"]',
    "img",
]
LINK_SELECTORS = [
    "a.hz-Listing-coverLink",
    "a.hz-Link.hz-Link--block",
    "a.hz-Link--secondary",
    'a[class*="Link"]',
    "a[href]",
]
DESCRIPTION_SELECTORS = [
    "p.hz-Listing-description",
    'p[class*="Listing-description"]',
    'p[class*="description"]',
    "p",
]
SELLER_SELECTORS = [
    "span.hz-Listing-seller-name",
    'span[class*="Listing-seller"]',
    'span[class*="seller"]',
    "span",
]
LOCATION_SELECTORS = [
    "span.hz-Listing-distance-label",
    'span[class*="Listing-distance"]',
    'span[class*="distance"]',
    'span[class*="location"]',
]
DATE_SELECTORS = [
    "span.hz-Listing-date",
    'span[class*="Listing-date"]',
    'span[class*="date"]',
]
ATTRIBUTES_SELECTORS = [
    "div.hz-Listing-attributes",
    'div[class*="Listing-attributes"]',
    'div[class*="attributes"]',
]
ATTRIBUTE_ITEM_SELECTOR = 'span.hz-Attribute, span[class*="Attribute"]'


def text_of(selector: str) -> Strategy:
    """Text of the first node matching ``selector``, empty text included."""
    def strategy(node: Tag) -> Optional[str]:
        el = node.select_one(selector)
        if el is None:
            return None
        return clean_text(el.get_text())
    return strategy


def image_src(selector: str) -> Strategy:
    """Image source of the first match, trying src, data-src and srcset."""
    def strategy(node: Tag) -> Optional[str]:
        el = node.select_one(selector)
        if el is None:
            return None
        src = el.get("src") or el.get("data-src")
        if not src and el.get("srcset"):
            src = el.get("srcset").split(" ")[0]
        return src or None
    return strategy


def link_href(selector: str) -> Strategy:
    def strategy(node: Tag) -> Optional[str]:
        el = node.select_one(selector)
        if el is None:
            return None
        return el.get("href") or None
    return strategy


def first_match(node: Tag, strategies: Sequence[Strategy]) -> Optional[str]:
    """Apply strategies in order and return the first non-None value."""
    for strategy in strategies:
        value = strategy(node)
        if value is not None:
            return value
    return None


FIELD_STRATEGIES: Dict[str, List[Strategy]] = {
    "title": [text_of(s) for s in TITLE_SELECTORS],
    "price": [text_of(s) for s in PRICE_SELECTORS],
    "image": [image_src(s) for s in IMAGE_SELECTORS],
    "url": [link_href(s) for s in LINK_SELECTORS],
    "description": [text_of(s) for s in DESCRIPTION_SELECTORS],
    "seller": [text_of(s) for s in SELLER_SELECTORS],
    "location": [text_of(s) for s in LOCATION_SELECTORS],
    "date": [text_of(s) for s in DATE_SELECTORS],
}


def page_origin(page_url: str) -> Optional[str]:
    parts = urlsplit(page_url or "")
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


def resolve_url(value: str, origin: Optional[str]) -> str:
    """Make a root-relative URL absolute against the page origin."""
    if not value or not value.startswith("/"):
        return value
    if origin is None:
        logger.warning(f"Failed to convert relative URL {value}: page origin unknown")
        return ""
    return urljoin(origin + "/", value)


def extract_attributes(node: Tag) -> List[str]:
    for selector in ATTRIBUTES_SELECTORS:
        block = node.select_one(selector)
        if block is not None:
            texts = [clean_text(a.get_text()) for a in block.select(ATTRIBUTE_ITEM_SELECTOR)]
            return [t for t in texts if t]
    return []


def find_items(container: Tag) -> List[Tag]:
    """Item nodes from the first pattern that matches anything."""
    for selector in ITEM_SELECTORS:
        items = container.select(selector)
        logger.debug(f"Found {len(items)} items with selector: {selector}")
        if items:
            return items
    return []


def parse_item(node: Tag, origin: Optional[str]) -> Optional[Listing]:
    """Turn one item node into a Listing, or None when it has no title."""
    values = {name: first_match(node, strategies) or "" for name, strategies in FIELD_STRATEGIES.items()}

    if not values["title"]:
        logger.debug(f"Skipping item without title (url={values['url']!r})")
        return None

    image = resolve_url(values["image"], origin)
    url = resolve_url(values["url"], origin)
    if not url:
        logger.warning(f"Item missing URL, keeping anyway: {values['title']}")

    return Listing(
        title=values["title"],
        price=values["price"],
        image_url=image or None,
        url=url,
        description=values["description"],
        seller=values["seller"],
        location=values["location"],
        date=values["date"],
        attributes=extract_attributes(node),
    )


def locate_container(soup: BeautifulSoup, selector: str) -> Tag:
    root = soup.select_one(selector)
    if root is None:
        raise ContentNotFoundError(f"Content not found for selector: {selector}")
    if CONTAINER_CLASSES.issubset(root.get("class") or []):
        container = root
    else:
        container = root.select_one(CONTAINER_SELECTOR)
    if container is None:
        raise ContentNotFoundError(f"No listings container inside selector: {selector}")
    return container


def parse_listings(html: str, page_url: str, selector: str) -> List[Listing]:
    """Parse listing records out of a result page's HTML."""
    soup = BeautifulSoup(html, "html.parser")
    container = locate_container(soup, selector)
    origin = page_origin(page_url)

    items: List[Listing] = []
    for node in find_items(container):
        listing = parse_item(node, origin)
        if listing is not None:
            logger.debug(f"Found item: {listing.title} | {listing.price} | {listing.url}")
            items.append(listing)

    logger.info(f"Total valid items after filtering: {len(items)}")
    return items


async def wait_for_listings(page, selector: str, timeout_ms: int = 30_000, settle_seconds: float = 5.0):
    """
    Wait until the target selector is visible, then give listing nodes time
    to render. A missing selector means the page did not load the results.
    """
    try:
        await page.wait_for_selector(selector, state="visible", timeout=timeout_ms)
    except PlaywrightTimeout as e:
        raise ContentNotFoundError(f"Content not found for selector: {selector}") from e

    try:
        await page.wait_for_selector(LISTING_WAIT_SELECTOR, state="visible", timeout=timeout_ms)
    except PlaywrightTimeout:
        logger.warning(f"No listing nodes became visible within {timeout_ms} ms")

    await asyncio.sleep(settle_seconds)


async def extract(page, selector: str) -> Dict[str, List[Listing]]:
    """Extract listings from a loaded Playwright page."""
    html = await page.content()
    logger.debug(f"Page content length: {len(html)}")
    return {"items": parse_listings(html, page.url, selector)}
