from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Tuple


# -------------------------
# Model
# -------------------------
@dataclass(frozen=True)
class PrintSize:
    id: str
    name: str
    dimensions: str
    price: int
    description: str


@dataclass(frozen=True)
class PaperType:
    id: str
    name: str
    description: str
    price_multiplier: float


PRINT_SIZES: Tuple[PrintSize, ...] = (
    PrintSize(
        id="small",
        name="Small",
        dimensions='12" × 16"',
        price=85,
        description="Perfect for smaller spaces and galleries",
    ),
    PrintSize(
        id="medium",
        name="Medium",
        dimensions='16" × 20"',
        price=125,
        description="Most popular size for home and office",
    ),
    PrintSize(
        id="large",
        name="Large",
        dimensions='24" × 32"',
        price=195,
        description="Statement piece for larger walls",
    ),
)

PAPER_TYPES: Tuple[PaperType, ...] = (
    PaperType(
        id="standard",
        name="Fine Art Paper",
        description="Premium matte finish on archival paper",
        price_multiplier=1.0,
    ),
    PaperType(
        id="metallic",
        name="Metallic Print",
        description="Vibrant colors with metallic sheen",
        price_multiplier=1.3,
    ),
    PaperType(
        id="canvas",
        name="Gallery Canvas",
        description="Museum-quality canvas with gallery wrap",
        price_multiplier=1.5,
    ),
)

DEFAULT_SIZE = PRINT_SIZES[1]
DEFAULT_PAPER = PAPER_TYPES[0]


def list_sizes() -> Tuple[PrintSize, ...]:
    return PRINT_SIZES


def list_papers() -> Tuple[PaperType, ...]:
    return PAPER_TYPES


def get_size(size_id: str) -> Optional[PrintSize]:
    for s in PRINT_SIZES:
        if s.id == size_id:
            return s
    return None


def get_paper(paper_id: str) -> Optional[PaperType]:
    for p in PAPER_TYPES:
        if p.id == paper_id:
            return p
    return None


# -------------------------
# Pricing
# -------------------------
def calculate_price(size: PrintSize, paper: PaperType) -> int:
    """Unit price of a print in whole currency units.

    ``size.price * paper.price_multiplier`` rounded half-up. Both factors are
    taken through their decimal string form, so ``85 * 1.3`` is exactly
    ``110.5`` and rounds to ``111`` (a float product would be 110.49999...).
    """
    raw = Decimal(str(size.price)) * Decimal(str(paper.price_multiplier))
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_price(amount: float) -> str:
    """US formatting: $1,234.00"""
    try:
        v = float(amount)
    except (TypeError, ValueError):
        v = 0.0
    sign = "-" if v < 0 else ""
    return f"{sign}${abs(v):,.2f}"


def paper_surcharge_label(paper: PaperType) -> str:
    if paper.price_multiplier == 1:
        return "Base price"
    pct = int((Decimal(str(paper.price_multiplier)) - 1) * 100)
    return f"+{pct}%"


def title_from_key(key: str) -> str:
    """Display title for an image key: "prints/Cliff_Edge_01.jpg" -> "Cliff Edge"."""
    name = posixpath.basename((key or "").rstrip("/")) or "Untitled"
    name = re.sub(r"\.[^/.]+$", "", name)
    name = name.replace("_", " ")
    name = re.sub(r"\d+$", "", name)
    return name.strip() or "Untitled"
