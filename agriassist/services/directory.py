"""
Farm listings served to the dashboard: crop prices, equipment rental, service
providers and a crop nutrient guide.

The listings are illustrative, fixed in memory; there is no external feed behind them.
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from agriassist.errors import InputError

logger = logging.getLogger(__name__)

ALL = "All"
PLACEHOLDER_ICON = "https://placehold.co/40x40.png"
PLACEHOLDER_IMAGE = "https://placehold.co/600x400.png"


def _price(id, name, category, price, change24h, market, last_updated, hint):
    return {
        "id": id, "name": name, "category": category, "price": price, "change24h": change24h,
        "market": market, "lastUpdated": last_updated, "iconUrl": PLACEHOLDER_ICON, "imageHint": hint,
    }


CROP_PRICES: List[Dict[str, Any]] = [
    _price("1", "Wheat", "Grains", 250, 2.5, "National", "2h ago", "wheat icon"),
    _price("2", "Corn (Maize)", "Grains", 180, -1.2, "Local", "1h ago", "corn icon"),
    _price("3", "Soybeans", "Oilseeds", 550, 0.8, "International", "30m ago", "soybean icon"),
    _price("4", "Rice", "Grains", 320, 1.0, "National", "5h ago", "rice icon"),
    _price("5", "Tomatoes", "Vegetables", 80, 5.2, "Local", "45m ago", "tomato icon"),
    _price("6", "Potatoes", "Vegetables", 60, -0.5, "Local", "3h ago", "potato icon"),
    _price("7", "Cotton", "Fibers", 700, 0.0, "International", "1d ago", "cotton icon"),
    _price("8", "Apples", "Fruits", 120, 3.1, "Local", "4h ago", "apple fruit"),
    _price("9", "Coffee Beans (Arabica)", "Beverages", 2200, -2.0, "International", "6h ago", "coffee beans"),
    _price("10", "Sugar", "Sweeteners", 400, 0.5, "National", "Just now", "sugar cubes"),
]

EQUIPMENT: List[Dict[str, Any]] = [
    {"id": "1", "name": "John Deere 5050D", "type": "Tractor", "location": "Farmville", "distance": "5 km away",
     "hourlyRate": 50, "status": "Available", "imageUrl": PLACEHOLDER_IMAGE, "imageHint": "green tractor field",
     "description": "A reliable 50 HP tractor suitable for various farming tasks. Comes with a standard plow attachment."},
    {"id": "2", "name": "Claas Dominator 150", "type": "Harvester", "location": "Grainsville", "distance": "12 km away",
     "hourlyRate": 150, "status": "Booked", "imageUrl": PLACEHOLDER_IMAGE, "imageHint": "combine harvester wheat",
     "description": "High-capacity combine harvester for wheat, corn, and soybeans. Efficient and fast."},
    {"id": "3", "name": "DJI Agras T30", "type": "Drone", "location": "Aero Meadows", "distance": "8 km away",
     "hourlyRate": 75, "status": "Available", "imageUrl": PLACEHOLDER_IMAGE, "imageHint": "agricultural drone spraying",
     "description": "Advanced agricultural drone for spraying pesticides, fertilizers, and for crop monitoring."},
    {"id": "4", "name": "Rotary Power Tiller", "type": "Tiller", "location": "Farmville", "distance": "3 km away",
     "hourlyRate": 30, "status": "Available", "imageUrl": PLACEHOLDER_IMAGE, "imageHint": "rotary tiller soil",
     "description": "Heavy-duty rotary tiller for preparing seedbeds. Easy to operate and maintain."},
    {"id": "5", "name": "Precision Air Seeder", "type": "Seeder", "location": "Seedtown", "distance": "20 km away",
     "hourlyRate": 90, "status": "Available", "imageUrl": PLACEHOLDER_IMAGE, "imageHint": "precision seeder tractor",
     "description": "Multi-row air seeder for precise and uniform seed placement, improving crop yield."},
    {"id": "6", "name": "Massey Ferguson 241", "type": "Tractor", "location": "Green Valley", "distance": "15 km away",
     "hourlyRate": 45, "status": "Booked", "imageUrl": PLACEHOLDER_IMAGE, "imageHint": "red tractor farm",
     "description": "A classic and versatile tractor, perfect for small to medium-sized farms."},
]

RESOURCES: List[Dict[str, Any]] = [
    {"id": "1", "name": "GreenGrow Seeds Co.", "category": "Seeds",
     "description": "Provider of high-yield, disease-resistant crop seeds. Specialized in local varieties.",
     "contact": {"phone": "555-0101", "website": "https://greengrowseeds.example.com", "address": "123 Seed Rd, Farmville"},
     "imageUrl": PLACEHOLDER_IMAGE, "imageHint": "seeds packets"},
    {"id": "2", "name": "AgriTech Equipment Rentals", "category": "Equipment",
     "description": "Rent modern farming equipment, from tractors to drones. Flexible rental periods.",
     "contact": {"phone": "555-0102", "address": "456 Tractor Ln, Machinery City"},
     "imageUrl": PLACEHOLDER_IMAGE, "imageHint": "tractor farm"},
    {"id": "3", "name": "Fertile Fields Nutrition", "category": "Fertilizers",
     "description": "Organic and synthetic fertilizers tailored to soil types and crop needs.",
     "contact": {"phone": "555-0103", "website": "https://fertilefields.example.com"},
     "imageUrl": PLACEHOLDER_IMAGE, "imageHint": "fertilizer bags"},
    {"id": "4", "name": "CropSafe Consultants", "category": "Consultancy",
     "description": "Expert advice on pest management, crop rotation, and sustainable farming practices.",
     "contact": {"phone": "555-0104", "website": "https://cropsafe.example.com", "address": "789 Advice Ave, Expert Town"},
     "imageUrl": PLACEHOLDER_IMAGE, "imageHint": "agronomist field"},
    {"id": "5", "name": "FarmConnect Logistics", "category": "Logistics",
     "description": "Reliable transportation and storage solutions for agricultural produce. Cold chain specialists.",
     "contact": {"phone": "555-0105", "website": "https://farmconnect.example.com", "address": "101 Haulage Way, Transport Hub"},
     "imageUrl": PLACEHOLDER_IMAGE, "imageHint": "truck farm"},
]


def _nutrients(id, name, type, hint, primary, secondary, micro, ph, notes):
    return {
        "id": id, "name": name, "type": type, "imageUrl": PLACEHOLDER_IMAGE, "imageHint": hint,
        "primaryNutrients": primary, "secondaryNutrients": secondary, "microNutrients": micro,
        "optimalPH": ph, "notes": notes,
    }


NUTRIENT_GUIDE: List[Dict[str, Any]] = [
    _nutrients("1", "Tomato", "Vegetable", "tomato plant",
               ["Nitrogen (N)", "Phosphorus (P)", "Potassium (K)"], ["Calcium (Ca)", "Magnesium (Mg)"],
               ["Boron (B)", "Manganese (Mn)", "Zinc (Zn)"], "6.0 - 6.8",
               "Requires consistent watering and well-drained soil. Benefits from staking or caging."),
    _nutrients("2", "Wheat", "Crop", "wheat field",
               ["Nitrogen (N)", "Phosphorus (P)", "Potassium (K)"], ["Sulfur (S)"],
               ["Copper (Cu)", "Zinc (Zn)", "Manganese (Mn)"], "6.0 - 7.0",
               "Nitrogen is crucial during early growth stages. Monitor for rust diseases."),
    _nutrients("3", "Basil", "Herb", "basil leaves",
               ["Nitrogen (N)", "Potassium (K)"], ["Magnesium (Mg)"], ["Iron (Fe)"], "6.0 - 7.5",
               "Prefers full sun and regular harvesting of leaves encourages more growth."),
    _nutrients("4", "Corn (Maize)", "Crop", "corn field",
               ["Nitrogen (N)", "Phosphorus (P)", "Potassium (K)"], ["Magnesium (Mg)", "Sulfur (S)"],
               ["Zinc (Zn)", "Boron (B)"], "5.8 - 6.5",
               "Heavy feeder, especially nitrogen. Ensure adequate pollination for full ears."),
    _nutrients("5", "Lettuce", "Vegetable", "lettuce head",
               ["Nitrogen (N)", "Potassium (K)"], ["Calcium (Ca)"], ["Molybdenum (Mo)"], "6.0 - 7.0",
               "Cool-weather crop. Shallow roots require consistent moisture."),
    _nutrients("6", "Rosemary", "Herb", "rosemary sprig",
               ["Low N", "Phosphorus (P)", "Potassium (K)"], [], [], "6.0 - 7.0",
               "Drought-tolerant once established. Prefers well-drained, slightly alkaline soil."),
    _nutrients("7", "Potato", "Vegetable", "potatoes plant",
               ["Potassium (K)", "Nitrogen (N)", "Phosphorus (P)"], ["Magnesium (Mg)", "Calcium (Ca)"],
               ["Boron (B)", "Manganese (Mn)"], "4.8 - 6.5",
               "Prefers acidic soil. Hill soil around plants as they grow to protect tubers."),
    # nitrogen-fixing, so no N in primary
    _nutrients("8", "Soybean", "Crop", "soybean plant",
               ["Phosphorus (P)", "Potassium (K)"], ["Calcium (Ca)", "Magnesium (Mg)", "Sulfur (S)"],
               ["Manganese (Mn)", "Molybdenum (Mo)", "Boron (B)"], "6.0 - 6.8",
               "Nitrogen-fixing legume. Ensure proper inoculation with Bradyrhizobium japonicum."),
    _nutrients("9", "Mint", "Herb", "mint leaves",
               ["Nitrogen (N)"], [], [], "6.5 - 7.0",
               "Can be invasive; best grown in containers or with root barriers. Prefers moist soil."),
    _nutrients("10", "Carrot", "Vegetable", "carrots plant",
               ["Potassium (K)", "Phosphorus (P)"], [], ["Boron (B)"], "6.0 - 6.8",
               "Requires loose, deep soil free of stones for good root development."),
]


def facet_values(items: List[Dict[str, Any]], key: str) -> List[str]:
    """`["All", ...]` followed by each distinct value of `key` in first-seen order."""
    return [ALL] + list(dict.fromkeys(item[key] for item in items))


def _matches(value: Optional[str], selected: Optional[str]) -> bool:
    return not selected or selected == ALL or value == selected


def _contains(haystacks: List[str], needle: Optional[str]) -> bool:
    if not needle:
        return True
    needle = needle.lower()
    return any(needle in (h or "").lower() for h in haystacks)


def list_crop_prices(search: Optional[str] = None, category: Optional[str] = None,
                     market: Optional[str] = None) -> List[Dict[str, Any]]:
    return [
        c for c in CROP_PRICES
        if _contains([c["name"]], search) and _matches(c["category"], category) and _matches(c["market"], market)
    ]


def crop_price_filters() -> Dict[str, List[str]]:
    return {"categories": facet_values(CROP_PRICES, "category"), "markets": facet_values(CROP_PRICES, "market")}


def list_equipment(search: Optional[str] = None, type: Optional[str] = None) -> List[Dict[str, Any]]:
    return [e for e in EQUIPMENT if _contains([e["name"]], search) and _matches(e["type"], type)]


def get_equipment(equipment_id: str) -> Optional[Dict[str, Any]]:
    for e in EQUIPMENT:
        if e["id"] == equipment_id:
            return e
    return None


class EquipmentUnavailable(InputError):
    def __init__(self, name: str):
        super().__init__(f"{name} is not available for the selected date.", status_code=409)


def book_equipment(equipment_id: str, booking_date: Optional[date] = None) -> Optional[Dict[str, Any]]:
    """Confirm a rental request; returns None for an unknown id.

    Bookings are acknowledged only, the listing status does not change.
    """
    equipment = get_equipment(equipment_id)
    if equipment is None:
        return None
    if equipment["status"] == "Booked":
        raise EquipmentUnavailable(equipment["name"])
    booking_date = booking_date or date.today()
    logger.info("Booking request: equipment=%s date=%s", equipment["id"], booking_date.isoformat())
    return {
        "equipmentId": equipment["id"],
        "name": equipment["name"],
        "date": booking_date.isoformat(),
        "hourlyRate": equipment["hourlyRate"],
        "message": f"The owner of {equipment['name']} has been notified of your request for {booking_date.strftime('%B %d, %Y')}.",
    }


def list_resources(search: Optional[str] = None, category: Optional[str] = None) -> List[Dict[str, Any]]:
    return [
        r for r in RESOURCES
        if _contains([r["name"], r["description"]], search) and _matches(r["category"], category)
    ]


def list_nutrient_guide(search: Optional[str] = None, type: Optional[str] = None) -> List[Dict[str, Any]]:
    return [c for c in NUTRIENT_GUIDE if _contains([c["name"]], search) and _matches(c["type"], type)]
