"""
Text utilities for listing feature labels and Arabic translations.

Used to normalize feature lists coming back from the extraction service.
"""

import re
import unicodedata
from typing import Any, Optional


# Known feature spellings -> display label
CANONICAL_FEATURES = {
    "collision warning system": "Collision Warning System",
    "driver monitor": "Driver Monitor",
    "parking distance sensors": "Parking Distance Sensors",
    "parking assistance": "Parking Assistance",
    "headlight control - auto highbeam": "Automatic High-Beam Control",
    "traffic sign recognition": "Traffic Sign Recognition",
    "autonomous drive": "Autonomous Drive",
    "dynamic steering": "Dynamic Steering",
    "alloy wheels": "Alloy Wheels",
    "sunroof": "Sunroof/Moonroof",
    "moonroof": "Sunroof/Moonroof",
    "leather seats": "Leather Seats",
    "memory seat": "Memory Seat",
    "navigation system": "Navigation System",
    "android auto": "Android Auto®",
    "apple carplay": "Apple CarPlay®",
    "bluetooth": "Bluetooth®",
    "homelink": "HomeLink",
    "satellite radio": "Satellite Radio",
    "wifi hotspot": "WiFi Hotspot",
    "cooled seats": "Cooled Seats",
    "heated seats": "Heated Seats",
    "heated steering wheel": "Heated Steering Wheel",
    "premium sound system": "Premium Sound System",
    "usb port": "USB Port",
}

ARABIC_LABELS = {
    # Fuel types
    "gasoline": "بنزين",
    "diesel": "ديزل",
    "electric": "كهربائي",
    "hybrid": "هجين",

    # Drivetrain
    "fwd": "دفع أمامي",
    "rwd": "دفع خلفي",
    "awd": "دفع كلي",
    "4wd": "دفع رباعي",

    # Features
    "alloy wheels": "عجلات سبائك",
    "sunroof/moonroof": "سقف بانورامي",
    "leather seats": "مقاعد جلدية",
    "memory seat": "مقعد بذاكرة",
    "navigation system": "نظام ملاحة",
    "android auto®": "أندرويد أوتو",
    "apple carplay®": "أبل كاربلاي",
    "bluetooth®": "بلوتوث",
    "homelink": "هوم لينك",
    "satellite radio": "راديو فضائي",
    "wifi hotspot": "واي فاي",
    "cooled seats": "مقاعد مبردة",
    "heated seats": "مقاعد مدفأة",
    "heated steering wheel": "مقود مدفأ",
    "premium sound system": "نظام صوت فاخر",
    "usb port": "منفذ USB",
    "collision warning system": "نظام تحذير التصادم",
    "driver monitor": "مراقب السائق",
    "parking distance sensors": "حساسات المسافة للركن",
    "parking assistance": "مساعد الركن",
    "automatic high-beam control": "تحكم تلقائي بالإضاءة العالية",
    "traffic sign recognition": "تمييز إشارات المرور",
    "autonomous drive": "القيادة الذاتية",
    "dynamic steering": "توجيه ديناميكي",

    # Brands
    "mercedes-benz": "مرسيدس-بنز",
    "bmw": "بي إم دبليو",
    "land rover": "لاند روفر",
    "toyota": "تويوتا",
    "honda": "هوندا",
    "ford": "فورد",
    "chevrolet": "شيفروليه",
    "nissan": "نيسان",
    "hyundai": "هيونداي",
    "kia": "كيا",
    "mazda": "مازدا",
    "subaru": "سوبارو",
    "volkswagen": "فولكس واجن",
    "audi": "أودي",
    "lexus": "لكزس",
    "infiniti": "إنفينيتي",
    "acura": "أكورا",
    "cadillac": "كاديلاك",
    "lincoln": "لينكولن",
    "buick": "بويك",
    "gmc": "جي إم سي",
    "jeep": "جيب",
    "ram": "رام",
    "dodge": "دودج",
    "chrysler": "كرايسلر",
    "volvo": "فولفو",
    "porsche": "بورش",
    "jaguar": "جاغوار",
    "mini": "ميني",
    "tesla": "تيسلا",
}

_MERCEDES_CLASS = re.compile(r"^([SECGAB])-?Class$", re.IGNORECASE)


def clean_text(value: Any) -> Optional[str]:
    """
    Trim a value to a non-empty string.

    Returns None for non-strings and whitespace-only strings.
    """
    if not isinstance(value, str):
        return None
    value = unicodedata.normalize("NFC", value).strip()
    return value or None


def split_list(value: Any) -> list[str]:
    """
    Coerce a feature list that may arrive as a list or a comma string.

    "Sunroof, Heated Seats" -> ["Sunroof", "Heated Seats"]
    """
    if not value:
        return []
    if isinstance(value, list):
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return []


def canonical_feature(label: str) -> str:
    """
    Map a feature label to its display spelling.

    Unknown labels are title-cased word by word.
    """
    if not label:
        return label
    known = CANONICAL_FEATURES.get(label.strip().lower())
    if known:
        return known
    return " ".join(word[:1].upper() + word[1:].lower() for word in label.split(" "))


def dedupe(items: list[str]) -> list[str]:
    """Remove case-insensitive duplicates, keeping first occurrence order."""
    seen = set()
    result = []
    for item in items:
        key = item.casefold()
        if key in seen:
            continue
        seen.add(key)
        result.append(item)
    return result


def normalize_features(value: Any) -> list[str]:
    """Split, canonicalize and de-duplicate a feature list."""
    return dedupe([canonical_feature(item) for item in split_list(value)])


def arabic_label(english: Optional[str]) -> Optional[str]:
    """
    Look up the Arabic label for a known English term.

    Mercedes model classes ("S-Class") are rendered as "الفئة S".

    Returns:
        Arabic label, or None if the term is unknown
    """
    if not english:
        return None
    lower = english.strip().lower()
    match = _MERCEDES_CLASS.match(english.strip())
    if match:
        return f"الفئة {match.group(1).upper()}"
    return ARABIC_LABELS.get(lower)


def fill_arabic(english: list[str], arabic: list[str]) -> list[str]:
    """
    Pair each English label with an Arabic one.

    Keeps translations the service returned; fills the gaps from the
    dictionary. Unknown terms get an empty string.
    """
    return [
        arabic[index] if index < len(arabic) and arabic[index] else (arabic_label(label) or "")
        for index, label in enumerate(english)
    ]
