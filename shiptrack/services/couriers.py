"""
Courier catalogue recognised by tracking.my (codes are case-insensitive).
"""
from typing import List, NamedTuple, Optional


class Courier(NamedTuple):
    code: str
    name: str


COURIERS: List[Courier] = [
    # Malaysia
    Courier("poslaju", "Pos Laju"),
    Courier("jnt", "J&T Express"),
    Courier("dhl", "DHL"),
    Courier("gdex", "GDEX"),
    Courier("citylink", "City-Link Express"),
    Courier("skynet", "SkyNet"),
    Courier("ninjavan", "Ninja Van"),
    Courier("fedex", "FedEx"),
    Courier("shopee", "Shopee Express"),
    Courier("shopee-express-my", "Shopee Express"),
    Courier("lazada", "LEX Malaysia"),
    Courier("aramex", "Aramex"),
    Courier("dpex", "DPEX Express"),
    Courier("taqbin", "Ta-Q-Bin"),
    Courier("airpak", "Airpak Express"),
    Courier("nationwide", "Nationwide Express"),
    Courier("asiaxpress", "AsiaXpress"),
    Courier("best", "Best Express"),
    Courier("flash", "Flash Express"),
    Courier("poslajuint", "Pos Laju International"),
    Courier("zto", "ZTO Express"),
    Courier("skybox", "SkyBox"),
    Courier("ups", "UPS"),
    Courier("abx", "ABX Express"),
    Courier("lalamove", "Lalamove"),
    Courier("parcel", "Parcel365"),
    Courier("grab", "GrabExpress"),
    Courier("transporter", "Transporter"),
    # International
    Courier("usps", "USPS"),
    Courier("tnt", "TNT"),
    Courier("sf-express", "SF Express"),
    Courier("yunexpress", "YunExpress"),
    Courier("singpost", "Singapore Post"),
]

_BY_CODE = {c.code: c for c in COURIERS}

# Tracking-number prefixes that identify a courier without asking the provider
_PREFIXES = [
    ("SPXMY", "shopee-express-my"),
    ("NLMY", "ninjavan"),
    ("ER", "poslaju"),
    ("EP", "poslaju"),
]


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().lower()


def find_courier(code: Optional[str]) -> Optional[Courier]:
    return _BY_CODE.get(normalize_code(code))


def is_known_courier(code: Optional[str]) -> bool:
    return find_courier(code) is not None


def courier_display_name(code: Optional[str]) -> Optional[str]:
    courier = find_courier(code)
    return courier.name if courier else None


def detect_couriers(tracking_number: Optional[str]) -> List[Courier]:
    """Couriers whose known tracking-number prefix matches; empty when undetectable."""
    tn = (tracking_number or "").strip().upper()
    if not tn:
        return []
    found = []
    for prefix, code in _PREFIXES:
        if tn.startswith(prefix) and _BY_CODE[code] not in found:
            found.append(_BY_CODE[code])
    return found
