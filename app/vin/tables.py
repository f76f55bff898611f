"""
Static VIN lookup tables (ISO 3779 / 49 CFR 565).

- Transliteration values and position weights for the check digit
- Model-year character table (position 10)
- World Manufacturer Identifier (WMI) table
- Country / region ranges for the first two characters
"""

from typing import Dict, Optional, Tuple

VIN_LENGTH = 17
CHECK_DIGIT_POSITION = 9
YEAR_CODE_POSITION = 10

# Letters I, O and Q are never used in a VIN
VIN_ALPHABET = frozenset("ABCDEFGHJKLMNPRSTUVWXYZ0123456789")

# OCR-confusable characters and their VIN-legal reading
AMBIGUOUS_CHARACTERS = {"O": "0", "Q": "0", "I": "1"}

TRANSLITERATION: Dict[str, int] = {
    "A": 1, "B": 2, "C": 3, "D": 4, "E": 5, "F": 6, "G": 7, "H": 8,
    "J": 1, "K": 2, "L": 3, "M": 4, "N": 5, "P": 7, "R": 9,
    "S": 2, "T": 3, "U": 4, "V": 5, "W": 6, "X": 7, "Y": 8, "Z": 9,
    "0": 0, "1": 1, "2": 2, "3": 3, "4": 4,
    "5": 5, "6": 6, "7": 7, "8": 8, "9": 9,
}

POSITION_WEIGHTS: Tuple[int, ...] = (8, 7, 6, 5, 4, 3, 2, 10, 0, 9, 8, 7, 6, 5, 4, 3, 2)

# Position 10 cycles every 30 years; values are the first-cycle year.
# 0, U and Z are never year characters.
MODEL_YEAR_CYCLE = 30
FIRST_MODEL_YEAR = 1980
MODEL_YEAR_CODES: Dict[str, int] = {
    "A": 1980, "B": 1981, "C": 1982, "D": 1983, "E": 1984,
    "F": 1985, "G": 1986, "H": 1987, "J": 1988, "K": 1989,
    "L": 1990, "M": 1991, "N": 1992, "P": 1993, "R": 1994,
    "S": 1995, "T": 1996, "V": 1997, "W": 1998, "X": 1999,
    "Y": 2000,
    "1": 2001, "2": 2002, "3": 2003, "4": 2004, "5": 2005,
    "6": 2006, "7": 2007, "8": 2008, "9": 2009,
}

# WMI -> (make, country)
WMI_TABLE: Dict[str, Tuple[str, str]] = {
    # United States
    "1B3": ("Dodge", "United States"),
    "1C3": ("Chrysler", "United States"),
    "1C4": ("Jeep", "United States"),
    "1C6": ("Ram", "United States"),
    "1D7": ("Dodge", "United States"),
    "1FA": ("Ford", "United States"),
    "1FB": ("Ford", "United States"),
    "1FC": ("Ford", "United States"),
    "1FD": ("Ford", "United States"),
    "1FM": ("Ford", "United States"),
    "1FT": ("Ford", "United States"),
    "1FU": ("Freightliner", "United States"),
    "1G1": ("Chevrolet", "United States"),
    "1G4": ("Buick", "United States"),
    "1G6": ("Cadillac", "United States"),
    "1GC": ("Chevrolet", "United States"),
    "1GK": ("GMC", "United States"),
    "1GM": ("Pontiac", "United States"),
    "1GN": ("Chevrolet", "United States"),
    "1GT": ("GMC", "United States"),
    "1GY": ("Cadillac", "United States"),
    "1HD": ("Harley-Davidson", "United States"),
    "1HG": ("Honda", "United States"),
    "1J4": ("Jeep", "United States"),
    "1LN": ("Lincoln", "United States"),
    "1M8": ("Motor Coach Industries", "United States"),
    "1ME": ("Mercury", "United States"),
    "1N4": ("Nissan", "United States"),
    "1N6": ("Nissan", "United States"),
    "1NX": ("Toyota", "United States"),
    "1VW": ("Volkswagen", "United States"),
    "1YV": ("Mazda", "United States"),
    "19U": ("Acura", "United States"),
    "19X": ("Honda", "United States"),
    "4JG": ("Mercedes-Benz", "United States"),
    "4S3": ("Subaru", "United States"),
    "4S4": ("Subaru", "United States"),
    "4T1": ("Toyota", "United States"),
    "4T3": ("Toyota", "United States"),
    "4T4": ("Toyota", "United States"),
    "4US": ("BMW", "United States"),
    "5FN": ("Honda", "United States"),
    "5J6": ("Honda", "United States"),
    "5LM": ("Lincoln", "United States"),
    "5N1": ("Nissan", "United States"),
    "5NP": ("Hyundai", "United States"),
    "5NM": ("Hyundai", "United States"),
    "5TD": ("Toyota", "United States"),
    "5TF": ("Toyota", "United States"),
    "5UX": ("BMW", "United States"),
    "5XY": ("Kia", "United States"),
    "5YJ": ("Tesla", "United States"),
    "7SA": ("Tesla", "United States"),
    # Canada
    "2C3": ("Chrysler", "Canada"),
    "2C4": ("Chrysler", "Canada"),
    "2FA": ("Ford", "Canada"),
    "2FM": ("Ford", "Canada"),
    "2G1": ("Chevrolet", "Canada"),
    "2HG": ("Honda", "Canada"),
    "2HK": ("Honda", "Canada"),
    "2HN": ("Acura", "Canada"),
    "2T1": ("Toyota", "Canada"),
    "2T2": ("Lexus", "Canada"),
    "2T3": ("Toyota", "Canada"),
    # Mexico
    "3C4": ("Chrysler", "Mexico"),
    "3C6": ("Ram", "Mexico"),
    "3FA": ("Ford", "Mexico"),
    "3G1": ("Chevrolet", "Mexico"),
    "3GN": ("Chevrolet", "Mexico"),
    "3HG": ("Honda", "Mexico"),
    "3KP": ("Kia", "Mexico"),
    "3MZ": ("Mazda", "Mexico"),
    "3N1": ("Nissan", "Mexico"),
    "3TM": ("Toyota", "Mexico"),
    "3VW": ("Volkswagen", "Mexico"),
    # Japan
    "JA3": ("Mitsubishi", "Japan"),
    "JF1": ("Subaru", "Japan"),
    "JF2": ("Subaru", "Japan"),
    "JH4": ("Acura", "Japan"),
    "JHM": ("Honda", "Japan"),
    "JM1": ("Mazda", "Japan"),
    "JM3": ("Mazda", "Japan"),
    "JN1": ("Nissan", "Japan"),
    "JN8": ("Nissan", "Japan"),
    "JS1": ("Suzuki", "Japan"),
    "JT2": ("Toyota", "Japan"),
    "JTD": ("Toyota", "Japan"),
    "JTE": ("Toyota", "Japan"),
    "JTH": ("Lexus", "Japan"),
    "JTJ": ("Lexus", "Japan"),
    "JTM": ("Toyota", "Japan"),
    "JTN": ("Toyota", "Japan"),
    "JYA": ("Yamaha", "Japan"),
    # South Korea
    "KL1": ("Chevrolet", "South Korea"),
    "KM8": ("Hyundai", "South Korea"),
    "KMH": ("Hyundai", "South Korea"),
    "KNA": ("Kia", "South Korea"),
    "KND": ("Kia", "South Korea"),
    "KNM": ("Renault Samsung", "South Korea"),
    # China
    "LRW": ("Tesla", "China"),
    "LVS": ("Ford", "China"),
    "LYV": ("Volvo", "China"),
    # India
    "MA1": ("Mahindra", "India"),
    "MA3": ("Suzuki", "India"),
    "MAT": ("Tata", "India"),
    "MBH": ("Suzuki", "India"),
    # United Kingdom
    "SAJ": ("Jaguar", "United Kingdom"),
    "SAL": ("Land Rover", "United Kingdom"),
    "SCA": ("Rolls-Royce", "United Kingdom"),
    "SCC": ("Lotus", "United Kingdom"),
    "SCF": ("Aston Martin", "United Kingdom"),
    "SFD": ("Alexander Dennis", "United Kingdom"),
    "SHH": ("Honda", "United Kingdom"),
    "SJN": ("Nissan", "United Kingdom"),
    # Europe
    "TRU": ("Audi", "Hungary"),
    "TMB": ("Skoda", "Czech Republic"),
    "VF1": ("Renault", "France"),
    "VF3": ("Peugeot", "France"),
    "VF7": ("Citroen", "France"),
    "VSS": ("SEAT", "Spain"),
    "WAU": ("Audi", "Germany"),
    "WA1": ("Audi", "Germany"),
    "WBA": ("BMW", "Germany"),
    "WBS": ("BMW M", "Germany"),
    "WBY": ("BMW", "Germany"),
    "WDB": ("Mercedes-Benz", "Germany"),
    "WDC": ("Mercedes-Benz", "Germany"),
    "WDD": ("Mercedes-Benz", "Germany"),
    "WF0": ("Ford", "Germany"),
    "WMW": ("MINI", "Germany"),
    "WP0": ("Porsche", "Germany"),
    "WP1": ("Porsche", "Germany"),
    "WVG": ("Volkswagen", "Germany"),
    "WVW": ("Volkswagen", "Germany"),
    "W0L": ("Opel", "Germany"),
    "YS3": ("Saab", "Sweden"),
    "YV1": ("Volvo", "Sweden"),
    "YV4": ("Volvo", "Sweden"),
    "ZAM": ("Maserati", "Italy"),
    "ZAR": ("Alfa Romeo", "Italy"),
    "ZFA": ("Fiat", "Italy"),
    "ZFF": ("Ferrari", "Italy"),
    "ZHW": ("Lamborghini", "Italy"),
    # Oceania / South America
    "6G1": ("Holden", "Australia"),
    "6T1": ("Toyota", "Australia"),
    "8AP": ("Fiat", "Argentina"),
    "9BW": ("Volkswagen", "Brazil"),
    "93H": ("Honda", "Brazil"),
}

REGIONS: Dict[str, str] = {
    **{c: "Africa" for c in "ABCDEFGH"},
    **{c: "Asia" for c in "JKLMNPR"},
    **{c: "Europe" for c in "STUVWXYZ"},
    **{c: "North America" for c in "12345"},
    **{c: "Oceania" for c in "67"},
    **{c: "South America" for c in "89"},
}

# Second-character ordering used by ISO 3779 country ranges
_SECOND_CHAR_ORDER = "ABCDEFGHJKLMNPRSTUVWXYZ1234567890"

# First character -> ((second-char start, second-char end, country), ...)
COUNTRY_RANGES: Dict[str, Tuple[Tuple[str, str, str], ...]] = {
    "1": (("A", "0", "United States"),),
    "4": (("A", "0", "United States"),),
    "5": (("A", "0", "United States"),),
    "7": (("A", "0", "United States"),),
    "2": (("A", "0", "Canada"),),
    "3": (("A", "W", "Mexico"), ("X", "7", "Costa Rica")),
    "6": (("A", "W", "Australia"),),
    "8": (("A", "E", "Argentina"), ("F", "K", "Chile"), ("X", "2", "Venezuela")),
    "9": (("A", "E", "Brazil"), ("F", "K", "Colombia"), ("3", "9", "Brazil")),
    "J": (("A", "0", "Japan"),),
    "K": (("L", "R", "South Korea"), ("S", "0", "Kazakhstan")),
    "L": (("A", "0", "China"),),
    "M": (("A", "E", "India"), ("F", "K", "Indonesia"), ("L", "R", "Thailand")),
    "N": (("F", "K", "Pakistan"), ("L", "R", "Turkey")),
    "P": (("A", "E", "Philippines"), ("F", "K", "Singapore"), ("L", "R", "Malaysia")),
    "R": (("F", "K", "Taiwan"),),
    "S": (("A", "M", "United Kingdom"), ("N", "T", "Germany"), ("U", "Z", "Poland")),
    "T": (("A", "H", "Switzerland"), ("J", "P", "Czech Republic"), ("R", "V", "Hungary"), ("W", "1", "Portugal")),
    "V": (("A", "E", "Austria"), ("F", "R", "France"), ("S", "W", "Spain")),
    "W": (("A", "0", "Germany"),),
    "X": (("S", "W", "Russia"),),
    "Y": (("A", "E", "Belgium"), ("F", "K", "Finland"), ("S", "W", "Sweden")),
    "Z": (("A", "R", "Italy"),),
}


def lookup_wmi(wmi: str) -> Optional[Tuple[str, str]]:
    return WMI_TABLE.get(wmi)


def lookup_region(first_char: str) -> Optional[str]:
    return REGIONS.get(first_char)


def lookup_country(wmi: str) -> Optional[str]:
    """Country of manufacture from the first two WMI characters, if the range is assigned."""
    if len(wmi) < 2 or wmi[1] not in _SECOND_CHAR_ORDER:
        return None
    index = _SECOND_CHAR_ORDER.index(wmi[1])
    for start, end, country in COUNTRY_RANGES.get(wmi[0], ()):
        if _SECOND_CHAR_ORDER.index(start) <= index <= _SECOND_CHAR_ORDER.index(end):
            return country
    return None
