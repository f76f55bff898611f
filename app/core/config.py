import os

# Decode oracle
ORACLE_PROVIDER = os.getenv("ORACLE_PROVIDER", "nhtsa")  # nhtsa | static | none
ORACLE_BASE_URL = os.getenv("ORACLE_BASE_URL", "https://vpic.nhtsa.dot.gov/api/vehicles")
ORACLE_TIMEOUT_SECONDS = float(os.getenv("ORACLE_TIMEOUT_SECONDS", "3.0"))
ORACLE_MAX_ATTEMPTS = int(os.getenv("ORACLE_MAX_ATTEMPTS", "2"))
ORACLE_USER_AGENT = os.getenv("ORACLE_USER_AGENT", "vin-registry/1.0")

# Decode confidence
LOW_CONFIDENCE_THRESHOLD = int(os.getenv("LOW_CONFIDENCE_THRESHOLD", "60"))
MANUAL_DECODE_CONFIDENCE = int(os.getenv("MANUAL_DECODE_CONFIDENCE", "80"))

# Upper bound of each decode source before completeness is applied
SOURCE_CONFIDENCE_CEILING = {
    "oracle": 100,
    "manual": MANUAL_DECODE_CONFIDENCE,
    "fallback": 40,
}

# Request limits
RATE_LIMIT_DEFAULT = os.getenv("RATE_LIMIT_DEFAULT", "100/minute")
MAX_MILEAGE = 2_000_000
