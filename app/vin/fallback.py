import logging

from vin.tables import lookup_country, lookup_region, lookup_wmi
from vin.types import NormalizedVin, PartialDecode
from vin.validator import candidate_years

logger = logging.getLogger(__name__)


class FallbackDecoder:
    """
    Decodes what the VIN structure alone can tell: manufacturer from the WMI
    and the two model-year candidates from position 10.

    Model, trim and body class are never guessed.
    """

    def decode_fallback(self, vin: NormalizedVin) -> PartialDecode:
        wmi_entry = lookup_wmi(vin.wmi)
        make, country = wmi_entry if wmi_entry else (None, lookup_country(vin.wmi))

        partial = PartialDecode(
            make=make,
            year_range=candidate_years(vin.year_code),
            country=country,
            region=lookup_region(vin.value[0]),
        )
        logger.debug(
            "Fallback decode",
            extra={"vin": vin.value, "make": partial.make, "country": partial.country},
        )
        return partial
