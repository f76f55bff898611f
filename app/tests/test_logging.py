import json
import logging

import pytest

from conftest import SCENARIO_VIN
from core.logging import setup_logging


@pytest.mark.asyncio
async def test_registration_with_info_logging(registration_service):
    setup_logging(logging.INFO)

    first = await registration_service.register_vehicle(SCENARIO_VIN, "tenant-a", mileage=45000)
    again = await registration_service.register_vehicle(SCENARIO_VIN, "tenant-a")

    assert first.created is True
    assert again.duplicate is not None


@pytest.mark.asyncio
async def test_register_route_with_info_logging(api_client):
    setup_logging(logging.INFO)

    response = await api_client.post(
        "/vehicles/register", json={"vin": SCENARIO_VIN, "mileage": 45000}, headers={"X-Tenant-ID": "tenant-a"}
    )

    assert response.status_code == 200
    assert response.json()["created"] is True


@pytest.mark.asyncio
async def test_registration_log_line_is_structured(registration_service, capsys):
    setup_logging(logging.INFO)

    await registration_service.register_vehicle(SCENARIO_VIN, "tenant-a")

    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
    processed = [line for line in lines if line["message"] == "Vehicle registration processed"]
    assert len(processed) == 1
    assert processed[0]["canonical_created"] is True
    assert processed[0]["tenant_id"] == "tenant-a"
