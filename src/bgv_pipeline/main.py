import json
import logging

from bgv_pipeline.models import ClientPolicy, ComparisonRequest
from bgv_pipeline.tools.checks import CheckService


def run():
    logging.basicConfig(level=logging.INFO)
    request = ComparisonRequest(
        check_id="CHK-2025-0001",
        claimed_data={
            "employeeName": "Ravi Kumar",
            "companyName": "Acme Technologies Pvt Ltd",
            "designation": "Senior Engineer",
            "employmentDates": "2020-01-01 to 2023-06-30",
            "salary": "50000",
        },
        verified_data={
            "employeeName": "Ravi Kumar",
            "companyName": "Acme Technologies",
            "designation": "Senior Engineer",
            "employmentDates": "2020-02-01 to 2023-06-30",
            "salary": "48000",
        },
        client_policy=ClientPolicy(sku_name="STANDARD", special_instructions=["uan_30day_tolerance"]),
    )

    try:
        result = CheckService().classify(request, actor="cli")
    except Exception as e:
        raise Exception(f"An error occurred while classifying the check: {e}") from e
    print(json.dumps(result.to_wire(), indent=2))


if __name__ == "__main__":
    run()
