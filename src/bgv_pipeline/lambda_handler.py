import json
import logging

from pydantic import ValidationError

from bgv_pipeline.errors import BgvError
from bgv_pipeline.models import ComparisonRequest
from bgv_pipeline.tools.checks import CheckService

LOGGER = logging.getLogger(__name__)

_SERVICE = None


def _service() -> CheckService:
    global _SERVICE
    if _SERVICE is None:
        _SERVICE = CheckService()
    return _SERVICE


def _bodies(event):
    """SQS-style {"Records": [{"body": "..."}]}, API-gateway {"body": "..."} or a bare request dict."""
    if "Records" in event:
        return [r.get("body") for r in event["Records"]]
    if "body" in event:
        return [event["body"]]
    return [event]


def lambda_handler(event, context):
    LOGGER.info("Classification event: %s", json.dumps(event)[:2000])
    results = []
    failures = 0
    for body in _bodies(event):
        try:
            payload = json.loads(body) if isinstance(body, str) else body
            request = ComparisonRequest.model_validate(payload)
            result = _service().classify(request, actor="lambda")
        except json.JSONDecodeError as exc:
            failures += 1
            results.append({"success": False, "error": f"Invalid JSON body: {exc.msg}"})
            continue
        except ValidationError as exc:
            failures += 1
            results.append({"success": False, "error": f"Invalid request: {exc.errors()[0]['msg']}"})
            continue
        except BgvError as exc:
            failures += 1
            results.append({"success": False, **exc.to_dict()})
            continue
        results.append({"success": True, "comparisonResult": result.to_wire()})

    status = 200 if failures == 0 else (207 if failures < len(results) else 400)
    return {
        "statusCode": status,
        "body": json.dumps({"message": "Classification processed", "results": results}),
    }
