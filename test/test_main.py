# test/test_main.py
import json

from bgv_pipeline import main


def test_demo_run_prints_green_result(capsys):
    main.run()
    result = json.loads(capsys.readouterr().out)
    assert result["checkId"] == "CHK-2025-0001"
    assert result["zone"] == "GREEN"
    assert result["discrepancies"] == []
