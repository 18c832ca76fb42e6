import json

from ble_midi_bridge.config import LoggingConfig
from ble_midi_bridge.logs import NdjsonLogger, NullEventLog, create_event_log


def read_records(logger):
    return [json.loads(line) for line in logger.current_path.read_text().splitlines()]


def test_records_have_sequence_and_fields(tmp_path):
    logger = NdjsonLogger(str(tmp_path), file_prefix="bridge")
    logger.status("Bridge starting", data={"port": "AKAI_LPK25_IN_BLE"})
    logger.error("Connect failed", device="LPK25 Wireless")
    logger.close()

    assert logger.current_path.name.startswith("bridge_")
    assert logger.current_path.suffix == ".ndjson"

    records = read_records(logger)
    assert [r["seq"] for r in records] == [1, 2]
    assert records[0]["type"] == "status"
    assert records[0]["data"] == {"port": "AKAI_LPK25_IN_BLE"}
    assert "device" not in records[0]
    assert records[1]["device"] == "LPK25 Wireless"
    assert set(records[1]) >= {"ts_ms", "hms", "msg"}


def test_debug_filtered_in_regular_mode(tmp_path):
    logger = NdjsonLogger(str(tmp_path), verbose_whitelist=["midi"])
    logger.debug("noise")
    logger.debug("midi", data={"note": "C4"})
    logger.close()

    assert [r["msg"] for r in read_records(logger)] == ["midi"]


def test_verbose_mode_keeps_debug(tmp_path):
    logger = NdjsonLogger(str(tmp_path), mode="verbose")
    logger.debug("noise")
    logger.close()

    assert [r["type"] for r in read_records(logger)] == ["debug"]


def test_create_event_log(tmp_path):
    assert isinstance(create_event_log(LoggingConfig(ndjson=False)), NullEventLog)

    log = create_event_log(LoggingConfig(dir=str(tmp_path / "nd")))
    assert isinstance(log, NdjsonLogger)
    log.close()


def test_null_event_log_accepts_everything():
    log = NullEventLog()
    log.status("x", data={"a": 1})
    log.debug("y", device="z")
    log.close()
