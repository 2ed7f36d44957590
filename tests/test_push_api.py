from datetime import datetime, timedelta

from adms_server.config import settings
from adms_server.events.event_stream import EventStream, device_event_stream
from adms_server.models.device import DeviceStatus
from adms_server.repositories import attendance_repo, setting_repo
from adms_server.services.command_queue import command_queue
from adms_server.services.device_registry import device_registry
from adms_server.services.push_protocol_service import parse_result_reports

DESCRIPTOR = "ZAM70-NF24HA-Ver3.3.12,1,1,0,10.81.20.170,10,40,12,1,11010,0,0,0"


def expected_options():
    return (
        "GET OPTION FROM:attlog\n"
        "Stamp=0\n"
        "OpStamp=0\n"
        f"ErrorDelay={settings.ERROR_DELAY}\n"
        f"Delay={settings.HEARTBEAT_DELAY}\n"
        f"TransTimes={settings.TRANS_TIMES}\n"
        f"TransInterval={settings.TRANS_INTERVAL}\n"
        "TransFlag=1111000000\n"
        f"Realtime={settings.REALTIME}\n"
        "Encrypt=0"
    )


class TestHandshake:
    def test_handshake_returns_option_block(self, client):
        response = client.get("/iclock/cdata?SN=DEV1&options=all&pushver=2.4.1")

        assert response.status_code == 200
        assert response.mimetype == "text/plain"
        assert response.get_data(as_text=True) == expected_options()

    def test_handshake_registers_device_and_default_capabilities(self, client):
        client.get("/iclock/cdata.aspx?SN=DEV1&pushver=2.4.1")

        device = device_registry.get("DEV1")
        assert device.status == DeviceStatus.ONLINE
        assert device.push_version == "2.4.1"

        status = client.get("/api/push/devices/DEV1/status").get_json()
        assert status["capabilities"]["face_major_ver"] == 40

    def test_handshake_without_serial(self, client):
        text = client.get("/iclock/cdata").get_data(as_text=True)

        assert text.startswith("ADMS Server Ready")
        assert device_registry.list_devices() == []


class TestPoll:
    def test_poll_without_work(self, client):
        assert client.get("/iclock/getrequest?SN=DEV1").get_data(as_text=True) == "OK"

    def test_poll_refreshes_identity_from_descriptor(self, client):
        client.get("/iclock/getrequest", query_string={"SN": "DEV1", "INFO": DESCRIPTOR})

        device = device_registry.get("DEV1")
        assert device.ip_address == "10.81.20.170"
        assert device.device_model == "ZAM70-NF24HA"
        assert device.firmware_version == "3.3.12"

    def test_poll_delivers_one_command_at_a_time(self, client):
        first = command_queue.enqueue("DEV1", "CHECK")
        second = command_queue.enqueue("DEV1", "INFO")

        replies = [client.get("/iclock/getrequest.aspx?SN=DEV1").get_data(as_text=True) for _ in range(3)]

        assert replies == [f"C:{first.id}:CHECK", f"C:{second.id}:INFO", "OK"]


class TestUploadEndpoint:
    def test_attlog_upload(self, client):
        response = client.post(
            "/iclock/cdata?SN=DEV1&table=ATTLOG&Stamp=9999",
            data="E001\t2024-01-10 09:15:00\t0\t1\t0\n",
        )

        assert response.get_data(as_text=True) == "OK"
        assert attendance_repo.count("E001") == 1
        assert device_registry.get("DEV1").status == DeviceStatus.ONLINE

    def test_garbage_upload_still_ok(self, client):
        response = client.post("/iclock/cdata?SN=DEV1&table=BIODATA", data="\x00\x01 nonsense")

        assert response.status_code == 200
        assert response.get_data(as_text=True) == "OK"

    def test_upload_without_serial(self, client):
        assert client.post("/iclock/cdata?table=ATTLOG", data="x").get_data(as_text=True) == "OK"


class TestCommandResult:
    def test_result_body_acknowledges(self, client):
        queued = command_queue.enqueue("DEV1", "INFO")
        client.get("/iclock/getrequest?SN=DEV1")

        response = client.post("/iclock/devicecmd?SN=DEV1", data=f"ID={queued.id}&Return=0&CMD=INFO")

        assert response.get_data(as_text=True) == "OK"
        assert command_queue.stats("DEV1")["success"] == 1

    def test_multiple_reports_in_one_body(self, client):
        a = command_queue.enqueue("DEV1", "A")
        b = command_queue.enqueue("DEV1", "B")
        client.get("/iclock/getrequest?SN=DEV1")
        client.get("/iclock/getrequest?SN=DEV1")

        client.post(
            "/iclock/devicecmd?SN=DEV1",
            data=f"ID={a.id}&Return=0&CMD=DATA\nID={b.id}&Return=-1002&CMD=DATA\n",
        )

        stats = command_queue.stats("DEV1")
        assert stats["success"] == 1
        assert stats["pending"] == 1

    def test_result_in_query_string(self, client):
        queued = command_queue.enqueue("DEV1", "INFO")
        client.get("/iclock/getrequest?SN=DEV1")

        client.post(f"/iclock/devicecmd?SN=DEV1&ID={queued.id}&Return=0")

        assert command_queue.stats("DEV1")["success"] == 1

    def test_unknown_command_id_still_ok(self, client):
        response = client.post("/iclock/devicecmd?SN=DEV1", data="ID=777&Return=0")

        assert response.get_data(as_text=True) == "OK"

    def test_parse_result_reports(self):
        reports = parse_result_reports("ID=1&Return=0&CMD=DATA\r\nID=2&Return=-1\nCMD=DATA")

        assert reports == [
            {"ID": "1", "RETURN": "0", "CMD": "DATA"},
            {"ID": "2", "RETURN": "-1", "CMD": "DATA"},
        ]


class TestManagementApi:
    def test_list_devices(self, client, register_devices):
        register_devices("DEV1", "DEV2")

        body = client.get("/api/push/devices").get_json()

        assert body["success"] is True
        assert [d["serial_number"] for d in body["data"]] == ["DEV1", "DEV2"]

    def test_list_capabilities(self, client):
        client.get("/iclock/cdata?SN=DEV1")

        data = client.get("/api/push/capabilities").get_json()["data"]

        assert [caps["device_serial"] for caps in data] == ["DEV1"]
        assert data[0]["face_supported"] is True

    def test_status_of_unknown_device(self, client):
        assert client.get("/api/push/devices/NOPE/status").status_code == 404

    def test_set_direction(self, client, register_devices):
        register_devices("DEV1")

        ok = client.put("/api/push/devices/DEV1/direction", json={"direction": "OUT"})
        bad = client.put("/api/push/devices/DEV1/direction", json={"direction": "sideways"})
        missing = client.put("/api/push/devices/NOPE/direction", json={"direction": "in"})

        assert ok.get_json()["device"]["punch_direction"] == "out"
        assert bad.status_code == 400
        assert missing.status_code == 404

    def test_queue_command(self, client):
        response = client.post("/api/push/devices/DEV1/command", json={"command": "REBOOT", "priority": 2})

        assert response.status_code == 201
        assert response.get_json()["command"]["priority"] == 2
        assert client.post("/api/push/devices/DEV1/command", json={}).status_code == 400
        assert client.post("/api/push/devices/DEV1/command", data="REBOOT").status_code == 400

    def test_cancel_and_stats(self, client):
        command_queue.enqueue("DEV1", "DATA UPDATE BIODATA Pin=1")
        command_queue.enqueue("DEV1", "INFO")

        cancelled = client.post("/api/push/devices/DEV1/commands/cancel", json={"filter": "BIODATA"}).get_json()
        stats = client.get("/api/push/queue/stats?device=DEV1").get_json()["stats"]

        assert cancelled["cancelled"] == 1
        assert stats["cancelled"] == 1
        assert stats["pending"] == 1

    def test_dead_letter_retry(self, client):
        queued = command_queue.enqueue("DEV1", "INFO", max_retries=1)
        command_queue.dequeue("DEV1")
        command_queue.acknowledge(queued.id, -1, "DEV1")

        listed = client.get("/api/push/queue/dead-letter").get_json()["data"]
        retried = client.post(f"/api/push/queue/dead-letter/{queued.id}/retry")
        again = client.post(f"/api/push/queue/dead-letter/{queued.id}/retry")
        unknown = client.post("/api/push/queue/dead-letter/9999/retry")

        assert [c["id"] for c in listed] == [queued.id]
        assert retried.get_json()["command"]["status"] == "pending"
        assert again.status_code == 409
        assert unknown.status_code == 404

    def test_employee_history(self, client):
        command_queue.enqueue("DEV1", "DATA UPDATE USERINFO PIN=E1\tName=A")
        command_queue.enqueue("DEV1", "DATA UPDATE USERINFO PIN=E10\tName=B")

        data = client.get("/api/push/queue/employee/E1").get_json()["data"]

        assert len(data) == 1

    def test_probe(self, client, register_devices):
        register_devices("DEV1")

        assert len(client.post("/api/push/devices/DEV1/probe").get_json()["command_ids"]) == 3
        assert client.post("/api/push/devices/NOPE/probe").status_code == 404

    def test_purge(self, client):
        assert client.post("/api/push/queue/purge", json={"retention_days": 1}).get_json()["purged"] == 0
        assert client.post("/api/push/queue/purge", json={"retention_days": "x"}).status_code == 400

    def test_recompute_requires_start(self, client):
        assert client.post("/api/push/attendance/recompute", json={}).status_code == 400
        assert client.post("/api/push/attendance/recompute", json={"start": "2024-02-02", "end": "2024-02-01"}).status_code == 400

    def test_settings_round_trip(self, client):
        response = client.put("/api/push/settings", json={"default_shift_start": "8:30"})

        assert response.get_json()["data"]["default_shift_start"] == "08:30"
        assert client.get("/api/push/settings").get_json()["data"]["default_shift_start"] == "08:30"

    def test_invalid_shift_start_is_a_bad_request(self, client):
        response = client.put("/api/push/settings", json={"default_shift_start": "25:70"})

        assert response.status_code == 400
        assert client.get("/api/push/settings").get_json()["data"]["default_shift_start"] == "09:00"

    def test_default_settings_do_not_overwrite(self):
        assert setting_repo.initialize_defaults() == 3
        setting_repo.set("default_shift_start", "07:45")

        assert setting_repo.initialize_defaults() == 0
        assert setting_repo.get_value("default_shift_start") == "07:45"

    def test_resync_without_templates(self, client):
        assert client.post("/api/push/employees/E1/resync", json={}).get_json()["queued"] == 0


class TestDeviceRegistry:
    def test_sweep_marks_silent_devices_offline(self):
        t0 = datetime(2024, 1, 10, 9, 0)
        device_registry.touch("DEV1", now=t0)
        device_registry.touch("DEV2", now=t0 + timedelta(minutes=10))

        offline = device_registry.sweep_offline(now=t0 + timedelta(minutes=16))

        assert offline == ["DEV1"]
        assert device_registry.get("DEV1").status == DeviceStatus.OFFLINE
        assert device_registry.get("DEV2").status == DeviceStatus.ONLINE

    def test_status_events(self):
        subscriber = device_event_stream.subscribe()
        try:
            device_registry.touch("DEV1")
            device_registry.touch("DEV1")
            device_registry.touch("DEV1", notify=True)
            events = []
            while not subscriber.empty():
                events.append(subscriber.get_nowait()[0])
        finally:
            device_event_stream.unsubscribe(subscriber)

        assert events == ["device_status", "device_status"]

    def test_touch_keeps_known_attributes(self):
        device_registry.touch("DEV1", ip_address="10.0.0.5", device_model="K40")
        device = device_registry.touch("DEV1")

        assert device.ip_address == "10.0.0.5"
        assert device.device_model == "K40"


class TestEventStream:
    def test_slow_subscriber_drops_oldest(self):
        stream = EventStream(max_queue_size=2)
        subscriber = stream.subscribe()

        for n in range(3):
            stream.publish("tick", {"n": n})

        received = [subscriber.get_nowait()[1] for _ in range(2)]
        assert received == ['{"type": "tick", "n": 1}', '{"type": "tick", "n": 2}']

    def test_empty_payload_not_published(self):
        stream = EventStream()
        subscriber = stream.subscribe()

        stream.publish("tick", {})

        assert subscriber.empty()
        assert stream.subscriber_count == 1
        stream.unsubscribe(subscriber)
        assert stream.subscriber_count == 0

    def test_subscriber_limited_to_requested_types(self):
        stream = EventStream()
        attendance_only = stream.subscribe(["attendance"])
        everything = stream.subscribe()

        stream.publish("device_status", {"serial_number": "DEV1"})
        stream.publish("attendance", {"employee_code": "E1"})

        assert [attendance_only.get_nowait()[0]] == ["attendance"]
        assert attendance_only.empty()
        assert [everything.get_nowait()[0] for _ in range(2)] == ["device_status", "attendance"]


class TestReadEndpoints:
    def test_device_logs(self, client):
        client.post(
            "/iclock/cdata?SN=DEV1&table=OPERLOG",
            data="OPLOG 4 0 2024-01-10 09:00:00 0 0 0 0\nOPLOG 6 0 2024-01-10 09:01:00 1",
        )
        client.post("/iclock/cdata?SN=DEV1&table=ERRORLOG", data="ERRLOG 2 0 2024-01-10 09:02:00 sensor")

        body = client.get("/api/push/devices/DEV1/logs").get_json()

        assert [log["operation_type"] for log in body["operations"]] == ["6", "4"]
        assert body["errors"][0]["error_code"] == "2"
        assert body["errors"][0]["details"] == "sensor"

    def test_employee_templates_omit_payload(self, client, template_payload):
        line = f"FP PIN=E7\tFID=2\tSize=0\tValid=1\tTMP={template_payload(300)}"
        client.post("/iclock/cdata?SN=DEV1&table=OPERLOG", data=line)
        client.post("/iclock/cdata?SN=DEV1&table=OPERLOG", data="USER PIN=E7\tName=Jane Roe\tPri=0\tPasswd=1234")

        body = client.get("/api/push/employees/E7/templates").get_json()

        assert body["employee"]["name"] == "Jane Roe"
        assert body["employee"]["has_fingerprint"] is True
        assert "password" not in body["employee"]
        assert body["templates"][0]["template_no"] == 2
        assert body["templates"][0]["template_length"] == 300
        assert "template_data" not in body["templates"][0]
        assert client.get("/api/push/employees/E404/templates").status_code == 404

    def test_attendance_day(self, client):
        client.post(
            "/iclock/cdata?SN=DEV1&table=ATTLOG",
            data="E001\t2024-01-10 09:15:00\t0\t1\t0\nE001\t2024-01-10 18:00:00\t1\t1\t0",
        )

        body = client.get("/api/push/attendance/E001/2024-01-10").get_json()

        assert body["summary"]["status"] == "Present"
        assert body["summary"]["in_time"] == "2024-01-10 09:15:00"
        assert [p["punch_time"] for p in body["punches"]] == ["2024-01-10 09:15:00", "2024-01-10 18:00:00"]
        assert client.get("/api/push/attendance/E001/yesterday").status_code == 400
