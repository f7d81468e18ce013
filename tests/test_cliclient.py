import io
import json

import pytest

from bbkcli.cliclient import CliClient, Report
from bbkcli.messages import agent_terminated_message, msg_to_agent
from bbkcli.options import Config


def make_client(settings=None, configure=(), stdin="", is_tty=False):
    cfg = Config()
    cfg.set("port", "80")
    cfg.set("mtype", "ipv4")
    for key, value in (settings or {}).items():
        cfg.set(key, value)
    for opt in configure:
        cfg.add("configure", opt)
    out = io.StringIO()
    client = CliClient(cfg, out=out, stdin=io.StringIO(stdin), is_tty=is_tty)
    return client, out


def ev(name, **args):
    return json.dumps({"event": name, "args": args})


def decode(message):
    obj = json.loads(message)
    return obj["method"], obj["args"]


def test_report_defaults():
    report = Report()
    assert report.ticket == "no_support_ID"
    assert report.download == -1.0
    assert report.tls == 0


def test_initial_messages():
    client, _ = make_client()
    assert client.initial_messages() == ['{"method": "clientReady", "args": {}}']


def test_start_line_written():
    _, out = make_client()
    assert out.getvalue().startswith("Start: ")


def test_start_line_ipv6():
    _, out = make_client({"mtype": "ipv6"})
    assert out.getvalue().endswith("  [ipv6]\n")


def test_no_start_line_for_pingsweep_and_quiet():
    _, out = make_client({"pingsweep": "1"})
    assert out.getvalue() == ""
    _, out = make_client({"quiet": "1"})
    assert out.getvalue() == ""


def test_invalid_json_terminates():
    client, _ = make_client()
    assert client.handle_event("not json") == [msg_to_agent("terminate")]


def test_agent_terminated_goes_to_stderr(capsys):
    client, _ = make_client()
    msg = agent_terminated_message("boom")
    assert client.handle_event(msg) == [msg_to_agent("terminate")]
    assert msg in capsys.readouterr().err


def test_unknown_event_no_reply():
    client, _ = make_client()
    assert client.handle_event(ev("somethingElse")) == []


def test_configuration_picks_server():
    client, out = make_client()
    servers = [
        {"type": "ipv6", "url": "v6.example.com"},
        {"type": "ipv4", "url": "v4.example.com:8080"},
    ]
    replies = client.handle_event(
        ev("configuration", servers=servers, hashkey="k1", ispname="ISP")
    )
    assert "Network operator: ISP\n" in out.getvalue()
    method, args = decode(replies[0])
    assert method == "startTest"
    assert args == {
        "serverUrl": "v4.example.com",
        "serverPort": 8080,
        "userKey": "k1",
        "tls": 0,
    }
    assert client.report.measurement_server == "v4.example.com"


def test_configuration_tls_needs_tlsport():
    client, _ = make_client({"ssl": "1"})
    servers = [
        {"type": "ipv4", "url": "a.example.com"},
        {"type": "ipv4", "url": "b.example.com", "tlsport": 443},
    ]
    replies = client.handle_event(ev("configuration", servers=servers))
    _, args = decode(replies[0])
    assert args["serverUrl"] == "b.example.com"
    assert args["serverPort"] == 443
    assert args["tls"] == 1


def test_configuration_ipv6_keeps_colons():
    client, _ = make_client({"mtype": "ipv6"})
    servers = [{"type": "ipv6", "url": "2001:db8::1"}]
    replies = client.handle_event(ev("configuration", servers=servers))
    _, args = decode(replies[0])
    assert args["serverUrl"] == "2001:db8::1"
    assert args["serverPort"] == 80


def test_configuration_without_server():
    client, out = make_client()
    replies = client.handle_event(ev("configuration", servers=[]))
    assert replies == [msg_to_agent("terminate")]
    assert "Error: no measurement server\n" in out.getvalue()


def test_configuration_uses_given_server_and_pingsweep():
    client, _ = make_client({"server": "given.example.com", "pingsweep": "1"})
    replies = client.handle_event(ev("configuration", servers=[]))
    assert replies == [msg_to_agent("pingSweep")]


def test_configuration_consent_fetches_content():
    client, _ = make_client()
    replies = client.handle_event(ev("configuration", require_consent="v1"))
    method, args = decode(replies[0])
    assert method == "getContent"
    assert args == {"lang": "en", "format": "text", "consent": "v1"}


def test_download_result_non_tty():
    client, out = make_client()
    client.handle_event(ev("taskStart", task="download"))
    client.handle_event(ev("taskProgress", task="download", result=50.0))
    assert "50.000" not in out.getvalue()
    client.handle_event(ev("taskComplete", task="download", result=123.456))
    assert out.getvalue().endswith("Download:    123.456 Mbit/s\n")
    assert client.report.download == 123.456


def test_failed_result_marked():
    client, out = make_client()
    client.handle_event(ev("taskStart", task="download"))
    client.handle_event(ev("taskComplete", task="download", result=0))
    assert out.getvalue().endswith(" test failed\n")


def test_tty_progress_rewrites_line():
    client, out = make_client(is_tty=True)
    client.handle_event(ev("taskStart", task="download"))
    client.handle_event(ev("taskProgress", task="download", result=10.5))
    assert "\rDownload:     10.500 Mbit/s" in out.getvalue()


def test_upload_complete_requests_save_and_shows_deferred_latency():
    client, out = make_client()
    client.handle_event(ev("taskStart", task="download"))
    client.handle_event(ev("taskComplete", task="latency", result=7.0))
    text = out.getvalue()
    assert " ms" not in text
    client.handle_event(ev("taskComplete", task="download", result=100.0))
    client.handle_event(ev("taskStart", task="upload"))
    replies = client.handle_event(ev("taskComplete", task="upload", result=50.0))
    assert replies == [msg_to_agent("saveReport", "{}")]
    text = out.getvalue()
    assert text.index("Latency:") > text.index("Upload:")
    assert text.endswith(" ms\n")


def test_csv_result_line():
    client, out = make_client(
        {"quiet": "1", "limiter": ",", "server": "srv.example.com"}
    )
    client.handle_event(ev("taskComplete", task="latency", result=5))
    client.handle_event(ev("taskComplete", task="download", result=100))
    client.handle_event(ev("taskComplete", task="upload", result=50))
    assert out.getvalue() == ""
    replies = client.handle_event(ev("taskComplete", task="global"))
    assert replies == [msg_to_agent("quit")]
    assert out.getvalue() == "100,50,5,srv.example.com,,no_support_ID,\n"


def test_quiet_result_has_ticket_and_id():
    client, out = make_client({"quiet": "1", "limiter": ","})
    client.handle_event(ev("setInfo", ticket="T1"))
    client.handle_event(ev("measurementInfo", MeasurementID="M9"))
    client.handle_event(ev("taskComplete", task="global"))
    line = out.getvalue().splitlines()[-1]
    fields = line.split(",")
    assert fields[5] == "T1"
    assert fields[6] == "M9"


def test_logfile_dash_result_has_header():
    client, out = make_client({"logfile": "-"})
    client.handle_event(ev("taskComplete", task="global"))
    assert out.getvalue().startswith("\n\nRESULT: ")


def test_agent_ready_saves_configure_options():
    client, _ = make_client(configure=["duration=5", "speedlimit", "bogus=1"])
    replies = client.handle_event(ev("agentReady"))
    method, args = decode(replies[0])
    assert method == "saveConfigurationOption"
    assert args == {"Measure.LoadDuration": "5", "Measure.SpeedLimit": "1"}
    assert replies[1] == msg_to_agent("clientReady")


def test_agent_ready_sets_options_except_overridden():
    client, _ = make_client({"Measure.IpType": "override"})
    replies = client.handle_event(
        ev("agentReady", **{"Measure.IpType": "ipv6", "X": "y"})
    )
    method, args = decode(replies[0])
    assert method == "setConfigurationOption"
    assert args == {"X": "y"}
    assert replies[1] == msg_to_agent("getConfiguration")


def test_agent_ready_lists_measurements():
    client, _ = make_client({"list_measurements": "10", "list_from": "5"})
    replies = client.handle_event(ev("agentReady"))
    method, args = decode(replies[-1])
    assert method == "listMeasurements"
    assert args == {"max": "10", "from": "5"}


def test_measurement_list_empty():
    client, out = make_client({"list_measurements": "10"})
    replies = client.handle_event(ev("measurementList", measurements=[]))
    assert replies == [msg_to_agent("terminate")]
    assert out.getvalue() == "No measurements found.\n"


def test_measurement_list_rows():
    client, out = make_client({"list_measurements": "10"})
    rows = [
        {"id": 83310, "down": 113.994, "up": 58.6238, "latency": 6.28596,
         "server": "Stockholm", "isp": "ISP", "ts": 1519736433},
        {"id": 0, "ts": 1519736433},
    ]
    client.handle_event(ev("measurementList", measurements=rows, remaining=3))
    lines = out.getvalue().splitlines()
    assert lines[0] == "ID\tDownload\tUpload\tLatency\tServer\tISP\tDate"
    assert lines[1].split("\t")[:6] == [
        "83310", "113.994", "58.6238", "6.28596", "Stockholm", "ISP",
    ]
    assert lines[2] == "3 older measurements"
    assert len(lines) == 3


def test_report_rating_good():
    client, out = make_client()
    client.handle_event(ev("taskComplete", task="download", result=100))
    info = [{"categories": [
        {"description": "100/100", "good": "90000", "acceptable": "50000"}
    ]}]
    client.handle_event(ev(
        "report",
        subscription={"status": 1, "ispSpeedName": "100/100"},
        subscription_info=info,
    ))
    assert "Subscription: 100/100\n" in out.getvalue()
    assert "The download result is GOOD\n" in out.getvalue()
    assert client.report.rating == "GOOD"


def test_report_rating_bad_with_message():
    client, out = make_client()
    client.handle_event(ev("taskComplete", task="download", result=10))
    info = [{"categories": [
        {"description": "100/100", "good": "90000", "acceptable": "50000"}
    ]}]
    client.handle_event(ev(
        "report",
        subscription={"status": 1, "ispSpeedName": "100/100",
                      "ispBadInfoMessage": "slow"},
        subscription_info=info,
    ))
    text = out.getvalue()
    assert "The download result is BAD\n" in text
    assert text.endswith(
        "Message from service provider regarding the download result: slow\n"
    )


def test_report_ignored_without_status():
    client, out = make_client()
    before = out.getvalue()
    assert client.handle_event(ev("report", subscription={"status": 0})) == []
    assert out.getvalue() == before


def test_rating_in_quiet_result():
    client, out = make_client({"quiet": "1", "limiter": ","})
    client.handle_event(ev("taskComplete", task="download", result=100))
    info = [{"categories": [
        {"description": "S", "good": "90000", "acceptable": "50000"}
    ]}]
    client.handle_event(ev(
        "report", subscription={"status": 1, "ispSpeedName": "S"},
        subscription_info=info,
    ))
    client.handle_event(ev("taskComplete", task="global"))
    assert out.getvalue().endswith(",GOOD\n")


def test_set_info_error_with_code():
    client, out = make_client()
    client.handle_event(ev("setInfo", error="bad thing", errno="7"))
    assert out.getvalue().endswith("fatal error: bad thing (error code 7)\n")


def test_set_info_best_server():
    client, out = make_client({"pingsweep": "1"})
    replies = client.handle_event(ev("setInfo", bestServer="Stockholm"))
    assert replies == [msg_to_agent("terminate")]
    assert out.getvalue() == "Closest server: Stockholm\n"


def test_show_message_visible_when_quiet():
    client, out = make_client({"quiet": "1"})
    client.handle_event(ev("setInfo", msgToUser="hello"))
    assert out.getvalue() == "hello\n"


def test_consent_accepted():
    client, _ = make_client(stdin="y\n")
    contents = {"consent": "v1", "body": "terms"}
    replies = client.handle_event(ev("setInfo", contents=contents))
    method, args = decode(replies[0])
    assert method == "getConfiguration"
    assert args == contents


def test_consent_declined():
    client, out = make_client(stdin="n\n")
    replies = client.handle_event(
        ev("setInfo", contents={"consent": "v1", "body": "terms"})
    )
    assert replies == [msg_to_agent("terminate")]
    assert "terms\n" in out.getvalue()


def test_consent_missing_body():
    client, out = make_client()
    replies = client.handle_event(ev("setInfo", contents={"consent": "v1"}))
    assert replies == [msg_to_agent("terminate")]
    assert out.getvalue().endswith("Server error.\n")


def test_out_file_appends(tmp_path):
    path = tmp_path / "out.txt"
    for _ in range(2):
        cfg = Config()
        cfg.set("port", "80")
        cfg.set("out", str(path))
        client = CliClient(cfg, stdin=io.StringIO(""))
        client.close()
    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert all(line.startswith("Start: ") for line in lines)


def test_bad_port_in_server_url_raises():
    client, _ = make_client()
    with pytest.raises(ValueError):
        client.handle_event(ev(
            "configuration", servers=[{"type": "ipv4", "url": "h.example.com:x"}]
        ))