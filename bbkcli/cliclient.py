"""Command line user interface that talks to a measurement agent."""

from __future__ import annotations

import json
import logging
import re
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable, TextIO

from .messages import is_agent_terminated_message, msg_to_agent
from .options import Config

_log = logging.getLogger("CLI")

# Translation from user friendly option names to the agent's names.
_CONFIG_MAP = {
    "speedlimit": "Measure.SpeedLimit",
    "duration": "Measure.LoadDuration",
    "iptype": "Measure.IpType",
    "hashkey": "Client.hashkey",
}

_INT_PREFIX = re.compile(r"\s*[+-]?\d+")
_FLOAT_PREFIX = re.compile(
    r"\s*[+-]?(?:\d+\.?\d*(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?)"
)
_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class Report:
    """Details of the current measurement."""

    latency: float = -1.0
    download: float = -1.0
    upload: float = -1.0
    ticket: str = "no_support_ID"
    measurement_server: str = ""
    rating: str = ""
    isp: str = ""
    msg: str = ""
    tls: int = 0


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _field(value: Any, key: str) -> Any:
    return value.get(key) if isinstance(value, dict) else None


def _string(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _number(value: Any) -> float:
    return float(value) if _is_number(value) else 0.0


def _integer(value: Any) -> int:
    return int(value) if _is_number(value) else 0


def _array(value: Any) -> list:
    return value if isinstance(value, list) else []


def _object(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _str_field(value: Any, key: str) -> str:
    return _string(_field(value, key))


def _dump(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False)


def _stoi(text: str) -> int:
    match = _INT_PREFIX.match(text)
    if not match:
        raise ValueError(f"invalid integer: {text!r}")
    return int(match.group())


def _stod(text: str) -> float:
    match = _FLOAT_PREFIX.match(text)
    if not match:
        raise ValueError(f"invalid number: {text!r}")
    return float(match.group())


def _fmt_num(value: float) -> str:
    return f"{value:g}"


def _isatty(stream: TextIO) -> bool:
    try:
        return bool(stream.isatty())
    except (AttributeError, ValueError):
        return False


class CliClient:
    """Turns events from the measurement agent into terminal output and replies."""

    def __init__(
        self,
        config: Config,
        out: TextIO | None = None,
        stdin: TextIO | None = None,
        is_tty: bool | None = None,
    ) -> None:
        self._config = config
        self._stdin = stdin if stdin is not None else sys.stdin
        self.report = Report(measurement_server=config.value("server"))
        self.measurement_id = ""
        self._out_quiet = config.value("quiet") == "1" or config.value("logfile") == "-"
        self._owns_out = False

        out_path = config.value("out")
        if out_path:
            self._out: TextIO = open(out_path, "a", encoding="utf-8")
            self._owns_out = True
            self._is_tty = False
        else:
            self._out = out if out is not None else sys.stdout
            self._is_tty = _isatty(self._out) if is_tty is None else is_tty

        self._blocked = False
        self._current_line = ""
        self._current_header = ""
        self._in_progress_task = False
        self._deferred_latency = False
        self._saved_options = False

        if config.value("pingsweep") != "1" and not config.has_key("list_measurements"):
            if self._out_quiet:
                self._blocked = True
            else:
                suffix = "  [ipv6]\n" if config.value("mtype") == "ipv6" else "\n"
                self._write("Start: " + time.strftime(_TIME_FORMAT) + suffix)

        if config.value("logfile") == "-":
            # Output would otherwise be garbled by the log.
            self._is_tty = False

        self._handlers: dict[str, Callable[[Any, list[str]], None]] = {
            "configuration": self._on_configuration,
            "taskProgress": self._on_task_progress,
            "taskStart": self._on_task_start,
            "taskComplete": self._on_task_complete,
            "agentReady": self._on_agent_ready,
            "measurementList": self._on_measurement_list,
            "report": self._on_report,
            "measurementInfo": self._on_measurement_info,
            "setInfo": self._on_set_info,
        }

    def close(self) -> None:
        """Close the output file if this client opened it."""
        if self._owns_out:
            self._out.close()
            self._owns_out = False

    def initial_messages(self) -> list[str]:
        """Return the messages to send to the agent when the session starts."""
        return ['{"method": "clientReady", "args": {}}']

    def handle_event(self, msg: str) -> list[str]:
        """Handle one message from the agent and return the replies to it."""
        replies: list[str] = []
        try:
            obj = json.loads(msg)
        except ValueError:
            if is_agent_terminated_message(msg):
                print(msg, file=sys.stderr)
            else:
                _log.error("JSON error: got %s", msg)
            replies.append(msg_to_agent("terminate"))
            return replies

        event = _str_field(obj, "event")
        args = _field(obj, "args")
        if event == "setInfo" and _str_field(args, "logText"):
            _log.info("EVENT: setInfo logText")
        else:
            _log.info("EVENT: %s %s", event, msg)

        handler = self._handlers.get(event)
        if handler is not None:
            handler(args, replies)
        return replies

    def set_header(self, hdr: str) -> None:
        """Start a new result line with the given header."""
        self._in_progress_task = True
        self._write(hdr)
        self._current_header = hdr

    # Output helpers

    def _write(self, text: str) -> None:
        if not self._blocked:
            self._out.write(text)
            self._out.flush()

    def _show_message(self, msg: str, linefeed: bool = True) -> None:
        if self._out_quiet:
            self._blocked = False
        self._write(msg + ("\n" if linefeed else ""))
        if self._out_quiet:
            self._blocked = True

    def _do_output(self, value: float, unit: str, final: bool = False) -> None:
        if self._is_tty:
            self._write("\r")
        if self._is_tty or final:
            to_delete = len(self._current_line)
            self._current_line = f"{self._current_header}{value:10.3f}{unit}"
            self._write(self._current_line)
            if to_delete > len(self._current_line):
                self._write(" " * (to_delete - len(self._current_line)))
        if final:
            self._current_line = ""
            if value <= 0:
                self._write(" test failed")
            self._write("\n")

    # Event handlers

    def _on_configuration(self, args: Any, replies: list[str]) -> None:
        consent = _field(args, "require_consent")
        if _string(consent):
            # Personal data needs user consent; fetch the text to show first.
            content_args = {"lang": "en", "format": "text", "consent": consent}
            replies.append(msg_to_agent("getContent", _dump(content_args)))
            return

        report = self.report
        report.isp = _str_field(args, "ispname")
        if report.isp:
            self._write(f"Network operator: {report.isp}\n")

        if self._config.value("ssl") == "1":
            report.tls = 1
        server_port = _stoi(self._config.value("port"))
        mtype = self._config.value("mtype")
        if not report.measurement_server:
            for srv in _array(_field(args, "servers")):
                if _str_field(srv, "type") != mtype:
                    continue
                hostname = _str_field(srv, "url")
                pos = hostname.find(":")
                if mtype != "ipv6" and pos >= 0:
                    server_port = _stoi(hostname[pos + 1:])
                    hostname = hostname[:pos]
                if report.tls:
                    tlsport = _integer(_field(srv, "tlsport"))
                    if tlsport:
                        report.measurement_server = hostname
                        server_port = tlsport
                        break
                else:
                    report.measurement_server = hostname
                    break
            if not report.measurement_server:
                self._show_message("Error: no measurement server")
                replies.append(msg_to_agent("terminate"))
                return

        out_args = {
            "serverUrl": report.measurement_server,
            "serverPort": server_port,
            "userKey": _str_field(args, "hashkey"),
            "tls": report.tls,
        }
        if self._config.value("pingsweep") == "1":
            replies.append(msg_to_agent("pingSweep"))
        else:
            replies.append(msg_to_agent("startTest", _dump(out_args)))

    def _on_task_progress(self, args: Any, replies: list[str]) -> None:
        if _str_field(args, "task") in ("download", "upload", "uploadinfo"):
            self._do_output(_number(_field(args, "result")), " Mbit/s")

    def _on_task_start(self, args: Any, replies: list[str]) -> None:
        task = _str_field(args, "task")
        if task == "download":
            self.set_header("Download: ")
        elif task == "upload":
            self.set_header("Upload:   ")

    def _on_task_complete(self, args: Any, replies: list[str]) -> None:
        task = _str_field(args, "task")
        report = self.report
        if task == "global":
            if self._out_quiet:
                self._blocked = False
                if self._config.value("quiet") != "1":
                    self._write("\n\nRESULT: ")
                limiter = self._config.value("limiter", " ")
                fields = [
                    _fmt_num(report.download),
                    _fmt_num(report.upload),
                    _fmt_num(report.latency),
                    report.measurement_server,
                    report.isp,
                    report.ticket,
                    self.measurement_id,
                ]
                if report.rating:
                    fields.append(report.rating)
                self._write(limiter.join(fields) + "\n")
            replies.append(msg_to_agent("quit"))
        elif task == "latency":
            report.latency = _number(_field(args, "result"))
            if self._in_progress_task:
                self._deferred_latency = True
            else:
                self.set_header("Latency:  ")
                self._do_output(report.latency, " ms", True)
        elif task == "download":
            self._in_progress_task = False
            report.download = _number(_field(args, "result"))
            self._do_output(report.download, " Mbit/s", True)
        elif task == "upload":
            self._in_progress_task = False
            report.upload = _number(_field(args, "result"))
            self._do_output(report.upload, " Mbit/s", True)
            if self._deferred_latency:
                self._write("Latency:  ")
                self._do_output(report.latency, " ms", True)
            # Reports are not saved automatically, so say we are done.
            replies.append(msg_to_agent("saveReport", "{}"))

    def _on_agent_ready(self, args: Any, replies: list[str]) -> None:
        new_config: dict[str, str] = {}
        if not self._saved_options:
            self._saved_options = True
            for opt in self._config.values("configure"):
                attr, sep, value = opt.partition("=")
                name = _CONFIG_MAP.get(attr)
                if name is not None:
                    new_config[name] = value if sep else "1"
            if new_config:
                replies.append(msg_to_agent("saveConfigurationOption", _dump(new_config)))
                # The agent sends agentReady again, with updated options.
                replies.append(msg_to_agent("clientReady"))
                return

        for attr, value in sorted(_object(args).items()):
            if self._config.value(attr) != "override":
                new_config[attr] = _string(value)
        if new_config:
            replies.append(msg_to_agent("setConfigurationOption", _dump(new_config)))

        if self._config.has_key("list_measurements"):
            pars = {"max": self._config.value("list_measurements")}
            if self._config.has_key("list_from"):
                pars["from"] = self._config.value("list_from")
            replies.append(msg_to_agent("listMeasurements", _dump(pars)))
        else:
            replies.append(msg_to_agent("getConfiguration"))

    def _on_measurement_list(self, args: Any, replies: list[str]) -> None:
        measurements = _array(_field(args, "measurements"))
        if self._out_quiet:
            self._write(_string(args) + "\n")
        elif not measurements:
            self._write("No measurements found.\n")
        else:
            lines = ["ID\tDownload\tUpload\tLatency\tServer\tISP\tDate\n"]
            for m in measurements:
                ts = int(_number(_field(m, "ts")))
                ident = int(_number(_field(m, "id")))
                if ident and ts:
                    row = [
                        str(ident),
                        _fmt_num(_number(_field(m, "down"))),
                        _fmt_num(_number(_field(m, "up"))),
                        _fmt_num(_number(_field(m, "latency"))),
                        _str_field(m, "server"),
                        _str_field(m, "isp"),
                        time.strftime(_TIME_FORMAT, time.localtime(ts)),
                    ]
                    lines.append("\t".join(row) + "\n")
            remaining = int(_number(_field(args, "remaining")))
            if remaining > 0:
                lines.append(f"{remaining} older measurements\n")
            self._write("".join(lines))
        replies.append(msg_to_agent("terminate"))

    def _on_report(self, args: Any, replies: list[str]) -> None:
        res = _field(args, "subscription")
        if _integer(_field(res, "status")) != 1:
            return
        report = self.report
        isp = _str_field(res, "ispOperator")
        if isp and isp != report.isp:
            self._write(f"Service provider: {isp}\n")
        report.msg = _str_field(res, "ispInfoMessage")
        if report.msg:
            self._write(f"Message from service provider: {report.msg}\n")
        subscription = _str_field(res, "ispSpeedName")
        if not subscription:
            return
        self._write(f"Subscription: {subscription}\n")

        for info in _array(_field(args, "subscription_info")):
            for category in _array(_field(info, "categories")):
                if _str_field(category, "description") != subscription:
                    continue
                good = _str_field(category, "good")
                acceptable = _str_field(category, "acceptable")
                if not good or not acceptable:
                    return
                try:
                    if report.download * 1000 >= _stod(good):
                        report.rating = "GOOD"
                    elif report.download * 1000 >= _stod(acceptable):
                        report.rating = "ACCEPTABLE"
                    else:
                        report.rating = "BAD"
                except ValueError:
                    continue
                self._write(f"The download result is {report.rating}\n")
                break

        if report.rating == "BAD":
            bad_msg = _str_field(res, "ispBadInfoMessage")
            if bad_msg and bad_msg != report.msg:
                self._write(
                    "Message from service provider regarding the download "
                    f"result: {bad_msg}\n"
                )

    def _on_measurement_info(self, args: Any, replies: list[str]) -> None:
        self.measurement_id = _str_field(args, "MeasurementID")
        if self.measurement_id:
            self._write(f"Measurement ID: {self.measurement_id}\n")
        info = _str_field(args, "ispInfoMessage")
        if info and info != self.report.msg:
            self._write(f"Message from service provider: {info}\n")

    def _on_set_info(self, args: Any, replies: list[str]) -> None:
        for attr, raw in sorted(_object(args).items()):
            value = _string(raw)
            if attr == "error":
                if value:
                    code = _str_field(args, "errno")
                    if code:
                        self._write(f"fatal error: {value} (error code {code})\n")
                    else:
                        self._write(f"fatal error: {value}\n")
                    break
            elif attr == "ticket":
                self.report.ticket = value
                self._write(f"Support ID: {value}\n")
            elif attr == "contents":
                self._ask_consent(raw, replies)
            elif attr == "approxLatency":
                self._show_message("Response time: " + value)
            elif attr == "bestServer":
                if value:
                    self._show_message("Closest server: " + value)
                else:
                    self._show_message("error: no server available")
                replies.append(msg_to_agent("terminate"))
            elif attr == "msgToUser":
                self._show_message(value)

    def _ask_consent(self, contents: Any, replies: list[str]) -> None:
        body = _str_field(contents, "body")
        if _str_field(contents, "consent") and body:
            self._show_message(body)
            self._show_message("Type Y to accept, N to decline: ", False)
            reply = self._stdin.readline().rstrip("\n")
            if "Y" in reply or "y" in reply:
                replies.append(msg_to_agent("getConfiguration", _dump(contents)))
            else:
                replies.append(msg_to_agent("terminate"))
        else:
            self._show_message("Server error.")
            replies.append(msg_to_agent("terminate"))