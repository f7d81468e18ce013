"""Command line options and configuration stores for the measurement client."""

from __future__ import annotations

import os
import platform
import secrets
import string
import sys
from collections.abc import Iterable, Sequence
from enum import Enum, auto

APP_NAME = "bbk_cli"
APP_VERSION = "1.0"

DEFAULT_WEBSERVER = "frontend.bredbandskollen.se"
TEST_WEBSERVER = "frontend-beta.bredbandskollen.se"
APP_DIR_NAME = ".bredbandskollen"

_PATH_SEP = "\\" if os.name == "nt" else "/"


class OptionsError(Exception):
    """Raised when the command line cannot be accepted."""


class EarlyExit(Exception):
    """Raised when an option asks the program to print text and stop."""

    def __init__(self, text: str, status: int = 0) -> None:
        super().__init__(text)
        self.text = text
        self.status = status


class Config:
    """A string store where each key may hold several values."""

    def __init__(self) -> None:
        self._items: dict[str, list[str]] = {}

    def set(self, key: str, value: str) -> None:
        """Replace every value of key with value."""
        self._items[key] = [value]

    def add(self, key: str, value: str) -> None:
        """Add value to key, keeping earlier values."""
        self._items.setdefault(key, []).append(value)

    def value(self, key: str, default: str = "") -> str:
        """Return the first value of key, or default if there is none."""
        found = self._items.get(key)
        return found[0] if found else default

    def has_key(self, key: str) -> bool:
        return bool(self._items.get(key))

    def values(self, key: str) -> list[str]:
        """Return every value of key, in the order they were added."""
        return list(self._items.get(key, ()))

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has_key(key)

    def __iter__(self):
        return iter(self._items)

    def __repr__(self) -> str:
        return f"Config({self._items!r})"


class _Mode(Enum):
    NONE = auto()
    LIVE = auto()
    TEST = auto()
    LOCAL = auto()
    IN_ERROR = auto()


def create_and_get_app_dir(directory: str = "") -> str:
    """Create the application directory if needed and return it with a trailing separator.

    Returns an empty string if no home directory is known or the directory
    cannot be created.
    """
    if not directory:
        if os.name == "nt":
            drive = os.environ.get("HOMEDRIVE")
            path = os.environ.get("HOMEPATH")
            if not drive or not path:
                return ""
            directory = drive + path + "\\" + APP_DIR_NAME
        else:
            home = os.environ.get("HOME")
            if home is None:
                return ""
            directory = home + "/" + APP_DIR_NAME
    try:
        os.mkdir(directory, 0o755)
    except FileExistsError:
        pass
    except OSError:
        if os.name != "nt":
            return ""
    return directory + _PATH_SEP


def _usage(prog: str) -> str:
    lines = [
        f"Usage: {prog} [OPTION]...",
        "",
        "Options:",
        "",
        "  --help              Show this help text",
        "  --version           Print version number and exit",
        "",
        "Network related options:",
        "  --v6                Prefer IPv6 (default is IPv4)",
    ]
    if not sys.platform.startswith("linux"):
        lines += [
            "  --local-ip=IP       Measure using existing local ip address IP",
            "                      Note: this will not work on all platforms",
        ]
    lines += [
        "  --proxy-host=HOST   Use HTTP proxy server HOST",
        "  --proxy-port=PORT   Use port PORT on proxy server (default 80)",
        "",
        "Measurement configuration:",
        "  --server=HOST       Use HOST as measurement server",
        "  --port=N            Port number for measurement server, default 80",
        "  --duration=N        Measure upload/download for N seconds (2-10, default 10)",
        "  --speedlimit=N      Keep upload/download speed below N mbps on average",
        "",
        "Measurement type:",
        "  --live              Measure using Bredbandskollen's live servers (default)",
        "  --test              Measure using Bredbandskollen's development servers",
        "  --local             Don't fetch configuration (server list) from bredbandskollen.se,",
        "                      communicate only with server given by the --server option.",
        "",
        "Logging:",
        "  --log=FILENAME      Write debug log to FILENAME",
        "                      (log to stderr if FILENAME is -)",
        "",
        "Finding measurement servers:",
        "  --check-servers     Find closest measurement server",
        "",
        "List previous measurements:",
        "  --measurements      List 10 last measurements",
        "  --measurements=N    List N last measurements",
        "                      If --quiet, output will be JSON. Otherwise",
        "                      output will be lines with tab separated fields.",
        "  --from-id=N         List only measurements before ID N",
        "",
        "Browser interface:",
        "  --browser           Use a web browser as interface",
        "  --listen=PORT       Use web browser as interface;",
        "                      the browser must connect to the given PORT",
        "  --listen-addr=IP    When listening, bind socket to ip address IP",
        "                      (default is 127.0.0.1) to use a web browser on",
        "                      a remote host as interface",
        "                      Note: this may not work due to e.g. firewalls.",
        "                      Don't use it unless you know what you are doing.",
        "  --listen-pw=PW      Use PW as a one-time password when connecting from browser",
        "                      Note: DO NOT reuse a sensitive password here!",
        "                      It is better to omit this option because by default",
        "                      a secure one-time password will be generated.",
        "",
        "Command line interface:",
        "  --quiet             Write a single line of output",
        "  --csv               Write a single line of output, comma separated",
        "  --out=FILENAME      Append output to FILENAME instead of stdout",
    ]
    return "\n".join(lines) + "\n"


def _create_hash_key(length: int) -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def _valid_port(port: str) -> bool:
    return port.isdigit() and port.isascii() and len(port) <= 5 and int(port) <= 65535


# Options of the form --name=VALUE: prefix -> (config, key) pairs to set.
_CLIENT_VALUE_OPTIONS = {
    "--out=": "out",
    "--log=": "logfile",
    "--server=": "server",
    "--port=": "port",
    "--listen=": "listen",
    "--listen-addr=": "listen_addr",
    "--listen-pw=": "listen_pw",
}

_AGENT_VALUE_OPTIONS = {
    "--local-ip=": "Measure.LocalAddress",
    "--fakeip=": "Client.fakeip",
    "--proxy-host=": "Measure.ProxyServerUrl",
    "--proxy-port=": "Measure.ProxyServerPort",
}

_OVERRIDE_OPTIONS = {
    "--duration=": "Measure.LoadDuration",
    "--speedlimit=": "Measure.SpeedLimit",
}

_MODE_FLAGS = {"--test": _Mode.TEST, "--live": _Mode.LIVE, "--local": _Mode.LOCAL}


def parse_args(
    argv: Sequence[str] | None = None, prog: str | None = None
) -> tuple[Config, Config]:
    """Parse command line options into a client and an agent configuration.

    argv holds the options without the program name. Raises EarlyExit for
    --help and --version, and OptionsError for anything that is not accepted.
    """
    if argv is None:
        argv = sys.argv[1:]
    if prog is None:
        prog = os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else "bbk"

    client_cfg = Config()
    agent_cfg = Config()
    mode = _Mode.NONE

    client_cfg.set("port", "80")
    client_cfg.set("mtype", "ipv4")
    client_cfg.set("listen_addr", "127.0.0.1")

    agent_cfg.add("Measure.Webserver", DEFAULT_WEBSERVER)
    agent_cfg.add("Measure.SettingsUrl", "/api/servers")
    agent_cfg.add("Measure.ContentsUrl", "/api/content")
    agent_cfg.add("Measure.MeasurementsUrl", "/api/measurements")

    for arg in argv:
        _apply_option(arg, prog, client_cfg, agent_cfg)
        if arg in _MODE_FLAGS:
            mode = _MODE_FLAGS[arg] if mode is _Mode.NONE else _Mode.IN_ERROR

    client_cfg.set("app_dir", create_and_get_app_dir(client_cfg.value("app_dir")))

    if client_cfg.value("local") == "1" and not client_cfg.value("server"):
        raise OptionsError("missing --server option")

    for key in ("listen", "port"):
        port = client_cfg.value(key)
        if port and not _valid_port(port):
            raise OptionsError("invalid port number")

    if mode in (_Mode.NONE, _Mode.LIVE):
        agent_cfg.set("Measure.Webserver", DEFAULT_WEBSERVER)
    elif mode is _Mode.TEST:
        agent_cfg.set("Measure.Webserver", TEST_WEBSERVER)
    elif mode is _Mode.LOCAL:
        client_cfg.set("local", "1")
        agent_cfg.set("Measure.Webserver", "none")
    else:
        raise OptionsError("can have only one of options --live, --test, and --local")

    if client_cfg.value("listen") and not client_cfg.value("listen_pw"):
        client_cfg.add("listen_pw", _create_hash_key(12))
    client_cfg.add(
        "url",
        "http://" + agent_cfg.value("Measure.Webserver") + "/standalone/dev/index.php",
    )

    app_dir = client_cfg.value("app_dir")
    if not client_cfg.value("logfile"):
        client_cfg.add("logfile", app_dir + "last_log")
    client_cfg.set("config_file", app_dir + "config")
    agent_cfg.set("options_file", app_dir + "ConfigOptions.txt")

    # Default to ipv6 if the user wants to use a local ipv6 address.
    if ":" in agent_cfg.value("Measure.LocalAddress"):
        client_cfg.set("mtype", "ipv6")
        client_cfg.set("Measure.IpType", "override")

    agent_cfg.add(
        "Measure.AutoSaveReport", "true" if client_cfg.value("listen") else "false"
    )
    agent_cfg.add("Measure.IpType", client_cfg.value("mtype"))

    agent_cfg.add("Client.appname", APP_NAME)
    agent_cfg.add("Client.appver", APP_VERSION)
    agent_cfg.add("Client.machine", platform.machine())
    agent_cfg.add("Client.system", platform.platform())
    agent_cfg.add("Client.language", "en")

    return client_cfg, agent_cfg


def _apply_option(arg: str, prog: str, client_cfg: Config, agent_cfg: Config) -> None:
    if arg in _MODE_FLAGS:
        return
    if arg in ("--v6", "--v4"):
        client_cfg.set("mtype", "ipv6" if arg == "--v6" else "ipv4")
        client_cfg.set("Measure.IpType", "override")
    elif arg == "--version":
        raise EarlyExit(f"{APP_NAME} {APP_VERSION}\n")
    elif arg == "--quiet":
        client_cfg.set("quiet", "1")
    elif arg == "--csv":
        client_cfg.set("quiet", "1")
        client_cfg.set("limiter", ",")
    elif arg == "--check-servers":
        client_cfg.set("pingsweep", "1")
    elif arg == "--browser":
        client_cfg.set("browser", "1")
        if not client_cfg.value("listen"):
            client_cfg.set("listen", "0")  # any available port
    elif arg.startswith("--dir="):
        client_cfg.set("app_dir", arg[len("--dir="):] + _PATH_SEP)
    elif arg.startswith("--configure="):
        client_cfg.add("configure", arg[len("--configure="):])
    elif arg.startswith("--measurements"):
        value = arg[15:] if len(arg) > 15 and arg[14] == "=" else "10"
        client_cfg.set("list_measurements", value)
    elif arg.startswith("--from-id="):
        client_cfg.set("list_from", arg[len("--from-id="):])
        if not client_cfg.value("list_measurements"):
            client_cfg.set("list_measurements", "10")
    elif _match_prefix(arg, _OVERRIDE_OPTIONS) is not None:
        prefix = _match_prefix(arg, _OVERRIDE_OPTIONS)
        key = _OVERRIDE_OPTIONS[prefix]
        agent_cfg.set(key, arg[len(prefix):])
        client_cfg.set(key, "override")
    elif _match_prefix(arg, _CLIENT_VALUE_OPTIONS) is not None:
        prefix = _match_prefix(arg, _CLIENT_VALUE_OPTIONS)
        client_cfg.set(_CLIENT_VALUE_OPTIONS[prefix], arg[len(prefix):])
    elif _match_prefix(arg, _AGENT_VALUE_OPTIONS) is not None:
        prefix = _match_prefix(arg, _AGENT_VALUE_OPTIONS)
        agent_cfg.set(_AGENT_VALUE_OPTIONS[prefix], arg[len(prefix):])
    elif arg == "--help":
        raise EarlyExit(_usage(prog))
    else:
        raise OptionsError(f"{prog}: invalid argument -- {arg}\n" + _usage(prog))


def _match_prefix(arg: str, prefixes: Iterable[str]) -> str | None:
    return next((p for p in prefixes if arg.startswith(p)), None)