# bbkcli

`bbkcli` holds the user-facing side of a broadband speed measurement client
and a small framework of tasks for it. It uses only the standard library.

- `bbkcli.options` reads the command line options into two configurations,
  one for the user interface and one for the measurement agent.
- `bbkcli.messages` formats and recognises the messages passed between an
  agent and its client.
- `bbkcli.cliclient` turns JSON events from a measurement agent into terminal
  output and returns the replies to send back.
- `bbkcli.task`, `bbkcli.eventloop` and `bbkcli.bridge` make up the task
  framework: tasks, timers, parent and child tasks, observation and direct
  messages between tasks, background commands, and a bridge between an agent
  task and a client outside the loop.
- `bbkcli.examples` holds small tasks and clients built on the framework.

## What the package does not do

The package contains no measurement agent and no network code. It does not
talk to measurement servers, fetch server lists, measure speed, serve a
browser interface or save a log or cookie file. It installs no command.
`CliClient` only reacts to the events it is given, so you need an agent that
produces them.

## Command line options

`parse_args(argv, prog)` returns `(client_cfg, agent_cfg)`. `argv` holds the
options without the program name. It defaults to `sys.argv[1:]`.

| Option | Meaning |
| --- | --- |
| `--v4`, `--v6` | Measure over IPv4 (the default) or IPv6 |
| `--live`, `--test`, `--local` | Use the live web server, the development one, or none (`Measure.Webserver` is set to `none`) |
| `--server=HOST`, `--port=N` | Measurement server and its port (default 80) |
| `--duration=N` | Upload and download duration in seconds |
| `--speedlimit=N` | Keep the average speed below N Mbit/s |
| `--quiet`, `--csv` | Write a single result line, separated by spaces or by commas |
| `--out=FILENAME` | Append output to a file |
| `--log=FILENAME` | Debug log file name (`-` means stderr) |
| `--dir=DIR` | Application directory (default `~/.bredbandskollen`) |
| `--local-ip=IP` | Local address to measure from; an IPv6 address switches to IPv6 |
| `--check-servers` | Find the closest measurement server |
| `--measurements[=N]`, `--from-id=N` | List earlier measurements (10 by default) |
| `--listen=PORT`, `--listen-addr=IP`, `--listen-pw=PW`, `--browser` | Browser interface settings |
| `--proxy-host=HOST`, `--proxy-port=PORT` | HTTP proxy |
| `--fakeip=IP` | Value for the agent's `Client.fakeip` option |
| `--configure=NAME[=VALUE]` | Save a persistent agent option |
| `--help`, `--version` | Ask for the help or version text |

`parse_args` raises `OptionsError` for:

- an unknown option (the message includes the usage text),
- a port number that is not a number from 0 to 65535,
- more than one of `--live`, `--test` and `--local`.

For `--help` and `--version` it raises `EarlyExit`. The text is in its `text`
attribute and the exit status is in `status`. Printing the text is up to the
caller. The application directory is created if it does not exist. If
`--listen` is given without `--listen-pw`, a random one-time password is
generated.

```python
from bbkcli.options import EarlyExit, OptionsError, parse_args

try:
    client_cfg, agent_cfg = parse_args(["--v6", "--csv", "--duration=5"], "bbk")
except EarlyExit as stop:
    print(stop.text, end="")
except OptionsError as exc:
    print(exc)
else:
    print(client_cfg.value("mtype"))                # "ipv6"
    print(agent_cfg.value("Measure.LoadDuration"))  # "5"
```

`Config` is a store where a key can hold several values:

- `set` replaces every value of a key.
- `add` appends another value.
- `value(key, default="")` returns the first value, or `default` if there is
  none.
- `values(key)` returns all values in the order they were added.
- `has_key(key)` (or `key in cfg`) tells whether the key has a value.

## Messages between agent and client

```python
from bbkcli.messages import is_agent_terminated_message, msg_to_agent

msg_to_agent("startTest", '{"tls": 0}')
# '{"method": "startTest", "args": {"tls": 0}}'

is_agent_terminated_message("AGENT EXIT: connection lost")   # True
```

Other helpers in the module:

- `event_message` formats an event for the client.
- `agent_terminated_message` builds an `AGENT EXIT:` notice.
- `is_terminate_message` recognises a `terminate` request.

## The terminal client

`CliClient(config, out=None, stdin=None, is_tty=None)` takes a client
configuration from `parse_args`.

- Output goes to `out` (stdout by default). If the configuration has an
  `out` file name, output is appended to that file instead; `close()` closes
  it.
- `stdin` is read when the user is asked for consent.
- `is_tty` decides whether progress is redrawn in place. By default it is
  taken from the output stream.

`initial_messages()` returns the first messages for the agent.
`handle_event(msg)` handles one event, writes any output, and returns the
replies. It handles these events: `configuration`, `taskStart`,
`taskProgress`, `taskComplete`, `agentReady`, `measurementList`, `report`,
`measurementInfo` and `setInfo`. Text that is not valid JSON gets a
`terminate` reply. The collected results are kept in `client.report`, a
`Report` dataclass.

## Tasks and the event loop

Subclass `Task` to define a task:

- `start` returns the number of seconds until the first `timer_event`, or 0
  for no timer.
- `timer_event` returns the delay until the next timer event.
- Call `set_result`, `set_error` or `set_timeout` when the task is done.
- `start_observing` lets the task send direct messages to another task with
  `execute_handler`. That task receives them in `handle_execution`.
- `task_finished` is called when an observed task ends.

Only one `EventLoop` can exist at a time. Use it as a context manager, or
call `close()`, so that another one can be created later.

```python
from bbkcli.eventloop import EventLoop
from bbkcli.examples import PointlessTask

with EventLoop() as loop:
    loop.add_task(PointlessTask("Pointless 1", 1.0, 3))
    loop.add_task(PointlessTask("Pointless 2", 0.7, 5))
    loop.run_until_complete()
```

`EventLoop.run_task(task)` does the same for a single task.

- `run(timeout_s)` runs for a limited time and returns whether tasks remain.
- `external_command(owner, argv)` starts a program in the background. The
  owner's `process_finished(pid, status)` is called when it exits.
- An optional `clock` argument replaces the time source. If it has a `sleep`
  attribute, that is also used for waiting.

`BridgeTask` links an agent task in the loop to a client outside it.

- Subclasses implement `send_msg_to_client`.
- `send_msg_to_agent` passes the client's messages to the agent. A
  `terminate` message also ends the bridge.
- The agent is started as a child of the bridge and is aborted when the
  bridge ends.
- When the agent ends with a result, the client gets an `AGENT EXIT:`
  message.

## Examples

`bbkcli.examples` contains:

- `PointlessTask`: ticks a set number of times, then finishes.
- `SenderTask` and `ReceiverTask`: the sender messages the receiver every
  second. The receiver stops after three messages, and the sender stops when
  the receiver is gone.
- `ScoreBoard`: keeps the top-scoring names per connection from
  `name score` messages and answers `winner`.
- `TerminalClient`: shows the latest agent message on one terminal line and
  asks the agent to quit after four messages.