import argparse
import asyncio
import ipaddress
import logging
import signal
import sys
from collections import deque

from tapowatt.utils.config import DEFAULT_TIMEOUT, MEASUREMENT_SAMPLE_COUNT, PROTOCOLS, TAPO_TEMPORAL_RESOLUTION, load_credentials
from tapowatt.utils.errors import ConfigError, TapoError
from tapowatt.utils.powerlogger import CsvSink, measure, monitor, setup_logger
from tapowatt.utils.tapo import ApiClient

logger = logging.getLogger("TapoWattLogger")

PLOT_WIDTH = 100
SPARK_CHARS = "▁▂▃▄▅▆▇█"


# ====================================================================
# RENDERING
# ====================================================================
def sparkline(values):
    if not values:
        return ""
    low, high = min(values), max(values)
    span = high - low
    if span == 0:
        return SPARK_CHARS[0] * len(values)
    top = len(SPARK_CHARS) - 1
    return "".join(SPARK_CHARS[round((v - low) / span * top)] for v in values)


def print_stats(measurement):
    print(f"avg: {measurement.mean_watts:.1f} W +-{measurement.stddev_watts:.1f} W")
    print(f"min: {measurement.min_watts:g} W")
    print(f"max: {measurement.max_watts:g} W")
    print(f"samples: {[sample.watts for sample in measurement.samples]}")


def print_device_info(info):
    rows = [
        ("Nickname", info.nickname),
        ("Model", info.model),
        ("Device ID", info.device_id),
        ("Firmware", info.fw_ver),
        ("Hardware", info.hw_ver),
        ("MAC Address", info.mac),
        ("IP Address", info.ip),
        ("Current State", None if info.device_on is None else ("On" if info.device_on else "Off")),
        ("RSSI", info.rssi),
    ]
    for label, value in rows:
        if value is not None:
            print(f"{label + ':':<15} {value}")


class LiveDisplay:
    """Redraws one status line: the recent history as a sparkline, oldest on the left."""

    def __init__(self, width=PLOT_WIDTH, interval=TAPO_TEMPORAL_RESOLUTION, csv_sink=None, stream=None):
        self.history = deque(maxlen=width)
        self.interval = interval
        self.csv_sink = csv_sink
        self.stream = stream
        self.drawn = False

    def render(self, sample):
        chart = sparkline(list(self.history)).ljust(self.history.maxlen)
        return f"-{self.history.maxlen * self.interval:g}s {chart} now | current power: {sample.watts:g} W"

    def __call__(self, sample):
        self.history.append(sample.watts)
        if self.csv_sink is not None:
            self.csv_sink(sample)
        stream = self.stream or sys.stdout
        stream.write("\r\x1b[K" + self.render(sample))
        stream.flush()
        self.drawn = True

    def close(self):
        if self.drawn:
            (self.stream or sys.stdout).write("\n")


def _progress(done, total, sample):
    end = "\n" if done == total else ""
    print(f"\robtaining samples... {done:>3}/{total}", end=end, file=sys.stderr, flush=True)


# ====================================================================
# MODES
# ====================================================================
async def run_measure(args, device):
    measurement = await measure(device, args.samples, args.interval, on_sample=_progress)
    print_stats(measurement)


async def run_monitor(args, device):
    csv_sink = CsvSink(args.csv) if args.csv else None
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stop.set)
    except (NotImplementedError, RuntimeError):
        logger.debug("no SIGINT handler on this platform")

    display = LiveDisplay(interval=args.interval, csv_sink=csv_sink)
    try:
        await monitor(device, display, args.interval, stop)
    finally:
        display.close()
        if csv_sink is not None:
            csv_sink.close()
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


async def run_info(args, device):
    print_device_info(await device.get_device_info())


MODES = {
    "measure": run_measure,
    "monitor": run_monitor,
    "info": run_info,
}


# ====================================================================
# MAIN
# ====================================================================
async def run(args, credentials):
    client = ApiClient(credentials.username, credentials.password, args.timeout, args.protocol)

    try:
        device = await client.p115(str(args.ip), args.port)
        logger.info(f"connected to {args.ip} using {device.channel.protocol}")
        await MODES[args.command](args, device)
    except TapoError as e:
        logger.error(f"❌ {type(e).__name__}: {e}")
        return 1
    except OSError as e:
        logger.error(f"❌ cannot write output: {e}")
        return 1

    return 0


# ====================================================================
# CLI
# ====================================================================
def build_parser():
    parser = argparse.ArgumentParser(prog="tapowatt", description="power consumption from a tapo smart plug")
    parser.add_argument("--port", type=int, default=80)
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="seconds per request")
    parser.add_argument("--protocol", choices=PROTOCOLS, default="auto")
    parser.add_argument("--log_path", default=None)
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("ip", type=ipaddress.ip_address)

    commands = parser.add_subparsers(dest="command", required=True)

    measure_parser = commands.add_parser("measure", help="take a measurement of current power consumption over multiple samples")
    measure_parser.add_argument("--samples", type=int, default=MEASUREMENT_SAMPLE_COUNT)
    measure_parser.add_argument("--interval", type=float, default=TAPO_TEMPORAL_RESOLUTION)

    monitor_parser = commands.add_parser("monitor", help="continuously monitor momentary power consumption")
    monitor_parser.add_argument("--interval", type=float, default=TAPO_TEMPORAL_RESOLUTION)
    monitor_parser.add_argument("--csv", default=None, help="also append samples to this csv file")

    commands.add_parser("info", help="show device identity")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "measure" and args.samples < 1:
        parser.error("--samples must be at least 1")

    setup_logger(args.log_path, logging.DEBUG if args.verbose else logging.INFO)

    try:
        credentials = load_credentials()
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    try:
        return asyncio.run(run(args, credentials))
    except KeyboardInterrupt:
        return 0 if args.command == "monitor" else 130


if __name__ == "__main__":
    sys.exit(main())
