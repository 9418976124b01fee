import asyncio
import csv
import logging
import os
import statistics
from logging import getLogger

from tapowatt.utils.config import MEASUREMENT_SAMPLE_COUNT, TAPO_TEMPORAL_RESOLUTION
from tapowatt.utils.errors import ConnectError, SessionExpired, TapoTimeoutError
from tapowatt.utils.models import Measurement

logger = getLogger("TapoWattLogger")

# errors after which monitor mode just waits for the next cycle
RECOVERABLE_ERRORS = (ConnectError, TapoTimeoutError, SessionExpired)

# ---------------- function ----------------

def setup_logger(log_path=None, level=logging.INFO):
    logger = logging.getLogger("TapoWattLogger")
    logger.setLevel(level)
    logger.propagate = False

    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")

    if not logger.handlers:
        ch = logging.StreamHandler()
        ch.setFormatter(formatter)
        logger.addHandler(ch)

        if log_path:
            fh = logging.FileHandler(log_path)
            fh.setFormatter(formatter)
            logger.addHandler(fh)

    return logger


def summarize(samples):
    if not samples:
        raise ValueError("cannot summarize zero samples")

    watts = [sample.watts for sample in samples]
    return Measurement(
        samples=list(samples),
        mean_watts=statistics.fmean(watts),
        stddev_watts=statistics.pstdev(watts),
        min_watts=min(watts),
        max_watts=max(watts),
    )


class CsvSink:
    """Monitor sink that appends every sample to a CSV file."""

    def __init__(self, path):
        self.path = path
        new_file = not os.path.exists(path) or os.path.getsize(path) == 0
        self._file = open(path, "a", newline="")
        self._writer = csv.writer(self._file)
        if new_file:
            self._writer.writerow(["timestamp", "power_mW"])

    def __call__(self, sample):
        self._writer.writerow([sample.timestamp.isoformat(), sample.power_mw])
        self._file.flush()

    def close(self):
        self._file.close()
        logger.info(f"✅ Power log saved: {self.path}")


async def _pause(stop_event, interval):
    # wakes early when the stop event fires
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=interval)
    except asyncio.TimeoutError:
        pass

# ---------------- core ----------------

async def monitor(device, sink, interval=TAPO_TEMPORAL_RESOLUTION, stop_event=None):
    if stop_event is None:
        stop_event = asyncio.Event()

    logger.info("[START] Power monitoring")
    while not stop_event.is_set():
        try:
            sample = await device.get_current_power()
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"⚠️ Power sampling error, retrying next cycle: {e}")
        else:
            sink(sample)

        await _pause(stop_event, interval)

    logger.info("[STOP] Power monitoring")


async def measure(device, count=MEASUREMENT_SAMPLE_COUNT, interval=TAPO_TEMPORAL_RESOLUTION, on_sample=None):
    if count < 1:
        raise ValueError("need at least one sample")

    samples = []
    for i in range(count):
        if i:
            await asyncio.sleep(interval)
        sample = await device.get_current_power()
        samples.append(sample)
        logger.debug(f"sample {i + 1}/{count}: {sample.power_mw} mW")
        if on_sample is not None:
            on_sample(i + 1, count, sample)

    return summarize(samples)
