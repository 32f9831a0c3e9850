"""Worker pool process: ``python -m coursemedia.worker``."""

from coursemedia.core.env import load_env
load_env()

import argparse
import signal
import threading

from coursemedia.core.config import settings
from coursemedia.core.logging import configure_logging, get_logger
from coursemedia.modules.processing.dispatcher import Dispatcher, WorkerPool

configure_logging(settings.LOG_LEVEL)
logger = get_logger(__name__)


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Run the video processing worker pool")
    parser.add_argument("--size", type=int, default=settings.WORKER_POOL_SIZE)
    parser.add_argument("--poll-interval", type=float, default=settings.WORKER_POLL_INTERVAL_SECONDS)
    parser.add_argument(
        "--drain",
        action="store_true",
        help="process every dispatchable job on this thread, then exit",
    )
    args = parser.parse_args(argv)

    pool = WorkerPool(Dispatcher(), size=args.size, poll_interval=args.poll_interval)
    if args.drain:
        processed = pool.run_until_idle()
        logger.info("queue drained", processed=processed)
        return

    stop = threading.Event()

    def _shutdown(signum, frame):
        logger.info("shutdown requested", signal=signum)
        stop.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    pool.start()
    stop.wait()
    pool.stop(timeout=30)


if __name__ == "__main__":
    main()
