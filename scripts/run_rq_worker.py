"""Consume note pipeline jobs from the dispatcher's RQ queue.

Usage:
  python scripts/run_rq_worker.py            # long-running
  python scripts/run_rq_worker.py --burst    # drain the queue and exit

The worker listens on the queue the web app enqueues into
(``PIPELINE_QUEUE`` on ``REDIS_URL``) and runs each job inside this app's
context.
"""

import os
import sys

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from rq import Worker

from oasisnotes import create_app
from oasisnotes.extensions import pipeline


def main(argv):
    app = create_app()
    if pipeline.queue is None:
        print(f"No RQ queue (PIPELINE_EXECUTOR={app.config.get('PIPELINE_EXECUTOR')}, "
              f"REDIS_URL={app.config.get('REDIS_URL')}); nothing to consume.")
        return 1

    burst = "--burst" in argv
    worker = Worker([pipeline.queue], connection=pipeline.redis)
    app.logger.info("RQ worker pid %s listening on %r (burst=%s)", os.getpid(), pipeline.queue.name, burst)
    with app.app_context():
        worker.work(burst=burst, with_scheduler=not burst, logging_level="DEBUG")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
