#!/usr/bin/env python3
"""Run the launchlens ARQ worker (launch status cron).

Deployments that run this worker usually set
LAUNCH_STATUS_SCHEDULER_ENABLED=false on the API so the tick has one owner.

USAGE:
    python -m launchlens.workers.start_arq_worker
    arq launchlens.workers.arq_worker.WorkerSettings
"""

import logging
import os
import sys

from arq import run_worker

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)


def main():
    from launchlens.telemetry import init_observability
    from launchlens.workers.arq_worker import WorkerSettings

    status = init_observability()
    logger.info("[ARQ] Launching worker (sentry=%s, max_jobs=%s)", status["sentry"], WorkerSettings.max_jobs)
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
